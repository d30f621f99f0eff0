from ai_categorizer.domain.text import extract_keywords, normalize_category, normalize_description


def test_normalize_description_strips_noise() -> None:
    assert normalize_description("AWS Cloud Services") == "aws cloud services"
    assert normalize_description("SPOTIFY REF: 88213 Stockholm") == "spotify stockholm"
    assert normalize_description("POS 4411 Card #9921 Corner Bakery") == "corner bakery"
    assert normalize_description("") == ""
    assert normalize_description(None) == ""


def test_extract_keywords_skips_stop_words() -> None:
    assert extract_keywords("Payment to the Corner Bakery and Cafe") == ["corner", "bakery", "cafe"]
    assert extract_keywords("one two three four five six seven", limit=2) == ["one", "two"]


def test_normalize_category() -> None:
    assert normalize_category("  Office Supplies ") == "office_supplies"

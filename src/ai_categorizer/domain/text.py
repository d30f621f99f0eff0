import re

_NOISE_TOKEN = re.compile(
    r"\b(?:ref|txn|trx|pos|card|auth)\b[\s:#.-]*(?:[\w*#-]*\d[\w*#-]*)?",
    re.IGNORECASE,
)
_NON_LETTER = re.compile(r"[^a-z\s]+")
_WHITESPACE = re.compile(r"\s+")
_WORD = re.compile(r"[A-Za-z][A-Za-z&'-]{2,}")

STOP_WORDS = frozenset({
    "the", "and", "for", "from", "with", "payment", "purchase", "inc", "llc",
    "ltd", "corp", "co", "www", "com", "online", "debit", "credit", "transfer",
})


def normalize_description(description: str | None) -> str:
    """
    Reduce a transaction description to the stable part used as a rule
    pattern: lowercase letters only, reference/card tokens and digits
    removed, whitespace collapsed.
    """
    if not description:
        return ""
    text = _NOISE_TOKEN.sub(" ", description.lower())
    text = _NON_LETTER.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def extract_keywords(description: str, limit: int = 5) -> list[str]:
    keywords: list[str] = []
    seen = set()
    for word in _WORD.findall(description):
        lowered = word.lower()
        if lowered in STOP_WORDS or lowered in seen:
            continue
        keywords.append(lowered)
        seen.add(lowered)
        if len(keywords) >= limit:
            break
    return keywords


def normalize_category(category: str) -> str:
    return _WHITESPACE.sub("_", category.strip().lower())

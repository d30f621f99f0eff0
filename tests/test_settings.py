import logging
import os

import pytest

from ai_categorizer.core import settings


def test_typed_getters_fall_back_on_bad_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROMOTION_THRESHOLD", "two")
    monkeypatch.setenv("RULE_CONFIDENCE_FLOOR", "1.5")
    monkeypatch.setenv("MAX_PROVIDER_ATTEMPTS", "0")

    assert settings.promotion_threshold() == settings.DEFAULT_PROMOTION_THRESHOLD
    assert settings.rule_confidence_floor() == settings.DEFAULT_RULE_CONFIDENCE_FLOOR
    assert settings.max_provider_attempts() == settings.DEFAULT_MAX_PROVIDER_ATTEMPTS


def test_typed_getters_read_valid_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROMOTION_THRESHOLD", "5")
    monkeypatch.setenv("PROMOTED_RULE_CONFIDENCE", "0.85")
    monkeypatch.setenv("RULE_CACHE_TTL", "0")

    assert settings.promotion_threshold() == 5
    assert settings.promoted_rule_confidence() == pytest.approx(0.85)
    assert settings.rule_cache_ttl() == 0.0


def test_read_config_file(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "# providers\n"
        "OPENAI_MODEL: gpt-4o  # inline comment\n"
        "ANTHROPIC_MODEL: 'claude-test'\n"
        "EMPTY:\n"
        "nested:\n"
        "  key: ignored-value\n"
    )

    values = settings.read_config_file(str(path))

    assert values["OPENAI_MODEL"] == "gpt-4o"
    assert values["ANTHROPIC_MODEL"] == "claude-test"
    assert "EMPTY" not in values
    assert settings.read_config_file(str(tmp_path / "missing.yaml")) == {}


def test_secrets_are_masked() -> None:
    assert settings._mask_env_value("OPENAI_API_KEY", "sk-abcdef123456") == "sk...56"
    assert settings._mask_env_value("AUDIT_WEBHOOK_URL", "https://audit.example.test") == "https://audit.example.test"
    assert settings._mask_env_value("GOOGLE_API_KEY", "abc") == "****"


def test_log_environment_masks_keys(monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-secret-value")

    with caplog.at_level(logging.INFO, logger=settings.logger.name):
        settings.log_environment()

    assert "sk-ant-secret-value" not in caplog.text
    assert "ANTHROPIC_API_KEY=sk...ue" in caplog.text


def test_load_environment_prefers_process_env_over_config_file(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    (tmp_path / "config.yaml").write_text("OPENAI_MODEL: from-file\nANTHROPIC_MODEL: from-file\n")
    monkeypatch.setenv("CONFIG_DIR", str(tmp_path))
    monkeypatch.setenv("ANTHROPIC_MODEL", "from-env")
    # Registered first so monkeypatch restores the variable load_environment sets
    monkeypatch.setenv("OPENAI_MODEL", "placeholder")
    monkeypatch.delenv("OPENAI_MODEL")

    settings.load_environment()

    assert os.environ["OPENAI_MODEL"] == "from-file"
    assert os.environ["ANTHROPIC_MODEL"] == "from-env"

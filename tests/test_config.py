from __future__ import annotations

import logging

import pytest

from ielts_coach.core.config import LOGGER_NAME, ConfigError, Settings, mask_key, setup_logging

ENV_KEYS = (
    "LLM_PROVIDER",
    "GEMINI_API_KEY",
    "OPENAI_API_KEY",
    "PORT",
    "CORS_ORIGINS",
    "MAX_UPLOAD_MB",
    "UPSTREAM_TIMEOUT",
    "STATIC_DIR",
    "LOGTAIL_SOURCE_TOKEN",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "g-key-123")
    settings = Settings.from_env().validate()

    assert settings.LLM_PROVIDER == "gemini"
    assert settings.PORT == 5000
    assert settings.MAX_UPLOAD_BYTES == 15 * 1024 * 1024
    assert settings.CORS_ORIGINS == ["*"]
    assert settings.STATIC_DIR is None


def test_overrides_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", " OpenAI ")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-abc")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("CORS_ORIGINS", "https://a.test, https://b.test")
    settings = Settings.from_env().validate()

    assert settings.LLM_PROVIDER == "openai"
    assert settings.PORT == 8080
    assert settings.CORS_ORIGINS == ["https://a.test", "https://b.test"]


def test_missing_key_for_provider() -> None:
    with pytest.raises(ConfigError, match="GEMINI_API_KEY"):
        Settings.from_env().validate()

    with pytest.raises(ConfigError, match="OPENAI_API_KEY"):
        Settings(llm_provider="openai", gemini_api_key="g").validate()


def test_bad_values(monkeypatch: pytest.MonkeyPatch) -> None:
    with pytest.raises(ConfigError, match="LLM_PROVIDER"):
        Settings(llm_provider="mistral").validate()

    with pytest.raises(ConfigError, match="PORT"):
        Settings(gemini_api_key="g", port=70000).validate()

    monkeypatch.setenv("PORT", "eighty")
    with pytest.raises(ConfigError, match="PORT"):
        Settings.from_env()


def test_mask_key() -> None:
    assert mask_key(None) == "❌ NOT SET"
    assert mask_key("sk-1234567") == "✅ ...4567"


def test_setup_logging_is_idempotent() -> None:
    setup_logging("DEBUG")
    logger = setup_logging("DEBUG")

    assert logger.name == LOGGER_NAME
    assert len(logger.handlers) == 1
    assert logger.level == logging.DEBUG
    assert not logger.propagate

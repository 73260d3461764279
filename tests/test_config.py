"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from wessley.config import Environment, Settings, get_settings, reset_settings_cache


class TestSettings:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", " Production ")
        monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.test, https://b.test,")
        monkeypatch.setenv("SMTP_PORT", "2525")
        monkeypatch.setenv("REDIS_URL", "  ")
        settings = Settings.from_env()
        assert settings.app_env == Environment.PRODUCTION
        assert settings.is_production
        assert settings.cors_allow_origins == ["https://a.test", "https://b.test"]
        assert settings.smtp_port == 2525
        assert settings.redis_url is None

    def test_unknown_environment(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "staging")
        with pytest.raises(ValidationError):
            Settings.from_env()

    def test_cache_reset(self, monkeypatch):
        first = get_settings()
        assert get_settings() is first
        monkeypatch.setenv("CHAT_MODEL", "gpt-4o")
        reset_settings_cache()
        assert get_settings().chat_model == "gpt-4o"
        reset_settings_cache()

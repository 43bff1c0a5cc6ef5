"""
tests/test_config.py

Settings loading and normalization.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from judgesync.config import Settings, get_settings, reset_settings


class TestEnvironment:
    @pytest.mark.parametrize(
        "raw,expected",
        [("prod", "prod"), ("production", "prod"), ("Development", "dev"), (" staging ", "staging")],
    )
    def test_environment_spellings(self, monkeypatch, raw: str, expected: str) -> None:
        monkeypatch.setenv("ENVIRONMENT", raw)

        settings = Settings()

        assert settings.environment == expected
        assert settings.is_production is (expected == "prod")

    def test_invalid_environment_rejected(self, monkeypatch) -> None:
        monkeypatch.setenv("ENVIRONMENT", "qa")

        with pytest.raises(ValidationError):
            Settings()


class TestValues:
    def test_quotes_and_whitespace_stripped(self, monkeypatch) -> None:
        monkeypatch.setenv("SYNC_API_KEY", '  "quoted-key" ')
        monkeypatch.setenv("COURTLISTENER_BASE_URL", "https://cl.example/api/")

        settings = Settings()

        assert settings.SYNC_API_KEY == "quoted-key"
        assert settings.courtlistener_base_url == "https://cl.example/api"

    def test_defaults(self, monkeypatch) -> None:
        monkeypatch.delenv("SYNC_INTER_BATCH_DELAY_SECONDS", raising=False)
        monkeypatch.delenv("SCHEDULER_ENABLED", raising=False)

        settings = Settings()

        assert settings.JOB_LEASE_SECONDS == 900
        assert settings.COURTLISTENER_RATE_LIMIT_TOKENS == 40
        assert settings.SYNC_INTER_BATCH_DELAY_SECONDS == 1.0
        assert settings.WEBHOOK_DEDUPE_TTL_SECONDS == 3600
        assert settings.SCHEDULER_ENABLED is True

    def test_bounds_enforced(self, monkeypatch) -> None:
        monkeypatch.setenv("JOB_LEASE_SECONDS", "5")

        with pytest.raises(ValidationError):
            Settings()


class TestCache:
    def test_get_settings_is_cached_until_reset(self, monkeypatch) -> None:
        first = get_settings()
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        assert get_settings() is first

        reset_settings()
        assert get_settings().log_level == "DEBUG"

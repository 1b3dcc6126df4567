"""Tests for settings defaults and consistency checks."""

import pytest

from common.config import Settings
from common.errors import ConfigurationError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("ENGINE_CALL_TIMEOUT_MINUTES", "JOB_STALE_AFTER_MINUTES", "CORS_ORIGINS"):
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    def test_timing_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.engine_call_timeout_seconds == 55 * 60
        assert settings.job_stale_after_seconds == 60 * 60
        assert settings.error_message_max_chars == 500

    def test_engine_timeout_must_be_below_staleness(self):
        with pytest.raises(ConfigurationError):
            Settings(_env_file=None, engine_call_timeout_minutes=60, job_stale_after_minutes=60)

    def test_values_from_environment(self, monkeypatch):
        monkeypatch.setenv("ENGINE_CALL_TIMEOUT_MINUTES", "5")
        monkeypatch.setenv("JOB_STALE_AFTER_MINUTES", "10")
        settings = Settings(_env_file=None)
        assert settings.engine_call_timeout_seconds == 300
        assert settings.job_stale_after_seconds == 600

    def test_cors_origin_list(self):
        settings = Settings(_env_file=None, cors_origins="https://a.example, https://b.example,")
        assert settings.cors_origin_list == ["https://a.example", "https://b.example"]

"""Tests for Settings — defaults and validation of the recalculation knobs."""

import pytest
from pydantic import ValidationError

from mii.config.settings import Environment, LogLevel, Settings


class TestDefaults:
    def test_recalculation_defaults(self) -> None:
        settings = Settings()
        assert settings.ENTITY_STORE_TIMEOUT_S == 10.0
        assert settings.RECALC_MAX_ATTEMPTS == 3
        assert settings.RECALC_BACKOFF_BASE_S == 0.5

    def test_environment_and_log_level(self) -> None:
        settings = Settings(ENVIRONMENT="prod", LOG_LEVEL="DEBUG")
        assert settings.ENVIRONMENT is Environment.PROD
        assert settings.LOG_LEVEL is LogLevel.DEBUG

    def test_only_declared_fields(self) -> None:
        assert set(Settings.model_fields) == {
            "DATABASE_URL",
            "ENTITY_STORE_TIMEOUT_S",
            "RECALC_MAX_ATTEMPTS",
            "RECALC_BACKOFF_BASE_S",
            "LOG_LEVEL",
            "ENVIRONMENT",
        }
        assert not hasattr(Settings(), "is_production")


class TestValidation:
    def test_zero_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(ENTITY_STORE_TIMEOUT_S=0)

    def test_zero_attempts_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(RECALC_MAX_ATTEMPTS=0)

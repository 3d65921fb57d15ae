"""
Unit tests for settings validation
"""

import pytest
from pydantic import ValidationError

from twofa_service.core.config import Settings


class TestSettings:

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.TOTP_DIGITS == 6
        assert settings.TOTP_INTERVAL_SECONDS == 30
        assert settings.TOTP_TOLERANCE_WINDOWS == 1
        assert settings.TOTP_FALLBACK_TOLERANCE_WINDOWS == 4
        assert settings.BACKUP_CODE_COUNT == 10
        assert settings.STEP_UP_SESSION_TTL_SECONDS == 300
        assert settings.FEATURE_TOTP_DEBUG_ENDPOINT is False

    def test_log_level_normalized(self):
        assert Settings(_env_file=None, LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, LOG_LEVEL="loud")

    def test_invalid_log_format(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, LOG_FORMAT="xml")

    def test_cors_origins_from_string(self):
        settings = Settings(_env_file=None, CORS_ALLOWED_ORIGINS="https://a.example, https://b.example")

        assert settings.CORS_ALLOWED_ORIGINS == ["https://a.example", "https://b.example"]

    def test_fallback_must_not_be_narrower(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, TOTP_TOLERANCE_WINDOWS=2, TOTP_FALLBACK_TOLERANCE_WINDOWS=1)

    def test_negative_tolerance_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, TOTP_TOLERANCE_WINDOWS=-1)

"""Tests for application configuration.

Settings for database, authentication, lockout, and passcodes. Tests cover
defaults, derived URLs, and security validation.
"""

import pytest
from pydantic import SecretStr, ValidationError

from wyzar.core.config import _INSECURE_DEFAULT_PASSWORD, Settings

# Reusable test constants
_SECURE_DB_PASSWORD = "my-secure-production-password-123!"
_TEST_AUTH_SECRET = "a" * 64
_PRODUCTION = "production"


class TestDefaults:
    """Defaults and derived values."""

    def test_lockout_defaults(self):
        s = Settings()
        assert s.lockout_max_attempts == 5
        assert s.lockout_window_seconds == 900
        assert s.lockout_duration_seconds == 900

    def test_database_urls(self):
        s = Settings(database_host="db", database_port=6543, database_name="x")
        assert s.database_url.startswith("postgresql+asyncpg://")
        assert s.database_url.endswith("@db:6543/x")
        assert s.database_url_sync.startswith("postgresql://")

    def test_kv_store_defaults_to_memory(self):
        assert Settings().kv_store_url == "memory://"


class TestProductionSecurityValidation:
    """Tests for production security requirements."""

    def test_allows_default_password_in_development(self):
        """Default password is allowed in development environment."""
        s = Settings(
            environment="development",
            database_password=_INSECURE_DEFAULT_PASSWORD,
        )
        assert s.database_password == _INSECURE_DEFAULT_PASSWORD

    def test_rejects_default_password_in_production(self):
        with pytest.raises(ValidationError) as exc_info:
            Settings(
                environment=_PRODUCTION,
                database_password=_INSECURE_DEFAULT_PASSWORD,
                auth_secret=SecretStr(_TEST_AUTH_SECRET),
            )

        assert "Cannot use default database password in production" in str(
            exc_info.value
        )

    def test_rejects_short_auth_secret_in_production(self):
        with pytest.raises(ValidationError, match="AUTH_SECRET"):
            Settings(
                environment=_PRODUCTION,
                database_password=_SECURE_DB_PASSWORD,
                auth_secret=SecretStr("short"),
            )

    def test_accepts_secure_production_settings(self):
        s = Settings(
            environment=_PRODUCTION,
            database_password=_SECURE_DB_PASSWORD,
            auth_secret=SecretStr(_TEST_AUTH_SECRET),
        )
        assert s.environment == _PRODUCTION


class TestCrossFieldValidation:
    """Validation that applies in every environment."""

    @pytest.mark.parametrize(
        "field",
        [
            "lockout_max_attempts",
            "lockout_window_seconds",
            "lockout_duration_seconds",
            "otp_length",
            "otp_max_attempts",
        ],
    )
    def test_rejects_non_positive_limits(self, field):
        with pytest.raises(ValidationError, match=field.upper()):
            Settings(**{field: 0})

    def test_rejects_negative_resend_interval(self):
        with pytest.raises(ValidationError, match="OTP_RESEND_INTERVAL_SECONDS"):
            Settings(otp_resend_interval_seconds=-1)

    def test_zero_resend_interval_is_allowed(self):
        assert Settings(otp_resend_interval_seconds=0).otp_resend_interval_seconds == 0

    def test_rejects_non_positive_purpose_override(self):
        with pytest.raises(ValidationError, match="password-reset"):
            Settings(otp_max_attempts_by_purpose={"password-reset": 0})

    def test_samesite_none_requires_secure(self):
        with pytest.raises(ValidationError, match="SESSION_COOKIE_SECURE"):
            Settings(session_cookie_samesite="none", session_cookie_secure=False)

    def test_rejects_wildcard_origin(self):
        with pytest.raises(ValidationError, match="wildcard"):
            Settings(allowed_origins=["*"])

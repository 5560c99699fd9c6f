"""Application configuration loaded from environment variables.

Settings for database, API, authentication, lockout, one-time passcodes,
the keyed state store, and outbound delivery. Uses pydantic-settings for
validation and .env file support.
"""

from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "wyzar_dev_password"  # nosec B105

# Minimum length for AUTH_SECRET in production (256 bits = 32 bytes)
_MIN_AUTH_SECRET_LENGTH = 32

OTPPurpose = Literal["registration", "login", "password-reset"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "wyzar"
    database_user: str = "wyzar_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 5000

    # CORS (Security)
    # CRITICAL: Never set to ["*"] when allow_credentials=True
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Authentication
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "wyzar"
    auth_audience: str = "wyzar-marketplace"
    session_cookie_name: str = "wyzar.session-token"
    session_cookie_secure: bool = True
    session_cookie_samesite: Literal["lax", "strict", "none"] = "lax"
    session_cookie_domain: str = ""
    session_ttl_seconds: int = 7 * 24 * 60 * 60

    # Legacy self-issued tokens (accepted during the session migration window)
    legacy_token_header: str = "x-auth-token"
    legacy_token_ttl_seconds: int = 7 * 24 * 60 * 60
    issue_legacy_tokens: bool = False

    # Password reset grant (issued after a verified password-reset passcode)
    password_reset_grant_ttl_seconds: int = 10 * 60

    # Identity federation
    federation_token_header: str = "x-identity-token"
    identity_provider_userinfo_url: str = ""
    identity_provider_timeout_seconds: float = 5.0

    # Lockout guard
    lockout_max_attempts: int = 5
    lockout_window_seconds: int = 15 * 60
    lockout_duration_seconds: int = 15 * 60

    # One-time passcodes
    otp_length: int = 6
    otp_ttl_seconds: int = 10 * 60
    otp_resend_interval_seconds: int = 60
    otp_max_attempts: int = 5
    # Per-purpose overrides, e.g. {"password-reset": 3}
    otp_max_attempts_by_purpose: dict[str, int] = {}
    otp_resend_interval_by_purpose: dict[str, int] = {}

    # Keyed state store for lockout and OTP records
    # "memory://" (single process) or "redis://host:port/db"
    kv_store_url: str = "memory://"
    kv_store_timeout_seconds: float = 5.0

    # Periodic maintenance (lockout sweep, OTP cleanup, expired sessions)
    maintenance_enabled: bool = True
    maintenance_interval_seconds: int = 5 * 60

    # Email (Resend)
    email_from: str = "noreply@wyzar.co.zw"
    resend_api_key: SecretStr = SecretStr("")

    # SMS (Africa's Talking)
    sms_api_url: str = "https://api.africastalking.com/version1/messaging"
    sms_username: str = "sandbox"
    sms_api_key: SecretStr = SecretStr("")
    sms_sender_id: str = "WyZar"
    # Prefix for local-format numbers (0XXXXXXXXX -> +263XXXXXXXXX)
    sms_default_country_code: str = "+263"

    # Outbound delivery timeout (email + SMS)
    delivery_timeout_seconds: float = 10.0

    # Rate Limiting (Security)
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_login: str = "10/15minute"
    rate_limit_otp: str = "5/15minute"
    rate_limit_register: str = "3/hour"
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def database_url_sync(self) -> str:
        """Sync database URL for Alembic."""
        return (
            f"postgresql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate security requirements.

        Checks:
        - Lockout and OTP limits must be positive (all environments)
        - SameSite=None requires Secure flag (all environments)
        - CORS must not use wildcard origin (all environments)
        - Database password must not be the default in production
        - AUTH_SECRET must be set and >= 32 chars in production
        """
        positive_fields = (
            "lockout_max_attempts",
            "lockout_window_seconds",
            "lockout_duration_seconds",
            "otp_length",
            "otp_ttl_seconds",
            "otp_max_attempts",
            "session_ttl_seconds",
            "maintenance_interval_seconds",
        )
        for name in positive_fields:
            if getattr(self, name) <= 0:
                msg = f"{name.upper()} must be positive. Got: {getattr(self, name)}"
                raise ValueError(msg)

        if self.otp_resend_interval_seconds < 0:
            msg = "OTP_RESEND_INTERVAL_SECONDS cannot be negative."
            raise ValueError(msg)

        for purpose, value in self.otp_max_attempts_by_purpose.items():
            if value <= 0:
                msg = f"OTP max attempts for '{purpose}' must be positive."
                raise ValueError(msg)

        if self.session_cookie_samesite == "none" and not self.session_cookie_secure:
            msg = (
                "SESSION_COOKIE_SECURE must be true when SESSION_COOKIE_SAMESITE=none. "
                "Browsers reject SameSite=None cookies without the Secure flag."
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "This application uses credentials (cookies) which are "
                "incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            secret_value = self.auth_secret.get_secret_value()
            if len(secret_value) < _MIN_AUTH_SECRET_LENGTH:
                msg = (
                    f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} "
                    "characters in production. "
                    'Generate with: python -c "import secrets; '
                    'print(secrets.token_hex(32))"'
                )
                raise ValueError(msg)

        return self


settings = Settings()

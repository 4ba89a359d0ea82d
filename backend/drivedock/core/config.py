"""Application configuration loaded from environment variables.

Settings for database, API, onboarding sessions, applicant identity
protection, the resume flow and the two scheduled sweeps. Uses
pydantic-settings for validation and .env file support.
"""

from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "drivedock_dev_password"  # nosec B105

# Minimum length for HMAC secrets in production (256 bits = 32 bytes)
_MIN_SECRET_LENGTH = 32


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
    database_name: str = "drivedock"
    database_user: str = "drivedock_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000

    # CORS (Security)
    # CRITICAL: Never set to ["*"] when allow_credentials=True
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Onboarding session cookie
    session_secret: SecretStr = SecretStr("")
    session_issuer: str = "drivedock"
    session_cookie_name: str = "drivedock.onboarding-session"
    session_cookie_secure: bool = True
    session_cookie_samesite: Literal["lax", "strict", "none"] = "lax"
    session_cookie_domain: str = ""
    session_ttl_hours: int = 6

    # Applicant identity protection
    # identity_hash_secret keys the HMAC lookup hash; identity_encryption_key
    # is a urlsafe base64 Fernet key for the reversible copy.
    identity_hash_secret: SecretStr = SecretStr("")
    identity_encryption_key: SecretStr = SecretStr("")

    # Resume flow
    resume_window_days: int = 30
    verification_code_ttl_minutes: int = 10
    verification_code_max_attempts: int = 5
    verification_code_resend_seconds: int = 60

    # Completion notice dispatcher
    completion_notice_max_attempts: int = 5
    completion_notice_default_limit: int = 50
    completion_notice_hard_cap: int = 500
    completion_notice_max_per_run: int = 25
    completion_notice_soft_deadline_seconds: float = 55.0
    completion_notice_stale_claim_minutes: int = 10

    # Lifecycle reaper
    cleanup_default_limit: int = 500
    cleanup_hard_cap: int = 5000

    # Bearer secrets for the external scheduler and the admin dashboard
    cron_secret: SecretStr = SecretStr("")
    admin_api_token: SecretStr = SecretStr("")

    # Email
    email_from: str = "onboarding@drivedock.ca"
    resend_api_key: SecretStr = SecretStr("")
    frontend_url: str = "http://localhost:3000"

    # Rate Limiting (Security)
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_resume: str = "10/minute"
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
        """Validate production security requirements.

        Security: Prevents deployment with known insecure defaults.
        Checks:
        - SameSite=None requires Secure flag (browser requirement)
        - Sweep tunables must be positive (all environments)
        - CORS must not use wildcard origin (incompatible with credentials)
        - Database password must not be the default in production
        - Session and identity secrets must be set and long enough in production
        - CRON_SECRET must be set in production
        """
        if self.session_cookie_samesite == "none" and not self.session_cookie_secure:
            msg = (
                "SESSION_COOKIE_SECURE must be true when SESSION_COOKIE_SAMESITE=none. "
                "Browsers reject SameSite=None cookies without the Secure flag."
            )
            raise ValueError(msg)

        if self.completion_notice_max_attempts < 1:
            msg = (
                "COMPLETION_NOTICE_MAX_ATTEMPTS must be at least 1. "
                f"Got: {self.completion_notice_max_attempts}"
            )
            raise ValueError(msg)
        if self.completion_notice_hard_cap < 1 or self.cleanup_hard_cap < 1:
            msg = "Sweep hard caps must be at least 1"
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

            for name, secret in (
                ("SESSION_SECRET", self.session_secret),
                ("IDENTITY_HASH_SECRET", self.identity_hash_secret),
            ):
                if len(secret.get_secret_value()) < _MIN_SECRET_LENGTH:
                    msg = (
                        f"{name} must be at least {_MIN_SECRET_LENGTH} characters "
                        'in production. Generate with: python -c "import secrets; '
                        'print(secrets.token_hex(32))"'
                    )
                    raise ValueError(msg)

            if not self.identity_encryption_key.get_secret_value():
                msg = "IDENTITY_ENCRYPTION_KEY must be set in production"
                raise ValueError(msg)

            if not self.cron_secret.get_secret_value():
                msg = "CRON_SECRET must be set in production"
                raise ValueError(msg)

        return self


settings = Settings()

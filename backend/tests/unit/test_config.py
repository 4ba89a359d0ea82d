"""Tests for settings validation."""

import pytest
from cryptography.fernet import Fernet
from pydantic import ValidationError

from drivedock.core.config import Settings

_STRONG = "s" * 32


def _production(**overrides) -> Settings:
    values = {
        "environment": "production",
        "database_password": "a-real-password",
        "session_secret": _STRONG,
        "identity_hash_secret": _STRONG,
        "identity_encryption_key": Fernet.generate_key().decode(),
        "cron_secret": "cron",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestProductionSecurity:
    """check_production_security."""

    def test_complete_production_config_is_accepted(self):
        settings = _production()
        assert settings.session_secret.get_secret_value() == _STRONG

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"database_password": "drivedock_dev_password"}, "DATABASE_PASSWORD"),
            ({"session_secret": "short"}, "SESSION_SECRET"),
            ({"identity_hash_secret": ""}, "IDENTITY_HASH_SECRET"),
            ({"identity_encryption_key": ""}, "IDENTITY_ENCRYPTION_KEY"),
            ({"cron_secret": ""}, "CRON_SECRET"),
        ],
        ids=["db-password", "session", "identity-hash", "encryption-key", "cron"],
    )
    def test_insecure_production_values_rejected(self, overrides, message):
        with pytest.raises(ValidationError, match=message):
            _production(**overrides)

    def test_development_allows_empty_secrets(self):
        settings = Settings(_env_file=None, environment="development")
        assert settings.cron_secret.get_secret_value() == ""


class TestAllEnvironments:
    """Checks that apply everywhere."""

    def test_samesite_none_requires_secure(self):
        with pytest.raises(ValidationError, match="SESSION_COOKIE_SECURE"):
            Settings(
                _env_file=None,
                session_cookie_samesite="none",
                session_cookie_secure=False,
            )

    def test_wildcard_origin_rejected(self):
        with pytest.raises(ValidationError, match="wildcard"):
            Settings(_env_file=None, allowed_origins=["*"])

    @pytest.mark.parametrize(
        "overrides",
        [
            {"completion_notice_max_attempts": 0},
            {"completion_notice_hard_cap": 0},
            {"cleanup_hard_cap": 0},
        ],
    )
    def test_sweep_tunables_must_be_positive(self, overrides):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **overrides)

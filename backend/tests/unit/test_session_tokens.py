"""Tests for onboarding session JWTs and cookies."""

import uuid
from datetime import UTC, datetime, timedelta

import jwt
import pytest
from fastapi import Response

from drivedock.core.auth import (
    clear_session_cookie,
    create_session_token,
    decode_session_token,
    set_session_cookie,
)
from drivedock.core.config import settings
from tests.conftest import create_test_session_jwt

_TRACKER_ID = uuid.UUID("00000000-0000-0000-0000-0000000000aa")


class TestSessionTokens:
    """create_session_token / decode_session_token."""

    def test_token_carries_tracker_and_issue_time(self):
        issued = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        token = create_session_token(
            tracker_id=_TRACKER_ID, now=issued, expires_delta=timedelta(days=3650)
        )
        tracker_id, iat = decode_session_token(token)
        assert tracker_id == _TRACKER_ID
        assert iat == issued.timestamp()

    def test_default_lifetime_is_session_ttl(self):
        token = create_session_token(tracker_id=_TRACKER_ID)
        payload = jwt.decode(token, options={"verify_signature": False})
        assert payload["exp"] - payload["iat"] == settings.session_ttl_hours * 3600

    def test_wrong_secret_rejected(self):
        token = create_test_session_jwt(
            _TRACKER_ID, secret="some-other-secret-of-sufficient-length"
        )
        with pytest.raises(jwt.InvalidTokenError):
            decode_session_token(token)

    def test_expired_token_rejected(self):
        token = create_test_session_jwt(
            _TRACKER_ID,
            expires_delta=timedelta(seconds=-1),
            iat=datetime.now(UTC) - timedelta(hours=7),
        )
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_session_token(token)

    def test_wrong_audience_rejected(self):
        token = create_test_session_jwt(_TRACKER_ID, audience="someone-else")
        with pytest.raises(jwt.InvalidAudienceError):
            decode_session_token(token)


class TestSessionCookie:
    """set_session_cookie / clear_session_cookie."""

    def test_cookie_is_http_only(self):
        response = Response()
        set_session_cookie(response, "token-value")
        header = response.headers["set-cookie"]
        assert header.startswith(f"{settings.session_cookie_name}=token-value")
        assert "HttpOnly" in header
        assert f"Max-Age={settings.session_ttl_hours * 3600}" in header

    def test_clear_expires_cookie(self):
        response = Response()
        clear_session_cookie(response)
        header = response.headers["set-cookie"]
        assert header.startswith(f'{settings.session_cookie_name}=""')
        assert "Max-Age=0" in header

"""Onboarding session tokens and cookie management.

A resumed or newly started applicant receives a signed JWT bound to the
tracker id. The token lives in an httpOnly cookie and is re-issued on
every validated request (sliding expiry).

Pipeline:
- create_session_token / set_session_cookie: issue a session
- decode_session_token: verify signature and standard claims
- clear_session_cookie: drop the session on logout or rejection
"""

import uuid
from datetime import UTC, datetime, timedelta

import jwt
from fastapi import Response

from drivedock.core.config import settings

_AUDIENCE = "drivedock-onboarding"


def _session_ttl() -> timedelta:
    return timedelta(hours=settings.session_ttl_hours)


def create_session_token(
    *,
    tracker_id: uuid.UUID,
    secret: str | None = None,
    expires_delta: timedelta | None = None,
    now: datetime | None = None,
) -> str:
    """Create a signed onboarding session JWT.

    Args:
        tracker_id: Tracker the session is bound to (sub claim).
        secret: HMAC signing secret. Defaults to SESSION_SECRET.
        expires_delta: Time until expiration. Defaults to SESSION_TTL_HOURS.
        now: Issue time. Defaults to the current time.

    Returns:
        Encoded JWT string.
    """
    issued_at = now or datetime.now(UTC)
    payload = {
        "sub": str(tracker_id),
        "aud": _AUDIENCE,
        "iss": settings.session_issuer,
        "exp": issued_at + (expires_delta or _session_ttl()),
        "iat": issued_at,
    }
    signing_secret = secret or settings.session_secret.get_secret_value()
    return jwt.encode(payload, signing_secret, algorithm="HS256")


def decode_session_token(token: str) -> tuple[uuid.UUID, float]:
    """Verify a session JWT and return its tracker id and issue time.

    Args:
        token: Encoded JWT from the session cookie.

    Returns:
        (tracker_id, iat) where iat is a POSIX timestamp.

    Raises:
        jwt.InvalidTokenError: Bad signature, expired, or wrong aud/iss.
        ValueError: Missing iat or malformed sub.
    """
    payload = jwt.decode(
        token,
        settings.session_secret.get_secret_value(),
        algorithms=["HS256"],
        audience=_AUDIENCE,
        issuer=settings.session_issuer,
    )
    iat = payload.get("iat")
    if iat is None:
        raise ValueError("Session token has no iat claim")
    return uuid.UUID(payload["sub"]), float(iat)


def set_session_cookie(response: Response, token: str) -> None:
    """Set httpOnly session cookie on response.

    Args:
        response: FastAPI response object.
        token: JWT token string.
    """
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        path="/",
        max_age=int(_session_ttl().total_seconds()),
        domain=settings.session_cookie_domain or None,
    )


def clear_session_cookie(response: Response) -> None:
    """Delete the session cookie.

    Cookie attributes must match set_session_cookie() for the browser to
    delete it.
    """
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        domain=settings.session_cookie_domain or None,
    )

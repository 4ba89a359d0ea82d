"""Shared dependencies for API endpoints.

Three callers reach the API:
- applicants, holding an onboarding session cookie bound to one tracker;
- staff tooling, with the ADMIN_API_TOKEN bearer token;
- the scheduler, with the CRON_SECRET bearer token.
"""

import hmac
import uuid
from typing import Annotated

from fastapi import Depends, Path, Request, Response
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncSession

from drivedock.core.auth import create_session_token, set_session_cookie
from drivedock.core.config import settings
from drivedock.core.database import get_db
from drivedock.core.errors import ForbiddenError
from drivedock.models.onboarding_tracker import OnboardingTracker
from drivedock.services.onboarding_session import require_onboarding_session

_BEARER_PREFIX = "Bearer "

DbSession = Annotated[AsyncSession, Depends(get_db)]
TrackerIdPath = Annotated[uuid.UUID, Path(description="Onboarding tracker ID")]


async def get_onboarding_tracker(
    tracker_id: TrackerIdPath,
    request: Request,
    response: Response,
    db: DbSession,
) -> OnboardingTracker:
    """Validate the onboarding session for the tracker in the path.

    On success the session cookie is re-issued with a fresh expiry.

    Args:
        tracker_id: Tracker ID from the URL path.
        request: HTTP request (injected by FastAPI).
        response: Response the refreshed cookie is set on.
        db: Database session (injected).

    Returns:
        The tracker the session belongs to.

    Raises:
        SessionRequiredError: 401 for any session failure. The error
            handler clears the cookie.
    """
    token = request.cookies.get(settings.session_cookie_name)
    tracker = await require_onboarding_session(db, token, tracker_id)
    set_session_cookie(response, create_session_token(tracker_id=tracker.id))
    return tracker


def _check_bearer(request: Request, secret: SecretStr) -> None:
    header = request.headers.get("Authorization", "")
    # An unset secret locks the endpoint instead of opening it
    if not secret.get_secret_value():
        raise ForbiddenError()
    if not header.startswith(_BEARER_PREFIX):
        raise ForbiddenError()
    presented = header[len(_BEARER_PREFIX) :].strip()
    if not hmac.compare_digest(
        presented.encode(), secret.get_secret_value().encode()
    ):
        raise ForbiddenError()


def require_cron_secret(request: Request) -> None:
    """Allow only the scheduler (Authorization: Bearer CRON_SECRET).

    Raises:
        ForbiddenError: 403 when the secret is unset, missing or wrong.
    """
    _check_bearer(request, settings.cron_secret)


def require_admin_token(request: Request) -> None:
    """Allow only staff tooling (Authorization: Bearer ADMIN_API_TOKEN).

    Raises:
        ForbiddenError: 403 when the token is unset, missing or wrong.
    """
    _check_bearer(request, settings.admin_api_token)


# Reusable type aliases for dependency injection
OnboardingSession = Annotated[OnboardingTracker, Depends(get_onboarding_tracker)]
CronAuth = Depends(require_cron_secret)
AdminAuth = Depends(require_admin_token)

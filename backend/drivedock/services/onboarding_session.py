"""Onboarding session validation and revocation.

A session token is only honoured while its tracker can still be worked
on. Every rejection carries an internal reason for the logs; the client
always gets the same SESSION_REQUIRED error.
"""

import logging
import uuid
from datetime import UTC, datetime

import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from drivedock.core.auth import decode_session_token
from drivedock.core.errors import SessionRequiredError
from drivedock.models.onboarding_tracker import OnboardingTracker
from drivedock.repositories.onboarding_tracker_repository import (
    OnboardingTrackerRepository,
)
from drivedock.services.onboarding_progress import onboarding_expired

logger = logging.getLogger(__name__)


def _reject(reason: str, tracker_id: uuid.UUID) -> SessionRequiredError:
    logger.info("Onboarding session rejected for %s: %s", tracker_id, reason)
    return SessionRequiredError(reason)


async def require_onboarding_session(
    db: AsyncSession,
    token: str | None,
    tracker_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> OnboardingTracker:
    """Validate a session token for a tracker.

    Validation steps:
    1. Token present, signature and claims valid
    2. Token bound to this tracker
    3. Tracker exists and token was issued after the last revocation
    4. Tracker not terminated, not expired, and not completed

    Args:
        db: Async database session.
        token: Session cookie value, if any.
        tracker_id: Tracker id from the request path.
        now: Reference time. Defaults to the current time.

    Returns:
        The tracker the session is valid for.

    Raises:
        SessionRequiredError: For any failure.
    """
    if not token:
        raise _reject("MISSING_OR_INVALID_COOKIE", tracker_id)
    try:
        session_tracker_id, iat = decode_session_token(token)
    except (jwt.InvalidTokenError, KeyError, ValueError) as exc:
        raise _reject("MISSING_OR_INVALID_COOKIE", tracker_id) from exc

    if session_tracker_id != tracker_id:
        raise _reject("SESSION_TRACKER_MISMATCH", tracker_id)

    tracker = await OnboardingTrackerRepository.get_by_id(db, tracker_id)
    if tracker is None:
        raise _reject("TRACKER_NOT_FOUND", tracker_id)

    revoked_before = tracker.sessions_invalidated_before
    if revoked_before is not None and iat < revoked_before.timestamp():
        raise _reject("SESSION_REVOKED", tracker_id)
    if tracker.terminated:
        raise _reject("TERMINATED", tracker_id)
    if onboarding_expired(tracker, now):
        raise _reject("ONBOARDING_EXPIRED", tracker_id)
    if tracker.completed:
        raise _reject("COMPLETED", tracker_id)

    return tracker


def revocation_time(now: datetime | None = None) -> datetime:
    """Revocation timestamp, truncated to match JWT iat resolution."""
    return (now or datetime.now(UTC)).replace(microsecond=0)


"""Resume flow: verification code challenge for returning applicants.

Request: identity number → tracker lookup → 6-digit code emailed to the
contact address on file. Only a keyed hash of the code is stored, bound
to the identity and the contact it was sent to.

Confirm: identity number + code → match against the stored hash. Codes
are single-use and allow a limited number of wrong guesses; running out
discards the code and the applicant must request a new one. A match on an
incomplete tracker issues a session; on a completed tracker it only tells
the caller to show the completed view.

Every failure is recoverable by requesting a new code, except a tracker
that is terminated or past its resume window.
"""

import logging
import math
import re
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from drivedock.core.auth import create_session_token
from drivedock.core.config import settings
from drivedock.core.email import send_resume_code_email
from drivedock.core.errors import (
    ExpiredError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
    ValidationError,
)
from drivedock.core.identity import (
    codes_match,
    hash_code,
    hash_contact,
    hash_identity,
    mask_email,
    normalize_identity,
)
from drivedock.models.onboarding_tracker import OnboardingTracker
from drivedock.repositories.onboarding_form_repository import OnboardingFormRepository
from drivedock.repositories.onboarding_tracker_repository import (
    OnboardingTrackerRepository,
)
from drivedock.repositories.verification_code_repository import (
    VerificationCodeRepository,
)
from drivedock.services.onboarding_progress import onboarding_expired

logger = logging.getLogger(__name__)

RESUME_PURPOSE = "resume"

_CODE_PATTERN = re.compile(r"^\d{6}$")
_INVALID_CODE_MSG = "Invalid or expired code"
_NOT_FOUND_RESOURCE = "Application"


@dataclass(frozen=True)
class ResumeCodeIssued:
    """What the applicant is told after a code is sent.

    Attributes:
        masked_email: Contact email with the local part hidden.
        expires_in_minutes: Code lifetime.
        resend_available_in_seconds: Wait before another code can be requested.
    """

    masked_email: str
    expires_in_minutes: int
    resend_available_in_seconds: int


@dataclass(frozen=True)
class ResumeConfirmed:
    """Outcome of a successful confirm.

    Attributes:
        tracker: The resumed tracker.
        is_completed: Show the completed view instead of resuming.
        session_token: New session JWT, None for completed trackers.
    """

    tracker: OnboardingTracker
    is_completed: bool
    session_token: str | None


def generate_code() -> str:
    """Random 6-digit code, zero padded."""
    return f"{secrets.randbelow(1_000_000):06d}"


async def _load_resumable(
    db: AsyncSession, identity_hash: str, now: datetime
) -> OnboardingTracker:
    tracker = await OnboardingTrackerRepository.get_by_identity_hash(db, identity_hash)
    if tracker is None or tracker.terminated:
        raise NotFoundError(_NOT_FOUND_RESOURCE)
    if onboarding_expired(tracker, now):
        raise ExpiredError()
    return tracker


async def _contact_email(db: AsyncSession, tracker: OnboardingTracker) -> str:
    email = None
    if tracker.driver_application_id is not None:
        email = await OnboardingFormRepository.get_contact_email(
            db, tracker.driver_application_id
        )
    if email is None:
        raise NotFoundError(_NOT_FOUND_RESOURCE)
    return email


async def request_resume_code(
    db: AsyncSession,
    identity_number: str,
    *,
    now: datetime | None = None,
) -> ResumeCodeIssued:
    """Issue a resume code and email it to the applicant.

    Any previous code for the tracker is replaced. Email delivery is best
    effort; a lost email is fixed by requesting again after the resend
    window.

    Args:
        db: Async database session. Committed before the email is sent.
        identity_number: Identity number as typed by the applicant.
        now: Reference time. Defaults to the current time.

    Returns:
        ResumeCodeIssued for display.

    Raises:
        ValidationError: Malformed identity number.
        NotFoundError: No tracker, terminated tracker, or no contact email.
        ExpiredError: Incomplete tracker past its resume window.
        RateLimitedError: A code was issued less than the resend window ago.
    """
    now = now or datetime.now(UTC)
    identity_hash = hash_identity(normalize_identity(identity_number))
    tracker = await _load_resumable(db, identity_hash, now)
    email = await _contact_email(db, tracker)

    resend_window = timedelta(seconds=settings.verification_code_resend_seconds)
    existing = await VerificationCodeRepository.get_for_tracker(
        db, tracker_id=tracker.id, purpose=RESUME_PURPOSE
    )
    if existing is not None and now - existing.created_at < resend_window:
        wait = resend_window - (now - existing.created_at)
        raise RateLimitedError(
            "Please wait before requesting a new code",
            retry_after_seconds=max(1, math.ceil(wait.total_seconds())),
        )

    await VerificationCodeRepository.delete_for_tracker(
        db, tracker_id=tracker.id, purpose=RESUME_PURPOSE
    )
    code = generate_code()
    ttl_minutes = settings.verification_code_ttl_minutes
    await VerificationCodeRepository.create(
        db,
        tracker_id=tracker.id,
        purpose=RESUME_PURPOSE,
        identity_hash=identity_hash,
        contact_hash=hash_contact(email),
        code_hash=hash_code(code),
        expires_at=now + timedelta(minutes=ttl_minutes),
        max_attempts=settings.verification_code_max_attempts,
        created_at=now,
    )
    await db.commit()

    await send_resume_code_email(to_email=email, code=code, ttl_minutes=ttl_minutes)
    logger.info("Resume code issued for tracker %s", tracker.id)

    return ResumeCodeIssued(
        masked_email=mask_email(email),
        expires_in_minutes=ttl_minutes,
        resend_available_in_seconds=settings.verification_code_resend_seconds,
    )


async def confirm_resume_code(
    db: AsyncSession,
    identity_number: str,
    code: str,
    *,
    now: datetime | None = None,
) -> ResumeConfirmed:
    """Check a resume code and open a session.

    Every guess first spends an attempt through a conditional update, and
    the code is compared only when that succeeded; a match is accepted only
    if this request is the one that deletes the code. Concurrent confirms
    therefore cannot exceed the attempt limit or reuse a code. Deletions and
    attempt increments are committed before the error is raised, so they
    survive the request rollback.

    Args:
        db: Async database session.
        identity_number: Identity number as typed by the applicant.
        code: Code from the email.
        now: Reference time. Defaults to the current time.

    Returns:
        ResumeConfirmed.

    Raises:
        ValidationError: Malformed identity number or code.
        NotFoundError: No tracker, terminated tracker, or no contact email.
        ExpiredError: Incomplete tracker past its resume window.
        UnauthorizedError: No matching code, code expired, or wrong code.
        RateLimitedError: Attempts exhausted; the code is discarded.
    """
    if not _CODE_PATTERN.match(code or ""):
        raise ValidationError("Code must be 6 digits")

    now = now or datetime.now(UTC)
    identity_hash = hash_identity(normalize_identity(identity_number))
    tracker = await _load_resumable(db, identity_hash, now)
    email = await _contact_email(db, tracker)

    record = await VerificationCodeRepository.find(
        db,
        tracker_id=tracker.id,
        purpose=RESUME_PURPOSE,
        identity_hash=identity_hash,
        contact_hash=hash_contact(email),
    )
    if record is None:
        raise UnauthorizedError(_INVALID_CODE_MSG)

    if record.expires_at < now:
        await VerificationCodeRepository.delete(db, record.id)
        await db.commit()
        raise UnauthorizedError(_INVALID_CODE_MSG)

    attempts = await VerificationCodeRepository.record_attempt(db, record.id)
    if attempts is None:
        discarded = await VerificationCodeRepository.delete(db, record.id)
        await db.commit()
        if not discarded:
            raise UnauthorizedError(_INVALID_CODE_MSG)
        raise RateLimitedError("Too many attempts. Request a new code.")

    if not codes_match(record.code_hash, hash_code(code)):
        await db.commit()
        remaining = max(0, record.max_attempts - attempts)
        raise UnauthorizedError(
            _INVALID_CODE_MSG, details=[{"remaining_attempts": remaining}]
        )

    if not await VerificationCodeRepository.delete(db, record.id):
        await db.rollback()
        raise UnauthorizedError(_INVALID_CODE_MSG)
    await db.commit()
    logger.info("Resume code confirmed for tracker %s", tracker.id)

    if tracker.completed:
        return ResumeConfirmed(tracker=tracker, is_completed=True, session_token=None)

    token = create_session_token(tracker_id=tracker.id, now=now)
    return ResumeConfirmed(tracker=tracker, is_completed=False, session_token=token)

"""Completion notice dispatcher.

Sends the one-time "onboarding complete" email to applicants who
consented to it. Runs as a bounded sweep triggered by the scheduler:

1. Select up to ``limit`` eligible trackers, least recently updated first.
2. For each, up to the per-run cap and a soft deadline, claim it with a
   conditional UPDATE that moves the notice to SENDING only if the
   eligibility predicate still holds. Zero rows back means another run
   owns it.
3. Send. On success the notice is SENT. On failure the attempt is counted
   and the notice goes back to PENDING, or to ERROR once attempts reach
   the ceiling.

SENDING rows whose claim is older than the stale-claim timeout are
eligible again, so a run that dies between claim and finalize does not
strand its work. Per-item errors are logged and recorded on the item; the
sweep itself always returns a summary.
"""

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from drivedock.core.batching import clamp_batch_limit
from drivedock.core.config import settings
from drivedock.core.email import send_completion_email
from drivedock.models.onboarding_forms import ApplicationForm
from drivedock.models.onboarding_tracker import OnboardingTracker
from drivedock.repositories.onboarding_form_repository import OnboardingFormRepository
from drivedock.services.company_rules import COMPANIES

logger = logging.getLogger(__name__)

_FALLBACK_COMPANY_NAME = "DriveDock"
_MAX_ERROR_LENGTH = 500

# =============================================================================
# Enums
# =============================================================================


class NoticeStatus(Enum):
    """Completion notice states. Values match the database check constraint."""

    NOT_SENT = "NOT_SENT"
    PENDING = "PENDING"
    SENDING = "SENDING"
    SENT = "SENT"
    ERROR = "ERROR"


RETRYABLE_STATUSES: tuple[NoticeStatus, ...] = (
    NoticeStatus.NOT_SENT,
    NoticeStatus.PENDING,
    NoticeStatus.ERROR,
)


class SendOutcome(Enum):
    """Result of processing one tracker."""

    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class NoticeCandidate:
    """A tracker selected for sending.

    Attributes:
        tracker_id: Tracker to claim.
        email: Contact email from the driver application.
        company_id: Company the applicant onboarded with.
    """

    tracker_id: uuid.UUID
    email: str
    company_id: str


@dataclass(frozen=True)
class CompletionNoticeSweepResult:
    """Summary of one dispatcher run.

    Attributes:
        ran_at: When the run started.
        limit_applied: Candidate batch size after clamping.
        scanned: Candidates returned by the selection query.
        processed: Candidates this run claimed.
        sent: Claimed notices delivered.
        failed: Claimed notices whose delivery failed.
        duration_ms: Wall-clock duration of the run.
        max_per_run: Per-run processing cap in effect.
        soft_deadline_seconds: Soft deadline in effect.
    """

    ran_at: datetime
    limit_applied: int
    scanned: int
    processed: int
    sent: int
    failed: int
    duration_ms: int
    max_per_run: int
    soft_deadline_seconds: float

    def to_dict(self) -> dict:
        """Serialize for the scheduler endpoint response."""
        return {
            "ran_at": self.ran_at.isoformat(),
            "limit_applied": self.limit_applied,
            "scanned": self.scanned,
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
            "throttle": {
                "max_per_run": self.max_per_run,
                "soft_deadline_seconds": self.soft_deadline_seconds,
            },
        }


# =============================================================================
# Eligibility and claim
# =============================================================================


def _eligibility(now: datetime):
    """Predicate shared by the candidate query and the claim UPDATE."""
    stale_before = now - timedelta(minutes=settings.completion_notice_stale_claim_minutes)
    tracker = OnboardingTracker
    return and_(
        tracker.completed.is_(True),
        tracker.terminated.is_(False),
        tracker.completion_notice_consent.is_(True),
        tracker.completion_notice_attempts < settings.completion_notice_max_attempts,
        or_(
            tracker.completion_notice_status.in_(
                [s.value for s in RETRYABLE_STATUSES]
            ),
            and_(
                tracker.completion_notice_status == NoticeStatus.SENDING.value,
                tracker.completion_notice_claimed_at < stale_before,
            ),
        ),
    )


async def find_candidates(
    db: AsyncSession, *, limit: int, now: datetime
) -> list[NoticeCandidate]:
    """Select eligible trackers with a non-empty contact email.

    Args:
        db: Async database session.
        limit: Maximum candidates to return.
        now: Reference time for stale-claim detection.

    Returns:
        Candidates, least recently updated first.
    """
    stmt = (
        select(
            OnboardingTracker.id,
            ApplicationForm.contact_email,
            OnboardingTracker.company_id,
        )
        .join(
            ApplicationForm,
            ApplicationForm.id == OnboardingTracker.driver_application_id,
        )
        .where(
            _eligibility(now),
            ApplicationForm.contact_email.is_not(None),
            ApplicationForm.contact_email != "",
        )
        .order_by(OnboardingTracker.updated_at.asc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return [
        NoticeCandidate(tracker_id=row[0], email=row[1], company_id=row[2])
        for row in result.all()
    ]


async def claim(db: AsyncSession, tracker_id: uuid.UUID, *, now: datetime) -> int | None:
    """Move one tracker's notice to SENDING if it is still eligible.

    Args:
        db: Async database session. Caller commits.
        tracker_id: Tracker to claim.
        now: Claim timestamp.

    Returns:
        The tracker's attempt count if this call won the claim, else None.
    """
    stmt = (
        update(OnboardingTracker)
        .where(OnboardingTracker.id == tracker_id, _eligibility(now))
        .values(
            completion_notice_status=NoticeStatus.SENDING.value,
            completion_notice_claimed_at=now,
        )
        .returning(OnboardingTracker.completion_notice_attempts)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _finalize(db: AsyncSession, tracker_id: uuid.UUID, **values: object) -> None:
    stmt = (
        update(OnboardingTracker)
        .where(
            OnboardingTracker.id == tracker_id,
            OnboardingTracker.completion_notice_status == NoticeStatus.SENDING.value,
        )
        .values(completion_notice_claimed_at=None, **values)
        .execution_options(synchronize_session=False)
    )
    await db.execute(stmt)


def _failure_values(attempts_before: int, error: str) -> dict:
    attempts = attempts_before + 1
    status = (
        NoticeStatus.ERROR
        if attempts >= settings.completion_notice_max_attempts
        else NoticeStatus.PENDING
    )
    return {
        "completion_notice_status": status.value,
        "completion_notice_attempts": attempts,
        "completion_notice_last_error": error[:_MAX_ERROR_LENGTH],
    }


async def _record_missing_contact(
    db: AsyncSession, tracker: OnboardingTracker, error: str
) -> bool:
    """Count a failed attempt for a tracker with nowhere to send the notice.

    Conditional on the notice being unchanged since it was read, so a
    concurrent sweep that claimed or finished it wins.

    Returns:
        True if the failure was recorded.
    """
    attempts_before = tracker.completion_notice_attempts
    stmt = (
        update(OnboardingTracker)
        .where(
            OnboardingTracker.id == tracker.id,
            OnboardingTracker.completion_notice_status.in_(
                [s.value for s in RETRYABLE_STATUSES]
            ),
            OnboardingTracker.completion_notice_attempts == attempts_before,
            OnboardingTracker.completion_notice_attempts
            < settings.completion_notice_max_attempts,
        )
        .values(**_failure_values(attempts_before, error))
        .returning(OnboardingTracker.id)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


# =============================================================================
# Processing
# =============================================================================


async def process_candidate(
    db: AsyncSession, candidate: NoticeCandidate, *, now: datetime
) -> SendOutcome:
    """Claim, send, and record the outcome for one tracker.

    Never raises. A lost claim is SKIPPED.
    """
    try:
        attempts = await claim(db, candidate.tracker_id, now=now)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.warning(
            "Could not claim completion notice for tracker %s",
            candidate.tracker_id,
            exc_info=True,
        )
        return SendOutcome.SKIPPED

    if attempts is None:
        return SendOutcome.SKIPPED

    company = COMPANIES.get(candidate.company_id)
    company_name = company.name if company else _FALLBACK_COMPANY_NAME

    try:
        await send_completion_email(to_email=candidate.email, company_name=company_name)
    except Exception as exc:
        logger.warning(
            "Completion notice failed for tracker %s (attempt %d): %s",
            candidate.tracker_id,
            attempts + 1,
            exc,
        )
        try:
            await _finalize(db, candidate.tracker_id, **_failure_values(attempts, str(exc)))
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.error(
                "Could not record notice failure for tracker %s; claim will go stale",
                candidate.tracker_id,
            )
        return SendOutcome.FAILED

    try:
        await _finalize(
            db,
            candidate.tracker_id,
            completion_notice_status=NoticeStatus.SENT.value,
            completion_notice_sent_at=now,
            completion_notice_last_error=None,
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.error(
            "Completion notice sent but not recorded for tracker %s",
            candidate.tracker_id,
        )
    return SendOutcome.SENT


async def run_completion_notice_sweep(
    db: AsyncSession,
    *,
    limit: int | None = None,
    now: datetime | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> CompletionNoticeSweepResult:
    """Run one dispatcher sweep.

    Args:
        db: Async database session. Committed after each claim and finalize.
        limit: Candidate batch override, clamped to the hard cap.
        now: Reference time. Defaults to the current time.
        clock: Monotonic clock for the soft deadline.

    Returns:
        CompletionNoticeSweepResult with counts for this run.
    """
    ran_at = now or datetime.now(UTC)
    started = clock()
    limit_applied = clamp_batch_limit(
        limit,
        default=settings.completion_notice_default_limit,
        hard_cap=settings.completion_notice_hard_cap,
    )
    max_per_run = settings.completion_notice_max_per_run
    soft_deadline = settings.completion_notice_soft_deadline_seconds

    try:
        candidates = await find_candidates(db, limit=limit_applied, now=ran_at)
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Completion notice candidate query failed")
        candidates = []

    processed = sent = failed = 0
    for candidate in candidates:
        if processed >= max_per_run:
            break
        if clock() - started >= soft_deadline:
            logger.info("Completion notice sweep stopped at soft deadline")
            break

        outcome = await process_candidate(db, candidate, now=now or datetime.now(UTC))
        if outcome is SendOutcome.SKIPPED:
            continue
        processed += 1
        if outcome is SendOutcome.SENT:
            sent += 1
        else:
            failed += 1

    result = CompletionNoticeSweepResult(
        ran_at=ran_at,
        limit_applied=limit_applied,
        scanned=len(candidates),
        processed=processed,
        sent=sent,
        failed=failed,
        duration_ms=int((clock() - started) * 1000),
        max_per_run=max_per_run,
        soft_deadline_seconds=soft_deadline,
    )
    logger.info(
        "Completion notice sweep: scanned=%d processed=%d sent=%d failed=%d",
        result.scanned,
        result.processed,
        result.sent,
        result.failed,
    )
    return result


async def send_completion_notice_if_eligible(
    db: AsyncSession,
    tracker_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> SendOutcome:
    """Send the completion notice for one tracker right away.

    Used after the final step is recorded so the applicant does not wait
    for the next sweep. A tracker with no driver application or no email
    gets an attempt counted and stays retryable. Never raises.
    """
    now = now or datetime.now(UTC)
    try:
        tracker = await db.get(OnboardingTracker, tracker_id)
        if tracker is None or not tracker.completed or tracker.terminated:
            return SendOutcome.SKIPPED
        if not tracker.completion_notice_consent:
            return SendOutcome.SKIPPED
        if tracker.completion_notice_status not in {s.value for s in RETRYABLE_STATUSES}:
            return SendOutcome.SKIPPED
        if tracker.completion_notice_attempts >= settings.completion_notice_max_attempts:
            return SendOutcome.SKIPPED

        email = None
        error = "NO_APPLICATION_FORM_REF"
        if tracker.driver_application_id is not None:
            email = await OnboardingFormRepository.get_contact_email(
                db, tracker.driver_application_id
            )
            error = "NO_EMAIL"

        if email is None:
            recorded = await _record_missing_contact(db, tracker, error)
            await db.commit()
            if not recorded:
                return SendOutcome.SKIPPED
            logger.warning("Completion notice for tracker %s: %s", tracker_id, error)
            return SendOutcome.FAILED
    except SQLAlchemyError:
        await db.rollback()
        logger.warning(
            "Completion notice lookup failed for tracker %s", tracker_id, exc_info=True
        )
        return SendOutcome.FAILED

    candidate = NoticeCandidate(
        tracker_id=tracker_id,
        email=email,
        company_id=tracker.company_id,
    )
    return await process_candidate(db, candidate, now=now)

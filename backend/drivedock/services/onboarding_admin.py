"""Administrator actions on onboarding trackers.

Appraisal steps (drive test, drug test, carrier's edge and flatbed
training) are recorded by staff, not the applicant. Recording the last
required step completes the tracker and revokes the applicant's sessions;
the caller commits and then sends the completion notice.

Invitation decisions and terminations also live here. Every status write
takes the tracker row lock, as the applicant write path does.
"""

import logging
import uuid
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession

from drivedock.core.errors import ConflictError, NotFoundError, ValidationError
from drivedock.core.identity import decrypt_identity
from drivedock.models.onboarding_forms import FormType
from drivedock.models.onboarding_tracker import OnboardingTracker
from drivedock.repositories.onboarding_form_repository import OnboardingFormRepository
from drivedock.repositories.onboarding_tracker_repository import (
    OnboardingTrackerRepository,
)
from drivedock.services.company_rules import (
    can_have_flatbed_training,
    get_company,
    needs_flatbed_training,
)
from drivedock.services.onboarding_progress import (
    OnboardingStatus,
    StepOrderError,
    advance_progress,
    apply_status,
    has_reached_step,
    next_resume_expiry,
    status_of,
)
from drivedock.services.onboarding_session import revocation_time
from drivedock.services.onboarding_steps import ADMIN_STEPS, STEP_FORMS, StepId
from drivedock.services.onboarding_workflow import (
    has_flatbed_experience,
    parse_application_type,
)

logger = logging.getLogger(__name__)

_TRACKER_RESOURCE = "Onboarding"
_FLATBED_OVERRIDE_KEY = "needs_flatbed_training"
_DRIVE_TEST_RESULT_KEY = "overall_assessment"

# Termination types an administrator may choose directly; "rejected" comes
# from reject_invitation.
ADMIN_TERMINATION_TYPES = frozenset({"resigned", "terminated"})


class DriveTestResult(Enum):
    """Overall outcome of a drive test."""

    PASS = "pass"
    CONDITIONAL_PASS = "conditional_pass"
    FAIL = "fail"


async def _lock_active(db: AsyncSession, tracker_id: uuid.UUID) -> OnboardingTracker:
    tracker = await OnboardingTrackerRepository.get_for_update(db, tracker_id)
    if tracker is None:
        raise NotFoundError(_TRACKER_RESOURCE, str(tracker_id))
    if tracker.terminated:
        raise ConflictError(
            "TRACKER_TERMINATED", "Terminated applications cannot change"
        )
    return tracker


def _finish(
    tracker: OnboardingTracker, status: OnboardingStatus, now: datetime
) -> None:
    was_completed = tracker.completed
    apply_status(tracker, status, now=now)
    if status.completed and not was_completed:
        tracker.sessions_invalidated_before = revocation_time(now)
        logger.info("Tracker %s completed onboarding", tracker.id)


# =============================================================================
# Appraisal steps
# =============================================================================


def _drive_test_result(payload: dict) -> DriveTestResult:
    value = payload.get(_DRIVE_TEST_RESULT_KEY)
    try:
        return DriveTestResult(str(value).lower())
    except ValueError as exc:
        raise ValidationError(
            message=f"Unknown drive test result: '{value}'",
            details=[{"field": _DRIVE_TEST_RESULT_KEY, "error": "INVALID_RESULT"}],
        ) from exc


def _flatbed_override(tracker: OnboardingTracker, payload: dict) -> bool | None:
    """Validated ``needs_flatbed_training`` override, or None if absent.

    Raises:
        ValidationError: Training requested where it cannot apply.
    """
    override = payload.get(_FLATBED_OVERRIDE_KEY)
    if not isinstance(override, bool):
        return None
    possible = can_have_flatbed_training(
        get_company(tracker.company_id),
        parse_application_type(tracker.application_type),
    )
    if override and not possible:
        raise ValidationError(
            message="Flatbed training is not applicable for this applicant and company",
            details=[{"field": _FLATBED_OVERRIDE_KEY, "error": "NOT_APPLICABLE"}],
        )
    return override


async def _fail_drive_test(
    db: AsyncSession, tracker: OnboardingTracker, payload: dict, now: datetime
) -> tuple[OnboardingTracker, OnboardingStatus]:
    """Store the failed result, then terminate the tracker."""
    await OnboardingFormRepository.save(
        db, tracker, STEP_FORMS[StepId.DRIVE_TEST], dict(payload)
    )
    await db.flush()
    await OnboardingTrackerRepository.terminate(
        db, tracker.id, termination_type="terminated", now=revocation_time(now)
    )
    await db.refresh(tracker)
    logger.info("Tracker %s terminated after a failed drive test", tracker.id)
    return tracker, status_of(tracker)


async def record_admin_step(
    db: AsyncSession,
    tracker_id: uuid.UUID,
    step: StepId,
    payload: dict,
    *,
    now: datetime | None = None,
) -> tuple[OnboardingTracker, OnboardingStatus]:
    """Record an appraisal step and advance progress.

    A drive test payload carries ``overall_assessment`` (pass,
    conditional_pass or fail). A failed drive test terminates the tracker
    and revokes its sessions instead of advancing. A passing one may carry
    ``needs_flatbed_training`` to override the rule derived at creation;
    the override applies before advancing, so it can add or remove the
    flatbed step from the remaining flow. Training can only be switched on
    where the company and application type allow it.

    Args:
        db: Async database session. Flushed, not committed.
        tracker_id: Tracker to write.
        step: Admin-owned step.
        payload: Appraisal result.
        now: Reference time. Defaults to the current time.

    Returns:
        Tuple of (tracker, new status). A failed drive test returns the
        terminated tracker with its progress unchanged.

    Raises:
        ValidationError: Unknown drive test result, or flatbed training
            requested where it cannot apply.
        NotFoundError: Tracker missing.
        ConflictError: Terminated or completed tracker, step not admin-owned,
            or invitation not approved.
        StepOrderError: Step not reached or not part of the tracker's flow.
    """
    now = now or datetime.now(UTC)
    if step not in ADMIN_STEPS:
        raise ConflictError(
            "STEP_NOT_ADMIN", f"Step '{step.value}' is submitted by the applicant"
        )

    tracker = await _lock_active(db, tracker_id)
    if tracker.completed:
        raise ConflictError(
            "ONBOARDING_COMPLETED", "This application is already complete"
        )
    if not tracker.invitation_approved:
        raise ConflictError(
            "INVITATION_NOT_APPROVED", "The invitation has not been approved"
        )
    if not has_reached_step(tracker, step):
        raise StepOrderError(
            "STEP_NOT_REACHED", f"Step '{step.value}' is not available yet"
        )

    if step is StepId.DRIVE_TEST:
        result = _drive_test_result(payload)
        override = _flatbed_override(tracker, payload)
        if result is DriveTestResult.FAIL:
            return await _fail_drive_test(db, tracker, payload, now)
        if override is not None:
            tracker.needs_flatbed_training = override

    await OnboardingFormRepository.save(db, tracker, STEP_FORMS[step], dict(payload))
    status = advance_progress(tracker, step)
    _finish(tracker, status, now)
    await db.flush()

    logger.info(
        "Admin recorded step %s for tracker %s, now at %s",
        step.value,
        tracker.id,
        status.current_step.value,
    )
    return tracker, status


# =============================================================================
# Staff views
# =============================================================================


async def get_personal_details(db: AsyncSession, tracker_id: uuid.UUID) -> dict:
    """Identity number and application page 1 for staff review.

    This is the only read path that decrypts the identity number.

    Raises:
        NotFoundError: Tracker missing.
    """
    tracker = await OnboardingTrackerRepository.get_by_id(db, tracker_id)
    if tracker is None:
        raise NotFoundError(_TRACKER_RESOURCE, str(tracker_id))
    form = await OnboardingFormRepository.get_for_tracker(
        db, tracker, FormType.DRIVER_APPLICATION
    )
    logger.info("Personal details read for tracker %s", tracker.id)
    return {
        "identity_number": decrypt_identity(tracker.applicant_identity_encrypted),
        "application_page_1": dict(form.payload.get("page_1", {})) if form else {},
    }


# =============================================================================
# Invitation and termination
# =============================================================================


async def approve_invitation(
    db: AsyncSession, tracker_id: uuid.UUID, *, now: datetime | None = None
) -> OnboardingTracker:
    """Unlock the steps after application page 1.

    The resume window restarts so the applicant has the full window to
    continue after approval.
    """
    tracker = await _lock_active(db, tracker_id)
    tracker.invitation_approved = True
    if not tracker.completed:
        tracker.resume_expires_at = next_resume_expiry(now)
    await db.flush()
    logger.info("Invitation approved for tracker %s", tracker.id)
    return tracker


async def terminate_tracker(
    db: AsyncSession,
    tracker_id: uuid.UUID,
    termination_type: str,
    *,
    now: datetime | None = None,
) -> None:
    """Terminate a tracker and revoke all of its sessions.

    Raises:
        ValidationError: Unknown termination type.
        NotFoundError: Tracker missing.
        ConflictError: Tracker already terminated.
    """
    if termination_type not in ADMIN_TERMINATION_TYPES | {"rejected"}:
        raise ValidationError(f"Unknown termination type: '{termination_type}'")

    terminated = await OnboardingTrackerRepository.terminate(
        db,
        tracker_id,
        termination_type=termination_type,
        now=revocation_time(now),
    )
    if not terminated:
        if await OnboardingTrackerRepository.get_by_id(db, tracker_id) is None:
            raise NotFoundError(_TRACKER_RESOURCE, str(tracker_id))
        raise ConflictError(
            "TRACKER_TERMINATED", "This application is already terminated"
        )
    logger.info("Tracker %s terminated (%s)", tracker_id, termination_type)


async def reject_invitation(
    db: AsyncSession, tracker_id: uuid.UUID, *, now: datetime | None = None
) -> None:
    """Reject the applicant; terminates the tracker as ``rejected``."""
    await terminate_tracker(db, tracker_id, "rejected", now=now)


# =============================================================================
# Company change
# =============================================================================


async def change_company(
    db: AsyncSession,
    tracker_id: uuid.UUID,
    *,
    company_id: str,
    application_type: str | None,
    now: datetime | None = None,
) -> tuple[OnboardingTracker, OnboardingStatus]:
    """Move an in-progress tracker to another company.

    The flatbed rule is recomputed from the new company and the stored
    pre-qualification answers, then progress is re-derived from the
    furthest completed step. Dropping the flatbed step can therefore
    complete a tracker whose other steps are all done.

    Raises:
        ValidationError: Unknown company or application type.
        NotFoundError: Tracker missing.
        ConflictError: Terminated or completed tracker.
    """
    now = now or datetime.now(UTC)
    company = get_company(company_id)
    app_type = parse_application_type(application_type)

    tracker = await _lock_active(db, tracker_id)
    if tracker.completed:
        raise ConflictError(
            "ONBOARDING_COMPLETED", "Completed applications cannot change company"
        )

    pre_qualification = await OnboardingFormRepository.get_for_tracker(
        db, tracker, FormType.PRE_QUALIFICATION
    )
    tracker.company_id = company.id
    tracker.application_type = app_type.value if app_type else None
    tracker.needs_flatbed_training = needs_flatbed_training(
        company,
        app_type,
        has_flatbed_experience(pre_qualification.payload if pre_qualification else None),
    )

    # Incomplete trackers never have FLATBED_TRAINING (the last step) as
    # their completed step, so the anchor is always in the new flow.
    status = status_of(tracker)
    if status.completed_step is not None:
        status = advance_progress(tracker, status.completed_step)
    _finish(tracker, status, now)
    await db.flush()

    logger.info("Tracker %s moved to company %s", tracker.id, company.id)
    return tracker, status

"""Applicant-side onboarding workflow.

Start: creates the tracker together with its pre-qualification and
driver application forms, already advanced past application page 1.

Step writes: every write locks the tracker row, checks the gate, upserts
the step's form, advances progress and refreshes the resume window in
one transaction. The lock serializes concurrent writes for the same
applicant and keeps the reaper (SKIP LOCKED) away from a tracker that is
being written.
"""

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from drivedock.core.errors import (
    ConflictError,
    ExpiredError,
    NotFoundError,
    ValidationError,
)
from drivedock.core.identity import encrypt_identity, hash_identity, normalize_identity
from drivedock.models.onboarding_forms import FormType
from drivedock.models.onboarding_tracker import OnboardingTracker
from drivedock.repositories.onboarding_form_repository import OnboardingFormRepository
from drivedock.repositories.onboarding_tracker_repository import (
    OnboardingTrackerRepository,
)
from drivedock.services.company_rules import (
    ApplicationType,
    get_company,
    needs_flatbed_training,
)
from drivedock.services.onboarding_progress import (
    INITIAL_STATUS,
    OnboardingStatus,
    StepOrderError,
    advance_progress,
    apply_status,
    can_access_step,
    next_resume_expiry,
    onboarding_expired,
)
from drivedock.services.onboarding_steps import (
    APPLICANT_STEPS,
    APPLICATION_PAGE_KEYS,
    STEP_FORMS,
    StepId,
)

logger = logging.getLogger(__name__)

_TRACKER_RESOURCE = "Onboarding"
_CONSENT_KEY = "send_completion_email"
_EMAIL_KEY = "email"


def parse_application_type(value: str | None) -> ApplicationType | None:
    """Parse an optional application type.

    Raises:
        ValidationError: If the value is not a known type.
    """
    if value is None:
        return None
    try:
        return ApplicationType(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown application type: '{value}'") from exc


def has_flatbed_experience(pre_qualifications: dict | None) -> bool:
    """Read the flatbed experience answer from a pre-qualification payload."""
    return bool((pre_qualifications or {}).get("flatbed_experience", False))


def _page_email(page_1: dict) -> str:
    email = page_1.get(_EMAIL_KEY)
    if not isinstance(email, str) or "@" not in email.strip():
        raise ValidationError(
            "Application page 1 requires a contact email",
            details=[{"field": _EMAIL_KEY, "error": "REQUIRED"}],
        )
    return email.strip().lower()


# =============================================================================
# Start
# =============================================================================


async def start_onboarding(
    db: AsyncSession,
    *,
    identity_number: str,
    company_id: str,
    application_type: str | None,
    pre_qualifications: dict,
    application_page_1: dict,
    now: datetime | None = None,
) -> tuple[OnboardingTracker, OnboardingStatus]:
    """Create a tracker from the first two applicant submissions.

    Args:
        db: Async database session. Flushed, not committed.
        identity_number: Applicant identity number as typed.
        company_id: Company the applicant is onboarding with.
        application_type: FLAT_BED, DRY_VAN, or None.
        pre_qualifications: Pre-qualification answers.
        application_page_1: Driver application page 1, including ``email``.
        now: Reference time. Defaults to the current time.

    Returns:
        Tuple of (tracker, status after application page 1).

    Raises:
        ValidationError: Malformed identity, unknown company or type,
            missing contact email.
        ConflictError: An application already exists for this identity.
    """
    now = now or datetime.now(UTC)
    normalized = normalize_identity(identity_number)
    company = get_company(company_id)
    app_type = parse_application_type(application_type)
    contact_email = _page_email(application_page_1)
    identity_hash = hash_identity(normalized)

    if await OnboardingTrackerRepository.get_by_identity_hash(db, identity_hash):
        raise ConflictError(
            "DUPLICATE_APPLICATION",
            "An application already exists for this identity number",
        )

    try:
        tracker = await OnboardingTrackerRepository.create(
            db,
            applicant_identity_hash=identity_hash,
            applicant_identity_encrypted=encrypt_identity(normalized),
            company_id=company.id,
            application_type=app_type.value if app_type else None,
            needs_flatbed_training=needs_flatbed_training(
                company, app_type, has_flatbed_experience(pre_qualifications)
            ),
            current_step=INITIAL_STATUS.current_step.value,
            resume_expires_at=next_resume_expiry(now),
        )
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            "DUPLICATE_APPLICATION",
            "An application already exists for this identity number",
        ) from exc

    await OnboardingFormRepository.save(
        db, tracker, FormType.PRE_QUALIFICATION, dict(pre_qualifications)
    )
    await OnboardingFormRepository.save(
        db,
        tracker,
        FormType.DRIVER_APPLICATION,
        {APPLICATION_PAGE_KEYS[StepId.APPLICATION_PAGE_1]: dict(application_page_1)},
        contact_email=contact_email,
    )

    status = advance_progress(tracker, StepId.APPLICATION_PAGE_1)
    apply_status(tracker, status, now=now)
    await db.flush()

    logger.info("Onboarding started: tracker %s company %s", tracker.id, company.id)
    return tracker, status


# =============================================================================
# Step reads and writes
# =============================================================================


def _applicant_step(step: StepId) -> None:
    if step not in APPLICANT_STEPS:
        raise ConflictError(
            "STEP_NOT_EDITABLE", f"Step '{step.value}' is recorded by an administrator"
        )


def _require_access(tracker: OnboardingTracker, step: StepId) -> None:
    if not can_access_step(tracker, step):
        raise StepOrderError(
            "STEP_NOT_REACHED", f"Step '{step.value}' is not available yet"
        )


def _step_payload(step: StepId, form_payload: dict | None) -> dict:
    payload = form_payload or {}
    page_key = APPLICATION_PAGE_KEYS.get(step)
    if page_key is not None:
        return dict(payload.get(page_key) or {})
    return dict(payload)


async def get_step_data(
    db: AsyncSession, tracker: OnboardingTracker, step: StepId
) -> dict:
    """Saved payload for an applicant step, empty if nothing saved yet.

    Raises:
        ConflictError: Step is admin-owned.
        StepOrderError: Step not reached, or behind the invitation gate.
    """
    _applicant_step(step)
    _require_access(tracker, step)
    form = await OnboardingFormRepository.get_for_tracker(db, tracker, STEP_FORMS[step])
    return _step_payload(step, form.payload if form else None)


async def save_applicant_step(
    db: AsyncSession,
    tracker_id: uuid.UUID,
    step: StepId,
    payload: dict,
    *,
    now: datetime | None = None,
) -> tuple[OnboardingTracker, OnboardingStatus]:
    """Save an applicant step and advance progress.

    Args:
        db: Async database session. Flushed, not committed.
        tracker_id: Tracker to write.
        step: Applicant-owned step being submitted.
        payload: Step form payload.
        now: Reference time. Defaults to the current time.

    Returns:
        Tuple of (tracker, new status).

    Raises:
        NotFoundError: Tracker missing or terminated.
        ExpiredError: Tracker past its resume window.
        ConflictError: Step is admin-owned, or the tracker is completed.
        StepOrderError: Step not reached, or behind the invitation gate.
        ValidationError: Page 1 without a contact email.
    """
    now = now or datetime.now(UTC)
    _applicant_step(step)

    tracker = await OnboardingTrackerRepository.get_for_update(db, tracker_id)
    if tracker is None or tracker.terminated:
        raise NotFoundError(_TRACKER_RESOURCE, str(tracker_id))
    if onboarding_expired(tracker, now):
        raise ExpiredError()
    if tracker.completed:
        raise ConflictError(
            "ONBOARDING_COMPLETED", "This application is already complete"
        )
    _require_access(tracker, step)

    form_type = STEP_FORMS[step]
    page_key = APPLICATION_PAGE_KEYS.get(step)
    contact_email = None
    if page_key is not None:
        form = await OnboardingFormRepository.get_for_tracker(db, tracker, form_type)
        form_payload = dict(form.payload) if form else {}
        form_payload[page_key] = dict(payload)
        if step is StepId.APPLICATION_PAGE_1:
            contact_email = _page_email(payload)
    else:
        form_payload = dict(payload)

    await OnboardingFormRepository.save(
        db, tracker, form_type, form_payload, contact_email=contact_email
    )
    if step is StepId.POLICIES_CONSENTS:
        tracker.completion_notice_consent = bool(payload.get(_CONSENT_KEY, False))

    status = advance_progress(tracker, step)
    apply_status(tracker, status, now=now)
    await db.flush()

    logger.info(
        "Tracker %s saved step %s, now at %s",
        tracker.id,
        step.value,
        status.current_step.value,
    )
    return tracker, status

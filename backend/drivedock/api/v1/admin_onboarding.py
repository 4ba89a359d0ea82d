"""Admin onboarding API router.

All endpoints require the ADMIN_API_TOKEN bearer token.

Endpoints:
- GET  /admin/onboarding/{id} — tracker context
- GET  /admin/onboarding/{id}/personal-details — identity number and page 1
- POST /admin/onboarding/{id}/steps/{step} — record an appraisal step
- POST /admin/onboarding/{id}/approve — approve the invitation
- POST /admin/onboarding/{id}/reject — reject (terminates as "rejected")
- POST /admin/onboarding/{id}/terminate — terminate (resigned/terminated)
- POST /admin/onboarding/{id}/company — move to another company
"""

import structlog
from fastapi import APIRouter
from sqlalchemy.ext.asyncio import AsyncSession

from drivedock.api.deps import AdminAuth, DbSession, TrackerIdPath
from drivedock.core.errors import NotFoundError, ValidationError
from drivedock.core.responses import DataResponse
from drivedock.repositories.onboarding_tracker_repository import (
    OnboardingTrackerRepository,
)
from drivedock.schemas.onboarding import (
    ChangeCompanyRequest,
    StepSubmitRequest,
    TerminateRequest,
)
from drivedock.services.completion_notices import send_completion_notice_if_eligible
from drivedock.services.onboarding_admin import (
    approve_invitation,
    change_company,
    get_personal_details,
    record_admin_step,
    reject_invitation,
    terminate_tracker,
)
from drivedock.services.onboarding_progress import build_tracker_context
from drivedock.services.onboarding_steps import StepId

logger = structlog.get_logger()

router = APIRouter(dependencies=[AdminAuth])

_TRACKER_RESOURCE = "Onboarding"


def _context(tracker, *, notice: str | None = None) -> dict:
    data = build_tracker_context(tracker)
    data["terminated"] = tracker.terminated
    data["completion_notice_status"] = tracker.completion_notice_status
    if notice is not None:
        data["completion_notice_outcome"] = notice
    return data


async def _notify_if_completed(
    db: AsyncSession, tracker, completed: bool
) -> str | None:
    """Commit, then send the completion notice for a tracker that just completed."""
    await db.commit()
    if not completed:
        return None
    outcome = await send_completion_notice_if_eligible(db, tracker.id)
    await db.refresh(tracker)
    return outcome.value


@router.get("/{tracker_id}")
async def get_tracker(tracker_id: TrackerIdPath, db: DbSession) -> DataResponse[dict]:
    """Return the tracker context, including termination and notice state."""
    tracker = await OnboardingTrackerRepository.get_by_id(db, tracker_id)
    if tracker is None:
        raise NotFoundError(_TRACKER_RESOURCE, str(tracker_id))
    return DataResponse(data=_context(tracker))


@router.get("/{tracker_id}/personal-details")
async def get_tracker_personal_details(
    tracker_id: TrackerIdPath, db: DbSession
) -> DataResponse[dict]:
    """Return the decrypted identity number and application page 1."""
    details = await get_personal_details(db, tracker_id)
    logger.info("admin_personal_details_read", tracker_id=str(tracker_id))
    return DataResponse(data=details)


@router.post("/{tracker_id}/steps/{step:path}")
async def post_admin_step(
    tracker_id: TrackerIdPath,
    step: str,
    body: StepSubmitRequest,
    db: DbSession,
) -> DataResponse[dict]:
    """Record an appraisal step.

    When this completes the tracker, the completion notice is attempted
    right after the commit; the scheduled sweep retries failures.
    """
    try:
        step_id = StepId.from_string(step)
    except ValueError as exc:
        raise ValidationError(
            message=f"Unknown onboarding step: '{step}'",
            details=[{"field": "step", "error": "UNKNOWN_STEP"}],
        ) from exc

    tracker, status = await record_admin_step(db, tracker_id, step_id, body.data)
    notice = await _notify_if_completed(db, tracker, status.completed)
    logger.info(
        "admin_step_recorded",
        tracker_id=str(tracker_id),
        step=step_id.value,
        current_step=status.current_step.value,
    )
    return DataResponse(data=_context(tracker, notice=notice))


@router.post("/{tracker_id}/approve")
async def post_approve(tracker_id: TrackerIdPath, db: DbSession) -> DataResponse[dict]:
    """Approve the invitation, unlocking the steps after page 1."""
    tracker = await approve_invitation(db, tracker_id)
    return DataResponse(data=_context(tracker))


@router.post("/{tracker_id}/reject", status_code=204)
async def post_reject(tracker_id: TrackerIdPath, db: DbSession) -> None:
    """Reject the applicant. Terminates the tracker and revokes sessions."""
    await reject_invitation(db, tracker_id)


@router.post("/{tracker_id}/terminate", status_code=204)
async def post_terminate(
    tracker_id: TrackerIdPath, body: TerminateRequest, db: DbSession
) -> None:
    """Terminate the tracker and revoke sessions."""
    await terminate_tracker(db, tracker_id, body.termination_type)


@router.post("/{tracker_id}/company")
async def post_change_company(
    tracker_id: TrackerIdPath, body: ChangeCompanyRequest, db: DbSession
) -> DataResponse[dict]:
    """Move the tracker to another company and re-derive its flow."""
    tracker, status = await change_company(
        db,
        tracker_id,
        company_id=body.company_id,
        application_type=body.application_type,
    )
    notice = await _notify_if_completed(db, tracker, status.completed)
    return DataResponse(data=_context(tracker, notice=notice))

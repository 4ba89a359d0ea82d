"""Onboarding API router (applicant side).

Endpoints:
- POST /onboarding — start an application, issues the session cookie
- GET /onboarding/{id}/guard — validate the session, return tracker context
- GET /onboarding/{id}/steps/{step} — saved data for an applicant step
- PUT /onboarding/{id}/steps/{step} — save an applicant step and advance
- POST /onboarding/{id}/logout — drop the session cookie
"""

import structlog
from fastapi import APIRouter, Request, Response

from drivedock.api.deps import DbSession, OnboardingSession, TrackerIdPath
from drivedock.core.auth import (
    clear_session_cookie,
    create_session_token,
    set_session_cookie,
)
from drivedock.core.config import settings
from drivedock.core.errors import ValidationError
from drivedock.core.rate_limiting import limiter
from drivedock.core.responses import DataResponse
from drivedock.schemas.onboarding import StartOnboardingRequest, StepSubmitRequest
from drivedock.services.onboarding_progress import build_tracker_context
from drivedock.services.onboarding_steps import StepId
from drivedock.services.onboarding_workflow import (
    get_step_data,
    save_applicant_step,
    start_onboarding,
)

logger = structlog.get_logger()

router = APIRouter()


def _parse_step(step: str) -> StepId:
    """Parse a step path segment, rejecting unknown steps with 400."""
    try:
        return StepId.from_string(step)
    except ValueError as exc:
        raise ValidationError(
            message=f"Unknown onboarding step: '{step}'",
            details=[{"field": "step", "error": "UNKNOWN_STEP"}],
        ) from exc


@router.post("", status_code=201)
@limiter.limit(settings.rate_limit_resume)
async def create_onboarding(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: StartOnboardingRequest,
    response: Response,
    db: DbSession,
) -> DataResponse[dict]:
    """Start an application from pre-qualification and page 1.

    Unauthenticated. Duplicate identity numbers are rejected with 409.
    The tracker is committed before the session cookie is issued.
    """
    tracker, _status = await start_onboarding(
        db,
        identity_number=body.identity_number,
        company_id=body.company_id,
        application_type=body.application_type,
        pre_qualifications=body.pre_qualifications,
        application_page_1=body.application_page_1,
    )
    await db.commit()

    set_session_cookie(response, create_session_token(tracker_id=tracker.id))
    return DataResponse(data=build_tracker_context(tracker))


@router.get("/{tracker_id}/guard")
async def get_guard(tracker: OnboardingSession) -> DataResponse[dict]:
    """Return the tracker context for a valid session."""
    return DataResponse(data=build_tracker_context(tracker))


@router.get("/{tracker_id}/steps/{step:path}")
async def get_step(
    step: str,
    tracker: OnboardingSession,
    db: DbSession,
) -> DataResponse[dict]:
    """Return saved data for an applicant step, with navigation context."""
    step_id = _parse_step(step)
    data = await get_step_data(db, tracker, step_id)
    return DataResponse(
        data={"step": step_id.value, "data": data, **build_tracker_context(tracker, step_id)}
    )


@router.put("/{tracker_id}/steps/{step:path}")
async def put_step(
    step: str,
    body: StepSubmitRequest,
    tracker: OnboardingSession,
    db: DbSession,
) -> DataResponse[dict]:
    """Save an applicant step and advance progress.

    Responds with the tracker context after the write; ``status`` holds the
    step the applicant should continue with.
    """
    step_id = _parse_step(step)
    updated, status = await save_applicant_step(db, tracker.id, step_id, body.data)
    return DataResponse(data=build_tracker_context(updated, status.current_step))


@router.post("/{tracker_id}/logout", status_code=204)
async def logout(tracker_id: TrackerIdPath) -> Response:
    """Clear the session cookie. No session is required."""
    response = Response(status_code=204)
    clear_session_cookie(response)
    logger.info("onboarding_logout", tracker_id=str(tracker_id))
    return response

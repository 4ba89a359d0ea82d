"""Onboarding resume API router.

Unauthenticated endpoints for returning applicants. Rate limited per IP
on top of the per-code attempt limit in the resume service.

Endpoints:
- POST /onboarding/resume/send-code — email a 6-digit code
- POST /onboarding/resume/confirm-code — check the code, issue a session
"""

from fastapi import APIRouter, Request, Response

from drivedock.api.deps import DbSession
from drivedock.core.auth import clear_session_cookie, set_session_cookie
from drivedock.core.config import settings
from drivedock.core.rate_limiting import limiter
from drivedock.core.responses import DataResponse
from drivedock.schemas.onboarding import (
    ResumeCodeResponse,
    ResumeConfirmCodeRequest,
    ResumeConfirmResponse,
    ResumeSendCodeRequest,
)
from drivedock.services.onboarding_progress import status_of
from drivedock.services.onboarding_resume import (
    confirm_resume_code,
    request_resume_code,
)

router = APIRouter()


@router.post("/send-code")
@limiter.limit(settings.rate_limit_resume)
async def send_code(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: ResumeSendCodeRequest,
    db: DbSession,
) -> DataResponse[ResumeCodeResponse]:
    """Email a resume code to the contact address on file.

    Responds with the masked address; 429 with ``retry_after_seconds``
    inside the resend window.
    """
    issued = await request_resume_code(db, body.identity_number)
    return DataResponse(
        data=ResumeCodeResponse(
            masked_email=issued.masked_email,
            expires_in_minutes=issued.expires_in_minutes,
            resend_available_in_seconds=issued.resend_available_in_seconds,
        )
    )


@router.post("/confirm-code")
@limiter.limit(settings.rate_limit_resume)
async def confirm_code(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: ResumeConfirmCodeRequest,
    response: Response,
    db: DbSession,
) -> DataResponse[ResumeConfirmResponse]:
    """Confirm a resume code.

    Incomplete trackers get a session cookie. Completed trackers get
    ``is_completed: true`` and any existing session cookie is cleared.
    """
    confirmed = await confirm_resume_code(db, body.identity_number, body.code)
    if confirmed.session_token is not None:
        set_session_cookie(response, confirmed.session_token)
    else:
        clear_session_cookie(response)

    tracker = confirmed.tracker
    return DataResponse(
        data=ResumeConfirmResponse(
            tracker_id=str(tracker.id),
            is_completed=confirmed.is_completed,
            resume_step=status_of(tracker).current_step.value,
        )
    )

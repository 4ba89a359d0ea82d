"""Pydantic request/response schemas for API endpoints."""

from drivedock.schemas.onboarding import (
    ChangeCompanyRequest,
    ResumeCodeResponse,
    ResumeConfirmCodeRequest,
    ResumeConfirmResponse,
    ResumeSendCodeRequest,
    StartOnboardingRequest,
    StepSubmitRequest,
    TerminateRequest,
)

__all__ = [
    "ChangeCompanyRequest",
    "ResumeCodeResponse",
    "ResumeConfirmCodeRequest",
    "ResumeConfirmResponse",
    "ResumeSendCodeRequest",
    "StartOnboardingRequest",
    "StepSubmitRequest",
    "TerminateRequest",
]

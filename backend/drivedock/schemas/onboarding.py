"""Onboarding API request/response schemas.

Step payloads are free-form JSON objects owned by the frontend forms;
only the workflow fields the server acts on are validated here.
All request schemas use ConfigDict(extra="forbid").
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

_IDENTITY_MAX_LEN = 32


class StartOnboardingRequest(BaseModel):
    """Request body for POST /api/v1/onboarding.

    Attributes:
        identity_number: Applicant identity number (9 digits, spaces and
            dashes allowed).
        company_id: Company the applicant is onboarding with.
        application_type: FLAT_BED, DRY_VAN, or None.
        pre_qualifications: Pre-qualification answers.
        application_page_1: Driver application page 1. Must include ``email``.
    """

    model_config = ConfigDict(extra="forbid")

    identity_number: str = Field(min_length=1, max_length=_IDENTITY_MAX_LEN)
    company_id: str = Field(min_length=1, max_length=50)
    application_type: str | None = Field(default=None, max_length=20)
    pre_qualifications: dict[str, Any]
    application_page_1: dict[str, Any]


class StepSubmitRequest(BaseModel):
    """Request body for step writes (applicant and admin)."""

    model_config = ConfigDict(extra="forbid")

    data: dict[str, Any]


class ResumeSendCodeRequest(BaseModel):
    """Request body for POST /api/v1/onboarding/resume/send-code."""

    model_config = ConfigDict(extra="forbid")

    identity_number: str = Field(min_length=1, max_length=_IDENTITY_MAX_LEN)


class ResumeConfirmCodeRequest(BaseModel):
    """Request body for POST /api/v1/onboarding/resume/confirm-code."""

    model_config = ConfigDict(extra="forbid")

    identity_number: str = Field(min_length=1, max_length=_IDENTITY_MAX_LEN)
    code: str = Field(min_length=1, max_length=16)


class ResumeCodeResponse(BaseModel):
    """Response for a sent resume code.

    Attributes:
        masked_email: Where the code went, with the local part hidden.
        expires_in_minutes: Code lifetime.
        resend_available_in_seconds: Wait before another request is accepted.
    """

    model_config = ConfigDict(extra="forbid")

    masked_email: str
    expires_in_minutes: int
    resend_available_in_seconds: int


class ResumeConfirmResponse(BaseModel):
    """Response for a confirmed resume code.

    Attributes:
        tracker_id: The resumed tracker.
        is_completed: Show the completed view; no session was issued.
        resume_step: Step to route the applicant to.
    """

    model_config = ConfigDict(extra="forbid")

    tracker_id: str
    is_completed: bool
    resume_step: str


class TerminateRequest(BaseModel):
    """Request body for POST /api/v1/admin/onboarding/{id}/terminate."""

    model_config = ConfigDict(extra="forbid")

    termination_type: Literal["resigned", "terminated"]


class ChangeCompanyRequest(BaseModel):
    """Request body for POST /api/v1/admin/onboarding/{id}/company."""

    model_config = ConfigDict(extra="forbid")

    company_id: str = Field(min_length=1, max_length=50)
    application_type: str | None = Field(default=None, max_length=20)

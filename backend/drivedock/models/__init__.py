"""SQLAlchemy ORM models for DriveDock onboarding.

All models are exported from this module for convenient imports:
    from drivedock.models import OnboardingTracker, ApplicationForm, ...

Models are organized by domain:
- onboarding_tracker.py: OnboardingTracker (root aggregate)
- onboarding_forms.py: child forms owned by a tracker, FormType, FORM_MODELS
- verification_code.py: VerificationCode (resume flow)
"""

from drivedock.models.base import Base, TimestampMixin
from drivedock.models.onboarding_forms import (
    FORM_MODELS,
    ApplicationForm,
    CarriersEdgeTraining,
    DriveTest,
    DrugTest,
    FlatbedTraining,
    FormType,
    PoliciesConsents,
    PreQualifications,
)
from drivedock.models.onboarding_tracker import OnboardingTracker
from drivedock.models.verification_code import VerificationCode

__all__ = [
    "FORM_MODELS",
    "ApplicationForm",
    "Base",
    "CarriersEdgeTraining",
    "DriveTest",
    "DrugTest",
    "FlatbedTraining",
    "FormType",
    "OnboardingTracker",
    "PoliciesConsents",
    "PreQualifications",
    "TimestampMixin",
    "VerificationCode",
]

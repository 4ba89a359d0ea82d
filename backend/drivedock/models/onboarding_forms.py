"""Child form models owned by an onboarding tracker.

Each form row belongs to exactly one tracker through the tracker's
``<form_type>_id`` foreign key. Forms are never shared between trackers
and are only deleted together with their tracker (or replaced on
resubmission). The submitted fields live in a JSONB payload; the only
field the workflow itself reads is the contact email on the driver
application.
"""

import uuid
from enum import Enum

from sqlalchemy import String, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from drivedock.models.base import Base, TimestampMixin

_DEFAULT_UUID = text("gen_random_uuid()")


class FormType(Enum):
    """Logical form names in a tracker's forms map.

    The value doubles as the tracker column prefix: ``<value>_id``.
    """

    PRE_QUALIFICATION = "pre_qualification"
    DRIVER_APPLICATION = "driver_application"
    POLICIES_CONSENTS = "policies_consents"
    DRIVE_TEST = "drive_test"
    DRUG_TEST = "drug_test"
    CARRIERS_EDGE_TRAINING = "carriers_edge_training"
    FLATBED_TRAINING = "flatbed_training"

    @property
    def tracker_column(self) -> str:
        """Name of the tracker column holding this form's id."""
        return f"{self.value}_id"


class _FormMixin:
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
        default=uuid.uuid4,
    )
    payload: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
        default=dict,
    )


class PreQualifications(Base, _FormMixin, TimestampMixin):
    """Pre-qualification answers (experience, licence class, flatbed history)."""

    __tablename__ = "pre_qualifications"


class ApplicationForm(Base, _FormMixin, TimestampMixin):
    """Driver application pages 1-5.

    Attributes:
        contact_email: Lower-cased email from page 1. Used for resume codes
            and the completion notice.
        payload: Page data keyed by page name ("page_1" .. "page_5").
    """

    __tablename__ = "application_forms"

    contact_email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )


class PoliciesConsents(Base, _FormMixin, TimestampMixin):
    """Signed policies and consents."""

    __tablename__ = "policies_consents"


class DriveTest(Base, _FormMixin, TimestampMixin):
    """Pre-trip and on-road assessment results."""

    __tablename__ = "drive_tests"


class DrugTest(Base, _FormMixin, TimestampMixin):
    """Drug test documents and admin decision."""

    __tablename__ = "drug_tests"


class CarriersEdgeTraining(Base, _FormMixin, TimestampMixin):
    """Carrier's Edge online training record."""

    __tablename__ = "carriers_edge_trainings"


class FlatbedTraining(Base, _FormMixin, TimestampMixin):
    """Flatbed training sign-off."""

    __tablename__ = "flatbed_trainings"


FORM_MODELS: dict[FormType, type[_FormMixin]] = {
    FormType.PRE_QUALIFICATION: PreQualifications,
    FormType.DRIVER_APPLICATION: ApplicationForm,
    FormType.POLICIES_CONSENTS: PoliciesConsents,
    FormType.DRIVE_TEST: DriveTest,
    FormType.DRUG_TEST: DrugTest,
    FormType.CARRIERS_EDGE_TRAINING: CarriersEdgeTraining,
    FormType.FLATBED_TRAINING: FlatbedTraining,
}

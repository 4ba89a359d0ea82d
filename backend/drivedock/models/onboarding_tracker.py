"""Onboarding tracker model - root aggregate for one applicant.

Holds the workflow status, lifecycle flags, the forms map (one nullable
foreign key per child form) and the completion notice state used by the
notification dispatcher.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from drivedock.models.base import Base, TimestampMixin
from drivedock.models.onboarding_forms import FormType

_DEFAULT_UUID = text("gen_random_uuid()")


def _form_fk(table: str) -> Mapped[uuid.UUID | None]:
    # SET NULL lets the reaper delete children before their tracker
    return mapped_column(
        UUID(as_uuid=True),
        ForeignKey(f"{table}.id", ondelete="SET NULL"),
        nullable=True,
    )


class OnboardingTracker(Base, TimestampMixin):
    """Workflow record for one applicant's onboarding.

    Attributes:
        id: UUID primary key.
        applicant_identity_hash: HMAC of the normalized identity number.
        applicant_identity_encrypted: Fernet ciphertext of the identity number.
        company_id: Company ruleset the applicant is onboarding with.
        application_type: FLAT_BED or DRY_VAN.
        current_step: Step the applicant is working on.
        completed_step: Furthest step completed. NULL before the first write.
        completed: True once the final step is done. Frozen afterwards.
        completed_at: When completed flipped to True.
        terminated: Irrevocable. Terminated trackers read as not found.
        termination_type: resigned, terminated, or rejected.
        invitation_approved: Admin approval to continue past page 1.
        needs_flatbed_training: Whether the flatbed step is part of this
            tracker's flow.
        resume_expires_at: Incomplete trackers can only be resumed before this.
        sessions_invalidated_before: Session JWTs issued earlier are rejected.
        completion_notice_*: Dispatcher state for the completion email.
    """

    __tablename__ = "onboarding_trackers"
    __table_args__ = (
        CheckConstraint(
            "completion_notice_status IN "
            "('NOT_SENT', 'PENDING', 'SENDING', 'SENT', 'ERROR')",
            name="ck_onboarding_trackers_notice_status",
        ),
        CheckConstraint(
            "completion_notice_attempts >= 0",
            name="ck_onboarding_trackers_notice_attempts",
        ),
        CheckConstraint(
            "termination_type IS NULL OR "
            "termination_type IN ('resigned', 'terminated', 'rejected')",
            name="ck_onboarding_trackers_termination_type",
        ),
        Index("ix_onboarding_trackers_reaper", "completed", "resume_expires_at"),
        Index(
            "ix_onboarding_trackers_notice",
            "completed",
            "completion_notice_status",
            "updated_at",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
        default=uuid.uuid4,
    )
    applicant_identity_hash: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )
    applicant_identity_encrypted: Mapped[str] = mapped_column(
        Text(),
        nullable=False,
    )
    company_id: Mapped[str] = mapped_column(String(40), nullable=False)
    application_type: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Status
    current_step: Mapped[str] = mapped_column(String(40), nullable=False)
    completed_step: Mapped[str | None] = mapped_column(String(40), nullable=True)
    completed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
        default=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Lifecycle
    terminated: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
        default=False,
    )
    termination_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    terminated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    invitation_approved: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
        default=False,
    )
    needs_flatbed_training: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("true"),
        default=True,
    )
    resume_expires_at: Mapped[datetime] = mapped_column(nullable=False)
    sessions_invalidated_before: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )

    # Forms map
    pre_qualification_id: Mapped[uuid.UUID | None] = _form_fk("pre_qualifications")
    driver_application_id: Mapped[uuid.UUID | None] = _form_fk("application_forms")
    policies_consents_id: Mapped[uuid.UUID | None] = _form_fk("policies_consents")
    drive_test_id: Mapped[uuid.UUID | None] = _form_fk("drive_tests")
    drug_test_id: Mapped[uuid.UUID | None] = _form_fk("drug_tests")
    carriers_edge_training_id: Mapped[uuid.UUID | None] = _form_fk(
        "carriers_edge_trainings"
    )
    flatbed_training_id: Mapped[uuid.UUID | None] = _form_fk("flatbed_trainings")

    # Completion notice
    completion_notice_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default=text("'NOT_SENT'"),
        default="NOT_SENT",
    )
    completion_notice_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default=text("0"),
        default=0,
    )
    completion_notice_consent: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
        default=False,
    )
    completion_notice_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completion_notice_last_error: Mapped[str | None] = mapped_column(
        Text(),
        nullable=True,
    )
    completion_notice_claimed_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )

    @property
    def forms(self) -> dict[FormType, uuid.UUID]:
        """Child form ids that are set, keyed by form type."""
        refs = {}
        for form_type in FormType:
            form_id = getattr(self, form_type.tracker_column)
            if form_id is not None:
                refs[form_type] = form_id
        return refs

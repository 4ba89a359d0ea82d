"""Verification code model - resume flow challenge.

Single-use, time-limited, attempt-limited. One live code per tracker and
purpose; requesting a new code replaces the old one.
"""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from drivedock.models.base import Base

_DEFAULT_UUID = text("gen_random_uuid()")


class VerificationCode(Base):
    """Hashed 6-digit code sent to an applicant's contact email.

    Attributes:
        id: UUID primary key.
        tracker_id: Tracker being resumed. Codes go with their tracker.
        purpose: Code intent. Only ``"resume"`` today.
        identity_hash: Identity hash the code was requested for.
        contact_hash: Hash of the email the code was delivered to.
        code_hash: HMAC of the plain code.
        expires_at: Code expiry timestamp.
        attempts: Failed confirm attempts so far.
        max_attempts: Attempts allowed before the code is discarded.
        created_at: Issue time, used for the resend window.
    """

    __tablename__ = "verification_codes"
    __table_args__ = (
        UniqueConstraint(
            "tracker_id", "purpose", name="uq_verification_codes_tracker_purpose"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
        default=uuid.uuid4,
    )
    tracker_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("onboarding_trackers.id", ondelete="CASCADE"),
        nullable=False,
    )
    purpose: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default="resume",
    )
    identity_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    contact_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default=text("0"),
        default=0,
    )
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )

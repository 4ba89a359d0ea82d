"""Repository for VerificationCode operations.

Resume codes are stored hashed, bound to the identity and contact they
were issued for, and removed after use, expiry, or too many attempts.
"""

import uuid
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from drivedock.models.verification_code import VerificationCode


class VerificationCodeRepository:
    """Stateless repository for VerificationCode table operations.

    All methods are static. Pass an AsyncSession for every call so the
    caller controls transaction boundaries.
    """

    @staticmethod
    async def get_for_tracker(
        db: AsyncSession,
        *,
        tracker_id: uuid.UUID,
        purpose: str,
    ) -> VerificationCode | None:
        """Fetch the live code for a tracker and purpose, if any."""
        stmt = select(VerificationCode).where(
            VerificationCode.tracker_id == tracker_id,
            VerificationCode.purpose == purpose,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def find(
        db: AsyncSession,
        *,
        tracker_id: uuid.UUID,
        purpose: str,
        identity_hash: str,
        contact_hash: str,
    ) -> VerificationCode | None:
        """Fetch a code matching every binding it was issued with.

        Rows already in the session are refreshed so attempt counts bumped
        by record_attempt are current.

        Args:
            db: Async database session.
            tracker_id: Tracker being resumed.
            purpose: Code purpose.
            identity_hash: Identity hash re-derived from the confirm request.
            contact_hash: Contact hash re-derived from the tracker's email.

        Returns:
            VerificationCode if found, None otherwise.
        """
        stmt = (
            select(VerificationCode)
            .where(
                VerificationCode.tracker_id == tracker_id,
                VerificationCode.purpose == purpose,
                VerificationCode.identity_hash == identity_hash,
                VerificationCode.contact_hash == contact_hash,
            )
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        tracker_id: uuid.UUID,
        purpose: str,
        identity_hash: str,
        contact_hash: str,
        code_hash: str,
        expires_at: datetime,
        max_attempts: int,
        created_at: datetime,
    ) -> VerificationCode:
        """Store a new verification code.

        created_at comes from the caller so the resend window and
        expires_at share one clock.

        Returns:
            Created VerificationCode.
        """
        code = VerificationCode(
            tracker_id=tracker_id,
            purpose=purpose,
            identity_hash=identity_hash,
            contact_hash=contact_hash,
            code_hash=code_hash,
            expires_at=expires_at,
            attempts=0,
            max_attempts=max_attempts,
            created_at=created_at,
        )
        db.add(code)
        await db.flush()
        await db.refresh(code)
        return code

    @staticmethod
    async def record_attempt(db: AsyncSession, code_id: uuid.UUID) -> int | None:
        """Atomically spend one attempt on a code.

        Conditional on attempts remaining, so concurrent guesses can never
        spend more than max_attempts between them.

        Returns:
            Attempts after the increment, or None if the code is gone or
            has no attempts left.
        """
        stmt = (
            update(VerificationCode)
            .where(
                VerificationCode.id == code_id,
                VerificationCode.attempts < VerificationCode.max_attempts,
            )
            .values(attempts=VerificationCode.attempts + 1)
            .returning(VerificationCode.attempts)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def delete(db: AsyncSession, code_id: uuid.UUID) -> bool:
        """Delete a code (single-use cleanup).

        Returns:
            True if this call removed the row; False if it was already gone.
        """
        stmt = (
            delete(VerificationCode)
            .where(VerificationCode.id == code_id)
            .returning(VerificationCode.id)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def delete_for_tracker(
        db: AsyncSession,
        *,
        tracker_id: uuid.UUID,
        purpose: str,
    ) -> None:
        """Delete any code for a tracker and purpose (replaced by a new one)."""
        stmt = delete(VerificationCode).where(
            VerificationCode.tracker_id == tracker_id,
            VerificationCode.purpose == purpose,
        )
        await db.execute(stmt)

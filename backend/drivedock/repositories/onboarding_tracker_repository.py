"""Repository for OnboardingTracker operations.

Provides database access for the onboarding_trackers table. Status
writes go through get_for_update() so two step writes for the same
applicant serialize on the tracker row.
"""

import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from drivedock.models.onboarding_tracker import OnboardingTracker


class OnboardingTrackerRepository:
    """Stateless repository for OnboardingTracker table operations.

    All methods are static. Pass an AsyncSession for every call so the
    caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(
        db: AsyncSession, tracker_id: uuid.UUID
    ) -> OnboardingTracker | None:
        """Fetch a tracker by primary key.

        Args:
            db: Async database session.
            tracker_id: UUID primary key.

        Returns:
            OnboardingTracker if found, None otherwise.
        """
        return await db.get(OnboardingTracker, tracker_id)

    @staticmethod
    async def get_for_update(
        db: AsyncSession, tracker_id: uuid.UUID
    ) -> OnboardingTracker | None:
        """Fetch a tracker and lock its row until the transaction ends.

        Args:
            db: Async database session.
            tracker_id: UUID primary key.

        Returns:
            Locked OnboardingTracker if found, None otherwise.
        """
        stmt = (
            select(OnboardingTracker)
            .where(OnboardingTracker.id == tracker_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_identity_hash(
        db: AsyncSession, identity_hash: str
    ) -> OnboardingTracker | None:
        """Fetch a tracker by applicant identity hash.

        Args:
            db: Async database session.
            identity_hash: HMAC of the normalized identity number.

        Returns:
            OnboardingTracker if found, None otherwise.
        """
        stmt = select(OnboardingTracker).where(
            OnboardingTracker.applicant_identity_hash == identity_hash
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        applicant_identity_hash: str,
        applicant_identity_encrypted: str,
        company_id: str,
        application_type: str | None,
        needs_flatbed_training: bool,
        current_step: str,
        resume_expires_at: datetime,
    ) -> OnboardingTracker:
        """Create a tracker at its initial step.

        Returns:
            Created OnboardingTracker with server defaults loaded.
        """
        tracker = OnboardingTracker(
            applicant_identity_hash=applicant_identity_hash,
            applicant_identity_encrypted=applicant_identity_encrypted,
            company_id=company_id,
            application_type=application_type,
            needs_flatbed_training=needs_flatbed_training,
            current_step=current_step,
            completed_step=None,
            resume_expires_at=resume_expires_at,
        )
        db.add(tracker)
        await db.flush()
        await db.refresh(tracker)
        return tracker

    @staticmethod
    async def terminate(
        db: AsyncSession,
        tracker_id: uuid.UUID,
        *,
        termination_type: str,
        now: datetime,
    ) -> bool:
        """Terminate a tracker and revoke its sessions.

        Conditional on the tracker not being terminated already, so the
        first termination type recorded wins.

        Returns:
            True if this call terminated the tracker.
        """
        stmt = (
            update(OnboardingTracker)
            .where(
                OnboardingTracker.id == tracker_id,
                OnboardingTracker.terminated.is_(False),
            )
            .values(
                terminated=True,
                termination_type=termination_type,
                terminated_at=now,
                sessions_invalidated_before=now,
            )
            .returning(OnboardingTracker.id)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

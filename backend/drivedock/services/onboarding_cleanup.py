"""Expired onboarding cleanup.

Deletes abandoned trackers (incomplete and past their resume window)
together with every child form they own. Runs in bounded batches from
the scheduler; each batch is one transaction, so a failure anywhere
leaves the whole batch in place for the next run.

Completed trackers are never candidates, whatever their resume expiry.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from drivedock.core.batching import clamp_batch_limit
from drivedock.core.config import settings
from drivedock.core.errors import APIError
from drivedock.models.onboarding_forms import FORM_MODELS, FormType
from drivedock.models.onboarding_tracker import OnboardingTracker

logger = logging.getLogger(__name__)

MORE_MAY_REMAIN = "More may remain (processed up to limit)"
LIKELY_DONE = "Likely none beyond this batch"


@dataclass(frozen=True)
class ExpiredTrackerCleanupResult:
    """Result of one cleanup batch.

    Attributes:
        limit_applied: Batch size after clamping.
        scanned: Expired trackers selected.
        deleted_trackers: Trackers deleted.
        deleted_children: Child forms deleted, keyed by form type.
        tracker_ids: Ids of the deleted trackers.
    """

    limit_applied: int
    scanned: int
    deleted_trackers: int
    deleted_children: dict[str, int] = field(default_factory=dict)
    tracker_ids: list[str] = field(default_factory=list)

    @property
    def more_may_remain(self) -> bool:
        """Whether the batch was full, so another run may find more."""
        return self.scanned >= self.limit_applied

    @property
    def remaining_hint(self) -> str:
        """Human-readable form of more_may_remain."""
        return MORE_MAY_REMAIN if self.more_may_remain else LIKELY_DONE

    def to_dict(self) -> dict:
        """Serialize for the scheduler endpoint response."""
        return {
            "limit_applied": self.limit_applied,
            "scanned": self.scanned,
            "deleted_trackers": self.deleted_trackers,
            "deleted_children": dict(self.deleted_children),
            "remaining_hint": self.remaining_hint,
            "tracker_ids": list(self.tracker_ids),
        }


class CleanupError(APIError):
    """Raised when a cleanup batch fails at the database level."""

    def __init__(self, message: str) -> None:
        super().__init__(
            code="CLEANUP_ERROR",
            message=message,
            status_code=500,
        )


def partition_child_ids(rows) -> dict[FormType, list[uuid.UUID]]:
    """Group child form ids from projected tracker rows by form type.

    Args:
        rows: Rows with one ``<form_type>_id`` attribute per FormType.

    Returns:
        Every FormType mapped to the ids referenced across the batch.
    """
    child_ids: dict[FormType, list[uuid.UUID]] = {ft: [] for ft in FormType}
    for row in rows:
        for form_type in FormType:
            form_id = getattr(row, form_type.tracker_column)
            if form_id is not None:
                child_ids[form_type].append(form_id)
    return child_ids


async def cleanup_expired_trackers(
    db: AsyncSession,
    *,
    limit: int | None = None,
    now: datetime | None = None,
) -> ExpiredTrackerCleanupResult:
    """Delete one batch of expired, incomplete trackers and their forms.

    Candidate rows are locked with SKIP LOCKED, so a tracker in the middle
    of a step write is left for a later run and cannot complete while its
    children are being deleted.

    Args:
        db: Database session. Committed on success, rolled back on failure.
        limit: Batch size override, clamped to the hard cap.
        now: Reference time. Defaults to the current time.

    Returns:
        ExpiredTrackerCleanupResult with per-type deletion counts.

    Raises:
        CleanupError: If any statement in the batch fails. Nothing is deleted.
    """
    now = now or datetime.now(UTC)
    limit_applied = clamp_batch_limit(
        limit,
        default=settings.cleanup_default_limit,
        hard_cap=settings.cleanup_hard_cap,
    )
    form_columns = [getattr(OnboardingTracker, ft.tracker_column) for ft in FormType]

    try:
        stmt = (
            select(OnboardingTracker.id, *form_columns)
            .where(
                OnboardingTracker.completed.is_(False),
                OnboardingTracker.resume_expires_at < now,
            )
            .order_by(OnboardingTracker.resume_expires_at.asc())
            .limit(limit_applied)
            .with_for_update(skip_locked=True)
        )
        rows = (await db.execute(stmt)).all()
        if not rows:
            await db.commit()
            return ExpiredTrackerCleanupResult(
                limit_applied=limit_applied,
                scanned=0,
                deleted_trackers=0,
                deleted_children={ft.value: 0 for ft in FormType},
            )

        tracker_ids = [row.id for row in rows]
        deleted_children: dict[str, int] = {}
        for form_type, ids in partition_child_ids(rows).items():
            if not ids:
                deleted_children[form_type.value] = 0
                continue
            model = FORM_MODELS[form_type]
            result = await db.execute(
                delete(model)
                .where(model.id.in_(ids))
                .execution_options(synchronize_session=False)
            )
            deleted_children[form_type.value] = result.rowcount  # type: ignore[attr-defined]

        result = await db.execute(
            delete(OnboardingTracker)
            .where(OnboardingTracker.id.in_(tracker_ids))
            .execution_options(synchronize_session=False)
        )
        deleted_trackers: int = result.rowcount  # type: ignore[attr-defined]
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Expired onboarding cleanup failed: %s", exc)
        raise CleanupError("Expired onboarding cleanup failed") from exc

    logger.info(
        "Expired onboarding cleanup: scanned=%d deleted_trackers=%d children=%s",
        len(rows),
        deleted_trackers,
        deleted_children,
    )
    return ExpiredTrackerCleanupResult(
        limit_applied=limit_applied,
        scanned=len(rows),
        deleted_trackers=deleted_trackers,
        deleted_children=deleted_children,
        tracker_ids=[str(tid) for tid in tracker_ids],
    )

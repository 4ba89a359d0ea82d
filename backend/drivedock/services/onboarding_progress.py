"""Progress gate and advancer for onboarding trackers.

Gate: pure read-only checks of whether a tracker has reached or completed
a step. A terminated tracker has reached nothing.

Advancer: computes a tracker's next status from a target step. Progress
is monotonic; completed_step never moves backwards. The advancer does not
persist anything. Callers write the returned status and refresh the
tracker's resume expiry in the same transaction (see apply_status).
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

from drivedock.core.config import settings
from drivedock.core.errors import ConflictError
from drivedock.services.onboarding_steps import (
    INVITATION_GATE_STEP,
    StepConfig,
    StepId,
    higher_step,
    next_step,
    previous_step,
)

# =============================================================================
# Types
# =============================================================================


class TrackerView(Protocol):
    """Tracker fields the gate and advancer read.

    OnboardingTracker satisfies this; tests use plain dataclasses.
    """

    current_step: str
    completed_step: str | None
    completed: bool
    terminated: bool
    invitation_approved: bool
    needs_flatbed_training: bool


class TrackerRecord(TrackerView, Protocol):
    """Tracker fields apply_status writes."""

    completed_at: datetime | None
    resume_expires_at: datetime


@dataclass(frozen=True)
class OnboardingStatus:
    """A tracker's workflow position.

    Attributes:
        current_step: Step the applicant is working on.
        completed_step: Furthest completed step, None before the first one.
        completed: True once current_step is COMPLETED.
    """

    current_step: StepId
    completed_step: StepId | None
    completed: bool

    def to_dict(self) -> dict:
        """Serialize for API responses."""
        return {
            "current_step": self.current_step.value,
            "completed_step": (
                self.completed_step.value if self.completed_step else None
            ),
            "completed": self.completed,
        }


class StepOrderError(ConflictError):
    """Raised when a status change would break step ordering (409)."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(code=code, message=message)


INITIAL_STATUS = OnboardingStatus(
    current_step=StepId.PRE_QUALIFICATIONS,
    completed_step=None,
    completed=False,
)


def step_config_of(tracker: TrackerView) -> StepConfig:
    """Derived step configuration stored on the tracker."""
    return StepConfig(needs_flatbed_training=tracker.needs_flatbed_training)


def status_of(tracker: TrackerView) -> OnboardingStatus:
    """Read a tracker's status columns into an OnboardingStatus."""
    return OnboardingStatus(
        current_step=StepId.from_string(tracker.current_step),
        completed_step=(
            StepId.from_string(tracker.completed_step)
            if tracker.completed_step
            else None
        ),
        completed=tracker.completed,
    )


# =============================================================================
# Gate
# =============================================================================


def has_reached_step(tracker: TrackerView, step: StepId) -> bool:
    """Whether the applicant has reached ``step``.

    True when the current step is at or past ``step``, or the tracker is
    complete. Always False for terminated trackers.
    """
    if tracker.terminated:
        return False
    status = status_of(tracker)
    return status.completed or status.current_step.index >= step.index


def has_completed_step(tracker: TrackerView, step: StepId) -> bool:
    """Whether the applicant has completed ``step``.

    Always False for terminated trackers.
    """
    if tracker.terminated:
        return False
    completed_step = status_of(tracker).completed_step
    if completed_step is None:
        return False
    return completed_step.index >= step.index


def can_access_step(tracker: TrackerView, step: StepId) -> bool:
    """Whether the applicant may open ``step``.

    Requires the step to be reached and, past the invitation gate, an
    approved invitation.
    """
    if not has_reached_step(tracker, step):
        return False
    if step.index > INVITATION_GATE_STEP.index:
        return tracker.invitation_approved
    return True


# =============================================================================
# Advancer
# =============================================================================


def advance_progress(tracker: TrackerView, target_step: StepId) -> OnboardingStatus:
    """Compute the status after completing ``target_step``.

    completed_step becomes the later of its current value and the target;
    current_step becomes the successor of that in the tracker's flow. When
    the successor is COMPLETED the tracker is complete. Advancing to an
    earlier step only recomputes current_step, which matters when the skip
    set changed since the last write.

    Args:
        tracker: Tracker to advance.
        target_step: Step that was just completed.

    Returns:
        The new status. Not persisted.

    Raises:
        StepOrderError: Tracker terminated, target is COMPLETED, or target
            is not part of this tracker's flow.
    """
    if tracker.terminated:
        raise StepOrderError(
            "TRACKER_TERMINATED", "Terminated applications cannot change"
        )
    if target_step is StepId.COMPLETED:
        raise StepOrderError(
            "INVALID_TARGET_STEP", "Completion follows the final step"
        )

    config = step_config_of(tracker)
    if not config.includes(target_step):
        raise StepOrderError(
            "STEP_NOT_APPLICABLE",
            f"Step '{target_step.value}' is not part of this application",
        )

    status = status_of(tracker)
    if status.completed:
        return status

    completed_step = higher_step(status.completed_step, target_step)
    successor = next_step(completed_step, config)
    if successor is None or successor is StepId.COMPLETED:
        return OnboardingStatus(
            current_step=StepId.COMPLETED,
            completed_step=StepId.COMPLETED,
            completed=True,
        )
    return OnboardingStatus(
        current_step=successor,
        completed_step=completed_step,
        completed=False,
    )


def next_resume_expiry(now: datetime | None = None) -> datetime:
    """Resume deadline for a tracker written to at ``now``."""
    return (now or datetime.now(UTC)) + timedelta(days=settings.resume_window_days)


def apply_status(
    tracker: TrackerRecord,
    status: OnboardingStatus,
    *,
    now: datetime | None = None,
) -> None:
    """Write a status onto a tracker and refresh its resume expiry.

    Both changes belong to one unit of work: a step write that advances
    progress without refreshing the expiry can leave a finished step to be
    reaped later.
    """
    now = now or datetime.now(UTC)
    was_completed = tracker.completed
    tracker.current_step = status.current_step.value
    tracker.completed_step = (
        status.completed_step.value if status.completed_step else None
    )
    tracker.completed = status.completed
    if status.completed and not was_completed:
        tracker.completed_at = now
    tracker.resume_expires_at = next_resume_expiry(now)


def onboarding_expired(tracker: TrackerRecord, now: datetime | None = None) -> bool:
    """Whether an incomplete tracker is past its resume window."""
    if tracker.completed:
        return False
    return (now or datetime.now(UTC)) > tracker.resume_expires_at


def build_tracker_context(tracker, current_step: StepId | None = None) -> dict:
    """Public tracker context for navigation in the frontend.

    Args:
        tracker: OnboardingTracker.
        current_step: Step to build navigation around. Defaults to the
            tracker's current step.
    """
    status = status_of(tracker)
    step = current_step or status.current_step
    config = step_config_of(tracker)
    prev_step = previous_step(step, config)
    following = next_step(step, config)
    return {
        "id": str(tracker.id),
        "company_id": tracker.company_id,
        "application_type": tracker.application_type,
        "status": status.to_dict(),
        "invitation_approved": tracker.invitation_approved,
        "needs_flatbed_training": tracker.needs_flatbed_training,
        "prev_step": prev_step.value if prev_step else None,
        "next_step": following.value if following else None,
    }

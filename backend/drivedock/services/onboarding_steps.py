"""Onboarding step catalog.

A fixed, company-independent ordering of workflow steps:

    prequalifications → application pages 1-5 → policies/consents →
    drive test → drug test → carrier's edge training →
    flatbed training (optional) → completed

Per-tracker differences (today only the optional flatbed step) live in a
StepConfig computed when the tracker is created, so lookups here never
consult the company registry.
"""

from dataclasses import dataclass
from enum import Enum

from drivedock.models.onboarding_forms import FormType

# =============================================================================
# Enums
# =============================================================================


class StepId(Enum):
    """Workflow step identifiers, in catalog order.

    Values are the URL path segments the frontend routes on and the strings
    stored in the tracker's current_step / completed_step columns.
    """

    PRE_QUALIFICATIONS = "prequalifications"
    APPLICATION_PAGE_1 = "application-form/page-1"
    APPLICATION_PAGE_2 = "application-form/page-2"
    APPLICATION_PAGE_3 = "application-form/page-3"
    APPLICATION_PAGE_4 = "application-form/page-4"
    APPLICATION_PAGE_5 = "application-form/page-5"
    POLICIES_CONSENTS = "policies-consents"
    DRIVE_TEST = "drive-test"
    DRUG_TEST = "drug-test"
    CARRIERS_EDGE_TRAINING = "carriers-edge-training"
    FLATBED_TRAINING = "flatbed-training"
    COMPLETED = "completed"

    @classmethod
    def from_string(cls, value: str) -> "StepId":
        """Convert a stored or routed string to enum.

        Args:
            value: Step string from the database or a URL.

        Returns:
            The corresponding StepId.

        Raises:
            ValueError: If the string doesn't match any step.
        """
        for step in cls:
            if step.value == value:
                return step
        valid = [s.value for s in cls]
        raise ValueError(f"Invalid onboarding step: '{value}'. Valid: {valid}")

    @property
    def index(self) -> int:
        """Position in the catalog ordering."""
        return _STEP_INDEX[self]


STEP_FLOW: tuple[StepId, ...] = tuple(StepId)
_STEP_INDEX: dict[StepId, int] = {step: i for i, step in enumerate(STEP_FLOW)}

# Steps after this one are locked until an admin approves the invitation
INVITATION_GATE_STEP = StepId.APPLICATION_PAGE_1

# Steps the applicant submits; the rest are recorded by an admin appraisal
APPLICANT_STEPS: frozenset[StepId] = frozenset(
    {
        StepId.PRE_QUALIFICATIONS,
        StepId.APPLICATION_PAGE_1,
        StepId.APPLICATION_PAGE_2,
        StepId.APPLICATION_PAGE_3,
        StepId.APPLICATION_PAGE_4,
        StepId.APPLICATION_PAGE_5,
        StepId.POLICIES_CONSENTS,
    }
)
ADMIN_STEPS: frozenset[StepId] = frozenset(
    {
        StepId.DRIVE_TEST,
        StepId.DRUG_TEST,
        StepId.CARRIERS_EDGE_TRAINING,
        StepId.FLATBED_TRAINING,
    }
)

STEP_FORMS: dict[StepId, FormType] = {
    StepId.PRE_QUALIFICATIONS: FormType.PRE_QUALIFICATION,
    StepId.APPLICATION_PAGE_1: FormType.DRIVER_APPLICATION,
    StepId.APPLICATION_PAGE_2: FormType.DRIVER_APPLICATION,
    StepId.APPLICATION_PAGE_3: FormType.DRIVER_APPLICATION,
    StepId.APPLICATION_PAGE_4: FormType.DRIVER_APPLICATION,
    StepId.APPLICATION_PAGE_5: FormType.DRIVER_APPLICATION,
    StepId.POLICIES_CONSENTS: FormType.POLICIES_CONSENTS,
    StepId.DRIVE_TEST: FormType.DRIVE_TEST,
    StepId.DRUG_TEST: FormType.DRUG_TEST,
    StepId.CARRIERS_EDGE_TRAINING: FormType.CARRIERS_EDGE_TRAINING,
    StepId.FLATBED_TRAINING: FormType.FLATBED_TRAINING,
}

# Payload key for the application pages inside the shared driver application form
APPLICATION_PAGE_KEYS: dict[StepId, str] = {
    StepId.APPLICATION_PAGE_1: "page_1",
    StepId.APPLICATION_PAGE_2: "page_2",
    StepId.APPLICATION_PAGE_3: "page_3",
    StepId.APPLICATION_PAGE_4: "page_4",
    StepId.APPLICATION_PAGE_5: "page_5",
}


# =============================================================================
# Per-tracker configuration
# =============================================================================


@dataclass(frozen=True)
class StepConfig:
    """Derived step rules for one tracker.

    Attributes:
        needs_flatbed_training: Whether FLATBED_TRAINING is part of the flow.
    """

    needs_flatbed_training: bool = True

    @property
    def skipped_steps(self) -> frozenset[StepId]:
        """Catalog steps that are not part of this tracker's flow."""
        if self.needs_flatbed_training:
            return frozenset()
        return frozenset({StepId.FLATBED_TRAINING})

    def includes(self, step: StepId) -> bool:
        """Whether the step is part of this tracker's flow."""
        return step not in self.skipped_steps

    @property
    def flow(self) -> tuple[StepId, ...]:
        """Catalog ordering with skipped steps removed."""
        return tuple(s for s in STEP_FLOW if self.includes(s))


# =============================================================================
# Ordering helpers
# =============================================================================


def next_step(step: StepId | None, config: StepConfig) -> StepId | None:
    """Step that follows ``step`` in this tracker's flow.

    Skipped steps are passed over, so the successor of the step before
    FLATBED_TRAINING is COMPLETED when flatbed training is not needed.

    Args:
        step: Current step, or None for "nothing completed yet".
        config: The tracker's step configuration.

    Returns:
        The following step, or None when ``step`` is COMPLETED.
    """
    start = 0 if step is None else step.index + 1
    for candidate in STEP_FLOW[start:]:
        if config.includes(candidate):
            return candidate
    return None


def previous_step(step: StepId, config: StepConfig) -> StepId | None:
    """Step that precedes ``step`` in this tracker's flow, or None at the start."""
    for candidate in reversed(STEP_FLOW[: step.index]):
        if config.includes(candidate):
            return candidate
    return None


def higher_step(a: StepId | None, b: StepId | None) -> StepId | None:
    """Later of two steps in catalog ordering. None sorts before every step."""
    if a is None:
        return b
    if b is None:
        return a
    return a if a.index >= b.index else b

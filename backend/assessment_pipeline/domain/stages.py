"""Case stage enum, pipeline order, and transition validation.

Pure domain logic with no external dependencies.
"""
from dataclasses import dataclass
from enum import Enum


class CaseStage(str, Enum):
    """Stages of an assessment case. Declaration order is pipeline order; CANCELLED is the sink."""

    REQUEST_SUBMITTED = "request_submitted"
    REQUEST_ACCEPTED = "request_accepted"
    INSPECTION_SCHEDULED = "inspection_scheduled"
    APPOINTMENT_SCHEDULED = "appointment_scheduled"
    ASSESSMENT_IN_PROGRESS = "assessment_in_progress"
    ASSESSMENT_COMPLETED = "assessment_completed"
    ESTIMATE_FINALIZED = "estimate_finalized"
    FRC_IN_PROGRESS = "frc_in_progress"
    FRC_COMPLETED = "frc_completed"
    ARCHIVED = "archived"
    CANCELLED = "cancelled"


PIPELINE: tuple[CaseStage, ...] = tuple(s for s in CaseStage if s is not CaseStage.CANCELLED)

INITIAL_STAGE = CaseStage.REQUEST_SUBMITTED

TERMINAL_STAGES = frozenset({CaseStage.ARCHIVED, CaseStage.CANCELLED})

# First stage from which an appointment link is mandatory
APPOINTMENT_THRESHOLD = CaseStage.APPOINTMENT_SCHEDULED

# Stage the case re-opens at when its appointment is cancelled with fallback
FALLBACK_STAGE = CaseStage.INSPECTION_SCHEDULED

# Case column stamped when the case enters the stage
STAGE_ENTRY_TIMESTAMPS: dict[CaseStage, str] = {
    CaseStage.ASSESSMENT_IN_PROGRESS: "started_at",
    CaseStage.ESTIMATE_FINALIZED: "estimate_finalized_at",
    CaseStage.FRC_COMPLETED: "completed_at",
    CaseStage.CANCELLED: "cancelled_at",
}

_INDEX = {stage: i for i, stage in enumerate(PIPELINE)}


def stage_index(stage: CaseStage) -> int:
    """Position of a stage in the pipeline. CANCELLED has no position."""
    if stage is CaseStage.CANCELLED:
        raise ValueError("cancelled is not part of the ordered pipeline")
    return _INDEX[stage]


def next_stage(stage: CaseStage) -> CaseStage | None:
    """Immediate successor in the pipeline, or None for terminal stages."""
    if stage in TERMINAL_STAGES:
        return None
    return PIPELINE[_INDEX[stage] + 1]


def is_terminal(stage: CaseStage) -> bool:
    return stage in TERMINAL_STAGES


def requires_appointment(stage: CaseStage) -> bool:
    """True for every pipeline stage at or after APPOINTMENT_THRESHOLD."""
    if stage is CaseStage.CANCELLED:
        return False
    return _INDEX[stage] >= _INDEX[APPOINTMENT_THRESHOLD]


def is_at_or_past(current: CaseStage, target: CaseStage) -> bool:
    """Whether a case at ``current`` already satisfies a request to reach ``target``.

    CANCELLED only satisfies CANCELLED; no pipeline stage satisfies CANCELLED.
    """
    if current is CaseStage.CANCELLED or target is CaseStage.CANCELLED:
        return current is target
    return _INDEX[current] >= _INDEX[target]


class TransitionViolation(str, Enum):
    """Why a transition was rejected."""

    INVALID = "invalid_transition"
    MISSING_APPOINTMENT = "missing_appointment_link"


@dataclass
class TransitionResult:
    """Result of a transition attempt."""

    allowed: bool
    reason: str = ""
    new_stage: CaseStage | None = None
    violation: TransitionViolation | None = None


def validate_transition(
    current_stage: CaseStage,
    target_stage: CaseStage,
    has_appointment: bool,
) -> TransitionResult:
    """Validate whether a stage transition is allowed.

    Pure function -- no side effects, no DB access.

    Args:
        current_stage: Current stage of the case
        target_stage: Target stage to transition to
        has_appointment: Whether the case will carry an appointment link after the write

    Returns:
        TransitionResult with allowed flag, reason, and new_stage if allowed

    Rules:
        - Terminal stages (archived, cancelled) have no outgoing transitions
        - CANCELLED is reachable from any non-terminal stage
        - Otherwise only the immediate successor is allowed; skipping is rejected
        - Entering APPOINTMENT_THRESHOLD or later requires an appointment link
    """
    if is_terminal(current_stage):
        return TransitionResult(
            False, f"'{current_stage.value}' is terminal", violation=TransitionViolation.INVALID
        )

    if target_stage is CaseStage.CANCELLED:
        return TransitionResult(True, new_stage=target_stage)

    expected = next_stage(current_stage)
    if target_stage is not expected:
        return TransitionResult(
            False,
            f"next stage is '{expected.value}'",
            violation=TransitionViolation.INVALID,
        )

    if requires_appointment(target_stage) and not has_appointment:
        return TransitionResult(
            False,
            "appointment link required",
            violation=TransitionViolation.MISSING_APPOINTMENT,
        )

    return TransitionResult(True, new_stage=target_stage)


def check_case_invariants(stage: CaseStage, has_appointment: bool) -> str | None:
    """Standing check of the appointment-link invariant.

    Returns:
        A description of the violation, or None if the combination is valid.
    """
    if stage is CaseStage.CANCELLED:
        return None
    if requires_appointment(stage) and not has_appointment:
        return "appointment link required at this stage"
    if not requires_appointment(stage) and has_appointment:
        return "appointment link not allowed before appointment_scheduled"
    return None


def fallback_allowed(stage: CaseStage) -> bool:
    """Whether cancelling the appointment re-opens the case instead of cancelling it."""
    return not is_terminal(stage) and requires_appointment(stage)

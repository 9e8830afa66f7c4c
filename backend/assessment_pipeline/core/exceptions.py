"""Exception hierarchy for the assessment stage pipeline.

Every error carries the structured fields a workflow action needs to render
a specific message (entity id, attempted transition). ``DuplicateRequest``
and ``StaleTransition`` are recoverable and handled inside the lifecycle
service; the rest surface to the caller.
"""

from typing import Any


class PipelineError(Exception):
    """Base exception for the assessment pipeline."""

    def to_dict(self) -> dict[str, Any]:
        """Structured payload for logging and user-facing error rendering."""
        return {"error": type(self).__name__, "message": str(self)}


class CaseNotFound(PipelineError):
    """Raised when a case cannot be found by id or request id."""

    def __init__(self, *, case_id: Any = None, request_id: Any = None):
        self.case_id = case_id
        self.request_id = request_id
        if case_id is not None:
            message = f"Case {case_id} not found"
        else:
            message = f"No case found for request {request_id}"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "case_id": str(self.case_id) if self.case_id else None,
            "request_id": str(self.request_id) if self.request_id else None,
        }


class DuplicateRequest(PipelineError):
    """Raised when a case already exists for a request. Recoverable: fetch by request id."""

    def __init__(self, request_id: Any):
        self.request_id = request_id
        super().__init__(f"A case already exists for request {request_id}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "request_id": str(self.request_id)}


class InvalidTransition(PipelineError):
    """Raised when the target stage is not reachable from the current stage."""

    def __init__(self, case_id: Any, current: str, target: str, reason: str = ""):
        self.case_id = case_id
        self.current = current
        self.target = target
        self.reason = reason
        message = f"Case {case_id} cannot move from '{current}' to '{target}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "case_id": str(self.case_id),
            "current_stage": self.current,
            "target_stage": self.target,
            "reason": self.reason,
        }


class CaseInvariantViolation(PipelineError):
    """Raised when a write would leave a case violating a standing invariant."""

    def __init__(self, case_id: Any, stage: str, detail: str):
        self.case_id = case_id
        self.stage = stage
        self.detail = detail
        super().__init__(f"Case {case_id} at '{stage}': {detail}")

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "case_id": str(self.case_id),
            "stage": self.stage,
            "detail": self.detail,
        }


class MissingAppointmentLink(CaseInvariantViolation):
    """Raised when a stage requires an appointment link that is not set."""

    def __init__(self, case_id: Any, stage: str):
        super().__init__(case_id, stage, "an appointment must be linked before entering this stage")


class SequenceExhaustionOrCollision(PipelineError):
    """Raised when display number generation fails after the bounded retry budget."""

    def __init__(self, prefix: str, year: int, attempts: int):
        self.prefix = prefix
        self.year = year
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a unique {prefix}-{year} number after {attempts} attempts"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "prefix": self.prefix,
            "year": self.year,
            "attempts": self.attempts,
        }


class StaleTransition(PipelineError):
    """Raised when a compare-and-set stage write affected zero rows. Recoverable: re-read."""

    def __init__(self, case_id: Any, expected: str, target: str):
        self.case_id = case_id
        self.expected = expected
        self.target = target
        super().__init__(
            f"Case {case_id} left '{expected}' before the move to '{target}' was written"
        )


class AuditEntryImmutable(PipelineError):
    """Raised when code attempts to modify or delete a persisted audit entry."""

    pass


class DisplayNumberCollision(PipelineError):
    """Raised when an insert lost a race for its display number. Recoverable: allocate again."""

    def __init__(self, display_number: str):
        self.display_number = display_number
        super().__init__(f"Display number {display_number} is already taken")

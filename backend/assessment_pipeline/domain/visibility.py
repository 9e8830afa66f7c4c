"""Actor scopes, list-page stage buckets, and restricted-actor join paths.

Which companion record decides a restricted actor's visibility depends on the
case's stage: before an appointment exists the inspection assignment is
relevant, afterwards the appointment assignment. The mapping is a plain table
so it can be reviewed and tested on its own.
"""
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from assessment_pipeline.domain.stages import CaseStage


class ActorRole(str, Enum):
    """Access-control roles known to the pipeline."""

    ADMIN = "admin"
    ENGINEER = "engineer"


@dataclass(frozen=True)
class ActorScope:
    """Access-control context of a caller: role plus the engineer they act as."""

    role: ActorRole
    engineer_id: uuid.UUID | None = None

    @classmethod
    def admin(cls) -> "ActorScope":
        return cls(role=ActorRole.ADMIN)

    @classmethod
    def engineer(cls, engineer_id: uuid.UUID) -> "ActorScope":
        return cls(role=ActorRole.ENGINEER, engineer_id=engineer_id)

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN


class JoinPath(str, Enum):
    """Companion record a restricted actor must be assigned on to see a case."""

    NONE = "none"
    INSPECTION = "inspection"
    APPOINTMENT = "appointment"
    EITHER = "either"


RESTRICTED_JOIN_PATHS: dict[CaseStage, JoinPath] = {
    CaseStage.REQUEST_SUBMITTED: JoinPath.NONE,
    CaseStage.REQUEST_ACCEPTED: JoinPath.NONE,
    CaseStage.INSPECTION_SCHEDULED: JoinPath.INSPECTION,
    CaseStage.APPOINTMENT_SCHEDULED: JoinPath.APPOINTMENT,
    CaseStage.ASSESSMENT_IN_PROGRESS: JoinPath.APPOINTMENT,
    CaseStage.ASSESSMENT_COMPLETED: JoinPath.APPOINTMENT,
    CaseStage.ESTIMATE_FINALIZED: JoinPath.APPOINTMENT,
    CaseStage.FRC_IN_PROGRESS: JoinPath.APPOINTMENT,
    CaseStage.FRC_COMPLETED: JoinPath.APPOINTMENT,
    CaseStage.ARCHIVED: JoinPath.APPOINTMENT,
    # A cancelled case may have been cancelled before or after scheduling
    CaseStage.CANCELLED: JoinPath.EITHER,
}

# List pages and their sidebar badges
STAGE_BUCKETS: dict[str, tuple[CaseStage, ...]] = {
    "requests": (CaseStage.REQUEST_SUBMITTED, CaseStage.REQUEST_ACCEPTED),
    "inspections": (CaseStage.INSPECTION_SCHEDULED,),
    "appointments": (CaseStage.APPOINTMENT_SCHEDULED,),
    "open_assessments": (CaseStage.ASSESSMENT_IN_PROGRESS, CaseStage.ASSESSMENT_COMPLETED),
    "finalized_estimates": (CaseStage.ESTIMATE_FINALIZED,),
    "frc": (CaseStage.FRC_IN_PROGRESS, CaseStage.FRC_COMPLETED),
    "archive": (CaseStage.ARCHIVED,),
    "cancelled": (CaseStage.CANCELLED,),
}


def stages_for_bucket(bucket: str) -> tuple[CaseStage, ...]:
    """Stage set of a named bucket. Raises KeyError for unknown buckets."""
    try:
        return STAGE_BUCKETS[bucket]
    except KeyError:
        raise KeyError(f"Unknown stage bucket '{bucket}'") from None


def group_by_join_path(stages: Iterable[CaseStage]) -> dict[JoinPath, list[CaseStage]]:
    """Group stages by the join path that scopes them, preserving input order."""
    grouped: dict[JoinPath, list[CaseStage]] = {}
    for stage in dict.fromkeys(stages):
        grouped.setdefault(RESTRICTED_JOIN_PATHS[stage], []).append(stage)
    return grouped

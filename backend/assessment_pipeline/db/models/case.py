"""Case model: the canonical assessment record and its pipeline stage."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Enum, ForeignKey, String, UniqueConstraint, Uuid

from assessment_pipeline.db.base import Base
from assessment_pipeline.domain.stages import CaseStage, requires_appointment


def _stage_list(stages) -> str:
    return ", ".join(f"'{s.value}'" for s in stages)


_PRE_APPOINTMENT = [s for s in CaseStage if s is not CaseStage.CANCELLED and not requires_appointment(s)]
_POST_APPOINTMENT = [s for s in CaseStage if requires_appointment(s)]

APPOINTMENT_LINK_CHECK = (
    "stage = 'cancelled'"
    f" OR (stage IN ({_stage_list(_PRE_APPOINTMENT)}) AND appointment_id IS NULL)"
    f" OR (stage IN ({_stage_list(_POST_APPOINTMENT)}) AND appointment_id IS NOT NULL)"
)

case_stage_enum = Enum(
    CaseStage,
    name="case_stage",
    values_callable=lambda enum: [member.value for member in enum],
    validate_strings=True,
    create_constraint=True,
)


class Case(Base):
    __tablename__ = "cases"
    __table_args__ = (
        UniqueConstraint("request_id", name="uq_cases_request_id"),
        UniqueConstraint("display_number", name="uq_cases_display_number"),
        CheckConstraint(APPOINTMENT_LINK_CHECK, name="ck_cases_appointment_link"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    display_number = Column(String(32), nullable=False)  # ASM-2025-014, never reassigned
    request_id = Column(Uuid, nullable=False)  # one case per request

    stage = Column(case_stage_enum, nullable=False, default=CaseStage.REQUEST_SUBMITTED, index=True)
    stage_entered_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    appointment_id = Column(Uuid, ForeignKey("appointments.id"), nullable=True, index=True)
    inspection_id = Column(Uuid, ForeignKey("inspections.id"), nullable=True, index=True)

    # Stage milestones
    started_at = Column(DateTime(timezone=True), nullable=True)
    estimate_finalized_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

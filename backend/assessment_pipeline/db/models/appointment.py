"""Appointment model: companion scheduling record owned by the scheduling workflow."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, Uuid

from assessment_pipeline.db.base import Base

APPOINTMENT_CANCELLED = "cancelled"


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    inspection_id = Column(Uuid, ForeignKey("inspections.id"), nullable=False, index=True)
    request_id = Column(Uuid, nullable=False, index=True)
    appointment_number = Column(String(32), nullable=False, unique=True)

    engineer_id = Column(Uuid, nullable=False, index=True)
    status = Column(String(50), nullable=False, default="scheduled")  # scheduled, completed, cancelled

    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

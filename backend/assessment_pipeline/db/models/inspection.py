"""Inspection model: companion scheduling record owned by the scheduling workflow."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Uuid

from assessment_pipeline.db.base import Base


class Inspection(Base):
    __tablename__ = "inspections"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id = Column(Uuid, nullable=False, index=True)
    inspection_number = Column(String(32), nullable=False, unique=True)

    assigned_engineer_id = Column(Uuid, nullable=True, index=True)
    status = Column(String(50), nullable=False, default="pending")  # pending, scheduled, completed, cancelled

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

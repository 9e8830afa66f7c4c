"""SequenceCounter model: atomic per-(prefix, year) display number counter."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from assessment_pipeline.db.base import Base


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    prefix = Column(String(16), primary_key=True)
    year = Column(Integer, primary_key=True, autoincrement=False)
    last_value = Column(Integer, nullable=False, default=0)

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

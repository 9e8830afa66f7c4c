"""AuditEntry model: append-only log of entity mutations."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, String, Uuid, event
from sqlalchemy.dialects.postgresql import JSONB

from assessment_pipeline.core.exceptions import AuditEntryImmutable
from assessment_pipeline.db.base import Base


class AuditEntry(Base):
    __tablename__ = "audit_entries"
    __table_args__ = (Index("ix_audit_entries_entity", "entity_type", "entity_id"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_type = Column(String(50), nullable=False)  # "case", "appointment"
    entity_id = Column(String(64), nullable=False)  # referenced, not a foreign key
    action = Column(String(50), nullable=False)  # created, stage_transition, cancelled, cancelled_with_fallback
    details = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    actor = Column(String(255), nullable=False)
    correlation_id = Column(Uuid, nullable=False, default=uuid.uuid4, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
    # NO updated_at -- entries are immutable (append-only)


@event.listens_for(AuditEntry, "before_update")
def _reject_update(mapper, connection, target):
    raise AuditEntryImmutable(f"Audit entry {target.id} is immutable")


@event.listens_for(AuditEntry, "before_delete")
def _reject_delete(mapper, connection, target):
    raise AuditEntryImmutable(f"Audit entry {target.id} cannot be deleted")

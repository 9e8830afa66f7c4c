"""AuditLogWriter: append-only sink for entity mutation records.

Writes go into the caller's session so an entry commits or rolls back
together with the mutation it describes. The writer holds no business
logic; callers decide what to record.
"""

import uuid
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assessment_pipeline.core.correlation import current_or_new_correlation_id
from assessment_pipeline.db.models.audit_entry import AuditEntry

logger = structlog.get_logger(__name__)

SYSTEM_ACTOR = "system"


class AuditLogWriter:
    """Records and lists audit entries.

    Uses dependency injection (takes session_factory) for reads; writes join
    the session of the mutation being audited.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    def record(
        self,
        session: AsyncSession,
        entity_type: str,
        entity_id: Any,
        action: str,
        details: dict[str, Any] | None = None,
        actor: str = SYSTEM_ACTOR,
        correlation_id: uuid.UUID | None = None,
    ) -> AuditEntry:
        """Stage an audit entry in ``session``. The caller commits."""
        entry = AuditEntry(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            details=details or {},
            actor=actor,
            correlation_id=correlation_id or current_or_new_correlation_id(),
        )
        session.add(entry)
        logger.debug(
            "audit_entry_staged",
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
        )
        return entry

    async def list_for_entity(
        self,
        entity_type: str,
        entity_id: Any,
        action: str | None = None,
    ) -> list[AuditEntry]:
        """Entries for one entity, oldest first."""
        async with self.session_factory() as session:
            query = select(AuditEntry).where(
                AuditEntry.entity_type == entity_type,
                AuditEntry.entity_id == str(entity_id),
            )
            if action is not None:
                query = query.where(AuditEntry.action == action)
            result = await session.execute(query.order_by(AuditEntry.created_at, AuditEntry.id))
            return list(result.scalars().all())

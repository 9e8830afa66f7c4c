"""Persistence access to cases and their companion scheduling records.

The repository works inside a session owned by the caller so that a stage
write, its link updates, and the audit entry commit together. It never
commits on its own.
"""

import uuid
from collections.abc import Sequence
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_pipeline.core.exceptions import DisplayNumberCollision, DuplicateRequest
from assessment_pipeline.db.models.appointment import Appointment
from assessment_pipeline.db.models.case import Case
from assessment_pipeline.domain.stages import CaseStage

logger = structlog.get_logger(__name__)

# PostgreSQL reports the constraint name; SQLite reports table.column
_REQUEST_ID_MARKERS = ("uq_cases_request_id", "cases.request_id")
_DISPLAY_NUMBER_MARKERS = ("uq_cases_display_number", "cases.display_number")


def _violated_constraint(error: IntegrityError) -> str | None:
    """Name the case uniqueness rule an IntegrityError violated, if any."""
    constraint_name = getattr(getattr(error.orig, "diag", None), "constraint_name", None)
    message = str(error.orig) if error.orig else str(error)
    haystack = f"{constraint_name or ''} {message}"
    if any(marker in haystack for marker in _REQUEST_ID_MARKERS):
        return "request_id"
    if any(marker in haystack for marker in _DISPLAY_NUMBER_MARKERS):
        return "display_number"
    return None


class CaseRepository:
    """Case reads and writes bound to one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, case_id: uuid.UUID) -> Case | None:
        return await self.session.get(Case, case_id, populate_existing=True)

    async def get_by_request_id(self, request_id: uuid.UUID) -> Case | None:
        result = await self.session.execute(
            select(Case).where(Case.request_id == request_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def insert(self, case: Case) -> Case:
        """Insert a new case and flush it.

        Raises:
            DuplicateRequest: a case already exists for ``case.request_id``
            DisplayNumberCollision: ``case.display_number`` is already taken

        Any other IntegrityError propagates unchanged. The session must be
        rolled back after either error.
        """
        self.session.add(case)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            violated = _violated_constraint(exc)
            logger.info("case_insert_conflict", request_id=str(case.request_id), constraint=violated)
            if violated == "request_id":
                raise DuplicateRequest(case.request_id) from exc
            if violated == "display_number":
                raise DisplayNumberCollision(case.display_number) from exc
            raise
        return case

    async def compare_and_set_stage(
        self,
        case_id: uuid.UUID,
        expected: CaseStage,
        values: dict[str, Any],
    ) -> bool:
        """Write ``values`` only if the case is still at ``expected``.

        Stage and link columns go out in one UPDATE statement.

        Returns:
            True if the row was updated, False if another writer moved the case first.
        """
        result = await self.session.execute(
            update(Case)
            .where(Case.id == case_id, Case.stage == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def max_display_number(self, like_pattern: str) -> str | None:
        """Highest display number matching a LIKE pattern (lexicographic, same width)."""
        result = await self.session.execute(
            select(Case.display_number)
            .where(Case.display_number.like(like_pattern))
            .order_by(func.length(Case.display_number).desc(), Case.display_number.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_appointment(self, appointment_id: uuid.UUID) -> Appointment | None:
        return await self.session.get(Appointment, appointment_id, populate_existing=True)

    async def list_request_ids(self, request_ids: Sequence[uuid.UUID] | None = None) -> list[uuid.UUID]:
        """Request ids that have a case, optionally restricted to ``request_ids``."""
        query = select(Case.request_id)
        if request_ids is not None:
            query = query.where(Case.request_id.in_(request_ids))
        result = await self.session.execute(query)
        return list(result.scalars().all())

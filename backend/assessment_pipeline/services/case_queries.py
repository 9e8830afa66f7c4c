"""CaseReadModel: stage-filtered, actor-scoped case queries for list pages and badges.

List and count queries both take their WHERE clause from
``build_visibility_predicate`` so a badge can never disagree with the page it
counts. Assignment checks are correlated EXISTS subqueries, never joins, so a
case appears at most once per result.
"""

import uuid
from collections.abc import Iterable

import structlog
from sqlalchemy import ColumnElement, and_, exists, false, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assessment_pipeline.db.models.appointment import Appointment
from assessment_pipeline.db.models.case import Case
from assessment_pipeline.db.models.inspection import Inspection
from assessment_pipeline.domain.stages import CaseStage
from assessment_pipeline.domain.visibility import (
    STAGE_BUCKETS,
    ActorRole,
    ActorScope,
    JoinPath,
    group_by_join_path,
    stages_for_bucket,
)

logger = structlog.get_logger(__name__)


def _inspection_assigned(engineer_id: uuid.UUID) -> ColumnElement[bool]:
    return exists().where(
        Inspection.id == Case.inspection_id,
        Inspection.assigned_engineer_id == engineer_id,
    )


def _appointment_assigned(engineer_id: uuid.UUID) -> ColumnElement[bool]:
    return exists().where(
        Appointment.id == Case.appointment_id,
        Appointment.engineer_id == engineer_id,
    )


def _assignment_clause(path: JoinPath, engineer_id: uuid.UUID) -> ColumnElement[bool]:
    if path is JoinPath.INSPECTION:
        return _inspection_assigned(engineer_id)
    if path is JoinPath.APPOINTMENT:
        return _appointment_assigned(engineer_id)
    if path is JoinPath.EITHER:
        return or_(_inspection_assigned(engineer_id), _appointment_assigned(engineer_id))
    return false()


def build_visibility_predicate(stages: Iterable[CaseStage], scope: ActorScope) -> ColumnElement[bool]:
    """Single source of truth for "which cases of these stages may this actor see".

    Admins see every case in ``stages``. Engineers see a case only when the
    companion record relevant to its stage is assigned to them. Any other
    scope sees nothing.
    """
    stages = list(dict.fromkeys(stages))
    if not stages:
        return false()
    if scope.is_admin:
        return Case.stage.in_(stages)
    if scope.role != ActorRole.ENGINEER or scope.engineer_id is None:
        return false()

    clauses = [
        and_(Case.stage.in_(group), _assignment_clause(path, scope.engineer_id))
        for path, group in group_by_join_path(stages).items()
        if path is not JoinPath.NONE
    ]
    if not clauses:
        return false()
    return or_(*clauses)


class CaseReadModel:
    """Read-only queries behind list pages and sidebar badges.

    Uses dependency injection (takes session_factory) for testability.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_by_stage(
        self,
        stages: Iterable[CaseStage],
        scope: ActorScope,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Case]:
        """Visible cases in ``stages``, newest first."""
        query = (
            select(Case)
            .where(build_visibility_predicate(stages, scope))
            .order_by(Case.created_at.desc(), Case.id)
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def count_by_stage(self, stages: Iterable[CaseStage], scope: ActorScope) -> int:
        query = select(func.count()).select_from(Case).where(build_visibility_predicate(stages, scope))
        async with self.session_factory() as session:
            return (await session.execute(query)).scalar_one()

    async def list_bucket(
        self,
        bucket: str,
        scope: ActorScope,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Case]:
        """Cases on a named list page. Raises KeyError for unknown buckets."""
        return await self.list_by_stage(stages_for_bucket(bucket), scope, limit=limit, offset=offset)

    async def count_bucket(self, bucket: str, scope: ActorScope) -> int:
        return await self.count_by_stage(stages_for_bucket(bucket), scope)

    async def badge_counts(self, scope: ActorScope) -> dict[str, int]:
        """Badge count of every bucket, read in one session."""
        counts: dict[str, int] = {}
        async with self.session_factory() as session:
            for bucket, stages in STAGE_BUCKETS.items():
                query = select(func.count()).select_from(Case).where(build_visibility_predicate(stages, scope))
                counts[bucket] = (await session.execute(query)).scalar_one()
        logger.debug("badge_counts_computed", role=scope.role.value, **counts)
        return counts

"""PipelineIntegrityService: read-only consistency report over cases.

Run after migrations or imports to confirm the stage pipeline's standing
rules hold for data that did not arrive through the lifecycle service.
"""

import uuid
from collections.abc import Sequence

import structlog
from sqlalchemy import func, select, union
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assessment_pipeline.db.models.appointment import Appointment
from assessment_pipeline.db.models.case import Case
from assessment_pipeline.db.models.inspection import Inspection
from assessment_pipeline.domain.stages import check_case_invariants
from assessment_pipeline.repositories.case_repository import CaseRepository
from assessment_pipeline.schemas.integrity import DuplicateGroup, IntegrityReport, InvariantViolationItem

logger = structlog.get_logger(__name__)


class PipelineIntegrityService:
    """Builds an IntegrityReport. Never writes."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def check(self, request_ids: Sequence[uuid.UUID] | None = None) -> IntegrityReport:
        """Check every case against the pipeline's standing rules.

        Args:
            request_ids: Requests expected to have a case. When omitted, every
                request referenced by an inspection or appointment is expected.

        Returns:
            IntegrityReport with ``ok`` False if any finding list is non-empty
        """
        async with self.session_factory() as session:
            cases = list((await session.execute(select(Case))).scalars().all())
            requests_without_case = await self._requests_without_case(session, request_ids)
            duplicate_request_ids = await self._duplicates(session, Case.request_id)
            duplicate_display_numbers = await self._duplicates(session, Case.display_number)

        violations = []
        distribution: dict[str, int] = {}
        for case in cases:
            distribution[case.stage.value] = distribution.get(case.stage.value, 0) + 1
            detail = check_case_invariants(case.stage, has_appointment=case.appointment_id is not None)
            if detail:
                violations.append(
                    InvariantViolationItem(
                        case_id=case.id,
                        display_number=case.display_number,
                        stage=case.stage.value,
                        detail=detail,
                    )
                )

        report = IntegrityReport(
            ok=not (requests_without_case or duplicate_request_ids or duplicate_display_numbers or violations),
            cases_checked=len(cases),
            requests_without_case=requests_without_case,
            duplicate_request_ids=duplicate_request_ids,
            duplicate_display_numbers=duplicate_display_numbers,
            invariant_violations=violations,
            stage_distribution=distribution,
        )

        log = logger.info if report.ok else logger.warning
        log(
            "pipeline_integrity_checked",
            ok=report.ok,
            cases_checked=report.cases_checked,
            requests_without_case=len(requests_without_case),
            duplicate_request_ids=len(duplicate_request_ids),
            duplicate_display_numbers=len(duplicate_display_numbers),
            invariant_violations=len(violations),
        )
        return report

    async def _requests_without_case(
        self,
        session: AsyncSession,
        request_ids: Sequence[uuid.UUID] | None,
    ) -> list[uuid.UUID]:
        if request_ids is None:
            referenced = union(select(Inspection.request_id), select(Appointment.request_id)).subquery()
            expected = list((await session.execute(select(referenced.c.request_id))).scalars().all())
        else:
            expected = list(dict.fromkeys(request_ids))
        if not expected:
            return []

        present = set(await CaseRepository(session).list_request_ids(expected))
        return [request_id for request_id in expected if request_id not in present]

    async def _duplicates(self, session: AsyncSession, column) -> list[DuplicateGroup]:
        shared = select(column).group_by(column).having(func.count() > 1)
        values = list((await session.execute(shared)).scalars().all())
        groups = []
        for value in values:
            case_ids = (await session.execute(select(Case.id).where(column == value))).scalars().all()
            groups.append(DuplicateGroup(value=str(value), case_ids=list(case_ids)))
        return groups

"""StageTransitionEngine: validates and applies case stage changes.

This is the integration point where the pure rules in ``domain.stages`` meet
the database. Every public method:
- Validates against the current persisted stage
- Writes stage, links and stage timestamps in one compare-and-set UPDATE
- Stages exactly the audit entries of the mutation in the same transaction
- Commits or rolls back as a unit
"""

import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assessment_pipeline.core.correlation import current_or_new_correlation_id
from assessment_pipeline.core.exceptions import (
    CaseInvariantViolation,
    CaseNotFound,
    InvalidTransition,
    MissingAppointmentLink,
    StaleTransition,
)
from assessment_pipeline.db.models.appointment import APPOINTMENT_CANCELLED
from assessment_pipeline.db.models.case import Case
from assessment_pipeline.domain.stages import (
    FALLBACK_STAGE,
    STAGE_ENTRY_TIMESTAMPS,
    CaseStage,
    TransitionViolation,
    check_case_invariants,
    fallback_allowed,
    is_terminal,
    validate_transition,
)
from assessment_pipeline.repositories.case_repository import CaseRepository
from assessment_pipeline.services.audit import SYSTEM_ACTOR, AuditLogWriter

logger = structlog.get_logger(__name__)

_UNSET: Any = object()


def _stage_values(target: CaseStage, now: datetime) -> dict[str, Any]:
    values: dict[str, Any] = {"stage": target, "stage_entered_at": now, "updated_at": now}
    timestamp_column = STAGE_ENTRY_TIMESTAMPS.get(target)
    if timestamp_column:
        values[timestamp_column] = now
    return values


def _require_expected(
    case_id: uuid.UUID, current: CaseStage, expected_stage: CaseStage | None, target: CaseStage
) -> None:
    """Raise StaleTransition if the caller decided on a stage the case has since left."""
    if expected_stage is not None and current is not expected_stage:
        raise StaleTransition(case_id, expected_stage.value, target.value)


class StageTransitionEngine:
    """Applies validated stage transitions and cancellations."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        audit: AuditLogWriter,
    ):
        self.session_factory = session_factory
        self.audit = audit

    async def transition(
        self,
        case_id: uuid.UUID,
        target: CaseStage,
        reason: str | None = None,
        actor: str = SYSTEM_ACTOR,
        appointment_id: uuid.UUID | None = _UNSET,
        inspection_id: uuid.UUID | None = _UNSET,
        expected_stage: CaseStage | None = None,
    ) -> Case:
        """Move a case to ``target``, optionally updating its links in the same write.

        Args:
            case_id: UUID of the case
            target: Stage to move to; must be the immediate successor or CANCELLED
            reason: Free-text reason recorded in the audit entry
            actor: Who performed the transition
            appointment_id: New appointment link (None clears it); omitted keeps the current one
            inspection_id: New inspection link; omitted keeps the current one
            expected_stage: Stage the caller observed; a case found elsewhere is stale

        Returns:
            The updated case

        Raises:
            CaseNotFound: no case with this id
            InvalidTransition: target is not reachable from the current stage
            MissingAppointmentLink: target requires an appointment link that is not set
            CaseInvariantViolation: the link update would break the appointment invariant
            StaleTransition: another writer changed the stage after it was read
        """
        if target is CaseStage.CANCELLED:
            return await self.cancel_to_terminal(
                case_id, reason=reason, actor=actor, expected_stage=expected_stage
            )

        correlation_id = current_or_new_correlation_id()
        async with self.session_factory() as session:
            async with session.begin():
                repo = CaseRepository(session)
                case = await repo.get(case_id)
                if case is None:
                    raise CaseNotFound(case_id=case_id)

                current = case.stage
                _require_expected(case_id, current, expected_stage, target)
                links: dict[str, Any] = {}
                if appointment_id is not _UNSET:
                    links["appointment_id"] = appointment_id
                if inspection_id is not _UNSET:
                    links["inspection_id"] = inspection_id
                linked_appointment = links.get("appointment_id", case.appointment_id)

                result = validate_transition(current, target, has_appointment=linked_appointment is not None)
                if not result.allowed:
                    logger.warning(
                        "stage_transition_rejected",
                        case_id=str(case_id),
                        from_stage=current.value,
                        to_stage=target.value,
                        reason=result.reason,
                    )
                    if result.violation is TransitionViolation.MISSING_APPOINTMENT:
                        raise MissingAppointmentLink(case_id, target.value)
                    raise InvalidTransition(case_id, current.value, target.value, result.reason)

                violation = check_case_invariants(target, has_appointment=linked_appointment is not None)
                if violation:
                    logger.warning(
                        "case_invariant_rejected",
                        case_id=str(case_id),
                        stage=target.value,
                        detail=violation,
                    )
                    raise CaseInvariantViolation(case_id, target.value, violation)

                values = _stage_values(target, datetime.now(timezone.utc)) | links
                if not await repo.compare_and_set_stage(case_id, current, values):
                    raise StaleTransition(case_id, current.value, target.value)

                details: dict[str, Any] = {
                    "from_stage": current.value,
                    "to_stage": target.value,
                    "reason": reason,
                }
                for key, value in links.items():
                    details[key] = str(value) if value is not None else None
                self.audit.record(
                    session,
                    entity_type="case",
                    entity_id=case_id,
                    action="stage_transition",
                    details=details,
                    actor=actor,
                    correlation_id=correlation_id,
                )
                case = await repo.get(case_id)

        logger.info(
            "stage_transitioned",
            case_id=str(case_id),
            display_number=case.display_number,
            from_stage=current.value,
            to_stage=target.value,
        )
        return case

    async def cancel_to_terminal(
        self,
        case_id: uuid.UUID,
        reason: str | None = None,
        actor: str = SYSTEM_ACTOR,
        expected_stage: CaseStage | None = None,
    ) -> Case:
        """Cancel a case for good.

        A linked appointment that is still scheduled is cancelled alongside it
        and gets its own audit entry.

        Raises:
            CaseNotFound: no case with this id
            InvalidTransition: the case is already archived or cancelled
            StaleTransition: another writer changed the stage after it was read
        """
        correlation_id = current_or_new_correlation_id()
        async with self.session_factory() as session:
            async with session.begin():
                repo = CaseRepository(session)
                case = await repo.get(case_id)
                if case is None:
                    raise CaseNotFound(case_id=case_id)

                current = case.stage
                _require_expected(case_id, current, expected_stage, CaseStage.CANCELLED)
                if is_terminal(current):
                    logger.warning("case_cancel_rejected", case_id=str(case_id), stage=current.value)
                    raise InvalidTransition(
                        case_id, current.value, CaseStage.CANCELLED.value, f"'{current.value}' is terminal"
                    )

                now = datetime.now(timezone.utc)
                if not await repo.compare_and_set_stage(case_id, current, _stage_values(CaseStage.CANCELLED, now)):
                    raise StaleTransition(case_id, current.value, CaseStage.CANCELLED.value)

                if case.appointment_id is not None:
                    await self._cancel_appointment(
                        session, repo, case.appointment_id, case_id, reason, actor, correlation_id, now
                    )

                self.audit.record(
                    session,
                    entity_type="case",
                    entity_id=case_id,
                    action="cancelled",
                    details={
                        "from_stage": current.value,
                        "to_stage": CaseStage.CANCELLED.value,
                        "reason": reason,
                    },
                    actor=actor,
                    correlation_id=correlation_id,
                )
                case = await repo.get(case_id)

        logger.info("case_cancelled", case_id=str(case_id), from_stage=current.value)
        return case

    async def cancel_with_fallback(
        self,
        case_id: uuid.UUID,
        reason: str | None = None,
        actor: str = SYSTEM_ACTOR,
        expected_stage: CaseStage | None = None,
    ) -> Case:
        """Cancel the case's appointment and re-open the case at inspection_scheduled.

        The case keeps its place on active worklists; only the appointment is
        cancelled. Writes exactly two audit entries: ``cancelled`` on the
        appointment and ``cancelled_with_fallback`` on the case.

        Raises:
            CaseNotFound: no case with this id
            InvalidTransition: the case is before appointment_scheduled or terminal
            StaleTransition: another writer changed the stage after it was read
        """
        correlation_id = current_or_new_correlation_id()
        async with self.session_factory() as session:
            async with session.begin():
                repo = CaseRepository(session)
                case = await repo.get(case_id)
                if case is None:
                    raise CaseNotFound(case_id=case_id)

                current = case.stage
                _require_expected(case_id, current, expected_stage, FALLBACK_STAGE)
                if not fallback_allowed(current):
                    logger.warning("appointment_cancel_rejected", case_id=str(case_id), stage=current.value)
                    raise InvalidTransition(
                        case_id,
                        current.value,
                        FALLBACK_STAGE.value,
                        "no appointment to cancel at this stage",
                    )

                appointment_id = case.appointment_id
                now = datetime.now(timezone.utc)
                values = _stage_values(FALLBACK_STAGE, now) | {"appointment_id": None}
                if not await repo.compare_and_set_stage(case_id, current, values):
                    raise StaleTransition(case_id, current.value, FALLBACK_STAGE.value)

                await self._cancel_appointment(
                    session, repo, appointment_id, case_id, reason, actor, correlation_id, now, force_audit=True
                )
                self.audit.record(
                    session,
                    entity_type="case",
                    entity_id=case_id,
                    action="cancelled_with_fallback",
                    details={
                        "from_stage": current.value,
                        "to_stage": FALLBACK_STAGE.value,
                        "reason": reason,
                        "appointment_id": str(appointment_id),
                    },
                    actor=actor,
                    correlation_id=correlation_id,
                )
                case = await repo.get(case_id)

        logger.info(
            "case_reopened_after_appointment_cancel",
            case_id=str(case_id),
            from_stage=current.value,
            appointment_id=str(appointment_id),
        )
        return case

    async def _cancel_appointment(
        self,
        session: AsyncSession,
        repo: CaseRepository,
        appointment_id: uuid.UUID,
        case_id: uuid.UUID,
        reason: str | None,
        actor: str,
        correlation_id: uuid.UUID,
        now: datetime,
        force_audit: bool = False,
    ) -> None:
        """Mark the companion appointment cancelled and audit it.

        Already-cancelled appointments are left alone unless ``force_audit``,
        which still records the cancellation against the case's fallback.
        """
        appointment = await repo.get_appointment(appointment_id)
        previous_status = appointment.status if appointment else None
        if appointment is not None and appointment.status != APPOINTMENT_CANCELLED:
            appointment.status = APPOINTMENT_CANCELLED
            appointment.cancellation_reason = reason
            appointment.cancelled_at = now
        elif not force_audit:
            return

        self.audit.record(
            session,
            entity_type="appointment",
            entity_id=appointment_id,
            action="cancelled",
            details={
                "case_id": str(case_id),
                "previous_status": previous_status,
                "reason": reason,
            },
            actor=actor,
            correlation_id=correlation_id,
        )

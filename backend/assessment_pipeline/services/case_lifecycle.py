"""CaseLifecycleService: creation at request intake and idempotent stage advancement.

The primary entry point for workflow actions. Recoverable errors
(DuplicateRequest, StaleTransition, display number collisions) are handled
here and never reach the caller. Each step opens its own short-lived
session; none is held across a retry delay.
"""

import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from assessment_pipeline.core.config import Settings, get_settings
from assessment_pipeline.core.exceptions import (
    CaseNotFound,
    DisplayNumberCollision,
    DuplicateRequest,
    InvalidTransition,
    SequenceExhaustionOrCollision,
    StaleTransition,
)
from assessment_pipeline.core.logging import case_log_context
from assessment_pipeline.db.models.audit_entry import AuditEntry
from assessment_pipeline.db.models.case import Case
from assessment_pipeline.domain.stages import INITIAL_STAGE, CaseStage, is_at_or_past
from assessment_pipeline.repositories.case_repository import CaseRepository
from assessment_pipeline.schemas.cases import CaseDocumentView
from assessment_pipeline.services.audit import SYSTEM_ACTOR, AuditLogWriter
from assessment_pipeline.services.identifiers import IdentifierGenerator
from assessment_pipeline.services.transitions import StageTransitionEngine

logger = structlog.get_logger(__name__)


def _log_retry(event: str, **context):
    def before_sleep(retry_state) -> None:
        logger.warning(
            event,
            attempt=retry_state.attempt_number,
            sleep_seconds=retry_state.next_action.sleep,
            **context,
        )

    return before_sleep


class CaseLifecycleService:
    """Orchestrates case creation and stage-advancing workflow actions.

    Uses dependency injection (takes session_factory and collaborators) for testability.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        identifiers: IdentifierGenerator,
        transitions: StageTransitionEngine,
        audit: AuditLogWriter,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.identifiers = identifiers
        self.transitions = transitions
        self.audit = audit
        self.settings = settings or get_settings()

    # ── Creation ────────────────────────────────────────────────────

    async def create_for_request(self, request_id: uuid.UUID, actor: str = SYSTEM_ACTOR) -> Case:
        """Create the case for a new request at request_submitted.

        Allocates a display number, inserts the case and writes the ``created``
        audit entry. A display number that loses a race is re-allocated with
        exponential backoff.

        Raises:
            DuplicateRequest: a case already exists for ``request_id``
            SequenceExhaustionOrCollision: no unique display number within the retry budget
        """
        if await self.get_by_request(request_id) is not None:
            raise DuplicateRequest(request_id)

        settings = self.settings
        prefix = settings.display_number_prefix
        year = datetime.now(timezone.utc).year

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(DisplayNumberCollision),
                stop=stop_after_attempt(settings.identifier_max_attempts),
                wait=wait_exponential(
                    multiplier=settings.identifier_backoff_seconds,
                    max=settings.identifier_backoff_max_seconds,
                ),
                before_sleep=_log_retry("display_number_collision_retrying", request_id=str(request_id)),
                reraise=True,
            ):
                with attempt:
                    case = await self._insert_case(request_id, prefix, year, actor)
        except DisplayNumberCollision as exc:
            logger.error(
                "display_number_exhausted",
                request_id=str(request_id),
                prefix=prefix,
                year=year,
                attempts=settings.identifier_max_attempts,
            )
            raise SequenceExhaustionOrCollision(prefix, year, settings.identifier_max_attempts) from exc

        logger.info(
            "case_created",
            case_id=str(case.id),
            request_id=str(request_id),
            display_number=case.display_number,
        )
        return case

    async def _insert_case(self, request_id: uuid.UUID, prefix: str, year: int, actor: str) -> Case:
        display_number = await self.identifiers.next(prefix, year)
        async with self.session_factory() as session:
            async with session.begin():
                case = Case(
                    request_id=request_id,
                    display_number=display_number,
                    stage=INITIAL_STAGE,
                    appointment_id=None,
                )
                await CaseRepository(session).insert(case)
                self.audit.record(
                    session,
                    entity_type="case",
                    entity_id=case.id,
                    action="created",
                    details={
                        "display_number": display_number,
                        "request_id": str(request_id),
                        "stage": INITIAL_STAGE.value,
                    },
                    actor=actor,
                )
        return case

    async def find_or_create_for_request(self, request_id: uuid.UUID, actor: str = SYSTEM_ACTOR) -> Case:
        """Return the case for a request, creating it only if genuinely absent.

        Safe under concurrent callers: at most one case is persisted and every
        caller receives it. A caller that loses the creation race polls for the
        winner's row before giving up.

        Raises:
            CaseNotFound: the competing case never became visible
            SequenceExhaustionOrCollision: creation could not allocate a display number
        """
        case = await self.get_by_request(request_id)
        if case is not None:
            return case

        try:
            return await self.create_for_request(request_id, actor=actor)
        except DuplicateRequest:
            logger.info("case_creation_race_lost", request_id=str(request_id))

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(CaseNotFound),
            stop=stop_after_attempt(self.settings.find_or_create_poll_attempts),
            wait=wait_fixed(self.settings.find_or_create_poll_delay_seconds),
            before_sleep=_log_retry("case_lookup_retrying", request_id=str(request_id)),
            reraise=True,
        ):
            with attempt:
                return await self._require_by_request(request_id)

    # ── Stage advancement ───────────────────────────────────────────

    async def _advance(
        self,
        request_id: uuid.UUID,
        target: CaseStage,
        actor: str,
        action: str,
        reason: str | None = None,
        **links: uuid.UUID,
    ) -> Case:
        """Fetch-or-create the case and move it to ``target``.

        Returns the case unchanged if it is already at or past ``target``. The
        transition is applied only from the stage read here; if another caller
        moved the case in the meantime the case is re-read, so a concurrent
        duplicate of the same action returns the winner's result.
        """
        with case_log_context(workflow_action=action, request_id=request_id, actor=actor):
            max_attempts = self.settings.transition_max_attempts
            for attempt in range(1, max_attempts + 1):
                case = await self.find_or_create_for_request(request_id, actor=actor)
                with case_log_context(case_id=case.id, display_number=case.display_number):
                    if is_at_or_past(case.stage, target):
                        logger.debug("stage_already_reached", stage=case.stage.value, target=target.value)
                        return case
                    try:
                        return await self.transitions.transition(
                            case.id, target, reason=reason, actor=actor, expected_stage=case.stage, **links
                        )
                    except StaleTransition as exc:
                        logger.info(
                            "stale_transition_rereading",
                            expected=exc.expected,
                            target=target.value,
                            attempt=attempt,
                        )

            case = await self._require_by_request(request_id)
            if is_at_or_past(case.stage, target):
                return case
            raise InvalidTransition(case.id, case.stage.value, target.value, "case changed concurrently")

    async def accept_request(self, request_id: uuid.UUID, actor: str = SYSTEM_ACTOR) -> Case:
        return await self._advance(request_id, CaseStage.REQUEST_ACCEPTED, actor, "accept_request")

    async def schedule_inspection(
        self, request_id: uuid.UUID, inspection_id: uuid.UUID, actor: str = SYSTEM_ACTOR
    ) -> Case:
        """Link the inspection and move to inspection_scheduled in one write."""
        return await self._advance(
            request_id, CaseStage.INSPECTION_SCHEDULED, actor, "schedule_inspection", inspection_id=inspection_id
        )

    async def schedule_appointment(
        self, request_id: uuid.UUID, appointment_id: uuid.UUID, actor: str = SYSTEM_ACTOR
    ) -> Case:
        """Link the appointment and move to appointment_scheduled in one write."""
        return await self._advance(
            request_id, CaseStage.APPOINTMENT_SCHEDULED, actor, "schedule_appointment", appointment_id=appointment_id
        )

    async def start_assessment(self, request_id: uuid.UUID, actor: str = SYSTEM_ACTOR) -> Case:
        return await self._advance(request_id, CaseStage.ASSESSMENT_IN_PROGRESS, actor, "start_assessment")

    async def complete_assessment(self, request_id: uuid.UUID, actor: str = SYSTEM_ACTOR) -> Case:
        return await self._advance(request_id, CaseStage.ASSESSMENT_COMPLETED, actor, "complete_assessment")

    async def finalize_estimate(self, request_id: uuid.UUID, actor: str = SYSTEM_ACTOR) -> Case:
        return await self._advance(request_id, CaseStage.ESTIMATE_FINALIZED, actor, "finalize_estimate")

    async def start_frc(self, request_id: uuid.UUID, actor: str = SYSTEM_ACTOR) -> Case:
        return await self._advance(request_id, CaseStage.FRC_IN_PROGRESS, actor, "start_frc")

    async def complete_frc(self, request_id: uuid.UUID, actor: str = SYSTEM_ACTOR) -> Case:
        return await self._advance(request_id, CaseStage.FRC_COMPLETED, actor, "complete_frc")

    async def archive(self, request_id: uuid.UUID, actor: str = SYSTEM_ACTOR) -> Case:
        return await self._advance(request_id, CaseStage.ARCHIVED, actor, "archive")

    # ── Cancellation ────────────────────────────────────────────────

    async def cancel_appointment(
        self,
        request_id: uuid.UUID,
        appointment_id: uuid.UUID,
        reason: str | None = None,
        actor: str = SYSTEM_ACTOR,
    ) -> Case:
        """Cancel an appointment and re-open its case at inspection_scheduled.

        A repeat call for an appointment the case no longer links returns the
        case unchanged, including when the repeat runs concurrently.

        Raises:
            CaseNotFound: no case exists for ``request_id``
            InvalidTransition: the case is before appointment_scheduled or terminal
        """
        with case_log_context(workflow_action="cancel_appointment", request_id=request_id, actor=actor):
            for attempt in range(1, self.settings.transition_max_attempts + 1):
                case = await self._require_by_request(request_id)
                with case_log_context(case_id=case.id, display_number=case.display_number):
                    if case.appointment_id != appointment_id:
                        logger.debug("appointment_not_linked", appointment_id=str(appointment_id))
                        return case
                    try:
                        return await self.transitions.cancel_with_fallback(
                            case.id, reason=reason, actor=actor, expected_stage=case.stage
                        )
                    except StaleTransition:
                        logger.info("stale_cancel_rereading", attempt=attempt)

            case = await self._require_by_request(request_id)
            if case.appointment_id != appointment_id:
                return case
            raise InvalidTransition(
                case.id, case.stage.value, CaseStage.INSPECTION_SCHEDULED.value, "case changed concurrently"
            )

    async def cancel_case(
        self,
        request_id: uuid.UUID,
        reason: str | None = None,
        actor: str = SYSTEM_ACTOR,
    ) -> Case:
        """Cancel a case for good. Already-cancelled cases are returned unchanged.

        Raises:
            CaseNotFound: no case exists for ``request_id``
            InvalidTransition: the case is archived
        """
        with case_log_context(workflow_action="cancel_case", request_id=request_id, actor=actor):
            for attempt in range(1, self.settings.transition_max_attempts + 1):
                case = await self._require_by_request(request_id)
                with case_log_context(case_id=case.id, display_number=case.display_number):
                    if case.stage is CaseStage.CANCELLED:
                        return case
                    try:
                        return await self.transitions.cancel_to_terminal(
                            case.id, reason=reason, actor=actor, expected_stage=case.stage
                        )
                    except StaleTransition:
                        logger.info("stale_cancel_rereading", attempt=attempt)

            case = await self._require_by_request(request_id)
            if case.stage is CaseStage.CANCELLED:
                return case
            raise InvalidTransition(case.id, case.stage.value, CaseStage.CANCELLED.value, "case changed concurrently")

    # ── Reads ───────────────────────────────────────────────────────

    async def get_by_request(self, request_id: uuid.UUID) -> Case | None:
        async with self.session_factory() as session:
            return await CaseRepository(session).get_by_request_id(request_id)

    async def _require_by_request(self, request_id: uuid.UUID) -> Case:
        case = await self.get_by_request(request_id)
        if case is None:
            raise CaseNotFound(request_id=request_id)
        return case

    async def get_case(self, case_id: uuid.UUID) -> Case:
        """Raises CaseNotFound if no case has this id."""
        async with self.session_factory() as session:
            case = await CaseRepository(session).get(case_id)
        if case is None:
            raise CaseNotFound(case_id=case_id)
        return case

    async def get_document_view(self, case_id: uuid.UUID) -> CaseDocumentView:
        return CaseDocumentView.model_validate(await self.get_case(case_id))

    async def audit_trail(self, case_id: uuid.UUID) -> list[AuditEntry]:
        """Audit entries of a case, oldest first."""
        return await self.audit.list_for_entity("case", case_id)

"""Assembly of the assessment stage pipeline services.

Workflow actions import ``AssessmentPipeline`` and call its services; an
embedding application calls ``init_pipeline()`` at startup and
``close_pipeline()`` at shutdown.
"""

from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assessment_pipeline.core.config import Settings, get_settings
from assessment_pipeline.core.logging import configure_structlog
from assessment_pipeline.db.base import close_db, get_session_factory, init_db
from assessment_pipeline.services.audit import AuditLogWriter
from assessment_pipeline.services.case_lifecycle import CaseLifecycleService
from assessment_pipeline.services.case_queries import CaseReadModel
from assessment_pipeline.services.identifiers import IdentifierGenerator
from assessment_pipeline.services.integrity import PipelineIntegrityService
from assessment_pipeline.services.transitions import StageTransitionEngine

logger = structlog.get_logger(__name__)


@dataclass
class AssessmentPipeline:
    """All pipeline services sharing one session factory."""

    audit: AuditLogWriter
    identifiers: IdentifierGenerator
    transitions: StageTransitionEngine
    lifecycle: CaseLifecycleService
    queries: CaseReadModel
    integrity: PipelineIntegrityService

    @classmethod
    def from_session_factory(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ) -> "AssessmentPipeline":
        settings = settings or get_settings()
        audit = AuditLogWriter(session_factory)
        identifiers = IdentifierGenerator(session_factory, padding=settings.display_number_padding)
        transitions = StageTransitionEngine(session_factory, audit)
        return cls(
            audit=audit,
            identifiers=identifiers,
            transitions=transitions,
            lifecycle=CaseLifecycleService(session_factory, identifiers, transitions, audit, settings=settings),
            queries=CaseReadModel(session_factory),
            integrity=PipelineIntegrityService(session_factory),
        )


async def init_pipeline(database_url: str | None = None, create_all: bool = False) -> AssessmentPipeline:
    """Configure logging, open the database and build the services.

    Args:
        database_url: Overrides Settings.database_url
        create_all: Create tables from model metadata instead of relying on Alembic
    """
    settings = get_settings()
    configure_structlog(log_level=settings.log_level, json_logs=settings.json_logs)
    await init_db(database_url, create_all=create_all)
    logger.info("pipeline_initialized", app_name=settings.app_name)
    return AssessmentPipeline.from_session_factory(get_session_factory(), settings=settings)


async def close_pipeline() -> None:
    await close_db()
    logger.info("pipeline_closed")

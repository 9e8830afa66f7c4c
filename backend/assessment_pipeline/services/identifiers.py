"""IdentifierGenerator: per-(prefix, year) display numbers backed by a database counter.

Each allocation is an atomic ``UPDATE ... RETURNING`` committed in its own
transaction, so concurrent callers in any process never read the same value
and a number stays consumed even when the insert that wanted it fails.
Gaps are possible; reuse is not.
"""

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assessment_pipeline.core.exceptions import SequenceExhaustionOrCollision
from assessment_pipeline.db.models.sequence_counter import SequenceCounter
from assessment_pipeline.domain.numbering import (
    display_number_like,
    format_display_number,
    parse_display_number,
)
from assessment_pipeline.repositories.case_repository import CaseRepository

logger = structlog.get_logger(__name__)

# Two writers can both find the counter row missing; the loser re-runs the increment
_SEED_ATTEMPTS = 3


class IdentifierGenerator:
    """Allocates display numbers like ``ASM-2025-014``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], padding: int = 3):
        self.session_factory = session_factory
        self.padding = padding

    async def next(self, prefix: str, year: int) -> str:
        """Allocate the next display number for ``(prefix, year)``.

        Raises:
            SequenceExhaustionOrCollision: the counter row could not be created
        """
        prefix = prefix.upper()
        for attempt in range(1, _SEED_ATTEMPTS + 1):
            async with self.session_factory() as session:
                try:
                    async with session.begin():
                        value = await self._increment(session, prefix, year)
                        if value is None:
                            value = await self._seed(session, prefix, year)
                except IntegrityError:
                    logger.info("sequence_counter_seed_conflict", prefix=prefix, year=year, attempt=attempt)
                    continue

            display_number = format_display_number(prefix, year, value, self.padding)
            logger.debug("display_number_allocated", display_number=display_number)
            return display_number

        raise SequenceExhaustionOrCollision(prefix, year, _SEED_ATTEMPTS)

    async def _increment(self, session: AsyncSession, prefix: str, year: int) -> int | None:
        result = await session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.prefix == prefix, SequenceCounter.year == year)
            .values(last_value=SequenceCounter.last_value + 1)
            .returning(SequenceCounter.last_value)
        )
        return result.scalar_one_or_none()

    async def _seed(self, session: AsyncSession, prefix: str, year: int) -> int:
        """Create the counter row, continuing after the highest number already issued."""
        highest = await CaseRepository(session).max_display_number(display_number_like(prefix, year))
        parsed = parse_display_number(highest) if highest else None
        start = parsed.sequence if parsed else 0

        session.add(SequenceCounter(prefix=prefix, year=year, last_value=start + 1))
        await session.flush()
        logger.info("sequence_counter_seeded", prefix=prefix, year=year, start=start)
        return start + 1

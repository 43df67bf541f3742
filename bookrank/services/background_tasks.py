"""Async implementations of scheduled ranking work.

These coroutines contain the actual logic executed by Celery workers. Each
one opens its own DB session (independent of any request lifecycle) and
builds its collaborators from config, so no FastAPI DI is required.

The Celery task wrappers in ``bookrank.infrastructure.tasks.popularity_tasks``
call these with ``asyncio.run()``.
"""

import logging
from typing import Optional

from bookrank.infrastructure.database.connection import worker_session_maker as async_session_maker
from bookrank.infrastructure.database.repository import (
    BookRepository,
    InteractionRepository,
    PopularityRepository,
)
from bookrank.services.popularity import PopularityRanker

logger = logging.getLogger(__name__)


async def recompute_popularity_task(limit: Optional[int] = None, session_maker=None) -> int:
    """Recompute the trending list and publish it.

    Returns the number of published entries (0 when nothing qualified and
    the previous ranking was left in place).
    """
    session_maker = session_maker or async_session_maker
    logger.info("BG-TASK: recomputing popularity ranking")
    try:
        async with session_maker() as session:
            ranker = PopularityRanker(
                book_repository=BookRepository(session),
                interaction_repository=InteractionRepository(session),
                popularity_repository=PopularityRepository(session),
            )
            published = await ranker.rank_popularity(limit=limit)
    except Exception as exc:
        logger.error("BG-TASK: popularity recompute failed: %s", exc, exc_info=True)
        raise
    logger.info("BG-TASK: popularity ranking done (%d entries)", len(published))
    return len(published)

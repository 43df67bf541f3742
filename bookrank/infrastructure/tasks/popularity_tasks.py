"""Celery task wrappers for ranking work.

Retry policy:
  - max_retries=3: up to 3 additional attempts on failure
  - countdown=60: wait 60 s before each retry
A failed attempt never leaves a half-written ranking behind: the swap is a
single transaction, so the previous list stays active until a run succeeds.
"""

import asyncio
import logging
from typing import Optional

from bookrank.infrastructure.tasks.celery_app import celery_app
from bookrank.services.background_tasks import recompute_popularity_task

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="popularity.recompute", max_retries=3)
def recompute_popularity(self, limit: Optional[int] = None) -> int:
    """Celery task: recompute and publish the popularity ranking."""
    try:
        return asyncio.run(recompute_popularity_task(limit))
    except Exception as exc:
        logger.warning(
            "recompute_popularity failed (attempt %d/%d): %s",
            self.request.retries + 1,
            self.max_retries + 1,
            exc,
        )
        raise self.retry(exc=exc, countdown=60)

"""Celery application: broker and result backend both backed by Redis.

Workers run as a separate process from the API server, so ranking runs never
block request handlers.

Beat schedule:
  popularity.recompute: daily at 00:00 UTC
"""

from celery import Celery
from celery.schedules import crontab

from bookrank.core.config import settings

celery_app = Celery(
    "bookrank",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["bookrank.infrastructure.tasks.popularity_tasks"],
)

celery_app.conf.update(
    # Serialisation
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # State tracking
    task_track_started=True,
    result_expires=86400,
    # Reliability
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,
    beat_schedule={
        "nightly-popularity-recompute": {
            "task": "popularity.recompute",
            "schedule": crontab(hour=0, minute=0),
        },
    },
)

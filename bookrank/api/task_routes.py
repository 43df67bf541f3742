"""Task status API route.

  GET /tasks/{task_id}

Possible ``status`` values mirror Celery's task state machine:
  PENDING  task queued, not yet picked up by a worker
  STARTED  worker has begun execution
  SUCCESS  task completed (``result`` holds the number of ranked books)
  FAILURE  task raised an unhandled exception (``error`` field populated)
  RETRY    task failed and is scheduled for a retry attempt
"""

import logging

from celery.result import AsyncResult
from fastapi import APIRouter

from bookrank.api.schemas import TaskStatusResponse
from bookrank.infrastructure.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("/{task_id}", response_model=TaskStatusResponse)
async def get_task_status(task_id: str) -> TaskStatusResponse:
    """Get the current state of a popularity recomputation."""
    result = AsyncResult(task_id, app=celery_app)

    error: str | None = None
    value: int | None = None
    if result.state == "FAILURE":
        error = str(result.result)
    elif result.state == "SUCCESS":
        value = result.result

    logger.debug("Task %s state: %s", task_id, result.state)

    return TaskStatusResponse(
        task_id=task_id,
        status=result.state,
        result=value,
        error=error,
    )

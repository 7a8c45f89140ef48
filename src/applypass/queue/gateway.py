"""Enqueue gateway: validates a batch and persists it as a pending task."""

from __future__ import annotations

import logging

from applypass.queue.errors import InvalidPayloadError
from applypass.queue.models import (
    DEFAULT_TASK_TYPE,
    MAX_JOBS_PER_TASK,
    Job,
    TaskContext,
    TaskCreate,
    TaskPayload,
    TaskView,
)
from applypass.queue.repository import TaskRepository

logger = logging.getLogger(__name__)


def validate_jobs(jobs: list[Job], *, max_jobs: int = MAX_JOBS_PER_TASK) -> None:
    """Check job count bounds and identifying fields.

    ``max_jobs`` can only tighten the batch limit, never raise it above
    ``MAX_JOBS_PER_TASK``. URLs are not checked here; a malformed URL fails
    only that job at run time.
    """

    max_jobs = min(max_jobs, MAX_JOBS_PER_TASK)
    if not jobs:
        raise InvalidPayloadError("jobs must contain at least one entry")
    if len(jobs) > max_jobs:
        raise InvalidPayloadError(f"jobs must contain at most {max_jobs} entries, got {len(jobs)}")
    for index, job in enumerate(jobs):
        missing = [name for name in ("id", "title", "company") if not getattr(job, name).strip()]
        if missing:
            raise InvalidPayloadError(f"jobs[{index}] is missing {', '.join(missing)}")


class EnqueueGateway:
    """Turns an owner's batch request into a pending task."""

    def __init__(
        self,
        *,
        repository: TaskRepository,
        max_jobs: int = MAX_JOBS_PER_TASK,
        default_max_attempts: int = 3,
    ) -> None:
        self.repository = repository
        self.max_jobs = min(max_jobs, MAX_JOBS_PER_TASK)
        self.default_max_attempts = default_max_attempts

    def enqueue(
        self,
        *,
        owner_id: str,
        jobs: list[Job],
        context: TaskContext | None = None,
        task_type: str = DEFAULT_TASK_TYPE,
        max_attempts: int | None = None,
    ) -> TaskView:
        if not owner_id.strip():
            raise InvalidPayloadError("owner id is required")
        validate_jobs(jobs, max_jobs=self.max_jobs)
        attempts = max_attempts if max_attempts is not None else self.default_max_attempts
        if attempts < 1:
            raise InvalidPayloadError("maxAttempts must be >= 1")

        task = self.repository.insert_task(
            TaskCreate(
                owner_id=owner_id,
                payload=TaskPayload(jobs=list(jobs), context=context or TaskContext()),
                task_type=task_type.strip() or DEFAULT_TASK_TYPE,
                max_attempts=attempts,
            ),
        )
        logger.info("Enqueued task %s with %d jobs for owner %s", task.task_id, len(jobs), owner_id)
        return task

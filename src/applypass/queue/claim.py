"""Claim service: hands the oldest pending task to exactly one worker."""

from __future__ import annotations

import logging

from applypass.queue.models import TaskView
from applypass.queue.repository import TaskRepository

logger = logging.getLogger(__name__)

DEFAULT_WORKER_ID = "applypass-worker"


def normalize_worker_id(worker_id: str | None) -> str:
    value = (worker_id or "").strip()
    return value or DEFAULT_WORKER_ID


class ClaimService:
    def __init__(self, *, repository: TaskRepository) -> None:
        self.repository = repository

    def claim_next(self, worker_id: str | None) -> TaskView | None:
        """Claim one pending task, or return None when nothing is available.

        A worker that loses the race for the last pending task gets None,
        the same as when the queue is empty.
        """

        resolved = normalize_worker_id(worker_id)
        task = self.repository.claim_next_task(worker_id=resolved)
        if task is not None:
            logger.info(
                "Worker %s claimed task %s (attempt %d/%d)",
                resolved,
                task.task_id,
                task.attempt_count,
                task.max_attempts,
            )
        return task

"""Result aggregation and the terminal transition of a running task."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from applypass.queue.lease import not_running_error
from applypass.queue.models import (
    JobOutcome,
    JobStatus,
    LogLevel,
    RunLogEntry,
    TaskResult,
    TaskStatus,
    TaskView,
)
from applypass.queue.repository import TaskRepository
from applypass.storage.clock import utc_now

logger = logging.getLogger(__name__)

ALL_JOBS_FAILED_MESSAGE = "All jobs failed in worker run"
DEFAULT_FAILURE_MESSAGE = "Worker execution failed"
MAX_ERROR_MESSAGE_CHARS = 1500


@dataclass(slots=True, frozen=True)
class OutcomeCounts:
    success_count: int
    failed_count: int

    @property
    def status(self) -> TaskStatus:
        return TaskStatus.COMPLETED if self.success_count > 0 else TaskStatus.FAILED


def summarize_outcomes(outcomes: list[JobOutcome]) -> OutcomeCounts:
    success = sum(1 for outcome in outcomes if outcome.status is JobStatus.PROCESSED)
    return OutcomeCounts(success_count=success, failed_count=len(outcomes) - success)


def truncate_error(message: str | None, *, limit: int = MAX_ERROR_MESSAGE_CHARS) -> str:
    text = (message or "").strip()
    if not text:
        return DEFAULT_FAILURE_MESSAGE
    return text[:limit]


class ResultAggregator:
    """Writes the task result exactly once, guarded by ``status = running``.

    When the caller names its ``worker_id`` the write also requires that
    worker to still hold the lease.

    The terminal status is derived from the outcomes themselves, so a worker
    reporting ``complete`` with zero successes still ends in ``failed``.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository,
        max_error_chars: int = MAX_ERROR_MESSAGE_CHARS,
    ) -> None:
        self.repository = repository
        self.max_error_chars = max_error_chars

    def finalize(  # noqa: PLR0913
        self,
        task_id: str,
        outcomes: list[JobOutcome],
        *,
        worker_id: str | None = None,
        started_at: datetime | None = None,
        auto_submit: bool = False,
        log_entry: RunLogEntry | None = None,
    ) -> TaskView:
        counts = summarize_outcomes(outcomes)
        result = TaskResult(
            outcomes=list(outcomes),
            success_count=counts.success_count,
            failed_count=counts.failed_count,
            worker_id=worker_id,
            started_at=started_at,
            completed_at=utc_now(),
            auto_submit=auto_submit,
        )
        error_message = ALL_JOBS_FAILED_MESSAGE if counts.status is TaskStatus.FAILED else None
        task = self.repository.finalize_task(
            task_id=task_id,
            status=counts.status,
            result=result,
            error_message=error_message,
            log_entry=log_entry,
            worker_id=worker_id,
        )
        if task is None:
            raise not_running_error(self.repository, task_id, worker_id=worker_id)
        logger.info(
            "Task %s finalized as %s (%d processed, %d failed)",
            task_id,
            task.status.value,
            counts.success_count,
            counts.failed_count,
        )
        return task

    def fail(  # noqa: PLR0913
        self,
        task_id: str,
        error_message: str | None,
        *,
        outcomes: list[JobOutcome] | None = None,
        worker_id: str | None = None,
        started_at: datetime | None = None,
        auto_submit: bool = False,
        log_entry: RunLogEntry | None = None,
    ) -> TaskView:
        """Fail a running task outright, keeping whatever outcomes were collected."""

        message = truncate_error(error_message, limit=self.max_error_chars)
        collected = list(outcomes or [])
        counts = summarize_outcomes(collected)
        result = TaskResult(
            outcomes=collected,
            success_count=counts.success_count,
            failed_count=counts.failed_count,
            worker_id=worker_id,
            started_at=started_at,
            completed_at=utc_now(),
            auto_submit=auto_submit,
        )
        task = self.repository.finalize_task(
            task_id=task_id,
            status=TaskStatus.FAILED,
            result=result,
            error_message=message,
            log_entry=log_entry
            or RunLogEntry(message=message, level=LogLevel.ERROR, worker_id=worker_id),
            worker_id=worker_id,
        )
        if task is None:
            raise not_running_error(self.repository, task_id, worker_id=worker_id)
        logger.info("Task %s failed: %s", task_id, message)
        return task

"""Lease/heartbeat monitor.

A claimed task stays leased to its worker while heartbeats keep arriving.
``sweep`` recovers tasks whose worker went silent for longer than the lease
timeout: back to ``pending`` while attempts remain, otherwise ``failed``.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta

from applypass.queue.errors import NotRunningError, TaskNotFoundError
from applypass.queue.models import LeaseSweepSummary, RunLogEntry, TaskStatus, TaskView
from applypass.queue.repository import TaskRepository
from applypass.storage.clock import utc_now

logger = logging.getLogger(__name__)


class LeaseMonitor:
    def __init__(self, *, repository: TaskRepository, lease_timeout_seconds: int = 300) -> None:
        self.repository = repository
        self.lease_timeout_seconds = lease_timeout_seconds

    def heartbeat(
        self,
        task_id: str,
        log_entry: RunLogEntry | None = None,
        *,
        worker_id: str | None = None,
    ) -> TaskView:
        """Refresh the lease of a running task; raise NotRunningError otherwise.

        When ``worker_id`` is given, a worker whose lease was swept and handed
        to someone else is rejected even though the task is still running.
        """

        task = self.repository.touch_task(task_id=task_id, log_entry=log_entry, worker_id=worker_id)
        if task is not None:
            return task
        raise not_running_error(self.repository, task_id, worker_id=worker_id)

    def sweep(self, *, now: datetime | None = None) -> LeaseSweepSummary:
        """Run one lease expiry pass over stale running tasks."""

        summary = LeaseSweepSummary()
        if self.lease_timeout_seconds <= 0:
            return summary

        cutoff = (now or utc_now()) - timedelta(seconds=self.lease_timeout_seconds)
        for task in self.repository.list_stale_running_tasks(heartbeat_before=cutoff):
            if task.attempt_count < task.max_attempts:
                if self.repository.requeue_expired_task(
                    task_id=task.task_id,
                    heartbeat_before=cutoff,
                ):
                    summary.requeued.append(task.task_id)
                    logger.warning(
                        "Lease expired for task %s held by %s; requeued (attempt %d/%d)",
                        task.task_id,
                        task.worker_id,
                        task.attempt_count,
                        task.max_attempts,
                    )
                continue

            message = f"Worker lease expired after {task.attempt_count} attempts"
            if self.repository.expire_task_lease(
                task_id=task.task_id,
                heartbeat_before=cutoff,
                error_message=message,
            ):
                summary.expired.append(task.task_id)
                logger.warning("Lease expired for task %s; %s", task.task_id, message)
        return summary

    def run_loop(
        self,
        *,
        interval_seconds: float,
        stop_event: threading.Event,
        max_sweeps: int | None = None,
    ) -> LeaseSweepSummary:
        """Sweep every ``interval_seconds`` until ``stop_event`` is set."""

        aggregate = LeaseSweepSummary()
        sweeps = 0
        while not stop_event.is_set():
            summary = self.sweep()
            aggregate.requeued.extend(summary.requeued)
            aggregate.expired.extend(summary.expired)
            sweeps += 1
            if max_sweeps is not None and sweeps >= max_sweeps:
                break
            stop_event.wait(interval_seconds)
        return aggregate


def not_running_error(
    repository: TaskRepository,
    task_id: str,
    *,
    worker_id: str | None = None,
) -> NotRunningError | TaskNotFoundError:
    """Explain a lost guarded update by the state the task is in now."""

    current = repository.get_task(task_id=task_id)
    if current is None:
        return TaskNotFoundError(task_id)
    if (
        worker_id is not None
        and current.status is TaskStatus.RUNNING
        and current.worker_id != worker_id
    ):
        return NotRunningError(task_id, current.status.value, held_by=current.worker_id)
    return NotRunningError(task_id, current.status.value)

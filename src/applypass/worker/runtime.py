"""Polling worker that claims ApplyPass tasks and runs page automation per job."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from applypass.queue.aggregator import ALL_JOBS_FAILED_MESSAGE
from applypass.queue.claim import normalize_worker_id
from applypass.queue.errors import NotRunningError, TaskNotFoundError
from applypass.queue.lease import LeaseMonitor
from applypass.queue.models import (
    Job,
    JobOutcome,
    JobStatus,
    LogLevel,
    RunLogEntry,
    TaskStatus,
    TaskView,
)
from applypass.storage.clock import utc_now
from applypass.worker.automation.base import AutomationRequest, PageAutomationAdapter
from applypass.worker.client import QueueClient

logger = logging.getLogger(__name__)

EMPTY_TASK_MESSAGE = "Task has no jobs."
INVALID_URL_MESSAGE = "Invalid job URL"
SHUTDOWN_MESSAGE = "Worker shutdown before job was processed"

_LOST_LEASE_ERRORS = (NotRunningError, TaskNotFoundError)


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    completed: int = 0
    failed: int = 0
    canceled: int = 0
    jobs_processed: int = 0
    jobs_failed: int = 0
    idle_polls: int = 0
    errors: int = 0

    def merge(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.completed += other.completed
        self.failed += other.failed
        self.canceled += other.canceled
        self.jobs_processed += other.jobs_processed
        self.jobs_failed += other.jobs_failed
        self.idle_polls += other.idle_polls
        self.errors += other.errors


class ApplyPassWorker:
    """Claims one task at a time and processes its jobs in payload order."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        client: QueueClient,
        automation: PageAutomationAdapter,
        worker_id: str,
        poll_interval_seconds: float = 5.0,
        job_timeout_seconds: int = 120,
        auto_submit: bool = False,
        screenshot_dir: Path | None = None,
        lease_monitor: LeaseMonitor | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.client = client
        self.automation = automation
        self.worker_id = normalize_worker_id(worker_id)
        self.poll_interval_seconds = poll_interval_seconds
        self.job_timeout_seconds = job_timeout_seconds
        self.auto_submit = auto_submit
        self.screenshot_dir = screenshot_dir
        self.lease_monitor = lease_monitor
        self._stop_event = stop_event or threading.Event()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def request_stop(self, *, signal_name: str = "manual") -> None:
        if not self._stop_event.is_set():
            logger.info("Worker %s stop requested (%s)", self.worker_id, signal_name)
        self._stop_event.set()

    def run_once(self) -> WorkerRunSummary:
        """Process at most one task from the queue."""

        summary = WorkerRunSummary()
        task = self._claim_task()
        if task is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        self._process_task(task, summary)
        return summary

    def run_loop(
        self,
        *,
        max_tasks: int | None = None,
        once: bool = False,
        max_idle_polls: int | None = None,
    ) -> WorkerRunSummary:
        """Poll until stopped, ``max_tasks`` processed or ``max_idle_polls`` empty polls in a row.

        Args:
            max_tasks: Stop after processing this many tasks (None = unlimited).
            once: Make a single claim attempt and return.
            max_idle_polls: Consecutive empty polls before exiting (None = poll forever).
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while True:
                if self.stop_requested:
                    return aggregate
                if max_tasks is not None and aggregate.processed >= max_tasks:
                    return aggregate

                try:
                    summary = self.run_once()
                except Exception:  # noqa: BLE001
                    logger.exception("Worker %s loop iteration failed", self.worker_id)
                    aggregate.errors += 1
                    if once:
                        return aggregate
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue

                aggregate.merge(summary)
                if once:
                    return aggregate
                if summary.processed == 0:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        return aggregate
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue
                consecutive_idle = 0

    def _claim_task(self) -> TaskView | None:
        if self.stop_requested:
            return None
        if self.lease_monitor is not None:
            self.lease_monitor.sweep()
        if self.stop_requested:
            return None
        task = self.client.claim_next(self.worker_id)
        if task is not None:
            logger.info(
                "Worker %s claimed task %s with %d jobs",
                self.worker_id,
                task.task_id,
                len(task.payload.jobs),
            )
        return task

    def _process_task(self, task: TaskView, summary: WorkerRunSummary) -> None:  # noqa: C901
        jobs = task.payload.jobs
        started_at = task.started_at or utc_now()

        if not jobs:
            try:
                self.client.fail(
                    task.task_id,
                    EMPTY_TASK_MESSAGE,
                    outcomes=[],
                    worker_id=self.worker_id,
                    started_at=started_at,
                    auto_submit=self.auto_submit,
                )
            except _LOST_LEASE_ERRORS as error:
                self._discard(task, error, summary)
                return
            summary.failed += 1
            return

        try:
            self.client.heartbeat(
                task.task_id,
                self._log(f"Started task with {len(jobs)} jobs"),
                worker_id=self.worker_id,
            )
        except _LOST_LEASE_ERRORS as error:
            self._discard(task, error, summary)
            return

        outcomes: list[JobOutcome] = []
        for index, job in enumerate(jobs):
            if self.stop_requested:
                remaining = jobs[index:]
                logger.info(
                    "Worker %s shutting down; %d jobs of task %s left unprocessed",
                    self.worker_id,
                    len(remaining),
                    task.task_id,
                )
                outcomes.extend(JobOutcome.failure(item, SHUTDOWN_MESSAGE) for item in remaining)
                summary.jobs_failed += len(remaining)
                break

            outcome = self._process_job(task, index, job)
            outcomes.append(outcome)
            if outcome.status is JobStatus.PROCESSED:
                summary.jobs_processed += 1
            else:
                summary.jobs_failed += 1

            try:
                self.client.heartbeat(
                    task.task_id,
                    self._job_log(job, outcome),
                    worker_id=self.worker_id,
                )
            except _LOST_LEASE_ERRORS as error:
                self._discard(task, error, summary)
                return

        success = sum(1 for outcome in outcomes if outcome.status is JobStatus.PROCESSED)
        final_entry = self._log(
            f"Finished batch: {success} processed, {len(outcomes) - success} failed",
            level=LogLevel.INFO if success else LogLevel.ERROR,
        )
        try:
            if success:
                finished = self.client.complete(
                    task.task_id,
                    outcomes,
                    worker_id=self.worker_id,
                    started_at=started_at,
                    auto_submit=self.auto_submit,
                    log_entry=final_entry,
                )
            else:
                finished = self.client.fail(
                    task.task_id,
                    ALL_JOBS_FAILED_MESSAGE,
                    outcomes=outcomes,
                    worker_id=self.worker_id,
                    started_at=started_at,
                    auto_submit=self.auto_submit,
                    log_entry=final_entry,
                )
        except _LOST_LEASE_ERRORS as error:
            self._discard(task, error, summary)
            return

        if finished.status is TaskStatus.COMPLETED:
            summary.completed += 1
        else:
            summary.failed += 1

    def _process_job(self, task: TaskView, index: int, job: Job) -> JobOutcome:
        if not is_valid_job_url(job.url):
            logger.warning("Task %s job %s has invalid URL %r", task.task_id, job.id, job.url)
            return JobOutcome.failure(job, INVALID_URL_MESSAGE)

        started = time.monotonic()
        try:
            outcome = self.automation.process(
                AutomationRequest(
                    task_id=task.task_id,
                    job_index=index,
                    job=job,
                    context=task.payload.context,
                    timeout_seconds=self.job_timeout_seconds,
                    auto_submit=self.auto_submit,
                    screenshot_dir=self.screenshot_dir,
                ),
            )
        except Exception as error:  # noqa: BLE001
            logger.warning(
                "Automation failed for job %s of task %s: %s",
                job.id,
                task.task_id,
                error,
            )
            return JobOutcome.failure(
                job,
                str(error) or type(error).__name__,
                duration_ms=int((time.monotonic() - started) * 1000),
            )

        if not outcome.job_id:
            outcome.job_id = job.id
        if outcome.status is JobStatus.FAILED:
            logger.warning(
                "Job %s of task %s failed: %s",
                job.id,
                task.task_id,
                outcome.error,
            )
        return outcome

    def _discard(self, task: TaskView, error: Exception, summary: WorkerRunSummary) -> None:
        logger.info(
            "Task %s is no longer held by worker %s, discarding results: %s",
            task.task_id,
            self.worker_id,
            error,
        )
        summary.canceled += 1

    def _log(self, message: str, *, level: LogLevel = LogLevel.INFO) -> RunLogEntry:
        return RunLogEntry(message=message, level=level, worker_id=self.worker_id, at=utc_now())

    def _job_log(self, job: Job, outcome: JobOutcome) -> RunLogEntry:
        label = f"{job.title} at {job.company}"
        if outcome.status is JobStatus.PROCESSED:
            message = (
                f"Processed {label}: filled {outcome.filled_field_count}"
                f"/{outcome.total_field_count} fields"
            )
            if outcome.submitted:
                message += ", submitted"
            level = LogLevel.INFO
        else:
            message = f"Failed {label}: {outcome.error or 'unknown error'}"
            level = LogLevel.WARN
        entry = self._log(message, level=level)
        entry.job_id = job.id
        return entry

    def _sleep_with_stop(self, seconds: float) -> None:
        if seconds > 0:
            self._stop_event.wait(seconds)

    def _signal_handlers(self) -> AbstractContextManager[None]:
        return stop_on_signals(lambda name: self.request_stop(signal_name=name))


@contextmanager
def stop_on_signals(request_stop: Callable[[str], None]) -> Iterator[None]:
    """Route SIGINT/SIGTERM to ``request_stop`` while the block runs."""

    if threading.current_thread() is not threading.main_thread():
        # Signal handlers can only be installed in main thread.
        yield
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        request_stop(name)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)


def is_valid_job_url(url: str) -> bool:
    parsed = urlparse(url.strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)

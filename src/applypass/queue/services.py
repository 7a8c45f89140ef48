"""Use-case facade over the queue components."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from applypass.config import Settings
from applypass.queue.aggregator import MAX_ERROR_MESSAGE_CHARS, ResultAggregator
from applypass.queue.claim import ClaimService
from applypass.queue.errors import TaskNotFoundError
from applypass.queue.gateway import EnqueueGateway
from applypass.queue.lease import LeaseMonitor
from applypass.queue.models import (
    DEFAULT_TASK_TYPE,
    MAX_JOBS_PER_TASK,
    CancelOutcome,
    Job,
    JobOutcome,
    LeaseSweepSummary,
    RunLogEntry,
    TaskContext,
    TaskDetails,
    TaskStatus,
    TaskView,
)
from applypass.queue.repository import TaskRepository


@dataclass(slots=True)
class QueuePolicy:
    """Limits applied by the queue service."""

    max_jobs: int = MAX_JOBS_PER_TASK
    default_max_attempts: int = 3
    list_limit: int = 50
    max_error_chars: int = MAX_ERROR_MESSAGE_CHARS
    lease_timeout_seconds: int = 300


class QueueService:
    """Single entry point used by the HTTP dispatcher, CLI and in-process worker."""

    def __init__(self, *, repository: TaskRepository, policy: QueuePolicy | None = None) -> None:
        self.repository = repository
        self.policy = policy or QueuePolicy()
        self.gateway = EnqueueGateway(
            repository=repository,
            max_jobs=self.policy.max_jobs,
            default_max_attempts=self.policy.default_max_attempts,
        )
        self.claims = ClaimService(repository=repository)
        self.leases = LeaseMonitor(
            repository=repository,
            lease_timeout_seconds=self.policy.lease_timeout_seconds,
        )
        self.aggregator = ResultAggregator(
            repository=repository,
            max_error_chars=self.policy.max_error_chars,
        )

    def enqueue(  # noqa: PLR0913
        self,
        *,
        owner_id: str,
        jobs: list[Job],
        context: TaskContext | None = None,
        task_type: str = DEFAULT_TASK_TYPE,
        max_attempts: int | None = None,
    ) -> TaskView:
        return self.gateway.enqueue(
            owner_id=owner_id,
            jobs=jobs,
            context=context,
            task_type=task_type,
            max_attempts=max_attempts,
        )

    def list_tasks(
        self,
        *,
        owner_id: str | None,
        status: TaskStatus | None = None,
        limit: int | None = None,
    ) -> list[TaskView]:
        cap = self.policy.list_limit
        effective = cap if limit is None else max(1, min(limit, cap))
        return self.repository.list_tasks(owner_id=owner_id, status=status, limit=effective)

    def get_task_details(self, task_id: str, *, owner_id: str | None = None) -> TaskDetails:
        details = self.repository.get_task_details(task_id=task_id, owner_id=owner_id)
        if details is None:
            raise TaskNotFoundError(task_id)
        return details

    def cancel(self, task_id: str, *, owner_id: str) -> CancelOutcome:
        return self.repository.cancel_task(task_id=task_id, owner_id=owner_id)

    def claim_next(self, worker_id: str | None) -> TaskView | None:
        return self.claims.claim_next(worker_id)

    def heartbeat(
        self,
        task_id: str,
        log_entry: RunLogEntry | None = None,
        *,
        worker_id: str | None = None,
    ) -> TaskView:
        return self.leases.heartbeat(task_id, log_entry, worker_id=worker_id)

    def complete(  # noqa: PLR0913
        self,
        task_id: str,
        outcomes: list[JobOutcome],
        *,
        worker_id: str | None = None,
        started_at: datetime | None = None,
        auto_submit: bool = False,
        log_entry: RunLogEntry | None = None,
    ) -> TaskView:
        return self.aggregator.finalize(
            task_id,
            outcomes,
            worker_id=worker_id,
            started_at=started_at,
            auto_submit=auto_submit,
            log_entry=log_entry,
        )

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
        return self.aggregator.fail(
            task_id,
            error_message,
            outcomes=outcomes,
            worker_id=worker_id,
            started_at=started_at,
            auto_submit=auto_submit,
            log_entry=log_entry,
        )

    def sweep_leases(self, *, now: datetime | None = None) -> LeaseSweepSummary:
        return self.leases.sweep(now=now)


def build_queue_service(settings: Settings, *, init_schema: bool = True) -> QueueService:
    """Open the task store at ``settings.db_path`` and wrap it in a service."""

    repository = TaskRepository(settings.db_path, busy_timeout_ms=settings.queue.busy_timeout_ms)
    if init_schema:
        repository.init_schema()
    return QueueService(
        repository=repository,
        policy=QueuePolicy(
            max_jobs=settings.queue.max_jobs_per_task,
            default_max_attempts=settings.queue.default_max_attempts,
            list_limit=settings.queue.list_limit,
            max_error_chars=settings.queue.max_error_chars,
            lease_timeout_seconds=settings.lease.lease_timeout_seconds,
        ),
    )

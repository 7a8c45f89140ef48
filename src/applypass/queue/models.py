"""Domain models for the ApplyPass task queue and worker execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

DEFAULT_TASK_TYPE = "bulk_apply"
DEFAULT_SOURCE = "applypass_workspace"
MAX_JOBS_PER_TASK = 25


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELED})
CANCELABLE_STATUSES = (TaskStatus.PENDING, TaskStatus.RUNNING)


class JobStatus(str, Enum):
    """Per-job outcome of one automation pass."""

    PROCESSED = "processed"
    FAILED = "failed"


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class Job:
    """One job posting inside a task payload."""

    id: str
    title: str
    company: str
    url: str = ""


@dataclass(slots=True)
class TaskContext:
    """Opaque candidate context carried alongside the jobs."""

    resume_id: str | None = None
    candidate_profile: dict[str, Any] | None = None
    answer_memory: dict[str, Any] | None = None
    source: str = DEFAULT_SOURCE
    created_by: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class TaskPayload:
    """Immutable task payload: ordered jobs plus context."""

    jobs: list[Job]
    context: TaskContext = field(default_factory=TaskContext)


@dataclass(slots=True)
class TaskCreate:
    """Validated input for inserting a pending task."""

    owner_id: str
    payload: TaskPayload
    task_type: str = DEFAULT_TASK_TYPE
    max_attempts: int = 3


@dataclass(slots=True)
class RunLogEntry:
    """One append-only run log line."""

    message: str
    level: LogLevel = LogLevel.INFO
    job_id: str | None = None
    worker_id: str | None = None
    at: datetime | None = None


@dataclass(slots=True)
class JobOutcome:
    """Result of processing one job, produced by the page automation adapter."""

    job_id: str
    status: JobStatus
    title: str = ""
    company: str = ""
    url: str = ""
    filled_field_count: int = 0
    total_field_count: int = 0
    submit_button: str | None = None
    submitted: bool = False
    screenshot_ref: str | None = None
    error: str | None = None
    duration_ms: int = 0

    @classmethod
    def failure(cls, job: Job, error: str, *, duration_ms: int = 0) -> JobOutcome:
        return cls(
            job_id=job.id,
            status=JobStatus.FAILED,
            title=job.title,
            company=job.company,
            url=job.url,
            error=error,
            duration_ms=duration_ms,
        )


@dataclass(slots=True)
class TaskResult:
    """Aggregated task result written once with the terminal transition."""

    outcomes: list[JobOutcome]
    success_count: int
    failed_count: int
    worker_id: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    auto_submit: bool = False


@dataclass(slots=True)
class TaskView:
    """Readable task view for API, CLI and worker logic."""

    task_id: str
    owner_id: str
    task_type: str
    status: TaskStatus
    payload: TaskPayload
    result: TaskResult | None
    error_message: str | None
    attempt_count: int
    max_attempts: int
    worker_id: str | None
    heartbeat_at: datetime | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    updated_at: datetime


@dataclass(slots=True)
class TaskEventView:
    """State transition audit record."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any]


@dataclass(slots=True)
class TaskDetails:
    """Task plus its run log and transition history."""

    task: TaskView
    run_log: list[RunLogEntry]
    events: list[TaskEventView]


@dataclass(slots=True)
class CancelOutcome:
    """Cancel request result; `canceled` is False when the task was already terminal."""

    canceled: bool
    task: TaskView


@dataclass(slots=True)
class LeaseSweepSummary:
    """Tasks moved by one lease expiry sweep."""

    requeued: list[str] = field(default_factory=list)
    expired: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.requeued) + len(self.expired)

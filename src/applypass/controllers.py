"""Controllers for ApplyPass CLI commands."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import uvicorn

from applypass.api.app import create_app
from applypass.config import Settings
from applypass.queue.contracts import context_from_dict, job_from_dict, load_json
from applypass.queue.errors import InvalidPayloadError
from applypass.queue.models import DEFAULT_TASK_TYPE, Job, TaskContext, TaskStatus, TaskView
from applypass.queue.services import QueueService, build_queue_service
from applypass.storage.clock import utc_now
from applypass.worker.automation import CommandPageAutomation
from applypass.worker.client import HttpQueueClient, LocalQueueClient, QueueClient
from applypass.worker.runtime import ApplyPassWorker, WorkerRunSummary, stop_on_signals


@dataclass(slots=True)
class QueueEnqueueCommand:
    """CLI input for enqueueing a batch."""

    db_path: Path | None
    owner_id: str
    jobs: tuple[str, ...]
    jobs_file: Path | None = None
    task_type: str = DEFAULT_TASK_TYPE
    max_attempts: int | None = None
    resume_id: str | None = None


@dataclass(slots=True)
class QueueListCommand:
    """CLI input for task listing."""

    db_path: Path | None
    owner_id: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class QueueInspectCommand:
    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class QueueCancelCommand:
    db_path: Path | None
    task_id: str
    owner_id: str


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool
    max_tasks: int | None
    max_idle_polls: int | None = None


@dataclass(slots=True)
class MonitorCommand:
    """CLI input for the lease expiry sweep."""

    db_path: Path | None
    loop: bool
    max_sweeps: int | None = None


@dataclass(slots=True)
class ServeCommand:
    db_path: Path | None
    host: str | None
    port: int | None


class ApplyPassCliController:
    """Coordinates queue, worker, monitor and server CLI operations."""

    def enqueue(self, command: QueueEnqueueCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        jobs, context = _collect_jobs(command)
        context.resume_id = command.resume_id or context.resume_id
        context.created_by = context.created_by or command.owner_id
        context.created_at = context.created_at or utc_now()
        with _service(settings) as service:
            task = service.enqueue(
                owner_id=command.owner_id,
                jobs=jobs,
                context=context,
                task_type=command.task_type,
                max_attempts=command.max_attempts,
            )
        return [
            f"Task enqueued: task_id={task.task_id} type={task.task_type} "
            f"status={task.status.value} jobs={len(task.payload.jobs)}",
        ]

    def list_tasks(self, command: QueueListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _service(settings) as service:
            tasks = service.list_tasks(
                owner_id=command.owner_id,
                status=status_filter,
                limit=command.limit,
            )

        lines = [f"Tasks: {len(tasks)}"]
        lines.extend(f"  {_task_line(task)}" for task in tasks)
        return lines

    def inspect_task(self, command: QueueInspectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            details = service.repository.get_task_details(task_id=command.task_id)
        if details is None:
            return [f"Task not found: {command.task_id}"]

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Owner: {task.owner_id}",
            f"Type: {task.task_type}",
            f"Status: {task.status.value}",
            f"Attempt: {task.attempt_count}/{task.max_attempts}",
            f"Worker: {task.worker_id or '-'}",
            f"Heartbeat: {_iso(task.heartbeat_at)}",
            f"Started: {_iso(task.started_at)}",
            f"Completed: {_iso(task.completed_at)}",
            f"Error: {task.error_message or '-'}",
            f"Jobs: {len(task.payload.jobs)}",
        ]
        if task.result is not None:
            lines.append(
                f"Result: processed={task.result.success_count} "
                f"failed={task.result.failed_count}",
            )
            for outcome in task.result.outcomes:
                lines.append(
                    f"  job={outcome.job_id} status={outcome.status.value} "
                    f"fields={outcome.filled_field_count}/{outcome.total_field_count} "
                    f"submitted={outcome.submitted} error={outcome.error or '-'}",
                )
        lines.append(f"Run log: {len(details.run_log)}")
        for entry in details.run_log:
            job = f" job={entry.job_id}" if entry.job_id else ""
            lines.append(f"  {_iso(entry.at)} [{entry.level.value}]{job} {entry.message}")
        lines.append(f"Events: {len(details.events)}")
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'}"
                f" -> {event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def cancel_task(self, command: QueueCancelCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            outcome = service.cancel(command.task_id, owner_id=command.owner_id)
        if outcome.canceled:
            return [f"Task canceled: {command.task_id}"]
        return [
            f"Task already {outcome.task.status.value}, nothing to cancel: {command.task_id}",
        ]

    def run_worker(self, command: WorkerRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_worker()
        worker_settings = settings.worker
        automation = CommandPageAutomation(
            command_template=worker_settings.automation_command,
            workdir_root=worker_settings.workdir_root,
        )
        with _worker_client(settings) as (client, service):
            worker = ApplyPassWorker(
                client=client,
                automation=automation,
                worker_id=worker_settings.worker_id,
                poll_interval_seconds=worker_settings.poll_interval_seconds,
                job_timeout_seconds=worker_settings.job_timeout_seconds,
                auto_submit=worker_settings.auto_submit,
                screenshot_dir=worker_settings.screenshot_dir,
                lease_monitor=(
                    service.leases
                    if service is not None and settings.lease.sweep_on_claim
                    else None
                ),
            )
            summary = worker.run_loop(
                max_tasks=command.max_tasks or worker_settings.max_tasks,
                once=command.once or worker_settings.run_once,
                max_idle_polls=command.max_idle_polls,
            )
        return [_summary_line(summary)]

    def monitor(self, command: MonitorCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_monitor()
        with _service(settings) as service:
            if not command.loop:
                summary = service.sweep_leases()
            else:
                stop_event = threading.Event()
                with stop_on_signals(lambda _name: stop_event.set()):
                    summary = service.leases.run_loop(
                        interval_seconds=settings.lease.sweep_interval_seconds,
                        stop_event=stop_event,
                        max_sweeps=command.max_sweeps,
                    )

        lines = [f"Lease sweep: requeued={len(summary.requeued)} expired={len(summary.expired)}"]
        lines.extend(f"  requeued {task_id}" for task_id in summary.requeued)
        lines.extend(f"  expired {task_id}" for task_id in summary.expired)
        return lines

    def serve(self, command: ServeCommand) -> None:
        settings = Settings.from_env(db_path=command.db_path)
        if command.host:
            settings.server.host = command.host
        if command.port:
            settings.server.port = command.port
        settings.validate_for_server()
        uvicorn.run(create_app(settings), host=settings.server.host, port=settings.server.port)


@contextmanager
def _service(settings: Settings) -> Iterator[QueueService]:
    service = build_queue_service(settings)
    try:
        yield service
    finally:
        service.repository.close()


@contextmanager
def _worker_client(settings: Settings) -> Iterator[tuple[QueueClient, QueueService | None]]:
    if settings.worker.queue_url:
        with HttpQueueClient(
            queue_url=settings.worker.queue_url,
            worker_token=settings.auth.worker_token,
            timeout_seconds=settings.worker.request_timeout_seconds,
        ) as client:
            yield client, None
        return
    with _service(settings) as service:
        yield LocalQueueClient(service), service


def _collect_jobs(command: QueueEnqueueCommand) -> tuple[list[Job], TaskContext]:
    jobs: list[Job] = []
    context = TaskContext()
    if command.jobs_file is not None:
        document = load_json(command.jobs_file)
        raw_jobs = document.get("jobs")
        if not isinstance(raw_jobs, list):
            raise InvalidPayloadError(f"{command.jobs_file}: 'jobs' must be an array")
        jobs.extend(job_from_dict(item) for item in raw_jobs if isinstance(item, dict))
        context = context_from_dict(document)
    for spec in command.jobs:
        jobs.append(_parse_job_spec(spec))
    return jobs, context


def _parse_job_spec(spec: str) -> Job:
    parts = [part.strip() for part in spec.split("|")]
    if len(parts) not in {3, 4}:
        raise InvalidPayloadError(
            f"Invalid job {spec!r}. Expected 'id|title|company' or 'id|title|company|url'.",
        )
    url = parts[3] if len(parts) == 4 else ""
    return Job(id=parts[0], title=parts[1], company=parts[2], url=url)


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    try:
        return TaskStatus(value)
    except ValueError as error:
        raise ValueError(f"Unsupported status: {value!r}") from error


def _task_line(task: TaskView) -> str:
    counts = ""
    if task.result is not None:
        counts = f" processed={task.result.success_count} failed={task.result.failed_count}"
    return (
        f"{task.task_id} owner={task.owner_id} status={task.status.value} "
        f"jobs={len(task.payload.jobs)} attempt={task.attempt_count}/{task.max_attempts} "
        f"created_at={task.created_at.isoformat()}{counts}"
    )


def _summary_line(summary: WorkerRunSummary) -> str:
    return (
        "Worker summary: "
        f"processed={summary.processed} completed={summary.completed} "
        f"failed={summary.failed} canceled={summary.canceled} "
        f"jobs_processed={summary.jobs_processed} jobs_failed={summary.jobs_failed} "
        f"idle_polls={summary.idle_polls} errors={summary.errors}"
    )


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value is not None else "-"

"""Persistent task store for the ApplyPass queue."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from applypass.queue.contracts import (
    dumps,
    payload_from_dict,
    payload_to_dict,
    result_from_dict,
    result_to_dict,
)
from applypass.queue.errors import TaskNotFoundError
from applypass.queue.models import (
    CANCELABLE_STATUSES,
    CancelOutcome,
    LogLevel,
    RunLogEntry,
    TaskCreate,
    TaskDetails,
    TaskEventView,
    TaskResult,
    TaskStatus,
    TaskView,
)
from applypass.storage.clock import as_utc, to_storage_time, utc_now
from applypass.storage.sqlite import SqlitePolicy, create_queue_engine, migrate
from applypass.storage.sqlmodel_models import ApplyTask, ApplyTaskEvent, ApplyTaskLogEntry


class TaskRepository:
    """Queue persistence facade backed by SQLModel + SQLite.

    Every state change is a single guarded UPDATE whose affected-row count
    decides the outcome; a lost race is reported as ``None``/``False``.
    """

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = create_queue_engine(db_path, SqlitePolicy(busy_timeout_ms=busy_timeout_ms))

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        migrate(self.db_path)

    def insert_task(self, payload: TaskCreate) -> TaskView:
        """Persist a new pending task."""

        now = utc_now()
        task_id = str(uuid4())
        with Session(self.engine) as session:
            row = ApplyTask(
                task_id=task_id,
                owner_id=payload.owner_id,
                task_type=payload.task_type,
                status=TaskStatus.PENDING.value,
                payload_json=dumps(payload_to_dict(payload.payload)),
                attempt_count=0,
                max_attempts=payload.max_attempts,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="enqueued",
                status_from=None,
                status_to=TaskStatus.PENDING,
                details={
                    "task_type": payload.task_type,
                    "jobs": len(payload.payload.jobs),
                    "max_attempts": payload.max_attempts,
                },
            )
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def claim_next_task(self, *, worker_id: str) -> TaskView | None:
        """Atomically move the oldest claimable pending task to running.

        Candidate selection and the status guard live in one UPDATE statement,
        so concurrent callers serialize on the SQLite write lock and each
        pending task is handed to at most one of them.
        """

        now = to_storage_time(utc_now())
        candidate = (
            select(ApplyTask.task_id)
            .where(
                col(ApplyTask.status) == TaskStatus.PENDING.value,
                col(ApplyTask.attempt_count) < col(ApplyTask.max_attempts),
            )
            .order_by(col(ApplyTask.created_at).asc(), col(ApplyTask.task_id).asc())
            .limit(1)
            .scalar_subquery()
        )
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ApplyTask)
                .where(
                    col(ApplyTask.task_id) == candidate,
                    col(ApplyTask.status) == TaskStatus.PENDING.value,
                )
                .values(
                    status=TaskStatus.RUNNING.value,
                    attempt_count=col(ApplyTask.attempt_count) + 1,
                    worker_id=worker_id,
                    started_at=now,
                    heartbeat_at=now,
                    completed_at=None,
                    updated_at=now,
                )
                .returning(col(ApplyTask.task_id))
                .execution_options(synchronize_session=False),
            )
            task_id = result.scalar_one_or_none()
            if task_id is None:
                session.rollback()
                return None

            claimed = self._get_row(session=session, task_id=task_id)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="claimed",
                status_from=TaskStatus.PENDING,
                status_to=TaskStatus.RUNNING,
                details={"worker_id": worker_id, "attempt": claimed.attempt_count},
            )
            session.commit()
            session.refresh(claimed)
            return _to_task_view(claimed)

    def touch_task(
        self,
        *,
        task_id: str,
        log_entry: RunLogEntry | None = None,
        worker_id: str | None = None,
    ) -> TaskView | None:
        """Refresh the heartbeat of a running task and append an optional log entry.

        With ``worker_id`` the update only applies while that worker holds the lease.
        """

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ApplyTask)
                .where(*_held_by(task_id, worker_id))
                .values(heartbeat_at=to_storage_time(now), updated_at=to_storage_time(now)),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            if log_entry is not None:
                self._add_log_entry(session=session, task_id=task_id, entry=log_entry)
            session.commit()
            return _to_task_view(self._get_row(session=session, task_id=task_id))

    def append_log(self, *, task_id: str, entry: RunLogEntry) -> bool:
        """Append a run log entry regardless of task status."""

        with Session(self.engine) as session:
            row = session.exec(select(ApplyTask).where(ApplyTask.task_id == task_id)).one_or_none()
            if row is None:
                return False
            self._add_log_entry(session=session, task_id=task_id, entry=entry)
            row.updated_at = to_storage_time(utc_now())
            session.add(row)
            session.commit()
            return True

    def finalize_task(
        self,
        *,
        task_id: str,
        status: TaskStatus,
        result: TaskResult | None,
        error_message: str | None,
        log_entry: RunLogEntry | None = None,
        worker_id: str | None = None,
    ) -> TaskView | None:
        """Move a running task to completed/failed, writing its result once.

        With ``worker_id`` only the current lease holder can finalize.
        """

        if status not in {TaskStatus.COMPLETED, TaskStatus.FAILED}:
            raise ValueError(f"Unsupported terminal status: {status}")

        now = utc_now()
        with Session(self.engine) as session:
            update_result = session.exec(
                sa_update(ApplyTask)
                .where(*_held_by(task_id, worker_id))
                .values(
                    status=status.value,
                    result_json=dumps(result_to_dict(result)) if result is not None else None,
                    error_message=error_message,
                    heartbeat_at=to_storage_time(now),
                    completed_at=to_storage_time(now),
                    updated_at=to_storage_time(now),
                ),
            )
            if update_result.rowcount != 1:
                session.rollback()
                return None
            if log_entry is not None:
                self._add_log_entry(session=session, task_id=task_id, entry=log_entry)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=status.value,
                status_from=TaskStatus.RUNNING,
                status_to=status,
                details={
                    "success_count": result.success_count if result is not None else 0,
                    "failed_count": result.failed_count if result is not None else 0,
                    "error_message": error_message,
                },
            )
            session.commit()
            return _to_task_view(self._get_row(session=session, task_id=task_id))

    def cancel_task(self, *, task_id: str, owner_id: str) -> CancelOutcome:
        """Cancel a pending/running task owned by ``owner_id``.

        A task already in a terminal state is left untouched and reported
        with ``canceled=False``.
        """

        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(
                select(ApplyTask).where(
                    ApplyTask.task_id == task_id,
                    ApplyTask.owner_id == owner_id,
                ),
            ).one_or_none()
            if row is None:
                raise TaskNotFoundError(task_id)
            previous = TaskStatus(row.status)

            result = session.exec(
                sa_update(ApplyTask)
                .where(
                    col(ApplyTask.task_id) == task_id,
                    col(ApplyTask.owner_id) == owner_id,
                    col(ApplyTask.status).in_([status.value for status in CANCELABLE_STATUSES]),
                )
                .values(
                    status=TaskStatus.CANCELED.value,
                    completed_at=to_storage_time(now),
                    updated_at=to_storage_time(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                session.refresh(row)
                return CancelOutcome(canceled=False, task=_to_task_view(row))

            self._add_event(
                session=session,
                task_id=task_id,
                event_type="canceled",
                status_from=previous,
                status_to=TaskStatus.CANCELED,
                details={},
            )
            session.commit()
            session.refresh(row)
            return CancelOutcome(canceled=True, task=_to_task_view(row))

    def requeue_expired_task(self, *, task_id: str, heartbeat_before: datetime) -> bool:
        """Return a running task whose lease expired back to pending."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ApplyTask)
                .where(
                    col(ApplyTask.task_id) == task_id,
                    col(ApplyTask.status) == TaskStatus.RUNNING.value,
                    col(ApplyTask.heartbeat_at) < to_storage_time(heartbeat_before),
                    col(ApplyTask.attempt_count) < col(ApplyTask.max_attempts),
                )
                .values(
                    status=TaskStatus.PENDING.value,
                    worker_id=None,
                    started_at=None,
                    heartbeat_at=None,
                    updated_at=to_storage_time(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="lease_requeued",
                status_from=TaskStatus.RUNNING,
                status_to=TaskStatus.PENDING,
                details={"heartbeat_before": as_utc(heartbeat_before).isoformat()},
            )
            session.commit()
            return True

    def expire_task_lease(
        self,
        *,
        task_id: str,
        heartbeat_before: datetime,
        error_message: str,
    ) -> bool:
        """Fail a running task whose lease expired with no attempts left."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ApplyTask)
                .where(
                    col(ApplyTask.task_id) == task_id,
                    col(ApplyTask.status) == TaskStatus.RUNNING.value,
                    col(ApplyTask.heartbeat_at) < to_storage_time(heartbeat_before),
                )
                .values(
                    status=TaskStatus.FAILED.value,
                    error_message=error_message,
                    completed_at=to_storage_time(now),
                    updated_at=to_storage_time(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_log_entry(
                session=session,
                task_id=task_id,
                entry=RunLogEntry(message=error_message, level=LogLevel.ERROR),
            )
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="lease_expired",
                status_from=TaskStatus.RUNNING,
                status_to=TaskStatus.FAILED,
                details={"error_message": error_message},
            )
            session.commit()
            return True

    def list_stale_running_tasks(self, *, heartbeat_before: datetime) -> list[TaskView]:
        """Running tasks whose last heartbeat is older than ``heartbeat_before``."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(ApplyTask)
                .where(
                    ApplyTask.status == TaskStatus.RUNNING.value,
                    col(ApplyTask.heartbeat_at) < to_storage_time(heartbeat_before),
                )
                .order_by(col(ApplyTask.heartbeat_at).asc()),
            ).all()
        return [_to_task_view(row) for row in rows]

    def get_task(self, *, task_id: str, owner_id: str | None = None) -> TaskView | None:
        with Session(self.engine) as session:
            statement = select(ApplyTask).where(ApplyTask.task_id == task_id)
            if owner_id is not None:
                statement = statement.where(ApplyTask.owner_id == owner_id)
            row = session.exec(statement).one_or_none()
        return _to_task_view(row) if row is not None else None

    def list_tasks(
        self,
        *,
        owner_id: str | None = None,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, newest first, optionally scoped to one owner."""

        with Session(self.engine) as session:
            statement = (
                select(ApplyTask)
                .order_by(col(ApplyTask.created_at).desc(), col(ApplyTask.task_id).desc())
                .limit(limit)
            )
            if owner_id is not None:
                statement = statement.where(ApplyTask.owner_id == owner_id)
            if status is not None:
                statement = statement.where(ApplyTask.status == status.value)
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def get_task_details(self, *, task_id: str, owner_id: str | None = None) -> TaskDetails | None:
        """Return task details with run log and transition history."""

        with Session(self.engine) as session:
            statement = select(ApplyTask).where(ApplyTask.task_id == task_id)
            if owner_id is not None:
                statement = statement.where(ApplyTask.owner_id == owner_id)
            task = session.exec(statement).one_or_none()
            if task is None:
                return None

            log_rows = session.exec(
                select(ApplyTaskLogEntry)
                .where(ApplyTaskLogEntry.task_id == task_id)
                .order_by(col(ApplyTaskLogEntry.id).asc()),
            ).all()
            event_rows = session.exec(
                select(ApplyTaskEvent)
                .where(ApplyTaskEvent.task_id == task_id)
                .order_by(col(ApplyTaskEvent.id).asc()),
            ).all()

        run_log = [
            RunLogEntry(
                message=row.message,
                level=LogLevel(row.level),
                job_id=row.job_id,
                worker_id=row.worker_id,
                at=as_utc(row.created_at),
            )
            for row in log_rows
        ]
        events: list[TaskEventView] = []
        for row in event_rows:
            details = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                TaskEventView(
                    event_id=row.id or 0,
                    task_id=row.task_id,
                    event_type=row.event_type,
                    status_from=TaskStatus(row.status_from) if row.status_from else None,
                    status_to=TaskStatus(row.status_to) if row.status_to else None,
                    created_at=as_utc(row.created_at),
                    details=details,
                ),
            )
        return TaskDetails(task=_to_task_view(task), run_log=run_log, events=events)

    def _get_row(self, *, session: Session, task_id: str) -> ApplyTask:
        row = session.exec(select(ApplyTask).where(ApplyTask.task_id == task_id)).one_or_none()
        if row is None:
            raise TaskNotFoundError(task_id)
        return row

    def _add_log_entry(self, *, session: Session, task_id: str, entry: RunLogEntry) -> None:
        session.add(
            ApplyTaskLogEntry(
                task_id=task_id,
                level=entry.level.value,
                message=entry.message,
                job_id=entry.job_id,
                worker_id=entry.worker_id,
                created_at=entry.at or utc_now(),
            ),
        )

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            ApplyTaskEvent(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=utc_now(),
            ),
        )


def _held_by(task_id: str, worker_id: str | None) -> list:
    conditions = [
        col(ApplyTask.task_id) == task_id,
        col(ApplyTask.status) == TaskStatus.RUNNING.value,
    ]
    if worker_id is not None:
        conditions.append(col(ApplyTask.worker_id) == worker_id)
    return conditions


def _to_task_view(row: ApplyTask) -> TaskView:
    result =json.loads(row.result_json) if row.result_json else None
    return TaskView(
        task_id=row.task_id,
        owner_id=row.owner_id,
        task_type=row.task_type,
        status=TaskStatus(row.status),
        payload=payload_from_dict(json.loads(row.payload_json)),
        result=result_from_dict(result) if isinstance(result, dict) else None,
        error_message=row.error_message,
        attempt_count=row.attempt_count,
        max_attempts=row.max_attempts,
        worker_id=row.worker_id,
        heartbeat_at=_optional_aware(row.heartbeat_at),
        created_at=as_utc(row.created_at),
        started_at=_optional_aware(row.started_at),
        completed_at=_optional_aware(row.completed_at),
        updated_at=as_utc(row.updated_at),
    )


def _optional_aware(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None

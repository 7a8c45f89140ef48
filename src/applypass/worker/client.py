"""Queue access for the worker: in-process or over the HTTP endpoint."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Protocol

import httpx

from applypass.queue.contracts import (
    WORKER_ID_HEADER,
    WORKER_TOKEN_HEADER,
    outcome_to_dict,
    task_from_dict,
)
from applypass.queue.errors import QueueApiError, error_for_status
from applypass.queue.models import JobOutcome, RunLogEntry, TaskView
from applypass.queue.services import QueueService

logger = logging.getLogger(__name__)


class QueueClient(Protocol):
    """Worker-side view of the queue operations."""

    def claim_next(self, worker_id: str) -> TaskView | None: ...

    def heartbeat(
        self,
        task_id: str,
        log_entry: RunLogEntry | None = None,
        *,
        worker_id: str | None = None,
    ) -> None: ...

    def complete(
        self,
        task_id: str,
        outcomes: list[JobOutcome],
        *,
        worker_id: str,
        started_at: datetime | None,
        auto_submit: bool,
        log_entry: RunLogEntry | None = None,
    ) -> TaskView: ...

    def fail(  # noqa: PLR0913
        self,
        task_id: str,
        error_message: str,
        *,
        outcomes: list[JobOutcome],
        worker_id: str,
        started_at: datetime | None,
        auto_submit: bool,
        log_entry: RunLogEntry | None = None,
    ) -> TaskView: ...


class LocalQueueClient:
    """Calls the queue service directly against the shared database."""

    def __init__(self, service: QueueService) -> None:
        self.service = service

    def claim_next(self, worker_id: str) -> TaskView | None:
        return self.service.claim_next(worker_id)

    def heartbeat(
        self,
        task_id: str,
        log_entry: RunLogEntry | None = None,
        *,
        worker_id: str | None = None,
    ) -> None:
        self.service.heartbeat(task_id, log_entry, worker_id=worker_id)

    def complete(
        self,
        task_id: str,
        outcomes: list[JobOutcome],
        *,
        worker_id: str,
        started_at: datetime | None,
        auto_submit: bool,
        log_entry: RunLogEntry | None = None,
    ) -> TaskView:
        return self.service.complete(
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
        error_message: str,
        *,
        outcomes: list[JobOutcome],
        worker_id: str,
        started_at: datetime | None,
        auto_submit: bool,
        log_entry: RunLogEntry | None = None,
    ) -> TaskView:
        return self.service.fail(
            task_id,
            error_message,
            outcomes=outcomes,
            worker_id=worker_id,
            started_at=started_at,
            auto_submit=auto_submit,
            log_entry=log_entry,
        )


class HttpQueueClient:
    """Talks to ``POST /applypass-agent-queue`` with the shared worker secret.

    409 responses become ``NotRunningError`` and 401 ``UnauthorizedError``;
    transport failures and any other non-2xx status raise ``QueueApiError``.
    """

    def __init__(
        self,
        *,
        queue_url: str,
        worker_token: str,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.queue_url = queue_url
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={WORKER_TOKEN_HEADER: worker_token},
            transport=transport,
        )

    def claim_next(self, worker_id: str) -> TaskView | None:
        body = self._post(
            {"action": "claim-next", "workerId": worker_id},
            headers={WORKER_ID_HEADER: worker_id},
        )
        task = body.get("task")
        return task_from_dict(task) if isinstance(task, dict) else None

    def heartbeat(
        self,
        task_id: str,
        log_entry: RunLogEntry | None = None,
        *,
        worker_id: str | None = None,
    ) -> None:
        payload = {"action": "heartbeat", "taskId": task_id, **_log_fields(log_entry)}
        if worker_id:
            payload["workerId"] = worker_id
        self._post(payload)

    def complete(
        self,
        task_id: str,
        outcomes: list[JobOutcome],
        *,
        worker_id: str,
        started_at: datetime | None,
        auto_submit: bool,
        log_entry: RunLogEntry | None = None,
    ) -> TaskView:
        body = self._post(
            {
                "action": "complete",
                "taskId": task_id,
                "workerId": worker_id,
                "outcomes": [outcome_to_dict(outcome) for outcome in outcomes],
                "startedAt": started_at.isoformat() if started_at else None,
                "autoSubmit": auto_submit,
                **_log_fields(log_entry),
            },
        )
        return _task_from_body(body)

    def fail(  # noqa: PLR0913
        self,
        task_id: str,
        error_message: str,
        *,
        outcomes: list[JobOutcome],
        worker_id: str,
        started_at: datetime | None,
        auto_submit: bool,
        log_entry: RunLogEntry | None = None,
    ) -> TaskView:
        body = self._post(
            {
                "action": "fail",
                "taskId": task_id,
                "workerId": worker_id,
                "error": error_message,
                "outcomes": [outcome_to_dict(outcome) for outcome in outcomes],
                "startedAt": started_at.isoformat() if started_at else None,
                "autoSubmit": auto_submit,
                **_log_fields(log_entry),
            },
        )
        return _task_from_body(body)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpQueueClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _post(
        self,
        payload: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            response = self._client.post(self.queue_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Queue request %s failed: %s", payload.get("action"), exc)
            raise QueueApiError(f"Queue endpoint unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if response.is_success:
            return body

        message = str(body.get("error") or response.reason_phrase or "request failed")
        raise error_for_status(
            response.status_code,
            message,
            task_id=str(payload.get("taskId") or ""),
            task_status=body.get("taskStatus"),
        )


def _log_fields(entry: RunLogEntry | None) -> dict[str, Any]:
    if entry is None:
        return {}
    fields: dict[str, Any] = {
        "message": entry.message,
        "level": entry.level.value,
        "jobId": entry.job_id,
    }
    if entry.worker_id:
        fields["workerId"] = entry.worker_id
    return fields


def _task_from_body(body: dict[str, Any]) -> TaskView:
    task = body.get("task")
    if not isinstance(task, dict):
        raise QueueApiError("Queue response is missing the task")
    return task_from_dict(task)

"""Dispatch of decoded queue requests to the queue service."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, assert_never

from pydantic import ValidationError

from applypass.api.actions import (
    CancelAction,
    ClaimNextAction,
    CompleteAction,
    EnqueueAction,
    FailAction,
    HeartbeatAction,
    ListAction,
    QueueAction,
    WorkerAction,
    parse_action,
)
from applypass.api.auth import (
    UserIdentity,
    UserTokenVerifier,
    bearer_token,
    check_worker_token,
)
from applypass.queue.claim import normalize_worker_id
from applypass.queue.contracts import (
    WORKER_ID_HEADER,
    WORKER_TOKEN_HEADER,
    outcome_from_dict,
    task_to_dict,
)
from applypass.queue.errors import NotRunningError, QueueError, UnauthorizedError
from applypass.queue.models import DEFAULT_SOURCE, Job, LogLevel, RunLogEntry, TaskContext
from applypass.queue.services import QueueService
from applypass.storage.clock import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ApiResponse:
    status_code: int
    body: dict[str, Any]


class QueueApi:
    """Authenticates a request, runs its action and maps errors to HTTP statuses."""

    def __init__(
        self,
        *,
        service: QueueService,
        worker_token: str,
        user_verifier: UserTokenVerifier,
    ) -> None:
        self.service = service
        self.worker_token = worker_token
        self.user_verifier = user_verifier

    def handle(self, body: object, headers: Mapping[str, str]) -> ApiResponse:
        lowered = {key.lower(): value for key, value in headers.items()}
        try:
            action = parse_action(body)
            payload = self._dispatch(action, lowered)
            return ApiResponse(status_code=200, body={"ok": True, **payload})
        except ValidationError as error:
            return ApiResponse(status_code=400, body={"error": _validation_message(error)})
        except NotRunningError as error:
            return ApiResponse(
                status_code=error.status_code,
                body={"error": str(error), "taskStatus": error.status},
            )
        except QueueError as error:
            return ApiResponse(status_code=error.status_code, body={"error": str(error)})
        except Exception as error:  # noqa: BLE001
            logger.exception("Queue request failed")
            return ApiResponse(status_code=500, body={"error": str(error) or "Internal error"})

    def _dispatch(  # noqa: PLR0911
        self,
        action: QueueAction,
        headers: dict[str, str],
    ) -> dict[str, Any]:
        match action:
            case EnqueueAction():
                return self._enqueue(action, self._user(headers))
            case ListAction():
                return self._list(action, self._user(headers))
            case CancelAction():
                return self._cancel(action, self._user(headers))
            case ClaimNextAction():
                return self._claim_next(action, headers)
            case HeartbeatAction():
                return self._heartbeat(action, headers)
            case CompleteAction():
                return self._complete(action, headers)
            case FailAction():
                return self._fail(action, headers)
            case _:
                assert_never(action)

    def _enqueue(self, action: EnqueueAction, user: UserIdentity) -> dict[str, Any]:
        task = self.service.enqueue(
            owner_id=user.owner_id,
            jobs=[
                Job(
                    id=job.id.strip(),
                    title=job.title.strip(),
                    company=job.company.strip(),
                    url=job.url.strip(),
                )
                for job in action.jobs
            ],
            context=TaskContext(
                resume_id=action.resume_id,
                candidate_profile=action.candidate_profile,
                answer_memory=action.answer_memory,
                source=(action.source or "").strip() or DEFAULT_SOURCE,
                created_by=user.email or user.owner_id,
                created_at=utc_now(),
            ),
            task_type=action.task_type,
            max_attempts=action.max_attempts,
        )
        return {"taskId": task.task_id, "status": task.status.value, "task": task_to_dict(task)}

    def _list(self, action: ListAction, user: UserIdentity) -> dict[str, Any]:
        tasks = self.service.list_tasks(
            owner_id=user.owner_id,
            status=action.status,
            limit=action.limit,
        )
        return {"tasks": [task_to_dict(task) for task in tasks]}

    def _cancel(self, action: CancelAction, user: UserIdentity) -> dict[str, Any]:
        outcome = self.service.cancel(action.task_id, owner_id=user.owner_id)
        return {"canceled": outcome.canceled, "task": task_to_dict(outcome.task)}

    def _claim_next(self, action: ClaimNextAction, headers: dict[str, str]) -> dict[str, Any]:
        worker_id = self._worker(action, headers)
        task = self.service.claim_next(worker_id)
        return {"task": task_to_dict(task) if task is not None else None}

    def _heartbeat(self, action: HeartbeatAction, headers: dict[str, str]) -> dict[str, Any]:
        worker_id = self._worker(action, headers)
        entry = None
        if action.message:
            entry = RunLogEntry(
                message=action.message,
                level=action.level,
                job_id=action.job_id,
                worker_id=worker_id,
                at=utc_now(),
            )
        task = self.service.heartbeat(action.task_id, entry, worker_id=worker_id)
        return {"task": task_to_dict(task)}

    def _complete(self, action: CompleteAction, headers: dict[str, str]) -> dict[str, Any]:
        worker_id = self._worker(action, headers)
        task = self.service.complete(
            action.task_id,
            [outcome_from_dict(raw) for raw in action.outcomes],
            worker_id=worker_id,
            started_at=action.started_at,
            auto_submit=action.auto_submit,
            log_entry=_final_entry(action.message, action.level, worker_id),
        )
        return {"task": task_to_dict(task)}

    def _fail(self, action: FailAction, headers: dict[str, str]) -> dict[str, Any]:
        worker_id = self._worker(action, headers)
        task = self.service.fail(
            action.task_id,
            action.error,
            outcomes=[outcome_from_dict(raw) for raw in action.outcomes],
            worker_id=worker_id,
            started_at=action.started_at,
            auto_submit=action.auto_submit,
            log_entry=_final_entry(action.message, action.level, worker_id),
        )
        return {"task": task_to_dict(task)}

    def _user(self, headers: dict[str, str]) -> UserIdentity:
        token = bearer_token(headers.get("authorization"))
        if token is None:
            raise UnauthorizedError("Missing bearer token")
        return self.user_verifier.verify(token)

    def _worker(
        self,
        action: WorkerAction,
        headers: dict[str, str],
    ) -> str:
        presented = headers.get(WORKER_TOKEN_HEADER) or action.worker_token
        check_worker_token(presented, self.worker_token)
        return normalize_worker_id(action.worker_id or headers.get(WORKER_ID_HEADER))


def _final_entry(message: str | None, level: LogLevel, worker_id: str) -> RunLogEntry | None:
    if not message:
        return None
    return RunLogEntry(message=message, level=level, worker_id=worker_id, at=utc_now())


def _validation_message(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return "Invalid request: " + "; ".join(parts)

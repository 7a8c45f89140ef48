"""Typed request shapes for the seven queue actions.

The request body is a tagged union on ``action``; fields are camelCase on
the wire. A body without ``action`` is an ``enqueue`` request.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from applypass.queue.errors import InvalidPayloadError
from applypass.queue.models import DEFAULT_TASK_TYPE, LogLevel, TaskStatus


class _Action(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class JobIn(_Action):
    id: str
    title: str
    company: str
    url: str = ""


class EnqueueAction(_Action):
    action: Literal["enqueue"] = "enqueue"
    jobs: list[JobIn]
    task_type: str = DEFAULT_TASK_TYPE
    resume_id: str | None = None
    candidate_profile: dict[str, Any] | None = None
    answer_memory: dict[str, Any] | None = None
    source: str | None = None
    max_attempts: int | None = Field(default=None, ge=1)


class ListAction(_Action):
    action: Literal["list"]
    status: TaskStatus | None = None
    limit: int | None = Field(default=None, ge=1)


class CancelAction(_Action):
    action: Literal["cancel"]
    task_id: str = Field(min_length=1)


class _WorkerAction(_Action):
    worker_id: str | None = None
    worker_token: str | None = None


class ClaimNextAction(_WorkerAction):
    action: Literal["claim-next"]


class HeartbeatAction(_WorkerAction):
    action: Literal["heartbeat"]
    task_id: str = Field(min_length=1)
    message: str | None = None
    level: LogLevel = LogLevel.INFO
    job_id: str | None = None


class CompleteAction(_WorkerAction):
    action: Literal["complete"]
    task_id: str = Field(min_length=1)
    outcomes: list[dict[str, Any]]
    started_at: datetime | None = None
    auto_submit: bool = False
    message: str | None = None
    level: LogLevel = LogLevel.INFO


class FailAction(_WorkerAction):
    action: Literal["fail"]
    task_id: str = Field(min_length=1)
    error: str | None = None
    outcomes: list[dict[str, Any]] = Field(default_factory=list)
    started_at: datetime | None = None
    auto_submit: bool = False
    message: str | None = None
    level: LogLevel = LogLevel.ERROR


WorkerAction = ClaimNextAction | HeartbeatAction | CompleteAction | FailAction

QueueAction = Annotated[
    EnqueueAction
    | ListAction
    | CancelAction
    | ClaimNextAction
    | HeartbeatAction
    | CompleteAction
    | FailAction,
    Field(discriminator="action"),
]

_QUEUE_ACTION_ADAPTER: TypeAdapter[QueueAction] = TypeAdapter(QueueAction)


def parse_action(body: object) -> QueueAction:
    """Validate a decoded JSON body into one of the action models.

    Raises ``InvalidPayloadError`` for non-object bodies and pydantic's
    ``ValidationError`` for shape errors.
    """

    if not isinstance(body, dict):
        raise InvalidPayloadError("Request body must be a JSON object")
    if not body.get("action"):
        body = {**body, "action": "enqueue"}
    return _QUEUE_ACTION_ADAPTER.validate_python(body)

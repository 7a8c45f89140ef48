"""Queue error taxonomy shared by services, API and worker client."""

from __future__ import annotations


class QueueError(RuntimeError):
    """Base class for queue errors surfaced to callers."""

    status_code = 500


class InvalidPayloadError(QueueError):
    """Request payload failed shape validation; nothing was persisted."""

    status_code = 400


class UnauthorizedError(QueueError):
    """Missing or invalid user token or worker secret."""

    status_code = 401


class TaskNotFoundError(QueueError):
    """Task does not exist or is not visible to the caller."""

    status_code = 404

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class NotRunningError(QueueError):
    """Guarded transition lost: the task is no longer `running` under the caller's lease."""

    status_code = 409

    def __init__(
        self,
        task_id: str,
        status: str | None = None,
        *,
        held_by: str | None = None,
    ) -> None:
        if held_by is not None:
            message = f"Task is leased to another worker: {task_id} (worker={held_by})"
        else:
            detail = f" (status={status})" if status else ""
            message = f"Task is not running: {task_id}{detail}"
        super().__init__(message)
        self.task_id = task_id
        self.status = status
        self.held_by = held_by


class QueueApiError(QueueError):
    """Queue endpoint unreachable or returned an unexpected response."""

    status_code = 502


def error_for_status(
    status_code: int,
    message: str,
    *,
    task_id: str = "",
    task_status: str | None = None,
) -> QueueError:
    """Rebuild the queue error a remote endpoint reported with ``status_code``."""

    if status_code == InvalidPayloadError.status_code:
        return InvalidPayloadError(message)
    if status_code == UnauthorizedError.status_code:
        return UnauthorizedError(message)
    if status_code == TaskNotFoundError.status_code:
        return TaskNotFoundError(task_id)
    if status_code == NotRunningError.status_code:
        return NotRunningError(task_id, task_status)
    return QueueApiError(f"HTTP {status_code}: {message}")

"""JSON contracts for task payloads, outcomes and results.

The same camelCase shape is stored in the task row, returned by the queue
endpoint and exchanged with the automation program.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from applypass.queue.models import (
    Job,
    JobOutcome,
    JobStatus,
    LogLevel,
    RunLogEntry,
    TaskContext,
    TaskDetails,
    TaskEventView,
    TaskPayload,
    TaskResult,
    TaskStatus,
    TaskView,
)
from applypass.storage.clock import parse_timestamp

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

WORKER_TOKEN_HEADER = "x-applypass-worker-token"
WORKER_ID_HEADER = "x-worker-id"


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True), "utf-8")


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload


def dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True)


def job_to_dict(job: Job) -> dict[str, Any]:
    return {"id": job.id, "title": job.title, "company": job.company, "url": job.url}


def job_from_dict(raw: dict[str, Any]) -> Job:
    return Job(
        id=_text(raw.get("id")),
        title=_text(raw.get("title")),
        company=_text(raw.get("company")),
        url=_text(raw.get("url")),
    )


def payload_to_dict(payload: TaskPayload) -> dict[str, Any]:
    return {
        "jobs": [job_to_dict(job) for job in payload.jobs],
        **context_to_dict(payload.context),
    }


def context_to_dict(context: TaskContext) -> dict[str, Any]:
    return {
        "resumeId": context.resume_id,
        "candidateProfile": context.candidate_profile,
        "answerMemory": context.answer_memory,
        "source": context.source,
        "createdBy": context.created_by,
        "createdAt": _iso(context.created_at),
    }


def payload_from_dict(raw: dict[str, Any]) -> TaskPayload:
    raw_jobs = raw.get("jobs")
    if not isinstance(raw_jobs, list):
        raise TypeError("payload.jobs must be an array")
    jobs = [job_from_dict(item) for item in raw_jobs if isinstance(item, dict)]
    return TaskPayload(jobs=jobs, context=context_from_dict(raw))


def context_from_dict(raw: dict[str, Any]) -> TaskContext:
    return TaskContext(
        resume_id=_optional_text(raw.get("resumeId")),
        candidate_profile=_optional_object(raw.get("candidateProfile")),
        answer_memory=_optional_object(raw.get("answerMemory")),
        source=_text(raw.get("source")) or "applypass_workspace",
        created_by=_optional_text(raw.get("createdBy")),
        created_at=_optional_datetime(raw.get("createdAt")),
    )


def outcome_to_dict(outcome: JobOutcome) -> dict[str, Any]:
    return {
        "jobId": outcome.job_id,
        "status": outcome.status.value,
        "title": outcome.title,
        "company": outcome.company,
        "url": outcome.url,
        "filledFieldCount": outcome.filled_field_count,
        "totalFieldCount": outcome.total_field_count,
        "submitButton": outcome.submit_button,
        "submitted": outcome.submitted,
        "screenshotRef": outcome.screenshot_ref,
        "error": outcome.error,
        "durationMs": outcome.duration_ms,
    }


def outcome_from_dict(raw: dict[str, Any]) -> JobOutcome:
    """Decode one outcome; unknown status values are treated as failures."""

    status_raw = _text(raw.get("status"))
    try:
        status = JobStatus(status_raw)
    except ValueError:
        status = JobStatus.FAILED
    return JobOutcome(
        job_id=_text(raw.get("jobId")),
        status=status,
        title=_text(raw.get("title")),
        company=_text(raw.get("company")),
        url=_text(raw.get("url")),
        filled_field_count=_int(raw.get("filledFieldCount")),
        total_field_count=_int(raw.get("totalFieldCount")),
        submit_button=_optional_text(raw.get("submitButton")),
        submitted=bool(raw.get("submitted", False)),
        screenshot_ref=_optional_text(raw.get("screenshotRef")),
        error=_optional_text(raw.get("error")),
        duration_ms=_int(raw.get("durationMs")),
    )


def result_to_dict(result: TaskResult) -> dict[str, Any]:
    return {
        "outcomes": [outcome_to_dict(outcome) for outcome in result.outcomes],
        "successCount": result.success_count,
        "failedCount": result.failed_count,
        "workerId": result.worker_id,
        "startedAt": _iso(result.started_at),
        "completedAt": _iso(result.completed_at),
        "autoSubmit": result.auto_submit,
    }


def result_from_dict(raw: dict[str, Any]) -> TaskResult:
    raw_outcomes = raw.get("outcomes")
    outcomes = (
        [outcome_from_dict(item) for item in raw_outcomes if isinstance(item, dict)]
        if isinstance(raw_outcomes, list)
        else []
    )
    return TaskResult(
        outcomes=outcomes,
        success_count=_int(raw.get("successCount")),
        failed_count=_int(raw.get("failedCount")),
        worker_id=_optional_text(raw.get("workerId")),
        started_at=_optional_datetime(raw.get("startedAt")),
        completed_at=_optional_datetime(raw.get("completedAt")),
        auto_submit=bool(raw.get("autoSubmit", False)),
    )


def log_entry_to_dict(entry: RunLogEntry) -> dict[str, Any]:
    return {
        "at": _iso(entry.at),
        "level": entry.level.value,
        "message": entry.message,
        "jobId": entry.job_id,
        "workerId": entry.worker_id,
    }


def log_entry_from_dict(raw: dict[str, Any]) -> RunLogEntry:
    level_raw = _text(raw.get("level")) or LogLevel.INFO.value
    try:
        level = LogLevel(level_raw)
    except ValueError:
        level = LogLevel.INFO
    return RunLogEntry(
        message=_text(raw.get("message")),
        level=level,
        job_id=_optional_text(raw.get("jobId")),
        worker_id=_optional_text(raw.get("workerId")),
        at=_optional_datetime(raw.get("at")),
    )


def task_to_dict(task: TaskView) -> dict[str, Any]:
    return {
        "id": task.task_id,
        "ownerId": task.owner_id,
        "taskType": task.task_type,
        "status": task.status.value,
        "payload": payload_to_dict(task.payload),
        "result": result_to_dict(task.result) if task.result is not None else None,
        "errorMessage": task.error_message,
        "attemptCount": task.attempt_count,
        "maxAttempts": task.max_attempts,
        "workerId": task.worker_id,
        "heartbeatAt": _iso(task.heartbeat_at),
        "createdAt": _iso(task.created_at),
        "startedAt": _iso(task.started_at),
        "completedAt": _iso(task.completed_at),
        "updatedAt": _iso(task.updated_at),
    }


def task_from_dict(raw: dict[str, Any]) -> TaskView:
    """Decode a task returned by the queue endpoint."""

    raw_payload = raw.get("payload")
    raw_result = raw.get("result")
    return TaskView(
        task_id=_text(raw.get("id")),
        owner_id=_text(raw.get("ownerId")),
        task_type=_text(raw.get("taskType")),
        status=TaskStatus(_text(raw.get("status"))),
        payload=(
            payload_from_dict(raw_payload)
            if isinstance(raw_payload, dict)
            else TaskPayload(jobs=[])
        ),
        result=result_from_dict(raw_result) if isinstance(raw_result, dict) else None,
        error_message=_optional_text(raw.get("errorMessage")),
        attempt_count=_int(raw.get("attemptCount")),
        max_attempts=_int(raw.get("maxAttempts")),
        worker_id=_optional_text(raw.get("workerId")),
        heartbeat_at=_optional_datetime(raw.get("heartbeatAt")),
        created_at=_optional_datetime(raw.get("createdAt")) or _EPOCH,
        started_at=_optional_datetime(raw.get("startedAt")),
        completed_at=_optional_datetime(raw.get("completedAt")),
        updated_at=_optional_datetime(raw.get("updatedAt")) or _EPOCH,
    )


def details_to_dict(details: TaskDetails) -> dict[str, Any]:
    return {
        **task_to_dict(details.task),
        "runLog": [log_entry_to_dict(entry) for entry in details.run_log],
        "events": [event_to_dict(event) for event in details.events],
    }


def event_to_dict(event: TaskEventView) -> dict[str, Any]:
    return {
        "eventType": event.event_type,
        "statusFrom": event.status_from.value if event.status_from is not None else None,
        "statusTo": event.status_to.value if event.status_to is not None else None,
        "createdAt": _iso(event.created_at),
        "details": event.details,
    }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _optional_datetime(value: object) -> datetime | None:
    if isinstance(value, str) and value:
        return parse_timestamp(value)
    return None


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_text(value: object) -> str | None:
    text = _text(value)
    return text or None


def _optional_object(value: object) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def _int(value: object) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0

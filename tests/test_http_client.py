from __future__ import annotations

import json

import allure
import httpx
import pytest

from applypass.api.auth import StaticTokenVerifier
from applypass.api.dispatcher import QueueApi
from applypass.queue.errors import NotRunningError, QueueApiError, UnauthorizedError
from applypass.queue.models import JobOutcome, JobStatus, LogLevel, RunLogEntry, TaskStatus
from applypass.queue.services import QueueService
from applypass.worker.automation import AutomationRequest
from applypass.worker.client import HttpQueueClient
from applypass.worker.runtime import ApplyPassWorker
from conftest import make_context, make_jobs

pytestmark = [
    allure.epic("Worker Runtime"),
    allure.feature("Remote Queue Client"),
]

QUEUE_URL = "https://queue.test/applypass-agent-queue"
SECRET = "worker-secret"


class ProcessEverything:
    def process(self, request: AutomationRequest) -> JobOutcome:
        return JobOutcome(
            job_id=request.job.id,
            status=JobStatus.PROCESSED,
            filled_field_count=2,
            total_field_count=6,
        )


def _transport(service: QueueService, seen: list[httpx.Request] | None = None):
    queue_api = QueueApi(
        service=service,
        worker_token=SECRET,
        user_verifier=StaticTokenVerifier({}),
    )

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        response = queue_api.handle(json.loads(request.content), request.headers)
        return httpx.Response(response.status_code, json=response.body)

    return httpx.MockTransport(handler)


def _client(transport: httpx.BaseTransport, *, token: str = SECRET) -> HttpQueueClient:
    return HttpQueueClient(queue_url=QUEUE_URL, worker_token=token, transport=transport)


def test_worker_processes_task_through_http_client(service: QueueService) -> None:
    task = service.enqueue(owner_id="owner-a", jobs=make_jobs(2), context=make_context())
    seen: list[httpx.Request] = []

    with _client(_transport(service, seen)) as client:
        worker = ApplyPassWorker(
            client=client,
            automation=ProcessEverything(),
            worker_id="remote-worker",
            poll_interval_seconds=0,
        )
        summary = worker.run_once()

    assert summary.completed == 1
    assert summary.jobs_processed == 2
    details = service.get_task_details(task.task_id)
    assert details.task.status == TaskStatus.COMPLETED
    assert details.task.worker_id == "remote-worker"
    assert details.task.result is not None
    assert details.task.result.worker_id == "remote-worker"
    assert details.task.result.success_count == 2
    assert details.run_log[0].message == "Started task with 2 jobs"
    assert details.run_log[1].job_id == "job-0"

    actions = [json.loads(request.content)["action"] for request in seen]
    assert actions == ["claim-next", "heartbeat", "heartbeat", "heartbeat", "complete"]
    assert all(request.headers["x-applypass-worker-token"] == SECRET for request in seen)
    assert seen[0].headers["x-worker-id"] == "remote-worker"


def test_claim_next_decodes_task_payload(service: QueueService) -> None:
    task = service.enqueue(owner_id="owner-a", jobs=make_jobs(1), context=make_context())

    with _client(_transport(service)) as client:
        claimed = client.claim_next("worker-a")
        empty = client.claim_next("worker-a")

    assert claimed is not None
    assert claimed.task_id == task.task_id
    assert claimed.status == TaskStatus.RUNNING
    assert claimed.payload.jobs == task.payload.jobs
    assert claimed.payload.context.candidate_profile == {
        "firstName": "Ada",
        "lastName": "Lovelace",
        "email": "ada@example.com",
    }
    assert claimed.started_at is not None
    assert empty is None


def test_heartbeat_conflict_raises_not_running(service: QueueService) -> None:
    task = service.enqueue(owner_id="owner-a", jobs=make_jobs(1))

    with _client(_transport(service)) as client, pytest.raises(NotRunningError) as error:
        client.heartbeat(task.task_id, RunLogEntry(message="beat", level=LogLevel.WARN))

    assert error.value.task_id == task.task_id
    assert error.value.status == "pending"


def test_wrong_secret_raises_unauthorized(service: QueueService) -> None:
    with _client(_transport(service), token="wrong") as client, pytest.raises(UnauthorizedError):
        client.claim_next("worker-a")


def test_server_error_raises_queue_api_error() -> None:
    transport = httpx.MockTransport(lambda _: httpx.Response(503, text="maintenance"))

    with _client(transport) as client, pytest.raises(QueueApiError, match="HTTP 503"):
        client.claim_next("worker-a")


def test_transport_failure_raises_queue_api_error() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with _client(httpx.MockTransport(refuse)) as client, pytest.raises(
        QueueApiError,
        match="unreachable",
    ):
        client.claim_next("worker-a")


def test_complete_response_without_task_is_rejected() -> None:
    transport = httpx.MockTransport(lambda _: httpx.Response(200, json={"ok": True}))

    with _client(transport) as client, pytest.raises(QueueApiError, match="missing the task"):
        client.complete(
            "task-1",
            [],
            worker_id="worker-a",
            started_at=None,
            auto_submit=False,
        )

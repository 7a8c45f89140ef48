from __future__ import annotations

from pathlib import Path
from typing import Any

import allure
import pytest
from fastapi.testclient import TestClient

from applypass.api.app import QUEUE_PATH, create_app
from applypass.api.auth import StaticTokenVerifier
from applypass.config import AuthSettings, Settings
from applypass.queue.services import QueueService

pytestmark = [
    allure.epic("Queue Endpoint"),
    allure.feature("Action Dispatch & Auth"),
]

WORKER_SECRET = "worker-secret"
USER_A = {"Authorization": "Bearer token-a"}
USER_B = {"Authorization": "Bearer token-b"}
WORKER = {"x-applypass-worker-token": WORKER_SECRET}


def _jobs(count: int) -> list[dict[str, str]]:
    return [
        {
            "id": f"job-{index}",
            "title": f"Engineer {index}",
            "company": f"Company {index}",
            "url": f"https://jobs.example.com/{index}",
        }
        for index in range(count)
    ]


def _client(service: QueueService, tmp_path: Path, *, worker_token: str = WORKER_SECRET):
    settings = Settings(db_path=tmp_path / "api.db", auth=AuthSettings(worker_token=worker_token))
    app = create_app(
        settings,
        service=service,
        user_verifier=StaticTokenVerifier({"token-a": "owner-a", "token-b": "owner-b"}),
    )
    return TestClient(app)


def _post(client: TestClient, body: Any, headers: dict[str, str] | None = None):
    return client.post(QUEUE_PATH, json=body, headers=headers or {})


@pytest.fixture()
def client(service: QueueService, tmp_path: Path) -> TestClient:
    return _client(service, tmp_path)


def _enqueue(client: TestClient, count: int = 3, headers: dict[str, str] = USER_A) -> str:
    response = _post(client, {"action": "enqueue", "jobs": _jobs(count)}, headers)
    assert response.status_code == 200
    return response.json()["taskId"]


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_full_lifecycle_over_http(client: TestClient) -> None:
    enqueued = _post(
        client,
        {
            "jobs": _jobs(3),
            "resumeId": "resume-1",
            "candidateProfile": {"firstName": "Ada"},
            "answerMemory": {"sponsorship": "no"},
        },
        USER_A,
    )
    assert enqueued.status_code == 200
    body = enqueued.json()
    assert body["ok"] is True
    assert body["status"] == "pending"
    task_id = body["taskId"]
    assert body["task"]["result"] is None
    assert body["task"]["ownerId"] == "owner-a"
    assert body["task"]["payload"]["resumeId"] == "resume-1"
    assert body["task"]["payload"]["source"] == "applypass_workspace"
    assert body["task"]["payload"]["createdBy"] == "owner-a"

    claimed = _post(client, {"action": "claim-next", "workerId": "worker-a"}, WORKER)
    assert claimed.status_code == 200
    task = claimed.json()["task"]
    assert task["id"] == task_id
    assert task["status"] == "running"
    assert task["workerId"] == "worker-a"
    assert task["startedAt"] is not None

    for index in range(2):
        beat = _post(
            client,
            {
                "action": "heartbeat",
                "taskId": task_id,
                "workerId": "worker-a",
                "message": f"Processed job {index}",
                "jobId": f"job-{index}",
            },
            WORKER,
        )
        assert beat.status_code == 200
        assert beat.json()["task"]["heartbeatAt"] is not None

    completed = _post(
        client,
        {
            "action": "complete",
            "taskId": task_id,
            "workerId": "worker-a",
            "outcomes": [
                {"jobId": "job-0", "status": "processed", "filledFieldCount": 4},
                {"jobId": "job-1", "status": "processed"},
                {"jobId": "job-2", "status": "failed", "error": "Page error"},
            ],
            "autoSubmit": False,
        },
        WORKER,
    )
    assert completed.status_code == 200
    result = completed.json()["task"]
    assert result["status"] == "completed"
    assert result["result"]["successCount"] == 2
    assert result["result"]["failedCount"] == 1
    assert result["result"]["outcomes"][0]["filledFieldCount"] == 4
    assert result["result"]["outcomes"][2]["error"] == "Page error"


def test_claim_next_returns_null_when_queue_is_empty(client: TestClient) -> None:
    response = _post(client, {"action": "claim-next"}, WORKER)

    assert response.status_code == 200
    assert response.json() == {"ok": True, "task": None}


def test_worker_secret_is_accepted_from_body(client: TestClient) -> None:
    _enqueue(client)

    response = _post(client, {"action": "claim-next", "workerToken": WORKER_SECRET})

    assert response.status_code == 200
    assert response.json()["task"]["workerId"] == "applypass-worker"


def test_worker_id_header_is_used_when_body_has_none(client: TestClient) -> None:
    _enqueue(client)

    response = _post(client, {"action": "claim-next"}, {**WORKER, "x-worker-id": "worker-h"})

    assert response.json()["task"]["workerId"] == "worker-h"


@pytest.mark.parametrize(
    "headers",
    [{}, {"x-applypass-worker-token": "wrong"}, USER_A],
)
def test_worker_actions_reject_bad_secret(client: TestClient, headers: dict[str, str]) -> None:
    _enqueue(client)

    response = _post(client, {"action": "claim-next"}, headers)

    assert response.status_code == 401
    assert "error" in response.json()


def test_empty_configured_worker_secret_always_rejects(
    service: QueueService,
    tmp_path: Path,
) -> None:
    client = _client(service, tmp_path, worker_token="")

    response = _post(client, {"action": "claim-next", "workerToken": ""}, WORKER)

    assert response.status_code == 401


@pytest.mark.parametrize(
    "headers",
    [{}, {"Authorization": "Bearer unknown"}, {"Authorization": "Basic token-a"}, WORKER],
)
def test_user_actions_require_valid_bearer(client: TestClient, headers: dict[str, str]) -> None:
    response = _post(client, {"action": "list"}, headers)

    assert response.status_code == 401


@pytest.mark.parametrize("count", [0, 26])
def test_enqueue_rejects_job_count_out_of_bounds(client: TestClient, count: int) -> None:
    response = _post(client, {"action": "enqueue", "jobs": _jobs(count)}, USER_A)

    assert response.status_code == 400
    assert "jobs must contain" in response.json()["error"]
    listed = _post(client, {"action": "list"}, USER_A)
    assert listed.json()["tasks"] == []


@pytest.mark.parametrize(
    "body",
    [
        {"action": "enqueue", "jobs": [{"id": "j1", "company": "Acme"}]},
        {"action": "enqueue"},
        {"action": "explode"},
        {"action": "cancel"},
        {"action": "heartbeat", "taskId": ""},
        {"action": "complete", "taskId": "t1"},
        ["not", "an", "object"],
    ],
)
def test_malformed_requests_are_rejected(client: TestClient, body: Any) -> None:
    response = _post(client, body, {**USER_A, **WORKER})

    assert response.status_code == 400
    assert response.json()["error"]


def test_invalid_json_body_is_rejected(client: TestClient) -> None:
    response = client.post(
        QUEUE_PATH,
        content=b"{not json",
        headers={**USER_A, "content-type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Request body is not valid JSON"}


def test_list_is_owner_scoped_and_filterable(client: TestClient) -> None:
    first = _enqueue(client, headers=USER_A)
    second = _enqueue(client, headers=USER_A)
    _enqueue(client, headers=USER_B)
    _post(client, {"action": "cancel", "taskId": first}, USER_A)

    listed = _post(client, {"action": "list"}, USER_A).json()["tasks"]
    assert [task["id"] for task in listed] == [second, first]

    pending = _post(client, {"action": "list", "status": "pending"}, USER_A).json()["tasks"]
    assert [task["id"] for task in pending] == [second]

    limited = _post(client, {"action": "list", "limit": 1}, USER_A).json()["tasks"]
    assert len(limited) == 1


def test_cancel_is_owner_scoped_and_terminal_cancel_is_a_no_op(client: TestClient) -> None:
    task_id = _enqueue(client)

    foreign = _post(client, {"action": "cancel", "taskId": task_id}, USER_B)
    assert foreign.status_code == 404

    canceled = _post(client, {"action": "cancel", "taskId": task_id}, USER_A)
    assert canceled.status_code == 200
    assert canceled.json()["canceled"] is True
    assert canceled.json()["task"]["status"] == "canceled"

    again = _post(client, {"action": "cancel", "taskId": task_id}, USER_A)
    assert again.status_code == 200
    assert again.json()["canceled"] is False


def test_heartbeat_on_non_running_task_returns_conflict(client: TestClient) -> None:
    task_id = _enqueue(client)

    response = _post(client, {"action": "heartbeat", "taskId": task_id}, WORKER)

    assert response.status_code == 409
    assert response.json()["taskStatus"] == "pending"


def test_complete_after_cancel_returns_conflict(client: TestClient) -> None:
    task_id = _enqueue(client)
    _post(client, {"action": "claim-next"}, WORKER)
    _post(client, {"action": "cancel", "taskId": task_id}, USER_A)

    response = _post(
        client,
        {"action": "complete", "taskId": task_id, "outcomes": [{"jobId": "job-0"}]},
        WORKER,
    )

    assert response.status_code == 409
    assert response.json()["taskStatus"] == "canceled"


def test_complete_from_worker_without_lease_returns_conflict(client: TestClient) -> None:
    task_id = _enqueue(client)
    _post(client, {"action": "claim-next", "workerId": "worker-b"}, WORKER)

    response = _post(
        client,
        {
            "action": "complete",
            "taskId": task_id,
            "workerId": "worker-a",
            "outcomes": [{"jobId": "job-0", "status": "processed"}],
        },
        WORKER,
    )

    assert response.status_code == 409
    assert response.json()["taskStatus"] == "running"
    assert "worker-b" in response.json()["error"]
    listed = _post(client, {"action": "list"}, USER_A).json()["tasks"]
    assert listed[0]["status"] == "running"
    assert listed[0]["result"] is None


def test_heartbeat_on_unknown_task_returns_not_found(client: TestClient) -> None:
    response = _post(client, {"action": "heartbeat", "taskId": "missing"}, WORKER)

    assert response.status_code == 404


def test_fail_action_records_error(client: TestClient) -> None:
    task_id = _enqueue(client)
    _post(client, {"action": "claim-next"}, WORKER)

    response = _post(
        client,
        {"action": "fail", "taskId": task_id, "error": "Browser crashed"},
        WORKER,
    )

    assert response.status_code == 200
    task = response.json()["task"]
    assert task["status"] == "failed"
    assert task["errorMessage"] == "Browser crashed"
    assert task["result"]["outcomes"] == []


def test_unexpected_errors_map_to_500(
    client: TestClient,
    service: QueueService,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def boom(**_: object) -> None:
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(service, "list_tasks", boom)

    response = _post(client, {"action": "list"}, USER_A)

    assert response.status_code == 500
    assert response.json() == {"error": "disk on fire"}

from __future__ import annotations

import allure
import pytest

from applypass.queue.errors import InvalidPayloadError
from applypass.queue.gateway import MAX_JOBS_PER_TASK, validate_jobs
from applypass.queue.models import Job, TaskStatus
from applypass.queue.services import QueuePolicy, QueueService
from conftest import make_context, make_jobs

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Enqueue Gateway"),
]


@pytest.mark.parametrize("count", [1, MAX_JOBS_PER_TASK])
def test_enqueue_accepts_batch_within_bounds(service: QueueService, count: int) -> None:
    task = service.enqueue(owner_id="owner-a", jobs=make_jobs(count), context=make_context())

    assert task.status == TaskStatus.PENDING
    assert task.result is None
    assert len(task.payload.jobs) == count
    assert task.task_type == "bulk_apply"


@pytest.mark.parametrize("count", [0, MAX_JOBS_PER_TASK + 1])
def test_enqueue_rejects_batch_out_of_bounds(service: QueueService, count: int) -> None:
    with pytest.raises(InvalidPayloadError, match="jobs must contain"):
        service.enqueue(owner_id="owner-a", jobs=make_jobs(count))

    assert service.repository.list_tasks() == []


@pytest.mark.parametrize(
    ("job", "missing"),
    [
        (Job(id="", title="Engineer", company="Acme"), "id"),
        (Job(id="j1", title="  ", company="Acme"), "title"),
        (Job(id="j1", title="Engineer", company=""), "company"),
    ],
)
def test_enqueue_rejects_job_without_identifying_fields(
    service: QueueService,
    job: Job,
    missing: str,
) -> None:
    with pytest.raises(InvalidPayloadError, match=f"jobs\\[1\\] is missing {missing}"):
        service.enqueue(owner_id="owner-a", jobs=[*make_jobs(1), job])

    assert service.repository.list_tasks() == []


def test_enqueue_does_not_validate_urls(service: QueueService) -> None:
    task = service.enqueue(
        owner_id="owner-a",
        jobs=[Job(id="j1", title="Engineer", company="Acme", url="not a url")],
    )

    assert task.payload.jobs[0].url == "not a url"


def test_enqueue_applies_attempt_policy(service: QueueService) -> None:
    default = service.enqueue(owner_id="owner-a", jobs=make_jobs(1))
    custom = service.enqueue(owner_id="owner-a", jobs=make_jobs(1), max_attempts=5)

    assert default.max_attempts == 3
    assert custom.max_attempts == 5
    with pytest.raises(InvalidPayloadError, match="maxAttempts"):
        service.enqueue(owner_id="owner-a", jobs=make_jobs(1), max_attempts=0)


def test_enqueue_requires_owner(service: QueueService) -> None:
    with pytest.raises(InvalidPayloadError, match="owner id is required"):
        service.enqueue(owner_id=" ", jobs=make_jobs(1))


def test_enqueue_honors_configured_job_cap(service: QueueService) -> None:
    narrow = QueueService(repository=service.repository, policy=QueuePolicy(max_jobs=2))

    narrow.enqueue(owner_id="owner-a", jobs=make_jobs(2))
    with pytest.raises(InvalidPayloadError, match="at most 2 entries, got 3"):
        narrow.enqueue(owner_id="owner-a", jobs=make_jobs(3))


def test_validate_jobs_has_no_side_effects_on_input() -> None:
    jobs = make_jobs(3)
    validate_jobs(jobs)

    assert [job.id for job in jobs] == ["job-0", "job-1", "job-2"]


def test_configured_cap_cannot_exceed_hard_limit(service: QueueService) -> None:
    wide = QueueService(repository=service.repository, policy=QueuePolicy(max_jobs=100))

    assert wide.gateway.max_jobs == MAX_JOBS_PER_TASK
    with pytest.raises(InvalidPayloadError, match="at most 25 entries, got 26"):
        wide.enqueue(owner_id="owner-a", jobs=make_jobs(26))
    with pytest.raises(InvalidPayloadError, match="at most 25 entries, got 26"):
        validate_jobs(make_jobs(26), max_jobs=100)
    assert wide.list_tasks(owner_id="owner-a") == []

"""Shared test fixtures."""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

from applypass.queue.models import Job, TaskContext
from applypass.queue.repository import TaskRepository
from applypass.queue.services import QueuePolicy, QueueService

ECHO_AUTOMATION_COMMAND = (
    f"{sys.executable} -m applypass.worker.automation.echo_automation "
    "--job-file {job_file} --result-file {result_file}"
)


def make_jobs(count: int, *, prefix: str = "job") -> list[Job]:
    return [
        Job(
            id=f"{prefix}-{index}",
            title=f"Engineer {index}",
            company=f"Company {index}",
            url=f"https://jobs.example.com/{prefix}/{index}",
        )
        for index in range(count)
    ]


def make_context() -> TaskContext:
    return TaskContext(
        resume_id="resume-1",
        candidate_profile={"firstName": "Ada", "lastName": "Lovelace", "email": "ada@example.com"},
        answer_memory={"sponsorship": "no"},
    )


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[TaskRepository]:
    repo = TaskRepository(tmp_path / "applypass.db")
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def service(repository: TaskRepository) -> QueueService:
    return QueueService(repository=repository, policy=QueuePolicy(lease_timeout_seconds=60))


@pytest.fixture()
def subprocess_pythonpath(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make ``applypass`` importable by automation subprocesses."""

    src_dir = str(Path(__file__).resolve().parents[1] / "src")
    existing = os.environ.get("PYTHONPATH")
    monkeypatch.setenv("PYTHONPATH", os.pathsep.join([src_dir, existing]) if existing else src_dir)

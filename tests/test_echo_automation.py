from __future__ import annotations

from pathlib import Path

import allure

from applypass.queue.contracts import load_json, write_json
from applypass.queue.models import JobStatus
from applypass.worker.automation.echo_automation import (
    CONTACT_FIELDS,
    SUBMIT_BUTTON_LABEL,
    build_outcome,
    main,
)

pytestmark = [
    allure.epic("Worker Runtime"),
    allure.feature("Page Automation"),
]


def _document(url: str, **extra: object) -> dict[str, object]:
    return {
        "taskId": "task-1",
        "jobIndex": 0,
        "job": {"id": "job-1", "title": "Engineer", "company": "Acme", "url": url},
        "context": {"candidateProfile": {"firstName": "Ada", "email": "ada@example.com"}},
        **extra,
    }


def test_build_outcome_counts_profile_fields() -> None:
    outcome = build_outcome(_document("https://jobs.example.com/1"))

    assert outcome.status is JobStatus.PROCESSED
    assert outcome.job_id == "job-1"
    assert outcome.filled_field_count == 2
    assert outcome.total_field_count == len(CONTACT_FIELDS)
    assert outcome.submit_button == SUBMIT_BUTTON_LABEL
    assert outcome.submitted is False
    assert outcome.screenshot_ref is None


def test_build_outcome_submits_and_references_screenshot() -> None:
    outcome = build_outcome(
        _document("https://jobs.example.com/1", autoSubmit=True, screenshotDir="/tmp/shots"),
    )

    assert outcome.submitted is True
    assert outcome.screenshot_ref == str(Path("/tmp/shots") / "job-1.png")


def test_build_outcome_fails_unreachable_host() -> None:
    outcome = build_outcome(_document("https://careers.acme.invalid/1"))

    assert outcome.status is JobStatus.FAILED
    assert outcome.error == "Page could not be loaded: careers.acme.invalid"
    assert outcome.filled_field_count == 0


def test_main_writes_result_file(tmp_path: Path) -> None:
    job_file = tmp_path / "job.json"
    result_file = tmp_path / "out" / "result.json"
    write_json(job_file, _document("https://jobs.example.com/1"))

    exit_code = main(["--job-file", str(job_file), "--result-file", str(result_file)])

    assert exit_code == 0
    result = load_json(result_file)
    assert result["jobId"] == "job-1"
    assert result["status"] == "processed"
    assert result["filledFieldCount"] == 2

"""Local deterministic automation program for smoke runs and tests.

It never opens a page. The outcome is derived from the job document alone:
hosts under ``.invalid`` fail as unreachable, everything else is processed
with the known contact fields found in the candidate profile.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from urllib.parse import urlparse

from applypass.queue.contracts import load_json, outcome_to_dict, write_json
from applypass.queue.models import JobOutcome, JobStatus

CONTACT_FIELDS = ("firstName", "lastName", "email", "phone", "linkedin", "location")
SUBMIT_BUTTON_LABEL = "Submit application"


def build_outcome(document: dict[str, object]) -> JobOutcome:
    job = document.get("job")
    job = job if isinstance(job, dict) else {}
    context = document.get("context")
    context = context if isinstance(context, dict) else {}
    profile = context.get("candidateProfile")
    profile = profile if isinstance(profile, dict) else {}

    job_id = str(job.get("id", ""))
    url = str(job.get("url", ""))
    host = urlparse(url).hostname or ""
    if host.endswith(".invalid"):
        return JobOutcome(
            job_id=job_id,
            status=JobStatus.FAILED,
            title=str(job.get("title", "")),
            company=str(job.get("company", "")),
            url=url,
            total_field_count=len(CONTACT_FIELDS),
            error=f"Page could not be loaded: {host}",
        )

    filled = sum(1 for name in CONTACT_FIELDS if str(profile.get(name) or "").strip())
    auto_submit = bool(document.get("autoSubmit", False))
    screenshot_dir = document.get("screenshotDir")
    return JobOutcome(
        job_id=job_id,
        status=JobStatus.PROCESSED,
        title=str(job.get("title", "")),
        company=str(job.get("company", "")),
        url=url,
        filled_field_count=filled,
        total_field_count=len(CONTACT_FIELDS),
        submit_button=SUBMIT_BUTTON_LABEL,
        submitted=auto_submit,
        screenshot_ref=str(Path(str(screenshot_dir)) / f"{job_id}.png") if screenshot_dir else None,
    )


def main(argv: list[str] | None = None) -> int:
    """Read one job document and write its deterministic outcome."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--job-file", required=True)
    parser.add_argument("--result-file", required=True)
    args, _ = parser.parse_known_args(argv)

    document = load_json(Path(args.job_file))
    write_json(Path(args.result_file), outcome_to_dict(build_outcome(document)))
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

"""Subprocess-based page automation adapter."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from applypass.queue.contracts import (
    context_to_dict,
    job_to_dict,
    load_json,
    outcome_from_dict,
    write_json,
)
from applypass.queue.models import JobOutcome
from applypass.worker.automation.base import AutomationError, AutomationRequest

logger = logging.getLogger(__name__)

_STDERR_TAIL_CHARS = 500


@dataclass(slots=True)
class JobWorkdir:
    """File contract paths for one job run."""

    base_dir: Path
    job_path: Path
    result_path: Path
    stdout_path: Path
    stderr_path: Path


class CommandPageAutomation:
    """Run an external automation program once per job.

    The command template must contain ``{job_file}`` and ``{result_file}``.
    The program reads the job document and writes a JSON outcome to the
    result file; a non-zero exit, a timeout or a missing result becomes a
    failed outcome for that job only.
    """

    def __init__(self, *, command_template: str, workdir_root: Path) -> None:
        self.command_template = command_template
        self.workdir_root = workdir_root

    def process(self, request: AutomationRequest) -> JobOutcome:
        job = request.job
        workdir = self.materialize(request)
        argv = build_run_args(
            command_template=self.command_template,
            job_file=workdir.job_path,
            result_file=workdir.result_path,
        )

        env = os.environ.copy()
        env["APPLYPASS_TASK_ID"] = request.task_id
        env["APPLYPASS_AUTO_SUBMIT"] = "1" if request.auto_submit else "0"

        started = time.monotonic()
        try:
            with (
                workdir.stdout_path.open("w", encoding="utf-8") as stdout_handle,
                workdir.stderr_path.open("w", encoding="utf-8") as stderr_handle,
            ):
                exit_code, timed_out = _run_subprocess(
                    run_args=argv,
                    env=env,
                    timeout_seconds=request.timeout_seconds,
                    stdout_handle=stdout_handle,
                    stderr_handle=stderr_handle,
                )
        except FileNotFoundError as error:
            raise AutomationError(f"Automation command not found: {argv[0]}") from error
        except OSError as error:
            raise AutomationError(f"Automation command failed to start: {error}") from error
        duration_ms = int((time.monotonic() - started) * 1000)

        if timed_out:
            return JobOutcome.failure(
                job,
                f"Job timed out after {request.timeout_seconds}s",
                duration_ms=duration_ms,
            )
        if exit_code != 0:
            return JobOutcome.failure(
                job,
                _exit_error(exit_code, workdir.stderr_path),
                duration_ms=duration_ms,
            )
        if not workdir.result_path.exists():
            return JobOutcome.failure(
                job,
                "Automation program produced no result",
                duration_ms=duration_ms,
            )
        try:
            raw = load_json(workdir.result_path)
        except (TypeError, ValueError) as error:
            return JobOutcome.failure(
                job,
                f"Invalid automation result: {error}",
                duration_ms=duration_ms,
            )

        outcome = outcome_from_dict(raw)
        outcome.job_id = job.id
        outcome.title = outcome.title or job.title
        outcome.company = outcome.company or job.company
        outcome.url = outcome.url or job.url
        if not outcome.duration_ms:
            outcome.duration_ms = duration_ms
        return outcome

    def materialize(self, request: AutomationRequest) -> JobWorkdir:
        base_dir = self.workdir_root / request.task_id / f"job_{request.job_index:02d}"
        base_dir.mkdir(parents=True, exist_ok=True)
        workdir = JobWorkdir(
            base_dir=base_dir,
            job_path=base_dir / "job.json",
            result_path=base_dir / "result.json",
            stdout_path=base_dir / "stdout.log",
            stderr_path=base_dir / "stderr.log",
        )
        workdir.result_path.unlink(missing_ok=True)
        write_json(
            workdir.job_path,
            {
                "taskId": request.task_id,
                "jobIndex": request.job_index,
                "job": job_to_dict(request.job),
                "context": context_to_dict(request.context),
                "autoSubmit": request.auto_submit,
                "screenshotDir": str(request.screenshot_dir) if request.screenshot_dir else None,
                "timeoutSeconds": request.timeout_seconds,
            },
        )
        return workdir


def build_run_args(*, command_template: str, job_file: Path, result_file: Path) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise AutomationError("Automation command template is empty.")
    for placeholder in ("{job_file}", "{result_file}"):
        if placeholder not in stripped:
            raise AutomationError(f"Automation command template must include {placeholder}.")
    try:
        rendered = stripped.format(
            job_file=shlex.quote(str(job_file)),
            result_file=shlex.quote(str(result_file)),
        )
    except (KeyError, IndexError) as error:
        raise AutomationError(f"Unsupported command template placeholder: {error}") from error

    argv = shlex.split(rendered)
    if not argv:
        raise AutomationError("Automation command template rendered empty command.")
    return argv


def _run_subprocess(
    *,
    run_args: list[str],
    env: dict[str, str],
    timeout_seconds: int,
    stdout_handle: IO[str],
    stderr_handle: IO[str],
) -> tuple[int, bool]:
    process = subprocess.Popen(  # noqa: S603
        run_args,
        env=env,
        stdout=stdout_handle,
        stderr=stderr_handle,
        text=True,
    )
    deadline = time.monotonic() + timeout_seconds
    while True:
        returncode = process.poll()
        if returncode is not None:
            return returncode, False
        if time.monotonic() >= deadline:
            logger.warning("Automation process %s timed out; terminating", process.pid)
            _terminate_process(process)
            return 124, True
        time.sleep(0.05)


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)


def _exit_error(exit_code: int, stderr_path: Path) -> str:
    try:
        tail = stderr_path.read_text("utf-8").strip()[-_STDERR_TAIL_CHARS:]
    except OSError:
        tail = ""
    if tail:
        return f"Automation exited with code {exit_code}: {tail}"
    return f"Automation exited with code {exit_code}"


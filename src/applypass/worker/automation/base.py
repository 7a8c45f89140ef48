"""Page automation interface used by the worker runtime."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from applypass.queue.models import Job, JobOutcome, TaskContext


class AutomationError(RuntimeError):
    """Adapter could not run at all (bad command template, missing program)."""


@dataclass(slots=True)
class AutomationRequest:
    """Inputs required to process one job of a claimed task."""

    task_id: str
    job_index: int
    job: Job
    context: TaskContext
    timeout_seconds: int
    auto_submit: bool = False
    screenshot_dir: Path | None = None


class PageAutomationAdapter(Protocol):
    """Protocol implemented by page automation capabilities."""

    def process(self, request: AutomationRequest) -> JobOutcome:
        """Open the job page, fill what it can, and report the outcome."""

"""Runtime configuration for the ApplyPass queue, worker and endpoint."""

from __future__ import annotations

import os
import shlex
import socket
import sys
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from applypass.queue.models import MAX_JOBS_PER_TASK

DEFAULT_AUTOMATION_COMMAND = (
    f"{shlex.quote(sys.executable)} -m applypass.worker.automation.echo_automation "
    "--job-file {job_file} --result-file {result_file}"
)


@dataclass(slots=True)
class QueueSettings:
    """Queue limits and storage policy."""

    max_jobs_per_task: int = MAX_JOBS_PER_TASK
    default_max_attempts: int = 3
    list_limit: int = 50
    max_error_chars: int = 1_500
    busy_timeout_ms: int = 5_000


@dataclass(slots=True)
class WorkerSettings:
    """Worker polling loop and page automation settings."""

    worker_id: str = field(default_factory=lambda: f"applypass-worker-{socket.gethostname()}")
    poll_interval_seconds: float = 5.0
    max_tasks: int | None = None
    run_once: bool = False
    job_timeout_seconds: int = 120
    auto_submit: bool = False
    screenshot_dir: Path | None = None
    automation_command: str = DEFAULT_AUTOMATION_COMMAND
    workdir_root: Path = Path(".applypass/workdir")
    queue_url: str | None = None
    request_timeout_seconds: float = 30.0


@dataclass(slots=True)
class LeaseSettings:
    """Lease expiry sweep settings."""

    lease_timeout_seconds: int = 300
    sweep_interval_seconds: float = 60.0
    sweep_on_claim: bool = True


@dataclass(slots=True)
class AuthSettings:
    """Worker shared secret and user token verification."""

    worker_token: str = ""
    user_tokens: dict[str, str] = field(default_factory=dict)
    supabase_url: str | None = None
    supabase_anon_key: str | None = None


@dataclass(slots=True)
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 8787


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".applypass.db")
    queue: QueueSettings = field(default_factory=QueueSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    lease: LeaseSettings = field(default_factory=LeaseSettings)
    auth: AuthSettings = field(default_factory=AuthSettings)
    server: ServerSettings = field(default_factory=ServerSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        screenshot_dir = os.getenv("APPLYPASS_SCREENSHOT_DIR", "").strip()
        max_tasks = os.getenv("APPLYPASS_WORKER_MAX_TASKS", "").strip()
        return cls(
            db_path=db_path or Path(os.getenv("APPLYPASS_DB_PATH", ".applypass.db")),
            queue=QueueSettings(
                max_jobs_per_task=int(
                    os.getenv("APPLYPASS_MAX_JOBS_PER_TASK", str(MAX_JOBS_PER_TASK)),
                ),
                default_max_attempts=int(os.getenv("APPLYPASS_MAX_ATTEMPTS", "3")),
                list_limit=int(os.getenv("APPLYPASS_LIST_LIMIT", "50")),
                max_error_chars=int(os.getenv("APPLYPASS_MAX_ERROR_CHARS", "1500")),
                busy_timeout_ms=int(os.getenv("APPLYPASS_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            ),
            worker=WorkerSettings(
                worker_id=os.getenv("APPLYPASS_WORKER_ID", "").strip()
                or f"applypass-worker-{socket.gethostname()}",
                poll_interval_seconds=_poll_interval_seconds(),
                max_tasks=int(max_tasks) if max_tasks else None,
                run_once=_env_bool("APPLYPASS_WORKER_RUN_ONCE", default=False),
                job_timeout_seconds=int(os.getenv("APPLYPASS_JOB_TIMEOUT_SECONDS", "120")),
                auto_submit=_env_bool("APPLYPASS_AUTO_SUBMIT", default=False),
                screenshot_dir=Path(screenshot_dir) if screenshot_dir else None,
                automation_command=os.getenv(
                    "APPLYPASS_AUTOMATION_COMMAND",
                    DEFAULT_AUTOMATION_COMMAND,
                ),
                workdir_root=Path(os.getenv("APPLYPASS_WORKDIR_ROOT", ".applypass/workdir")),
                queue_url=os.getenv("APPLYPASS_QUEUE_URL", "").strip() or None,
                request_timeout_seconds=float(
                    os.getenv("APPLYPASS_REQUEST_TIMEOUT_SECONDS", "30.0"),
                ),
            ),
            lease=LeaseSettings(
                lease_timeout_seconds=int(os.getenv("APPLYPASS_LEASE_TIMEOUT_SECONDS", "300")),
                sweep_interval_seconds=float(
                    os.getenv("APPLYPASS_LEASE_SWEEP_INTERVAL_SECONDS", "60"),
                ),
                sweep_on_claim=_env_bool("APPLYPASS_LEASE_SWEEP_ON_CLAIM", default=True),
            ),
            auth=AuthSettings(
                worker_token=os.getenv("APPLYPASS_WORKER_TOKEN", "").strip(),
                user_tokens=_collect_user_tokens(),
                supabase_url=os.getenv("SUPABASE_URL", "").strip() or None,
                supabase_anon_key=os.getenv("SUPABASE_ANON_KEY", "").strip() or None,
            ),
            server=ServerSettings(
                host=os.getenv("APPLYPASS_HOST", "127.0.0.1"),
                port=int(os.getenv("APPLYPASS_PORT", "8787")),
            ),
        )

    def validate_for_worker(self) -> None:
        """Raise configuration error if worker settings are inconsistent."""

        worker = self.worker
        if worker.poll_interval_seconds < 0:
            raise ValueError("APPLYPASS_WORKER_POLL_SECONDS must be >= 0.")
        if worker.job_timeout_seconds <= 0:
            raise ValueError("APPLYPASS_JOB_TIMEOUT_SECONDS must be > 0.")
        if worker.max_tasks is not None and worker.max_tasks <= 0:
            raise ValueError("APPLYPASS_WORKER_MAX_TASKS must be a positive integer.")
        if worker.request_timeout_seconds <= 0:
            raise ValueError("APPLYPASS_REQUEST_TIMEOUT_SECONDS must be > 0.")
        if not worker.automation_command.strip():
            raise ValueError("APPLYPASS_AUTOMATION_COMMAND must not be empty.")
        if worker.queue_url is not None:
            _validate_http_url(worker.queue_url, name="APPLYPASS_QUEUE_URL")
            if not self.auth.worker_token:
                raise ValueError("APPLYPASS_WORKER_TOKEN is required with APPLYPASS_QUEUE_URL.")
        self._validate_queue()

    def validate_for_server(self) -> None:
        """Raise configuration error if endpoint settings are inconsistent."""

        if not 0 < self.server.port < 65_536:
            raise ValueError(f"APPLYPASS_PORT out of range: {self.server.port}")
        if self.auth.supabase_url is not None:
            _validate_http_url(self.auth.supabase_url, name="SUPABASE_URL")
            if not self.auth.supabase_anon_key:
                raise ValueError("SUPABASE_ANON_KEY is required with SUPABASE_URL.")
        self._validate_queue()

    def validate_for_monitor(self) -> None:
        if self.lease.lease_timeout_seconds <= 0:
            raise ValueError("APPLYPASS_LEASE_TIMEOUT_SECONDS must be > 0.")
        if self.lease.sweep_interval_seconds <= 0:
            raise ValueError("APPLYPASS_LEASE_SWEEP_INTERVAL_SECONDS must be > 0.")

    def _validate_queue(self) -> None:
        if not 0 < self.queue.max_jobs_per_task <= MAX_JOBS_PER_TASK:
            raise ValueError(
                f"APPLYPASS_MAX_JOBS_PER_TASK must be between 1 and {MAX_JOBS_PER_TASK}.",
            )
        if self.queue.default_max_attempts <= 0:
            raise ValueError("APPLYPASS_MAX_ATTEMPTS must be > 0.")
        if self.queue.list_limit <= 0:
            raise ValueError("APPLYPASS_LIST_LIMIT must be > 0.")


def _poll_interval_seconds() -> float:
    seconds = os.getenv("APPLYPASS_WORKER_POLL_SECONDS", "").strip()
    if seconds:
        return float(seconds)
    millis = os.getenv("APPLYPASS_WORKER_POLL_MS", "").strip()
    if millis:
        return int(millis) / 1000.0
    return 5.0


def _collect_user_tokens() -> dict[str, str]:
    raw = os.getenv("APPLYPASS_USER_TOKENS", "").strip()
    if not raw:
        return {}

    tokens: dict[str, str] = {}
    for part in raw.split(","):
        entry = part.strip()
        if not entry:
            continue
        if ":" not in entry:
            raise ValueError(
                f"Invalid APPLYPASS_USER_TOKENS entry: {entry!r}. Expected '<token>:<owner_id>'.",
            )
        token, owner_id = entry.rsplit(":", 1)
        if not token.strip() or not owner_id.strip():
            raise ValueError(f"Invalid APPLYPASS_USER_TOKENS entry: {entry!r}.")
        tokens[token.strip()] = owner_id.strip()
    return tokens


def _validate_http_url(value: str, *, name: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")

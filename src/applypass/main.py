"""CLI entrypoint for the ApplyPass task queue."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from applypass import __version__
from applypass.controllers import (
    ApplyPassCliController,
    MonitorCommand,
    QueueCancelCommand,
    QueueEnqueueCommand,
    QueueInspectCommand,
    QueueListCommand,
    ServeCommand,
    WorkerRunCommand,
)
from applypass.logging_setup import setup_logging
from applypass.queue.errors import QueueError
from applypass.queue.models import TaskStatus

click.rich_click.USE_MARKDOWN = True
CONTROLLER = ApplyPassCliController()


@click.group()
@click.version_option(version=__version__, prog_name="applypass")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
@click.option(
    "--log-file",
    type=click.Path(path_type=Path, dir_okay=False),
    envvar="APPLYPASS_LOG_FILE",
    default=None,
    help="Also write logs to this file.",
)
def applypass(verbose: bool, log_file: Path | None) -> None:
    """ApplyPass bulk-apply task queue.

    Enqueue job batches, run workers that claim them, and recover
    abandoned leases.
    """

    setup_logging(level=logging.DEBUG if verbose else logging.INFO, log_file=log_file)


@applypass.group()
def queue() -> None:
    """Task queue commands."""


@queue.command("enqueue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--owner", "owner_id", required=True, help="Owner (user) id of the task.")
@click.option(
    "--job",
    "jobs",
    multiple=True,
    help="Job as `id|title|company|url`. Can be repeated.",
)
@click.option(
    "--jobs-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="JSON document with `jobs` and optional context fields.",
)
@click.option("--task-type", default="bulk_apply", show_default=True, help="Task type tag.")
@click.option("--max-attempts", type=click.IntRange(min=1), default=None, help="Claim attempts.")
@click.option("--resume-id", default=None, help="Resume id passed to the automation.")
def queue_enqueue(  # noqa: PLR0913
    db_path: Path | None,
    owner_id: str,
    jobs: tuple[str, ...],
    jobs_file: Path | None,
    task_type: str,
    max_attempts: int | None,
    resume_id: str | None,
) -> None:
    """Enqueue a batch of 1-25 jobs as a pending task."""

    _run(
        lambda: CONTROLLER.enqueue(
            QueueEnqueueCommand(
                db_path=db_path,
                owner_id=owner_id,
                jobs=jobs,
                jobs_file=jobs_file,
                task_type=task_type,
                max_attempts=max_attempts,
                resume_id=resume_id,
            ),
        ),
    )


@queue.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--owner", "owner_id", default=None, help="Only tasks of this owner.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus]),
    default=None,
    help="Only tasks in this status.",
)
@click.option("--limit", type=click.IntRange(min=1), default=50, show_default=True)
def queue_list(db_path: Path | None, owner_id: str | None, status: str | None, limit: int) -> None:
    """List recent tasks, newest first."""

    _run(
        lambda: CONTROLLER.list_tasks(
            QueueListCommand(db_path=db_path, owner_id=owner_id, status=status, limit=limit),
        ),
    )


@queue.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def queue_inspect(db_path: Path | None, task_id: str) -> None:
    """Show task status, per-job outcomes, run log and transitions."""

    _run(lambda: CONTROLLER.inspect_task(QueueInspectCommand(db_path=db_path, task_id=task_id)))


@queue.command("cancel")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
@click.option("--owner", "owner_id", required=True, help="Owner (user) id of the task.")
def queue_cancel(db_path: Path | None, task_id: str, owner_id: str) -> None:
    """Cancel a pending or running task."""

    _run(
        lambda: CONTROLLER.cancel_task(
            QueueCancelCommand(db_path=db_path, task_id=task_id, owner_id=owner_id),
        ),
    )


@applypass.group()
def worker() -> None:
    """Worker commands."""


@worker.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--once", is_flag=True, default=False, help="Make a single claim attempt.")
@click.option(
    "--max-tasks",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after processing this many tasks.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many consecutive empty polls.",
)
def worker_run(
    db_path: Path | None,
    once: bool,
    max_tasks: int | None,
    max_idle_polls: int | None,
) -> None:
    """Poll the queue and process claimed tasks.

    Uses the local database unless `APPLYPASS_QUEUE_URL` points at a queue endpoint.
    """

    _run(
        lambda: CONTROLLER.run_worker(
            WorkerRunCommand(
                db_path=db_path,
                once=once,
                max_tasks=max_tasks,
                max_idle_polls=max_idle_polls,
            ),
        ),
    )


@applypass.command("monitor")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--loop", is_flag=True, default=False, help="Keep sweeping until interrupted.")
@click.option(
    "--max-sweeps",
    type=click.IntRange(min=1),
    default=None,
    help="Stop the loop after this many sweeps.",
)
def monitor(db_path: Path | None, loop: bool, max_sweeps: int | None) -> None:
    """Requeue or fail running tasks whose worker lease expired."""

    _run(
        lambda: CONTROLLER.monitor(
            MonitorCommand(db_path=db_path, loop=loop, max_sweeps=max_sweeps),
        ),
    )


@applypass.command("serve")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--host", default=None, help="Bind host (default from APPLYPASS_HOST).")
@click.option("--port", type=click.IntRange(min=1, max=65535), default=None, help="Bind port.")
def serve(db_path: Path | None, host: str | None, port: int | None) -> None:
    """Serve `POST /applypass-agent-queue`."""

    _run(lambda: CONTROLLER.serve(ServeCommand(db_path=db_path, host=host, port=port)) or [])


def _run(action: Callable[[], list[str]]) -> None:
    try:
        lines = action()
    except (QueueError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    applypass()

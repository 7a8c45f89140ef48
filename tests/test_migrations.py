from pathlib import Path

import allure

from applypass.queue.repository import TaskRepository
from applypass.storage.sqlite import SqlitePolicy, open_connection

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Task Store"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    db_path = tmp_path / "migrations.db"
    repository = TaskRepository(db_path)
    repository.init_schema()
    repository.close()

    connection = open_connection(db_path, SqlitePolicy(busy_timeout_ms=1000))
    try:
        row = connection.execute("SELECT version_num FROM alembic_version LIMIT 1").fetchone()
        assert row is not None
        assert str(row["version_num"]) == "20261014_0002"

        tables = connection.execute(
            """
            SELECT name
            FROM sqlite_master
            WHERE type = 'table' AND name LIKE 'applypass_%'
            ORDER BY name
            """
        ).fetchall()
        assert [str(row["name"]) for row in tables] == [
            "applypass_task_events",
            "applypass_task_log",
            "applypass_tasks",
        ]

        columns = {
            str(row["name"])
            for row in connection.execute("PRAGMA table_info(applypass_tasks)").fetchall()
        }
        assert {
            "attempt_count",
            "max_attempts",
            "worker_id",
            "heartbeat_at",
            "started_at",
            "completed_at",
        } <= columns
    finally:
        connection.close()


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    repository = TaskRepository(tmp_path / "twice.db")
    repository.init_schema()
    repository.init_schema()

    assert repository.list_tasks() == []
    repository.close()

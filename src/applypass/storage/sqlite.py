"""SQLite connection policy and Alembic migrations for the task store."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from sqlmodel import create_engine

PROJECT_ROOT = Path(__file__).resolve().parents[3]


@dataclass(frozen=True, slots=True)
class SqlitePolicy:
    """Pragmas applied to every connection opened against the queue database."""

    busy_timeout_ms: int = 5_000
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"

    def apply(self, connection: sqlite3.Connection) -> None:
        cursor = connection.cursor()
        try:
            cursor.execute(f"PRAGMA journal_mode = {self.journal_mode}")
            cursor.execute(f"PRAGMA synchronous = {self.synchronous}")
            cursor.execute(f"PRAGMA busy_timeout = {max(1, self.busy_timeout_ms)}")
            cursor.execute("PRAGMA foreign_keys = ON")
        finally:
            cursor.close()


def sqlite_url(db_path: Path) -> str:
    return f"sqlite:///{db_path}"


def create_queue_engine(db_path: Path, policy: SqlitePolicy | None = None) -> Engine:
    """Build the SQLAlchemy engine used by the task repository.

    Each session gets its own DBAPI connection (NullPool), so concurrent
    claimers in one process still serialize on the SQLite write lock.
    """

    policy = policy or SqlitePolicy()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        sqlite_url(db_path),
        connect_args={
            "check_same_thread": False,
            "timeout": max(1.0, policy.busy_timeout_ms / 1000.0),
        },
        poolclass=NullPool,
    )

    @event.listens_for(engine, "connect")
    def _apply_policy(dbapi_connection: sqlite3.Connection, _record: object) -> None:
        policy.apply(dbapi_connection)

    return engine


def open_connection(db_path: Path, policy: SqlitePolicy | None = None) -> sqlite3.Connection:
    """Plain sqlite3 handle with the queue pragmas and name-addressable rows."""

    connection = sqlite3.connect(db_path)
    (policy or SqlitePolicy()).apply(connection)
    connection.row_factory = sqlite3.Row
    return connection


def migrate(db_path: Path, revision: str = "head") -> None:
    """Upgrade the queue schema to ``revision`` with Alembic."""

    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", sqlite_url(db_path))
    command.upgrade(config, revision)

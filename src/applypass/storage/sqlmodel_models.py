"""SQLModel ORM tables for the ApplyPass task queue."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class ApplyTask(SQLModel, table=True):
    __tablename__ = "applypass_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_applypass_tasks_owner_created", "owner_id", "created_at"),
        Index("idx_applypass_tasks_status_created", "status", "created_at"),
        Index("idx_applypass_tasks_heartbeat", "heartbeat_at"),
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'canceled')",
            name="ck_applypass_tasks_status",
        ),
    )

    task_id: str = Field(primary_key=True)
    owner_id: str = Field(index=True)
    task_type: str = Field(default="bulk_apply")
    status: str
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    result_json: str | None = Field(default=None, sa_column=Column(Text))
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    attempt_count: int = Field(default=0)
    max_attempts: int = Field(default=3)
    worker_id: str | None = Field(default=None, index=True)
    heartbeat_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ApplyTaskLogEntry(SQLModel, table=True):
    __tablename__ = "applypass_task_log"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_applypass_task_log_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("applypass_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    level: str = Field(default="info")
    message: str = Field(sa_column=Column(Text, nullable=False))
    job_id: str | None = None
    worker_id: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ApplyTaskEvent(SQLModel, table=True):
    __tablename__ = "applypass_task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_applypass_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("applypass_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    event_type: str = Field(index=True)
    status_from: str | None = Field(default=None)
    status_to: str | None = Field(default=None)
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))

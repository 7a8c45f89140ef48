"""Create ApplyPass task queue and transition audit tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261012_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "applypass_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("task_type", sa.String(), server_default="bulk_apply", nullable=False),
        sa.Column("status", sa.String(), server_default="pending", nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("result_json", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'canceled')",
            name="ck_applypass_tasks_status",
        ),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_applypass_tasks_owner_id", "applypass_tasks", ["owner_id"], unique=False)
    op.create_index(
        "idx_applypass_tasks_owner_created",
        "applypass_tasks",
        ["owner_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "idx_applypass_tasks_status_created",
        "applypass_tasks",
        ["status", "created_at"],
        unique=False,
    )

    op.create_table(
        "applypass_task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["applypass_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_applypass_task_events_task_id",
        "applypass_task_events",
        ["task_id"],
        unique=False,
    )
    op.create_index(
        "ix_applypass_task_events_event_type",
        "applypass_task_events",
        ["event_type"],
        unique=False,
    )
    op.create_index(
        "idx_applypass_task_events_task_time",
        "applypass_task_events",
        ["task_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_applypass_task_events_task_time", table_name="applypass_task_events")
    op.drop_index("ix_applypass_task_events_event_type", table_name="applypass_task_events")
    op.drop_index("ix_applypass_task_events_task_id", table_name="applypass_task_events")
    op.drop_table("applypass_task_events")
    op.drop_index("idx_applypass_tasks_status_created", table_name="applypass_tasks")
    op.drop_index("idx_applypass_tasks_owner_created", table_name="applypass_tasks")
    op.drop_index("ix_applypass_tasks_owner_id", table_name="applypass_tasks")
    op.drop_table("applypass_tasks")

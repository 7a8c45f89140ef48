"""Add worker runtime fields (attempts, lease heartbeat) and the append-only run log."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261014_0002"
down_revision = "20261012_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("applypass_tasks") as batch_op:
        batch_op.add_column(
            sa.Column("attempt_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        )
        batch_op.add_column(
            sa.Column("max_attempts", sa.Integer(), server_default=sa.text("3"), nullable=False),
        )
        batch_op.add_column(sa.Column("worker_id", sa.String(), nullable=True))
        batch_op.add_column(sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=True))
        batch_op.add_column(sa.Column("started_at", sa.DateTime(timezone=True), nullable=True))
        batch_op.add_column(sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True))
        batch_op.create_index("ix_applypass_tasks_worker_id", ["worker_id"], unique=False)
        batch_op.create_index("idx_applypass_tasks_heartbeat", ["heartbeat_at"], unique=False)

    op.create_table(
        "applypass_task_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("level", sa.String(), server_default="info", nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=True),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["applypass_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_applypass_task_log_task_id",
        "applypass_task_log",
        ["task_id"],
        unique=False,
    )
    op.create_index(
        "idx_applypass_task_log_task_time",
        "applypass_task_log",
        ["task_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_applypass_task_log_task_time", table_name="applypass_task_log")
    op.drop_index("ix_applypass_task_log_task_id", table_name="applypass_task_log")
    op.drop_table("applypass_task_log")
    with op.batch_alter_table("applypass_tasks") as batch_op:
        batch_op.drop_index("idx_applypass_tasks_heartbeat")
        batch_op.drop_index("ix_applypass_tasks_worker_id")
        batch_op.drop_column("completed_at")
        batch_op.drop_column("started_at")
        batch_op.drop_column("heartbeat_at")
        batch_op.drop_column("worker_id")
        batch_op.drop_column("max_attempts")
        batch_op.drop_column("attempt_count")

"""Create queue_tasks table."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "queue_tasks",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("handler", sa.String(), nullable=False),
        sa.Column("params_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("timeout", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("info", sa.Text(), nullable=False, server_default=""),
        sa.Column("error", sa.Text(), nullable=False, server_default=""),
        sa.Column("retries", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_queue_tasks_poll", "queue_tasks", ["status", "start_at"])
    op.create_index("ix_queue_tasks_handler", "queue_tasks", ["handler"])


def downgrade() -> None:
    op.drop_index("ix_queue_tasks_handler", table_name="queue_tasks")
    op.drop_index("idx_queue_tasks_poll", table_name="queue_tasks")
    op.drop_table("queue_tasks")

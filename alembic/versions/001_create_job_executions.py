"""Create job_executions table

Revision ID: 001_job_executions
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_job_executions"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

EXECUTION_STATUSES = (
    "pending",
    "queued",
    "running",
    "success",
    "failure",
    "aborted",
    "timeout",
    "cancelled",
)
TRIGGERS = ("scheduler", "manual", "api", "webhook", "event", "retry", "dependency", "system")


def upgrade() -> None:
    op.create_table(
        "job_executions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("job_id", sa.Integer(), nullable=False),
        sa.Column(
            "execution_status",
            sa.Enum(
                *EXECUTION_STATUSES, name="execution_status", native_enum=False, length=20
            ),
            nullable=False,
        ),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("execution_date", sa.Date(), nullable=False),
        sa.Column(
            "triggered_by",
            sa.Enum(*TRIGGERS, name="triggered_by", native_enum=False, length=20),
            nullable=False,
        ),
        sa.Column("triggered_by_user_id", sa.Integer(), nullable=True),
        sa.Column("server_instance", sa.String(255), nullable=True),
        sa.Column("worker_node_id", sa.String(255), nullable=True),
        sa.Column("trace_id", sa.String(128), nullable=True),
        sa.Column("correlation_id", sa.String(128), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_code", sa.String(100), nullable=True),
        sa.Column("error_step_id", sa.Integer(), nullable=True),
        sa.Column("error_details", sa.JSON(), nullable=True),
        sa.Column("execution_context", sa.JSON(), nullable=True),
        sa.Column("peak_memory_mb", sa.Float(), nullable=True),
        sa.Column("peak_cpu_percent", sa.Float(), nullable=True),
        sa.Column("rows_read", sa.BigInteger(), nullable=True),
        sa.Column("rows_processed", sa.BigInteger(), nullable=True),
        sa.Column("rows_inserted", sa.BigInteger(), nullable=True),
        sa.Column("rows_updated", sa.BigInteger(), nullable=True),
        sa.Column("rows_deleted", sa.BigInteger(), nullable=True),
        sa.Column("data_quality_score", sa.Float(), nullable=True),
        sa.Column("steps_total", sa.Integer(), nullable=True),
        sa.Column("steps_completed", sa.Integer(), nullable=True),
        sa.Column("steps_failed", sa.Integer(), nullable=True),
        sa.Column("sla_breached", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("archived_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("trace_id"),
    )
    op.create_index("ix_job_executions_job_id", "job_executions", ["job_id"])
    op.create_index("ix_job_executions_execution_status", "job_executions", ["execution_status"])
    op.create_index("ix_job_executions_started_at", "job_executions", ["started_at"])
    op.create_index("ix_job_executions_execution_date", "job_executions", ["execution_date"])
    op.create_index("ix_job_executions_correlation_id", "job_executions", ["correlation_id"])
    op.create_index("ix_job_executions_sla_breached", "job_executions", ["sla_breached"])
    op.create_index("ix_job_executions_archived", "job_executions", ["archived"])
    op.create_index("ix_job_executions_created_at", "job_executions", ["created_at"])
    # Backs per-job listings ordered by start time
    op.create_index(
        "ix_job_executions_job_id_started_at", "job_executions", ["job_id", "started_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_job_executions_job_id_started_at", table_name="job_executions")
    for column in (
        "created_at",
        "archived",
        "sla_breached",
        "correlation_id",
        "execution_date",
        "started_at",
        "execution_status",
        "job_id",
    ):
        op.drop_index(f"ix_job_executions_{column}", table_name="job_executions")
    op.drop_table("job_executions")

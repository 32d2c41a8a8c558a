"""Initial schema: scheduler config, execution history, bookings

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

EXECUTION_STATUSES = ("STARTED", "COMPLETED", "FAILED", "INTERRUPTED")


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        # Postgres doesn't support IF NOT EXISTS for TYPE
        op.execute("""
            DO $$ BEGIN
                CREATE TYPE executionstatus AS ENUM ('STARTED', 'COMPLETED', 'FAILED', 'INTERRUPTED');
            EXCEPTION WHEN duplicate_object THEN NULL;
            END $$;
        """)
        status_type = postgresql.ENUM(*EXECUTION_STATUSES, name="executionstatus", create_type=False)
    else:
        status_type = sa.Enum(*EXECUTION_STATUSES, name="executionstatus")

    op.create_table(
        "scheduler_config",
        sa.Column("config_name", sa.String(100), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("interval_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("start_from_time", sa.DateTime(), nullable=True),
        sa.Column("last_start_time", sa.DateTime(), nullable=True),
        sa.Column("last_stop_time", sa.DateTime(), nullable=True),
        sa.Column("last_run_time", sa.DateTime(), nullable=True),
        sa.Column("next_run_time", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("config_name"),
    )

    op.create_table(
        "job_executions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("job_name", sa.String(200), nullable=False),
        sa.Column("job_group", sa.String(200), nullable=False),
        sa.Column("trigger_name", sa.String(200), nullable=True),
        sa.Column("trigger_group", sa.String(200), nullable=True),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=True),
        sa.Column("status", status_type, nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("records_processed", sa.BigInteger(), nullable=True),
        sa.Column("duration_ms", sa.BigInteger(), nullable=True),
        sa.Column("process_from_time", sa.DateTime(), nullable=True),
        sa.Column("process_to_time", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_job_executions_job_name", "job_executions", ["job_name"])
    op.create_index("ix_job_executions_start_time", "job_executions", ["start_time"])
    op.create_index("ix_job_executions_status", "job_executions", ["status"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("reference", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_bookings_reference", "bookings", ["reference"], unique=True)
    op.create_index("ix_bookings_created_at", "bookings", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_bookings_created_at", table_name="bookings")
    op.drop_index("ix_bookings_reference", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_job_executions_status", table_name="job_executions")
    op.drop_index("ix_job_executions_start_time", table_name="job_executions")
    op.drop_index("ix_job_executions_job_name", table_name="job_executions")
    op.drop_table("job_executions")

    op.drop_table("scheduler_config")

    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TYPE IF EXISTS executionstatus")

"""Create appointments and queue_snapshots tables.

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str, nullable: bool = True, now_default: bool = False) -> sa.Column:
    return sa.Column(
        name,
        postgresql.TIMESTAMP(timezone=True),
        server_default=sa.text("NOW()") if now_default else None,
        nullable=nullable,
    )


def upgrade() -> None:
    """Upgrade database schema."""
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "appointments",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("tenant_id", postgresql.UUID(), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(), nullable=False),
        sa.Column("patient_id", postgresql.UUID(), nullable=False),
        _timestamp("appointment_time", nullable=False),
        sa.Column("duration_minutes", sa.Integer(), server_default="30", nullable=False),
        sa.Column("token_number", sa.Integer(), nullable=True),
        sa.Column("status", sa.Text(), server_default="scheduled", nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("confirmed_at"),
        _timestamp("started_at"),
        _timestamp("completed_at"),
        _timestamp("cancelled_at"),
        sa.Column("cancelled_by", postgresql.UUID(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("created_by", postgresql.UUID(), nullable=True),
        _timestamp("created_at", nullable=False, now_default=True),
        _timestamp("updated_at", nullable=False, now_default=True),
        _timestamp("deleted_at"),
        sa.CheckConstraint(
            "status IN ('scheduled', 'confirmed', 'in_progress', 'completed', 'cancelled', 'no_show')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint("duration_minutes > 0", name="appointments_duration_check"),
        sa.CheckConstraint(
            "token_number IS NULL OR token_number >= 1", name="appointments_token_check"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_appointments_doctor_time",
        "appointments",
        ["tenant_id", "doctor_id", "appointment_time"],
    )
    op.create_index(
        "idx_appointments_completed",
        "appointments",
        ["tenant_id", "doctor_id", "completed_at"],
    )

    op.create_table(
        "queue_snapshots",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("tenant_id", postgresql.UUID(), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(), nullable=False),
        sa.Column("snapshot_date", sa.Date(), nullable=False),
        sa.Column("arrival_rate", sa.Float(), nullable=False),
        sa.Column("service_rate", sa.Float(), nullable=False),
        sa.Column("utilization", sa.Float(), nullable=False),
        sa.Column("is_stable", sa.Boolean(), nullable=False),
        sa.Column("avg_wait_minutes", sa.Float(), nullable=True),
        sa.Column("avg_wait_in_queue_minutes", sa.Float(), nullable=True),
        sa.Column("avg_system_length", sa.Float(), nullable=True),
        sa.Column("avg_queue_length", sa.Float(), nullable=True),
        sa.Column("total_patients", sa.Integer(), nullable=False),
        sa.Column("completed_appointments", sa.Integer(), nullable=False),
        sa.Column("window_start", sa.Time(), nullable=False),
        sa.Column("window_end", sa.Time(), nullable=False),
        _timestamp("computed_at", nullable=False, now_default=True),
        sa.CheckConstraint("service_rate > 0", name="queue_snapshots_service_rate_check"),
        sa.CheckConstraint("arrival_rate >= 0", name="queue_snapshots_arrival_rate_check"),
        sa.CheckConstraint(
            "completed_appointments <= total_patients", name="queue_snapshots_completed_check"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "tenant_id", "doctor_id", "snapshot_date", name="uq_queue_snapshots_doctor_date"
        ),
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table("queue_snapshots")
    op.drop_index("idx_appointments_completed", table_name="appointments")
    op.drop_index("idx_appointments_doctor_time", table_name="appointments")
    op.drop_table("appointments")

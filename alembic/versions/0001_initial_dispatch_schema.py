"""initial dispatch schema

Revision ID: 0001
Revises:
Create Date: 2026-03-02 09:00:00
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


provider_role = postgresql.ENUM("TOW_TRUCK", "MECHANIC", name="provider_role")
verification_status = postgresql.ENUM(
    "PENDING", "APPROVED", "REJECTED", "SUSPENDED", name="verification_status"
)
job_status = postgresql.ENUM(
    "CREATED",
    "BROADCASTED",
    "ASSIGNED",
    "IN_PROGRESS",
    "COMPLETED",
    "CANCELLED",
    name="job_status",
)
booking_fee_status = postgresql.ENUM(
    "PENDING", "PAID", "REFUNDED", name="booking_fee_status"
)


def _existing(enum_type: postgresql.ENUM) -> postgresql.ENUM:
    return postgresql.ENUM(*enum_type.enums, name=enum_type.name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (provider_role, verification_status, job_status, booking_fee_status):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "providers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("display_name", sa.String(200), nullable=False),
        sa.Column("phone", sa.String(30), nullable=True),
        sa.Column("role", _existing(provider_role), nullable=False),
        sa.Column("is_online", sa.Boolean(), nullable=False),
        sa.Column("verification_status", _existing(verification_status), nullable=False),
        sa.Column("last_latitude", sa.Numeric(10, 7), nullable=True),
        sa.Column("last_longitude", sa.Numeric(10, 7), nullable=True),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tow_truck_types", sa.JSON(), nullable=False),
        sa.Column("car_types_supported", sa.JSON(), nullable=False),
        sa.Column("fcm_token", sa.String(512), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("reference_number", sa.String(20), nullable=False, unique=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role_needed", _existing(provider_role), nullable=False),
        sa.Column("pickup_latitude", sa.Numeric(10, 7), nullable=False),
        sa.Column("pickup_longitude", sa.Numeric(10, 7), nullable=False),
        sa.Column("pickup_address_text", sa.Text(), nullable=True),
        sa.Column("dropoff_latitude", sa.Numeric(10, 7), nullable=True),
        sa.Column("dropoff_longitude", sa.Numeric(10, 7), nullable=True),
        sa.Column("dropoff_address_text", sa.Text(), nullable=True),
        sa.Column("tow_truck_type_needed", sa.String(100), nullable=True),
        sa.Column("vehicle_type", sa.String(100), nullable=True),
        sa.Column("status", _existing(job_status), nullable=False),
        sa.Column(
            "assigned_to",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("providers.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispatch_round", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("searching_since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_broadcast_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("booking_fee_status", _existing(booking_fee_status), nullable=False),
        sa.Column("booking_fee_paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_payout_cents", sa.BigInteger(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="ZAR"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_jobs_customer_id", "jobs", ["customer_id"])
    op.create_index("ix_jobs_status", "jobs", ["status"])
    op.create_index("ix_jobs_assigned_to", "jobs", ["assigned_to"])

    op.create_table(
        "job_broadcast_targets",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "job_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "provider_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("providers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("distance_km", sa.Float(), nullable=True),
        sa.Column("offered_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "job_id", "provider_id", name="uq_broadcast_target_job_provider"
        ),
    )
    op.create_index(
        "ix_job_broadcast_targets_job_id", "job_broadcast_targets", ["job_id"]
    )

    op.create_table(
        "job_excluded_providers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "job_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "provider_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("providers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("excluded_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "job_id", "provider_id", name="uq_excluded_provider_job_provider"
        ),
    )
    op.create_index(
        "ix_job_excluded_providers_job_id", "job_excluded_providers", ["job_id"]
    )

    op.create_table(
        "job_dispatch_attempts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "job_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "provider_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("providers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("round_number", sa.Integer(), nullable=False),
        sa.Column("distance_km", sa.Float(), nullable=True),
        sa.Column("attempted_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_job_dispatch_attempts_job_id", "job_dispatch_attempts", ["job_id"]
    )


def downgrade() -> None:
    op.drop_table("job_dispatch_attempts")
    op.drop_table("job_excluded_providers")
    op.drop_table("job_broadcast_targets")
    op.drop_table("jobs")
    op.drop_table("providers")

    bind = op.get_bind()
    for enum_type in (booking_fee_status, job_status, verification_status, provider_role):
        enum_type.drop(bind, checkfirst=True)

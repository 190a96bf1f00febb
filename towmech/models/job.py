"""
SQLAlchemy models for jobs and their dispatch bookkeeping:
job_broadcast_targets, job_excluded_providers and job_dispatch_attempts.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow
from .provider import ProviderRole


class JobStatus(str, enum.Enum):
    CREATED = "created"
    BROADCASTED = "broadcasted"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BookingFeeStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


# Statuses in which a provider is holding the job
ACTIVE_STATUSES: frozenset[JobStatus] = frozenset({
    JobStatus.ASSIGNED,
    JobStatus.IN_PROGRESS,
})

TERMINAL_STATUSES: frozenset[JobStatus] = frozenset({
    JobStatus.COMPLETED,
    JobStatus.CANCELLED,
})


class Job(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "jobs"

    # Reference number (human-readable)
    reference_number: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Requesting customer (identity is owned by the accounts service)
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )

    # Requirements
    role_needed: Mapped[ProviderRole] = mapped_column(
        Enum(ProviderRole, name="provider_role"),
        nullable=False,
    )
    pickup_latitude: Mapped[Decimal] = mapped_column(Numeric(10, 7), nullable=False)
    pickup_longitude: Mapped[Decimal] = mapped_column(Numeric(10, 7), nullable=False)
    pickup_address_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dropoff_latitude: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 7), nullable=True
    )
    dropoff_longitude: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 7), nullable=True
    )
    dropoff_address_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tow_truck_type_needed: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )
    vehicle_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Dispatch state
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status"),
        nullable=False,
        default=JobStatus.CREATED,
        index=True,
    )
    assigned_to: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    locked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    dispatch_round: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    searching_since: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_broadcast_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Booking fee (written by the payment collaborator)
    booking_fee_status: Mapped[BookingFeeStatus] = mapped_column(
        Enum(BookingFeeStatus, name="booking_fee_status"),
        nullable=False,
        default=BookingFeeStatus.PENDING,
    )
    booking_fee_paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Offer summary (supplied by the pricing collaborator)
    provider_payout_cents: Mapped[Optional[int]] = mapped_column(
        BigInteger, nullable=True
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="ZAR")

    # Lifecycle
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    broadcast_targets: Mapped[list["JobBroadcastTarget"]] = relationship(
        "JobBroadcastTarget",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="JobBroadcastTarget.position",
        lazy="selectin",
    )
    exclusions: Mapped[list["JobExcludedProvider"]] = relationship(
        "JobExcludedProvider",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="JobExcludedProvider.excluded_at",
        lazy="selectin",
    )
    dispatch_attempts: Mapped[list["JobDispatchAttempt"]] = relationship(
        "JobDispatchAttempt",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="JobDispatchAttempt.attempted_at",
        lazy="selectin",
    )

    @property
    def broadcasted_to(self) -> list[uuid.UUID]:
        """Provider ids offered the job in the current round, nearest first."""
        return [target.provider_id for target in self.broadcast_targets]

    @property
    def excluded_providers(self) -> list[uuid.UUID]:
        return [exclusion.provider_id for exclusion in self.exclusions]

    @property
    def has_dropoff(self) -> bool:
        return self.dropoff_latitude is not None and self.dropoff_longitude is not None

    def __repr__(self) -> str:
        return (
            f"<Job(id={self.id}, ref={self.reference_number}, "
            f"status={self.status}, assigned_to={self.assigned_to})>"
        )


class JobBroadcastTarget(UUIDPrimaryKeyMixin, Base):
    """One provider offered the job in the current broadcast round."""

    __tablename__ = "job_broadcast_targets"
    __table_args__ = (
        UniqueConstraint("job_id", "provider_id", name="uq_broadcast_target_job_provider"),
    )

    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    distance_km: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    offered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    job: Mapped["Job"] = relationship("Job", back_populates="broadcast_targets")


class JobExcludedProvider(UUIDPrimaryKeyMixin, Base):
    """A provider permanently barred from the job after cancelling it."""

    __tablename__ = "job_excluded_providers"
    __table_args__ = (
        UniqueConstraint("job_id", "provider_id", name="uq_excluded_provider_job_provider"),
    )

    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False,
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    excluded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    job: Mapped["Job"] = relationship("Job", back_populates="exclusions")


class JobDispatchAttempt(UUIDPrimaryKeyMixin, Base):
    """Append-only audit row: a provider was offered the job in some round."""

    __tablename__ = "job_dispatch_attempts"

    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False,
    )
    round_number: Mapped[int] = mapped_column(Integer, nullable=False)
    distance_km: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    job: Mapped["Job"] = relationship("Job", back_populates="dispatch_attempts")

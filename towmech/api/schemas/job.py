"""
Pydantic v2 schemas for the Job Dispatch API
============================================

These schemas define the public API contract for job creation, dispatch
actions (accept, reject, release), status updates, cancellation and
retrieval.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from towmech.models.job import BookingFeeStatus, JobStatus
from towmech.models.provider import ProviderRole
from towmech.services.jobStateManager import ActorType


# ---------------------------------------------------------------------------
# Location input
# ---------------------------------------------------------------------------

class JobLocationInput(BaseModel):
    """A point on the map with the address the customer typed for it."""

    latitude: Decimal = Field(ge=-90, le=90)
    longitude: Decimal = Field(ge=-180, le=180)
    address: Optional[str] = Field(default=None, max_length=500)


# ---------------------------------------------------------------------------
# Job creation
# ---------------------------------------------------------------------------

class JobCreateRequest(BaseModel):
    """Request body for creating a new job."""

    customer_id: uuid.UUID = Field(description="UUID of the customer placing the job")
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    role_needed: ProviderRole
    pickup: JobLocationInput
    dropoff: Optional[JobLocationInput] = Field(
        default=None,
        description="Required for tow truck jobs",
    )
    tow_truck_type_needed: Optional[str] = Field(default=None, max_length=100)
    vehicle_type: Optional[str] = Field(default=None, max_length=100)
    provider_payout_cents: Optional[int] = Field(
        default=None,
        ge=0,
        description="Payout estimate shown to providers in the offer",
    )
    currency: str = Field(default="ZAR", min_length=3, max_length=3)


# ---------------------------------------------------------------------------
# Dispatch actions
# ---------------------------------------------------------------------------

class ProviderActionRequest(BaseModel):
    """Body for accept / reject: the provider responding to the offer."""

    provider_id: uuid.UUID


class ProviderCancelRequest(BaseModel):
    """Body for the assigned provider releasing a job."""

    provider_id: uuid.UUID
    reason: Optional[str] = Field(default=None, max_length=500)


class JobStatusUpdateRequest(BaseModel):
    """Request body for starting or completing a job."""

    new_status: JobStatus = Field(description="in_progress or completed")
    actor_id: uuid.UUID = Field(description="UUID of the provider or admin acting")
    actor_type: ActorType = Field(default=ActorType.PROVIDER)


class JobCancelRequest(BaseModel):
    """Request body for cancelling a job."""

    cancelled_by: uuid.UUID = Field(description="UUID of the customer or admin cancelling")
    actor_type: str = Field(
        default="customer",
        pattern=r"^(customer|admin)$",
    )
    reason: Optional[str] = Field(default=None, max_length=500)


# ---------------------------------------------------------------------------
# Job output
# ---------------------------------------------------------------------------

class JobOut(BaseModel):
    """Job as seen by customers and providers."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    reference_number: str
    title: str
    description: Optional[str] = None
    customer_id: uuid.UUID
    role_needed: ProviderRole

    pickup_latitude: Decimal
    pickup_longitude: Decimal
    pickup_address_text: Optional[str] = None
    dropoff_latitude: Optional[Decimal] = None
    dropoff_longitude: Optional[Decimal] = None
    dropoff_address_text: Optional[str] = None
    tow_truck_type_needed: Optional[str] = None
    vehicle_type: Optional[str] = None

    status: JobStatus
    assigned_to: Optional[uuid.UUID] = None
    locked_at: Optional[datetime] = None
    broadcasted_to: list[uuid.UUID] = Field(default_factory=list)
    excluded_providers: list[uuid.UUID] = Field(default_factory=list)
    dispatch_round: int = 0
    searching_since: Optional[datetime] = None

    booking_fee_status: BookingFeeStatus
    booking_fee_paid_at: Optional[datetime] = None
    provider_payout_cents: Optional[int] = None
    currency: str

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_by: Optional[uuid.UUID] = None
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    created_at: datetime
    updated_at: datetime


class ExclusionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider_id: uuid.UUID
    reason: Optional[str] = None
    excluded_at: datetime


class DispatchAttemptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider_id: uuid.UUID
    round_number: int
    distance_km: Optional[float] = None
    attempted_at: datetime


class JobDetailOut(JobOut):
    """Job with its full dispatch audit trail."""

    exclusions: list[ExclusionOut] = Field(default_factory=list)
    dispatch_attempts: list[DispatchAttemptOut] = Field(default_factory=list)


class JobListResponse(BaseModel):
    data: list[JobOut]


class BroadcastOut(BaseModel):
    """Outcome of a broadcast request. ``broadcasted`` is false for a no-op."""

    broadcasted: bool
    message: str
    provider_ids: list[uuid.UUID] = Field(default_factory=list)
    job: JobOut

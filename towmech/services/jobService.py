"""
Job Service
===========

Business logic for the parts of the job lifecycle that are not dispatch
races: creation, work progress, customer cancellation and read queries.
All operations use async SQLAlchemy sessions and enforce:

  - Creation-time eligibility dry run (refuse jobs nobody could take)
  - State machine enforcement via jobStateManager
  - Identity checks (assigned provider, owning customer)
  - Event emission on every state change

Key functions:
  - create_job                 -- validate, dry-run matching, persist CREATED
  - update_job_status          -- IN_PROGRESS / COMPLETED by the assigned provider
  - cancel_job                 -- terminal cancellation by customer, admin or system
  - get_job / load_job         -- single job retrieval
  - list_available_jobs        -- open offers for one provider
  - get_active_jobs_for_customer / get_job_history_for_customer
  - generate_reference_number  -- JOB-XXXXXX format
"""

from __future__ import annotations

import logging
import random
import string
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from towmech.algorithms.capabilitySet import normalize_requirement
from towmech.events.jobEvents import (
    emit_job_cancelled,
    emit_job_completed,
    emit_job_created,
    emit_job_status_changed,
)
from towmech.models.job import (
    TERMINAL_STATUSES,
    BookingFeeStatus,
    Job,
    JobBroadcastTarget,
    JobExcludedProvider,
    JobStatus,
)
from towmech.models.provider import ProviderRole
from towmech.services.dispatchErrors import (
    IllegalTransitionError,
    JobNotFoundError,
    NoProvidersAvailableError,
    NotAssignedProviderError,
    NotJobOwnerError,
)
from towmech.services.jobStateManager import ActorType, validate_transition
from towmech.services.matchingEngine import (
    JobRequirements,
    find_eligible_providers,
    validate_requirements,
)
from towmech.services.providerDirectory import ProviderDirectory

logger = logging.getLogger(__name__)


DEFAULT_CUSTOMER_CANCEL_REASON: str = "Cancelled by customer"
CUSTOMER_HISTORY_LIMIT: int = 50

# Targets reachable through update_job_status; every other status change has
# its own operation (broadcast, accept, release, cancel).
_DIRECT_STATUS_TARGETS: frozenset[JobStatus] = frozenset({
    JobStatus.IN_PROGRESS,
    JobStatus.COMPLETED,
})


# ---------------------------------------------------------------------------
# Reference number generation
# ---------------------------------------------------------------------------

def generate_reference_number() -> str:
    """Generate a human-readable reference number in JOB-XXXXXX format.

    Collision avoidance is handled at the database level via a unique
    constraint.
    """
    chars = string.ascii_uppercase + string.digits
    suffix = "".join(random.choices(chars, k=6))
    return f"JOB-{suffix}"


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

async def get_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    *,
    refresh: bool = False,
) -> Job | None:
    """Fetch a single job with its dispatch bookkeeping loaded.

    ``refresh=True`` overwrites any copy already in the session, which is
    needed after a Core UPDATE changed the row behind the ORM's back.
    """
    stmt = select(Job).where(Job.id == job_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def load_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    *,
    refresh: bool = False,
) -> Job:
    """Like ``get_job`` but raises ``JobNotFoundError`` when missing."""
    job = await get_job(db, job_id, refresh=refresh)
    if job is None:
        raise JobNotFoundError(job_id)
    return job


async def list_available_jobs(
    db: AsyncSession,
    provider_id: uuid.UUID,
) -> Sequence[Job]:
    """Jobs currently offered to a provider, newest first.

    Only BROADCASTED, unassigned jobs count; a stale offer on a job that
    has moved on, or on a job the provider was excluded from, is never
    shown.
    """
    offered = exists().where(
        JobBroadcastTarget.job_id == Job.id,
        JobBroadcastTarget.provider_id == provider_id,
    )
    excluded = exists().where(
        JobExcludedProvider.job_id == Job.id,
        JobExcludedProvider.provider_id == provider_id,
    )
    stmt = (
        select(Job)
        .where(
            Job.status == JobStatus.BROADCASTED,
            Job.assigned_to.is_(None),
            offered,
            ~excluded,
        )
        .order_by(Job.created_at.desc())
    )
    return (await db.execute(stmt)).scalars().all()


async def get_active_jobs_for_customer(
    db: AsyncSession,
    customer_id: uuid.UUID,
) -> Sequence[Job]:
    stmt = (
        select(Job)
        .where(
            Job.customer_id == customer_id,
            Job.status.notin_(TERMINAL_STATUSES),
        )
        .order_by(Job.created_at.desc())
    )
    return (await db.execute(stmt)).scalars().all()


async def get_job_history_for_customer(
    db: AsyncSession,
    customer_id: uuid.UUID,
    *,
    limit: int = CUSTOMER_HISTORY_LIMIT,
) -> Sequence[Job]:
    stmt = (
        select(Job)
        .where(
            Job.customer_id == customer_id,
            Job.status.in_(TERMINAL_STATUSES),
        )
        .order_by(Job.created_at.desc())
        .limit(limit)
    )
    return (await db.execute(stmt)).scalars().all()


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

async def create_job(
    db: AsyncSession,
    *,
    customer_id: uuid.UUID,
    title: str,
    role_needed: ProviderRole,
    pickup: dict[str, Any],
    dropoff: dict[str, Any] | None = None,
    description: str | None = None,
    tow_truck_type_needed: str | None = None,
    vehicle_type: str | None = None,
    provider_payout_cents: int | None = None,
    currency: str = "ZAR",
    directory: ProviderDirectory | None = None,
) -> Job:
    """Create a new job in CREATED status.

    Before persisting, the matching pipeline is run as a dry run. A job no
    provider could currently service is refused instead of being left to
    starve.

    Args:
        db: Async database session.
        customer_id: UUID of the requesting customer.
        title: Short description shown in offers.
        role_needed: TOW_TRUCK or MECHANIC.
        pickup: Dict with ``latitude``, ``longitude`` and optional ``address``.
        dropoff: Same shape as pickup; required for tow jobs.
        description: Optional longer description.
        tow_truck_type_needed: Optional required truck type.
        vehicle_type: Optional vehicle type being serviced.
        provider_payout_cents: Payout estimate from the pricing collaborator.
        currency: ISO currency code for the payout.
        directory: Provider presence source for the dry run.

    Returns:
        The newly created Job ORM instance.

    Raises:
        JobValidationError: If the requirements are malformed.
        NoProvidersAvailableError: If nobody could take the job right now.
    """
    dropoff = dropoff or {}
    requirements = JobRequirements(
        role_needed=role_needed,
        pickup_latitude=pickup.get("latitude"),
        pickup_longitude=pickup.get("longitude"),
        dropoff_latitude=dropoff.get("latitude"),
        dropoff_longitude=dropoff.get("longitude"),
        tow_truck_type_needed=normalize_requirement(tow_truck_type_needed),
        vehicle_type=normalize_requirement(vehicle_type),
    )
    validate_requirements(requirements)

    candidates = await find_eligible_providers(
        db,
        requirements,
        limit=1,
        directory=directory,
    )
    if not candidates:
        logger.info(
            "Refusing job for customer %s: no %s providers available",
            customer_id,
            role_needed.value,
        )
        raise NoProvidersAvailableError(role_needed.value)

    job = Job(
        reference_number=generate_reference_number(),
        title=title,
        description=description,
        customer_id=customer_id,
        role_needed=role_needed,
        pickup_latitude=Decimal(str(requirements.pickup_latitude)),
        pickup_longitude=Decimal(str(requirements.pickup_longitude)),
        pickup_address_text=pickup.get("address"),
        dropoff_latitude=(
            Decimal(str(requirements.dropoff_latitude))
            if requirements.dropoff_latitude is not None
            else None
        ),
        dropoff_longitude=(
            Decimal(str(requirements.dropoff_longitude))
            if requirements.dropoff_longitude is not None
            else None
        ),
        dropoff_address_text=dropoff.get("address"),
        tow_truck_type_needed=requirements.tow_truck_type_needed,
        vehicle_type=requirements.vehicle_type,
        status=JobStatus.CREATED,
        dispatch_round=0,
        booking_fee_status=BookingFeeStatus.PENDING,
        provider_payout_cents=provider_payout_cents,
        currency=currency,
        broadcast_targets=[],
        exclusions=[],
        dispatch_attempts=[],
    )
    db.add(job)
    await db.flush()

    emit_job_created(
        job_id=job.id,
        customer_id=customer_id,
        reference_number=job.reference_number,
        role_needed=role_needed.value,
    )

    logger.info(
        "Job %s created (ref=%s, role=%s, customer=%s)",
        job.id,
        job.reference_number,
        role_needed.value,
        customer_id,
    )

    return job


# ---------------------------------------------------------------------------
# Work progress
# ---------------------------------------------------------------------------

async def update_job_status(
    db: AsyncSession,
    job_id: uuid.UUID,
    new_status: JobStatus,
    *,
    actor_id: uuid.UUID | None = None,
    actor_type: ActorType = ActorType.PROVIDER,
) -> Job:
    """Move an assigned job forward: start work or complete it.

    Providers may only move jobs they hold. Admins may complete a job
    that is in progress, but never start one.

    Raises:
        JobNotFoundError: If the job does not exist.
        NotAssignedProviderError: If a provider acts on someone else's job.
        IllegalTransitionError: If the transition is not allowed.
    """
    job = await load_job(db, job_id, refresh=True)
    old_status = job.status

    if new_status not in _DIRECT_STATUS_TARGETS:
        raise IllegalTransitionError(
            old_status,
            f"Status '{new_status.value}' cannot be set directly.",
        )

    transition = validate_transition(old_status, new_status, actor_type)
    if not transition.allowed:
        raise IllegalTransitionError(old_status, transition.reason or "Transition not allowed.")

    if actor_type == ActorType.PROVIDER and job.assigned_to != actor_id:
        raise NotAssignedProviderError(job_id, actor_id)

    now = datetime.now(timezone.utc)
    job.status = new_status
    if new_status == JobStatus.IN_PROGRESS:
        job.started_at = now
    elif new_status == JobStatus.COMPLETED:
        job.completed_at = now

    await db.flush()

    emit_job_status_changed(
        job_id=job.id,
        old_status=old_status.value,
        new_status=new_status.value,
        actor_id=actor_id,
    )
    if new_status == JobStatus.COMPLETED:
        emit_job_completed(job_id=job.id, provider_id=job.assigned_to)

    logger.info(
        "Job %s transitioned: %s -> %s (actor=%s, type=%s)",
        job.id,
        old_status.value,
        new_status.value,
        actor_id,
        actor_type.value,
    )

    return job


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

async def cancel_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    *,
    cancelled_by: uuid.UUID | None,
    actor_type: ActorType = ActorType.CUSTOMER,
    reason: str | None = None,
) -> Job:
    """Cancel a job for good. No rebroadcast follows.

    Customers may only cancel their own jobs. A provider holding the job
    loses it; the assignment is cleared so no active provider is left on a
    cancelled job.

    Raises:
        JobNotFoundError: If the job does not exist.
        NotJobOwnerError: If a customer cancels someone else's job.
        IllegalTransitionError: If the job is already finished.
    """
    job = await load_job(db, job_id, refresh=True)
    old_status = job.status

    if actor_type == ActorType.CUSTOMER and job.customer_id != cancelled_by:
        raise NotJobOwnerError(job_id, cancelled_by)

    transition = validate_transition(old_status, JobStatus.CANCELLED, actor_type)
    if not transition.allowed:
        raise IllegalTransitionError(old_status, transition.reason or "Cancellation not allowed.")

    if reason is None and actor_type == ActorType.CUSTOMER:
        reason = DEFAULT_CUSTOMER_CANCEL_REASON

    previous_provider_id = job.assigned_to
    job.status = JobStatus.CANCELLED
    job.cancelled_by = cancelled_by
    job.cancel_reason = reason
    job.cancelled_at = datetime.now(timezone.utc)
    job.assigned_to = None
    job.locked_at = None

    await db.flush()

    emit_job_status_changed(
        job_id=job.id,
        old_status=old_status.value,
        new_status=JobStatus.CANCELLED.value,
        actor_id=cancelled_by,
    )
    emit_job_cancelled(
        job_id=job.id,
        cancelled_by=cancelled_by,
        reason=reason,
        previous_provider_id=previous_provider_id,
    )

    logger.info(
        "Job %s cancelled: %s -> cancelled by %s %s (reason=%s)",
        job.id,
        old_status.value,
        actor_type.value,
        cancelled_by,
        reason,
    )

    return job

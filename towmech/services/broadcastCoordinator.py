"""
Broadcast Coordinator
=====================

Runs one broadcast round for a job: ask the matching engine who is
eligible right now, make that list the job's current round, record every
offer in the dispatch audit log and hand the offers to the notifier.

A round is only run once the booking fee is confirmed. An unpaid job is
left untouched and the caller gets a no-op result explaining why.

Rounds are safe to repeat. Each one replaces the previous round's list,
keeps the permanent exclusions out of it and appends to the audit log.
Offers are queued on the session and only go out once the caller commits.
An empty round still leaves the job BROADCASTED; the starvation sweep
picks such jobs up later.

The round is claimed with a conditional UPDATE on the job row, so a round
that races an accept can never overwrite the winner's assignment.

Key functions:
  - broadcast_job            -- run a round for a job
  - confirm_payment          -- record the booking fee as paid, then broadcast
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from towmech.events.jobEvents import emit_job_broadcasted, emit_job_status_changed
from towmech.models.job import (
    BookingFeeStatus,
    Job,
    JobBroadcastTarget,
    JobDispatchAttempt,
    JobStatus,
)
from towmech.services.dispatchErrors import IllegalTransitionError
from towmech.services.jobService import load_job
from towmech.services.jobStateManager import ActorType, validate_transition
from towmech.services.matchingEngine import (
    EligibleProvider,
    JobRequirements,
    find_eligible_providers,
    validate_requirements,
)
from towmech.services.offerNotifier import (
    OfferNotifier,
    default_notifier,
    queue_offer_delivery,
)
from towmech.services.paymentGate import PaymentGate, default_payment_gate
from towmech.services.providerDirectory import ProviderDirectory

logger = logging.getLogger(__name__)


BOOKING_FEE_NOT_PAID: str = "Booking fee not paid"


@dataclass
class BroadcastResult:
    """Outcome of a broadcast request."""

    job: Job
    broadcasted: bool
    message: str
    providers: list[EligibleProvider] = field(default_factory=list)

    @property
    def provider_ids(self) -> list[uuid.UUID]:
        return [p.provider_id for p in self.providers]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _claim_round(
    db: AsyncSession,
    job: Job,
    round_number: int,
    now: datetime,
) -> None:
    """Move the job into the new round, provided nobody changed it since it
    was read."""
    values: dict = {
        "status": JobStatus.BROADCASTED,
        "dispatch_round": round_number,
        "last_broadcast_at": now,
    }
    if job.status != JobStatus.BROADCASTED or job.searching_since is None:
        values["searching_since"] = now

    stmt = (
        update(Job)
        .where(
            Job.id == job.id,
            Job.status == job.status,
            Job.dispatch_round == job.dispatch_round,
            Job.assigned_to.is_(None),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        current = await load_job(db, job.id, refresh=True)
        raise IllegalTransitionError(
            current.status,
            f"Job changed while broadcasting (now '{current.status.value}').",
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def broadcast_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    *,
    payment_gate: PaymentGate | None = None,
    notifier: OfferNotifier | None = None,
    directory: ProviderDirectory | None = None,
) -> BroadcastResult:
    """Run a broadcast round for a job.

    Args:
        db: Async database session.
        job_id: UUID of the job to broadcast.
        payment_gate: Booking fee check; defaults to the job's fee status.
        notifier: Offer delivery channel; defaults to FCM.
        directory: Provider presence source; defaults to the providers table.

    Returns:
        BroadcastResult with the refreshed job and the providers offered.

    Raises:
        JobNotFoundError: If the job does not exist.
        JobValidationError: If the job's requirements are malformed.
        IllegalTransitionError: If the job is assigned, in progress or finished.
    """
    payment_gate = payment_gate or default_payment_gate
    notifier = notifier or default_notifier

    job = await load_job(db, job_id, refresh=True)
    old_status = job.status

    transition = validate_transition(old_status, JobStatus.BROADCASTED, ActorType.SYSTEM)
    if not transition.allowed:
        raise IllegalTransitionError(old_status, transition.reason or "Broadcast not allowed.")

    requirements = JobRequirements.from_job(job)
    validate_requirements(requirements)

    if not payment_gate.is_payment_confirmed(job):
        logger.info("Job %s not broadcast: booking fee not confirmed", job.id)
        return BroadcastResult(job=job, broadcasted=False, message=BOOKING_FEE_NOT_PAID)

    providers = await find_eligible_providers(
        db,
        requirements,
        excluded_provider_ids=job.excluded_providers,
        directory=directory,
    )

    now = datetime.now(timezone.utc)
    round_number = job.dispatch_round + 1

    await _claim_round(db, job, round_number, now)

    # Replace the previous round's list; the audit log only grows
    await db.execute(
        delete(JobBroadcastTarget).where(JobBroadcastTarget.job_id == job.id)
    )
    for position, match in enumerate(providers):
        distance = round(match.distance_km, 3)
        db.add(
            JobBroadcastTarget(
                job_id=job.id,
                provider_id=match.provider_id,
                position=position,
                distance_km=distance,
                offered_at=now,
            )
        )
        db.add(
            JobDispatchAttempt(
                job_id=job.id,
                provider_id=match.provider_id,
                round_number=round_number,
                distance_km=distance,
                attempted_at=now,
            )
        )
    await db.flush()

    job = await load_job(db, job.id, refresh=True)

    emit_job_broadcasted(
        job_id=job.id,
        round_number=round_number,
        provider_ids=[p.provider_id for p in providers],
    )
    if old_status != JobStatus.BROADCASTED:
        emit_job_status_changed(
            job_id=job.id,
            old_status=old_status.value,
            new_status=JobStatus.BROADCASTED.value,
        )

    if providers:
        message = f"Job broadcast to {len(providers)} providers"
        logger.info("Job %s round %d offered to %d providers", job.id, round_number, len(providers))
    else:
        message = "No providers available yet; still searching"
        logger.warning(
            "Job %s round %d found no eligible providers; job is searching",
            job.id,
            round_number,
        )

    queue_offer_delivery(db, notifier, job, [p.provider for p in providers])

    return BroadcastResult(job=job, broadcasted=True, message=message, providers=providers)


async def confirm_payment(
    db: AsyncSession,
    job_id: uuid.UUID,
    *,
    payment_gate: PaymentGate | None = None,
    notifier: OfferNotifier | None = None,
    directory: ProviderDirectory | None = None,
) -> BroadcastResult:
    """Record the booking fee as paid and run the first broadcast round.

    Called by the payment collaborator once the fee has cleared. Repeating
    the call for an already paid job runs another round, which is harmless.
    """
    job = await load_job(db, job_id)

    if job.booking_fee_status != BookingFeeStatus.PAID:
        job.booking_fee_status = BookingFeeStatus.PAID
        job.booking_fee_paid_at = datetime.now(timezone.utc)
        await db.flush()
        logger.info("Booking fee for job %s marked paid", job.id)

    return await broadcast_job(
        db,
        job_id,
        payment_gate=payment_gate,
        notifier=notifier,
        directory=directory,
    )

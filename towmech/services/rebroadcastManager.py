"""
Rebroadcast Manager
===================

Handles a provider backing out of a job.

Two very different exits exist:

  - Reject (``reject_offer``): the provider declines an open offer. Only
    that provider's offer is withdrawn. They are NOT barred; a later round
    may offer them the job again.

  - Release (``cancel_assignment``): the assigned provider gives up a job
    they already won, before or during the work. They are permanently
    excluded from the job, the assignment is cleared and a fresh round
    is run straight away.

Customer cancellation is terminal and lives in ``jobService.cancel_job``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from towmech.events.jobEvents import (
    emit_job_status_changed,
    emit_offer_rejected,
    emit_provider_cancelled,
)
from towmech.models.job import (
    ACTIVE_STATUSES,
    Job,
    JobBroadcastTarget,
    JobExcludedProvider,
    JobStatus,
)
from towmech.services.broadcastCoordinator import BroadcastResult, broadcast_job
from towmech.services.dispatchErrors import (
    IllegalTransitionError,
    NotAssignedProviderError,
    OfferNotFoundError,
)
from towmech.services.jobService import load_job
from towmech.services.jobStateManager import ActorType, validate_transition
from towmech.services.offerNotifier import OfferNotifier
from towmech.services.paymentGate import PaymentGate
from towmech.services.providerDirectory import ProviderDirectory

logger = logging.getLogger(__name__)


DEFAULT_PROVIDER_CANCEL_REASON: str = "Cancelled by provider"


# ---------------------------------------------------------------------------
# Reject (soft)
# ---------------------------------------------------------------------------

async def reject_offer(
    db: AsyncSession,
    job_id: uuid.UUID,
    provider_id: uuid.UUID,
) -> Job:
    """Withdraw one provider's open offer on a broadcasting job.

    Raises:
        JobNotFoundError: If the job does not exist.
        IllegalTransitionError: If the job is no longer broadcasting.
        OfferNotFoundError: If the provider holds no offer in this round.
    """
    job = await load_job(db, job_id, refresh=True)

    if job.status != JobStatus.BROADCASTED or job.assigned_to is not None:
        raise IllegalTransitionError(
            job.status,
            f"Job is '{job.status.value}'; offers can only be rejected while broadcasting.",
        )

    result = await db.execute(
        delete(JobBroadcastTarget).where(
            JobBroadcastTarget.job_id == job_id,
            JobBroadcastTarget.provider_id == provider_id,
        )
    )
    if result.rowcount == 0:
        raise OfferNotFoundError(job_id, provider_id)

    job = await load_job(db, job_id, refresh=True)
    remaining = len(job.broadcast_targets)

    emit_offer_rejected(job_id=job.id, provider_id=provider_id, remaining_offers=remaining)

    if remaining == 0:
        logger.warning(
            "Job %s has no open offers left after rejection by %s; job is searching",
            job.id,
            provider_id,
        )
    else:
        logger.info(
            "Provider %s rejected job %s (%d offers remain)",
            provider_id,
            job.id,
            remaining,
        )

    return job


# ---------------------------------------------------------------------------
# Release (hard)
# ---------------------------------------------------------------------------

async def cancel_assignment(
    db: AsyncSession,
    job_id: uuid.UUID,
    provider_id: uuid.UUID,
    *,
    reason: str | None = None,
    payment_gate: PaymentGate | None = None,
    notifier: OfferNotifier | None = None,
    directory: ProviderDirectory | None = None,
) -> BroadcastResult:
    """Release a job held by ``provider_id`` and rebroadcast it without them.

    The release is a conditional UPDATE on ``assigned_to`` and status, so it
    cannot clobber a concurrent change to the job. The previous round's offer
    list is cleared together with the release, so the job is never left
    broadcasting to the provider who just gave it up, even when the fresh
    round does not run (booking fee no longer confirmed).

    Returns:
        The BroadcastResult of the fresh round.

    Raises:
        JobNotFoundError: If the job does not exist.
        NotAssignedProviderError: If the provider does not hold the job.
        IllegalTransitionError: If the job is not assigned or in progress.
    """
    job = await load_job(db, job_id, refresh=True)
    old_status = job.status

    if job.assigned_to != provider_id:
        raise NotAssignedProviderError(job_id, provider_id)

    transition = validate_transition(old_status, JobStatus.BROADCASTED, ActorType.PROVIDER)
    if not transition.allowed:
        raise IllegalTransitionError(old_status, transition.reason or "Release not allowed.")

    reason = reason or DEFAULT_PROVIDER_CANCEL_REASON
    now = datetime.now(timezone.utc)

    stmt = (
        update(Job)
        .where(
            Job.id == job_id,
            Job.assigned_to == provider_id,
            Job.status.in_(ACTIVE_STATUSES),
        )
        .values(
            status=JobStatus.BROADCASTED,
            assigned_to=None,
            locked_at=None,
            started_at=None,
            searching_since=now,
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        current = await load_job(db, job_id, refresh=True)
        raise IllegalTransitionError(
            current.status,
            f"Job changed while releasing (now '{current.status.value}').",
        )

    # The old round dies with the release, whether or not a new one runs
    await db.execute(
        delete(JobBroadcastTarget).where(JobBroadcastTarget.job_id == job_id)
    )

    if provider_id not in job.excluded_providers:
        db.add(
            JobExcludedProvider(
                job_id=job_id,
                provider_id=provider_id,
                reason=reason,
                excluded_at=now,
            )
        )
    await db.flush()

    emit_job_status_changed(
        job_id=job_id,
        old_status=old_status.value,
        new_status=JobStatus.BROADCASTED.value,
        actor_id=provider_id,
    )
    emit_provider_cancelled(job_id=job_id, provider_id=provider_id, reason=reason)

    logger.info(
        "Provider %s released job %s from %s (reason=%s); rebroadcasting",
        provider_id,
        job_id,
        old_status.value,
        reason,
    )

    return await broadcast_job(
        db,
        job_id,
        payment_gate=payment_gate,
        notifier=notifier,
        directory=directory,
    )

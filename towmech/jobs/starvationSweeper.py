"""
Starvation Sweeper -- Scheduled Job.

A broadcasting job can end up with nobody to offer it to: every offered
provider rejected it, or a release round found no one. Such a job stays
BROADCASTED with an empty offer list ("searching"). This sweep:

1. Finds BROADCASTED, unassigned jobs with no open offers.
2. Cancels (as the system) those that have been searching for longer than
   ``starvation_ttl_minutes``.
3. Runs a fresh broadcast round for the rest, since providers may have come
   online or freed up since the last round.

Each job is committed on its own, so one failing job never undoes the work
done for the others. Offers for a rebroadcast round go out after its
commit.

Intended to run every minute or so via cron or a similar scheduler.

Usage with a simple cron runner::

    python -m towmech.jobs.starvationSweeper
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from towmech.core.config import settings
from towmech.models.job import Job, JobBroadcastTarget, JobStatus
from towmech.services.broadcastCoordinator import broadcast_job
from towmech.services.dispatchErrors import IllegalTransitionError
from towmech.services.jobService import cancel_job
from towmech.services.jobStateManager import ActorType
from towmech.services.offerNotifier import (
    OfferNotifier,
    discard_offer_deliveries,
    release_offer_deliveries,
)
from towmech.services.paymentGate import PaymentGate
from towmech.services.providerDirectory import ProviderDirectory

logger = logging.getLogger(__name__)


STARVATION_CANCEL_REASON: str = "No providers available"


@dataclass
class SweepResult:
    rebroadcast: list[uuid.UUID] = field(default_factory=list)
    still_starving: list[uuid.UUID] = field(default_factory=list)
    auto_cancelled: list[uuid.UUID] = field(default_factory=list)
    failed: list[uuid.UUID] = field(default_factory=list)


async def _find_starving_job_ids(db: AsyncSession) -> list[tuple[uuid.UUID, datetime | None]]:
    has_offers = exists().where(JobBroadcastTarget.job_id == Job.id)
    stmt = (
        select(Job.id, Job.searching_since)
        .where(
            Job.status == JobStatus.BROADCASTED,
            Job.assigned_to.is_(None),
            ~has_offers,
        )
        .order_by(Job.searching_since)
    )
    return [(row[0], row[1]) for row in (await db.execute(stmt)).all()]


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def run_starvation_sweep(
    db: AsyncSession,
    *,
    now: datetime | None = None,
    ttl_minutes: int | None = None,
    payment_gate: PaymentGate | None = None,
    notifier: OfferNotifier | None = None,
    directory: ProviderDirectory | None = None,
) -> SweepResult:
    """Retry or give up on jobs that have nobody left to offer them to.

    Owns the session's transaction: commits after each job and rolls back
    only the job that failed.

    Args:
        db: Async database session.
        now: Reference time (defaults to current UTC time).
        ttl_minutes: How long a job may search; defaults to the setting.

    Returns:
        SweepResult listing what happened to each starving job.
    """
    now = now or datetime.now(timezone.utc)
    if ttl_minutes is None:
        ttl_minutes = settings.starvation_ttl_minutes
    cutoff = now - timedelta(minutes=ttl_minutes)

    sweep = SweepResult()
    starving = await _find_starving_job_ids(db)
    await db.commit()

    logger.info("Starvation sweep: %d searching jobs found", len(starving))

    for job_id, searching_since in starving:
        try:
            if searching_since is not None and _as_utc(searching_since) <= cutoff:
                await cancel_job(
                    db,
                    job_id,
                    cancelled_by=None,
                    actor_type=ActorType.SYSTEM,
                    reason=STARVATION_CANCEL_REASON,
                )
                outcome = sweep.auto_cancelled
            else:
                result = await broadcast_job(
                    db,
                    job_id,
                    payment_gate=payment_gate,
                    notifier=notifier,
                    directory=directory,
                )
                outcome = sweep.rebroadcast if result.providers else sweep.still_starving
            await db.commit()
        except IllegalTransitionError as exc:
            # The job moved on (accepted or cancelled) since it was listed
            await db.rollback()
            discard_offer_deliveries(db)
            logger.info("Starvation sweep skipped job %s: %s", job_id, exc)
            continue
        except Exception:
            await db.rollback()
            discard_offer_deliveries(db)
            logger.exception("Starvation sweep failed for job %s", job_id)
            sweep.failed.append(job_id)
            continue

        release_offer_deliveries(db)
        outcome.append(job_id)

    logger.info(
        "Starvation sweep completed. Rebroadcast: %d, still searching: %d, "
        "auto-cancelled: %d, failed: %d.",
        len(sweep.rebroadcast),
        len(sweep.still_starving),
        len(sweep.auto_cancelled),
        len(sweep.failed),
    )

    return sweep


# ---------------------------------------------------------------------------
# CLI entry point (for manual runs / simple cron)
# ---------------------------------------------------------------------------

async def _cli_main() -> None:
    """Entry point for running the sweep from the command line.

    Creates its own database session via the application session factory.
    """
    from towmech.api.deps import async_session_factory
    from towmech.services.offerNotifier import drain_pending_deliveries

    async with async_session_factory() as session:
        try:
            result = await run_starvation_sweep(session)
            print(f"Starvation sweep completed: {result}")  # noqa: T201
        except Exception:
            await session.rollback()
            logger.exception("Starvation sweep failed")
            raise
        finally:
            await session.close()

    await drain_pending_deliveries()


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level)
    asyncio.run(_cli_main())

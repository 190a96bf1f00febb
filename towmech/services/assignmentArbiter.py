"""
Assignment Arbiter
==================

Decides who wins a job when several providers accept the same offer.

Acceptance is a single conditional UPDATE::

    UPDATE jobs
       SET assigned_to = :provider, status = 'ASSIGNED', locked_at = now()
     WHERE id = :job
       AND status = 'BROADCASTED'
       AND assigned_to IS NULL
       AND EXISTS (offer row for :job / :provider in the current round)
       AND NOT EXISTS (exclusion row for :job / :provider)

The database applies it atomically, so among any number of concurrent
accepts exactly one matches a row. Everybody else gets
``AssignmentConflictError``. Nothing is read before the write, so there is
no check-then-act window, and losers are never retried automatically.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import exists, update
from sqlalchemy.ext.asyncio import AsyncSession

from towmech.events.jobEvents import emit_job_assigned, emit_job_status_changed
from towmech.models.job import (
    Job,
    JobBroadcastTarget,
    JobExcludedProvider,
    JobStatus,
)
from towmech.services.dispatchErrors import AssignmentConflictError, JobNotFoundError
from towmech.services.jobService import get_job, load_job

logger = logging.getLogger(__name__)


async def accept_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    provider_id: uuid.UUID,
) -> Job:
    """Atomically assign the job to ``provider_id`` if the offer is still open.

    Returns:
        The job, reloaded, now ASSIGNED to the provider.

    Raises:
        JobNotFoundError: If the job does not exist.
        AssignmentConflictError: If the job was already taken, is no longer
            broadcasting, was never offered to this provider, or the
            provider is excluded from it.
    """
    now = datetime.now(timezone.utc)

    offered = exists().where(
        JobBroadcastTarget.job_id == job_id,
        JobBroadcastTarget.provider_id == provider_id,
    )
    excluded = exists().where(
        JobExcludedProvider.job_id == job_id,
        JobExcludedProvider.provider_id == provider_id,
    )
    stmt = (
        update(Job)
        .where(
            Job.id == job_id,
            Job.status == JobStatus.BROADCASTED,
            Job.assigned_to.is_(None),
            offered,
            ~excluded,
        )
        .values(
            assigned_to=provider_id,
            status=JobStatus.ASSIGNED,
            locked_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)

    if result.rowcount != 1:
        # Only now look at the row, to tell "missing" from "lost the race"
        job = await get_job(db, job_id, refresh=True)
        if job is None:
            raise JobNotFoundError(job_id)
        logger.info(
            "Accept by provider %s for job %s rejected (status=%s, assigned_to=%s)",
            provider_id,
            job_id,
            job.status.value,
            job.assigned_to,
        )
        raise AssignmentConflictError(job_id, provider_id, current_status=job.status)

    job = await load_job(db, job_id, refresh=True)

    emit_job_status_changed(
        job_id=job.id,
        old_status=JobStatus.BROADCASTED.value,
        new_status=JobStatus.ASSIGNED.value,
        actor_id=provider_id,
    )
    emit_job_assigned(job_id=job.id, provider_id=provider_id)

    logger.info("Job %s assigned to provider %s", job.id, provider_id)

    return job

"""
Capacity Filter
===============

Decides whether a provider can take on another job given the jobs they
are already holding. The active job mix is derived from the jobs table at
match time and never cached, so every broadcast round sees fresh state.

Rules (evaluated in order):

  1. Total active jobs >= ``max_active_jobs``          -> ineligible
  2. Any ASSIGNED job not yet started                  -> ineligible
  3. An IN_PROGRESS job is eligible only when it has a
     dropoff point and the provider's last position is
     within ``near_completion_radius_km`` of it        -> else ineligible
  4. No active jobs                                    -> eligible

Rule 3 lets a tow operator that is about to drop off a vehicle be offered
the next nearby job. Mechanic jobs have no dropoff, so a mechanic with a
job in progress is never offered a second one.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from towmech.core.config import settings
from towmech.models.job import ACTIVE_STATUSES, Job, JobStatus
from towmech.services.geoService import haversine_distance

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ActiveJobRef:
    """The slice of an active job the capacity rules need."""

    job_id: uuid.UUID
    status: JobStatus
    dropoff_latitude: Decimal | None = None
    dropoff_longitude: Decimal | None = None

    @property
    def has_dropoff(self) -> bool:
        return self.dropoff_latitude is not None and self.dropoff_longitude is not None


@dataclass
class ActiveJobMix:
    """Jobs a single provider is currently holding, split by status."""

    assigned: list[ActiveJobRef] = field(default_factory=list)
    in_progress: list[ActiveJobRef] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.assigned) + len(self.in_progress)

    def add(self, ref: ActiveJobRef) -> None:
        if ref.status == JobStatus.IN_PROGRESS:
            self.in_progress.append(ref)
        elif ref.status == JobStatus.ASSIGNED:
            self.assigned.append(ref)


@dataclass(frozen=True)
class CapacityDecision:
    eligible: bool
    reason: str


# ---------------------------------------------------------------------------
# Rule evaluation
# ---------------------------------------------------------------------------

def evaluate_capacity(
    mix: ActiveJobMix,
    provider_latitude: Decimal | float | None,
    provider_longitude: Decimal | float | None,
    *,
    max_active_jobs: int | None = None,
    near_completion_radius_km: float | None = None,
) -> CapacityDecision:
    """Apply the capacity rules to one provider's active job mix."""
    if max_active_jobs is None:
        max_active_jobs = settings.dispatch_max_active_jobs
    if near_completion_radius_km is None:
        near_completion_radius_km = settings.dispatch_near_completion_radius_km

    if mix.total == 0:
        return CapacityDecision(eligible=True, reason="no active jobs")

    if mix.total >= max_active_jobs:
        return CapacityDecision(
            eligible=False,
            reason=f"holding {mix.total} active jobs (limit {max_active_jobs})",
        )

    if mix.assigned:
        return CapacityDecision(
            eligible=False,
            reason="has an assigned job that has not started",
        )

    if provider_latitude is None or provider_longitude is None:
        return CapacityDecision(
            eligible=False,
            reason="job in progress and no reported location",
        )

    for ref in mix.in_progress:
        if not ref.has_dropoff:
            return CapacityDecision(
                eligible=False,
                reason=f"job {ref.job_id} in progress has no dropoff point",
            )
        distance = haversine_distance(
            float(provider_latitude),
            float(provider_longitude),
            float(ref.dropoff_latitude),
            float(ref.dropoff_longitude),
        )
        if distance > near_completion_radius_km:
            return CapacityDecision(
                eligible=False,
                reason=(
                    f"{distance:.2f} km from dropoff of job {ref.job_id} "
                    f"(limit {near_completion_radius_km} km)"
                ),
            )

    return CapacityDecision(eligible=True, reason="near completion of current job")


# ---------------------------------------------------------------------------
# Active job mix loading
# ---------------------------------------------------------------------------

async def load_active_job_mix(
    db: AsyncSession,
    provider_ids: Iterable[uuid.UUID],
) -> dict[uuid.UUID, ActiveJobMix]:
    """Load the active job mix for several providers in one query.

    Providers with no active jobs get an empty mix.
    """
    ids = list(provider_ids)
    mixes: dict[uuid.UUID, ActiveJobMix] = {pid: ActiveJobMix() for pid in ids}
    if not ids:
        return mixes

    stmt = select(
        Job.id,
        Job.assigned_to,
        Job.status,
        Job.dropoff_latitude,
        Job.dropoff_longitude,
    ).where(
        Job.assigned_to.in_(ids),
        Job.status.in_(ACTIVE_STATUSES),
    )
    rows = (await db.execute(stmt)).all()

    for job_id, assigned_to, status, dropoff_lat, dropoff_lng in rows:
        mixes[assigned_to].add(
            ActiveJobRef(
                job_id=job_id,
                status=status,
                dropoff_latitude=dropoff_lat,
                dropoff_longitude=dropoff_lng,
            )
        )

    return mixes

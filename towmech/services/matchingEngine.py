"""
Provider Matching Engine
========================

Finds the providers a job should be offered to. Every filter is a hard
requirement; the result is ordered nearest-first and truncated.

Pipeline (in order):
  1. Role, online, approved, not excluded   (provider directory query)
  2. Capability match                       (tow-truck type, vehicle type)
  3. Proximity to pickup                    (haversine <= max distance)
  4. Capacity                               (fresh active job mix)
  5. Truncate to ``limit``

Capacity is checked after proximity so the per-provider job query only runs
for providers already close enough to matter, and before truncation so a
busy provider never takes a slot from an available one further away.

Key functions:
  - validate_requirements   -- reject malformed job requirements
  - find_eligible_providers -- full pipeline, used by broadcast rounds and
                               by the creation-time dry run
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from towmech.algorithms.capabilitySet import normalize_requirement
from towmech.core.config import settings
from towmech.models.job import Job
from towmech.models.provider import Provider, ProviderRole
from towmech.services.capacityFilter import evaluate_capacity, load_active_job_mix
from towmech.services.dispatchErrors import JobValidationError
from towmech.services.geoService import filter_by_radius
from towmech.services.providerDirectory import ProviderDirectory, default_directory

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class JobRequirements:
    """What a job needs from a provider, independent of persistence."""

    role_needed: ProviderRole
    pickup_latitude: Decimal | float | None
    pickup_longitude: Decimal | float | None
    dropoff_latitude: Decimal | float | None = None
    dropoff_longitude: Decimal | float | None = None
    tow_truck_type_needed: str | None = None
    vehicle_type: str | None = None

    @classmethod
    def from_job(cls, job: Job) -> "JobRequirements":
        return cls(
            role_needed=job.role_needed,
            pickup_latitude=job.pickup_latitude,
            pickup_longitude=job.pickup_longitude,
            dropoff_latitude=job.dropoff_latitude,
            dropoff_longitude=job.dropoff_longitude,
            tow_truck_type_needed=job.tow_truck_type_needed,
            vehicle_type=job.vehicle_type,
        )


@dataclass
class EligibleProvider:
    """A provider that passed every filter, with its distance to pickup."""

    provider: Provider
    distance_km: float

    @property
    def provider_id(self) -> uuid.UUID:
        return self.provider.id


# ---------------------------------------------------------------------------
# Requirement validation
# ---------------------------------------------------------------------------

def _valid_coordinate(latitude, longitude) -> bool:
    if latitude is None or longitude is None:
        return False
    return -90 <= float(latitude) <= 90 and -180 <= float(longitude) <= 180


def validate_requirements(requirements: JobRequirements) -> None:
    """Raise ``JobValidationError`` when the requirements cannot be matched.

    A pickup location is always required. Tow jobs also need a dropoff,
    because the capacity rules for busy tow operators are defined relative
    to where their current vehicle is being delivered.
    """
    if not _valid_coordinate(requirements.pickup_latitude, requirements.pickup_longitude):
        raise JobValidationError("A valid pickup location is required.")

    has_dropoff_lat = requirements.dropoff_latitude is not None
    has_dropoff_lng = requirements.dropoff_longitude is not None
    if has_dropoff_lat != has_dropoff_lng:
        raise JobValidationError("Dropoff latitude and longitude must be given together.")

    if requirements.role_needed == ProviderRole.TOW_TRUCK:
        if not _valid_coordinate(requirements.dropoff_latitude, requirements.dropoff_longitude):
            raise JobValidationError("Tow truck jobs require a valid dropoff location.")
    elif has_dropoff_lat and not _valid_coordinate(
        requirements.dropoff_latitude, requirements.dropoff_longitude
    ):
        raise JobValidationError("Dropoff location is out of range.")


# ---------------------------------------------------------------------------
# Pipeline stages
# ---------------------------------------------------------------------------

def _matches_capabilities(provider: Provider, requirements: JobRequirements) -> bool:
    if not provider.tow_truck_capabilities.supports(requirements.tow_truck_type_needed):
        return False
    if not provider.vehicle_capabilities.supports(requirements.vehicle_type):
        return False
    return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def find_eligible_providers(
    db: AsyncSession,
    requirements: JobRequirements,
    *,
    excluded_provider_ids: Iterable[uuid.UUID] = (),
    max_distance_km: float | None = None,
    limit: int | None = None,
    directory: ProviderDirectory | None = None,
) -> list[EligibleProvider]:
    """Return providers eligible for a job, nearest first.

    Args:
        db: Async database session.
        requirements: The job's role, location and capability needs.
        excluded_provider_ids: Providers permanently barred from this job.
        max_distance_km: Pickup radius; defaults to the dispatch setting.
        limit: Maximum providers returned; defaults to the dispatch setting.
        directory: Provider presence source; defaults to the providers table.

    Returns:
        Up to ``limit`` eligible providers ordered by distance to pickup.
    """
    validate_requirements(requirements)

    if max_distance_km is None:
        max_distance_km = settings.dispatch_max_distance_km
    if limit is None:
        limit = settings.dispatch_provider_limit
    if directory is None:
        directory = default_directory

    excluded = set(excluded_provider_ids)
    role = requirements.role_needed

    # 1. Role / online / approved / not excluded
    candidates = await directory.find_candidates(
        db,
        role=role,
        excluded_provider_ids=excluded,
    )
    # Guard against directories that ignore the exclusion argument
    candidates = [p for p in candidates if p.id not in excluded]

    # 2. Capabilities
    capable = [p for p in candidates if _matches_capabilities(p, requirements)]

    logger.info(
        "Matching %s (tow_type=%s, vehicle=%s): %d candidates, %d capable",
        role.value,
        normalize_requirement(requirements.tow_truck_type_needed),
        normalize_requirement(requirements.vehicle_type),
        len(candidates),
        len(capable),
    )

    if not capable:
        return []

    # 3. Proximity
    nearby = filter_by_radius(
        capable,
        float(requirements.pickup_latitude),
        float(requirements.pickup_longitude),
        max_distance_km,
    )

    if not nearby:
        logger.info(
            "Matching %s: none of %d capable providers within %.1f km",
            role.value,
            len(capable),
            max_distance_km,
        )
        return []

    # 4. Capacity
    mixes = await load_active_job_mix(db, [pd.provider.id for pd in nearby])
    eligible: list[EligibleProvider] = []
    for pd in nearby:
        provider = pd.provider
        decision = evaluate_capacity(
            mixes[provider.id],
            provider.last_latitude,
            provider.last_longitude,
        )
        if not decision.eligible:
            logger.debug("Provider %s skipped: %s", provider.id, decision.reason)
            continue
        eligible.append(EligibleProvider(provider=provider, distance_km=pd.distance_km))

    # 5. Truncate
    results = eligible[:limit]

    logger.info(
        "Matching %s: capable=%d, within_radius=%d, with_capacity=%d, returned=%d",
        role.value,
        len(capable),
        len(nearby),
        len(eligible),
        len(results),
    )

    return results

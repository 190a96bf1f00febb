"""
Provider Service
================

The provider's own status reports: going online or offline, sharing the
current position and declaring which trucks and vehicle types they handle.
This is the only writer of provider presence; the dispatch engine only
reads it.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from towmech.algorithms.capabilitySet import normalize_requirement
from towmech.models.provider import Provider
from towmech.services.dispatchErrors import ProviderNotFoundError

logger = logging.getLogger(__name__)


def _clean_capabilities(values: list[str]) -> list[str]:
    """Drop blank or null-literal entries and duplicates, keeping order."""
    cleaned: list[str] = []
    for value in values:
        normalized = normalize_requirement(value)
        if normalized is not None and normalized not in cleaned:
            cleaned.append(normalized)
    return cleaned


async def get_provider(db: AsyncSession, provider_id: uuid.UUID) -> Provider:
    result = await db.execute(select(Provider).where(Provider.id == provider_id))
    provider = result.scalar_one_or_none()
    if provider is None:
        raise ProviderNotFoundError(provider_id)
    return provider


async def update_presence(
    db: AsyncSession,
    provider_id: uuid.UUID,
    *,
    is_online: bool | None = None,
    latitude: Decimal | None = None,
    longitude: Decimal | None = None,
    tow_truck_types: list[str] | None = None,
    car_types_supported: list[str] | None = None,
    fcm_token: str | None = None,
) -> Provider:
    """Apply a provider's self-reported status. Omitted fields are unchanged.

    Raises:
        ProviderNotFoundError: If the provider does not exist.
    """
    provider = await get_provider(db, provider_id)

    if is_online is not None:
        provider.is_online = is_online
    if latitude is not None and longitude is not None:
        provider.last_latitude = latitude
        provider.last_longitude = longitude
    if tow_truck_types is not None:
        provider.tow_truck_types = _clean_capabilities(tow_truck_types)
    if car_types_supported is not None:
        provider.car_types_supported = _clean_capabilities(car_types_supported)
    if fcm_token is not None:
        provider.fcm_token = fcm_token or None

    provider.last_seen_at = datetime.now(timezone.utc)
    await db.flush()

    logger.info(
        "Provider %s status reported (online=%s, location=%s,%s)",
        provider.id,
        provider.is_online,
        provider.last_latitude,
        provider.last_longitude,
    )

    return provider

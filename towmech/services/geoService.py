"""
Geo Service
===========

Great-circle distances for dispatch. The matching engine gates providers by
their distance to the pickup; the capacity filter measures how far a busy
tow driver still is from the dropoff of the job in progress.

Distances are haversine over a spherical Earth, which is well inside the
tolerance of a 20 km dispatch radius.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol, Sequence

EARTH_RADIUS_KM: float = 6371.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Kilometres between two points given in decimal degrees."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    half_dphi = math.radians(lat2 - lat1) / 2
    half_dlambda = math.radians(lon2 - lon1) / 2

    h = math.sin(half_dphi) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(half_dlambda) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


class HasLocation(Protocol):
    last_latitude: Decimal | None
    last_longitude: Decimal | None


@dataclass
class ProviderDistance:
    provider: Any
    distance_km: float


def filter_by_radius(
    providers: Sequence[HasLocation],
    center_lat: float,
    center_lon: float,
    radius_km: float,
) -> list[ProviderDistance]:
    """Providers within ``radius_km`` of the center, nearest first.

    Providers with no reported location are dropped. Ties keep their input
    order.
    """
    located = (
        p for p in providers
        if p.last_latitude is not None and p.last_longitude is not None
    )
    measured = [
        ProviderDistance(
            provider=p,
            distance_km=haversine_distance(
                center_lat, center_lon, float(p.last_latitude), float(p.last_longitude)
            ),
        )
        for p in located
    ]
    return sorted(
        (pd for pd in measured if pd.distance_km <= radius_km),
        key=lambda pd: pd.distance_km,
    )

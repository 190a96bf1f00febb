"""
Shared pytest fixtures for TowMech dispatch unit tests.

Provides mock database sessions and sample domain objects that mirror
production ORM models without requiring a live database connection.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from towmech.algorithms.capabilitySet import CapabilitySet
from towmech.models.job import BookingFeeStatus, Job, JobStatus
from towmech.models.provider import Provider, ProviderRole, VerificationStatus


# Johannesburg: pickup and dropoff used throughout the dispatch tests
PICKUP_LAT = Decimal("-26.2")
PICKUP_LNG = Decimal("28.0")
DROPOFF_LAT = Decimal("-26.3")
DROPOFF_LNG = Decimal("28.1")

# One kilometre of latitude, in degrees
KM_IN_DEGREES_LAT = 1 / 111.195


def lat_km_north(km: float) -> Decimal:
    """Latitude ``km`` kilometres north of the pickup point."""
    return Decimal(str(round(float(PICKUP_LAT) + km * KM_IN_DEGREES_LAT, 7)))


# ---------------------------------------------------------------------------
# Database session mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db() -> AsyncMock:
    """Async mock of ``AsyncSession``.

    Supports ``db.execute()``, ``db.add()``, ``db.flush()`` and
    ``db.commit()`` out of the box. Individual tests configure
    ``mock_db.execute.return_value`` to control query results.
    """
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


def rows_result(rows: list) -> MagicMock:
    """A mock ``Result`` whose ``.all()`` returns ``rows``."""
    result = MagicMock()
    result.all.return_value = rows
    return result


# ---------------------------------------------------------------------------
# Provider fixtures
# ---------------------------------------------------------------------------


def make_provider(
    *,
    role: ProviderRole = ProviderRole.TOW_TRUCK,
    latitude: Decimal | None = PICKUP_LAT,
    longitude: Decimal | None = PICKUP_LNG,
    tow_truck_types: list[str] | None = None,
    car_types_supported: list[str] | None = None,
    fcm_token: str | None = None,
    provider_id: uuid.UUID | None = None,
) -> Provider:
    """A MagicMock provider with real capability semantics."""
    provider = MagicMock(spec=Provider)
    provider.id = provider_id or uuid.uuid4()
    provider.display_name = "Test Provider"
    provider.role = role
    provider.is_online = True
    provider.verification_status = VerificationStatus.APPROVED
    provider.last_latitude = latitude
    provider.last_longitude = longitude
    provider.tow_truck_types = list(tow_truck_types or [])
    provider.car_types_supported = list(car_types_supported or [])
    provider.tow_truck_capabilities = CapabilitySet.strict(provider.tow_truck_types)
    provider.vehicle_capabilities = CapabilitySet.universal_when_empty(
        provider.car_types_supported
    )
    provider.fcm_token = fcm_token
    return provider


@pytest.fixture
def flatbed_provider() -> Provider:
    """An online, approved flatbed operator two kilometres from pickup."""
    return make_provider(
        latitude=lat_km_north(2),
        tow_truck_types=["Flatbed"],
        fcm_token="token-flatbed",
    )


@pytest.fixture
def mechanic_provider() -> Provider:
    return make_provider(
        role=ProviderRole.MECHANIC,
        latitude=lat_km_north(1),
        fcm_token="token-mechanic",
    )


# ---------------------------------------------------------------------------
# Job fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_job() -> Job:
    """A paid flatbed tow job that has just been broadcast."""
    job = MagicMock(spec=Job)
    job.id = uuid.uuid4()
    job.reference_number = "JOB-ABC123"
    job.title = "Tow to workshop"
    job.description = None
    job.customer_id = uuid.uuid4()
    job.role_needed = ProviderRole.TOW_TRUCK
    job.pickup_latitude = PICKUP_LAT
    job.pickup_longitude = PICKUP_LNG
    job.pickup_address_text = "1 Main Rd, Johannesburg"
    job.dropoff_latitude = DROPOFF_LAT
    job.dropoff_longitude = DROPOFF_LNG
    job.dropoff_address_text = "Workshop, Soweto"
    job.tow_truck_type_needed = "Flatbed"
    job.vehicle_type = "Sedan"
    job.status = JobStatus.BROADCASTED
    job.assigned_to = None
    job.dispatch_round = 1
    job.booking_fee_status = BookingFeeStatus.PAID
    job.provider_payout_cents = 123400
    job.currency = "ZAR"
    job.created_at = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)
    return job

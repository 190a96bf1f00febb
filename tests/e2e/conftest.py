"""
E2E test fixtures for the TowMech dispatch backend.

Provides:
- An in-process FastAPI test app with the job and provider routes registered
- httpx AsyncClient wired via ASGI transport (no network needed)
- An async SQLite database session (in-memory) for isolation
- Pre-populated providers around a Johannesburg pickup point
- A recording offer notifier in place of FCM
- Helpers for creating and broadcasting jobs through the API
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

from towmech.models.base import Base
from towmech.models.provider import Provider, ProviderRole, VerificationStatus


@compiles(UUID, "sqlite")
def compile_uuid_sqlite(type_, compiler, **kw):
    return "CHAR(32)"


# ---------------------------------------------------------------------------
# Test IDs and coordinates (stable across tests so cross-references work)
# ---------------------------------------------------------------------------

CUSTOMER_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
OTHER_CUSTOMER_ID = uuid.UUID("abababab-abab-abab-abab-abababababab")
ADMIN_ID = uuid.UUID("adadadad-adad-adad-adad-adadadadadad")

# Flatbed, 2 km from pickup
PROVIDER_A_ID = uuid.UUID("a1a1a1a1-0000-4000-8000-0000000000a1")
# Flatbed, 5 km from pickup
PROVIDER_B_ID = uuid.UUID("b2b2b2b2-0000-4000-8000-0000000000b2")
# Hook and chain only, 1 km from pickup
PROVIDER_C_ID = uuid.UUID("c3c3c3c3-0000-4000-8000-0000000000c3")
# Mechanic, 3 km from pickup
MECHANIC_ID = uuid.UUID("d4d4d4d4-0000-4000-8000-0000000000d4")
# Flatbed, 1 km from pickup, offline
OFFLINE_ID = uuid.UUID("e5e5e5e5-0000-4000-8000-0000000000e5")

PICKUP = {"latitude": "-26.2", "longitude": "28.0", "address": "1 Main Rd, Johannesburg"}
DROPOFF = {"latitude": "-26.3", "longitude": "28.1", "address": "Workshop, Soweto"}

KM_IN_DEGREES_LAT = 1 / 111.195


def lat_km_north(km: float) -> Decimal:
    return Decimal(str(round(-26.2 + km * KM_IN_DEGREES_LAT, 7)))


# ---------------------------------------------------------------------------
# Async engine + session factory (in-memory SQLite)
# ---------------------------------------------------------------------------

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


def _enable_foreign_keys(engine) -> None:
    # SQLite does not enforce foreign keys by default
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_fk(dbapi_conn, _):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest_asyncio.fixture
async def _test_engine():
    """Create a fresh in-memory database for each test."""
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    _enable_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(_test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session inside a transaction that is rolled back afterwards."""
    session_factory = async_sessionmaker(
        bind=_test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        await session.begin()
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

def build_provider(
    provider_id: uuid.UUID,
    *,
    role: ProviderRole = ProviderRole.TOW_TRUCK,
    km_from_pickup: float = 1.0,
    tow_truck_types: list[str] | None = None,
    car_types_supported: list[str] | None = None,
    is_online: bool = True,
    verification_status: VerificationStatus = VerificationStatus.APPROVED,
    display_name: str = "Provider",
) -> Provider:
    return Provider(
        id=provider_id,
        display_name=display_name,
        phone="+27115550000",
        role=role,
        is_online=is_online,
        verification_status=verification_status,
        last_latitude=lat_km_north(km_from_pickup),
        last_longitude=Decimal("28.0"),
        tow_truck_types=list(tow_truck_types or []),
        car_types_supported=list(car_types_supported or []),
        fcm_token=f"token-{provider_id.hex[:8]}",
    )


async def _seed_data(db: AsyncSession) -> None:
    """Insert the providers every dispatch test works with."""
    db.add_all([
        build_provider(
            PROVIDER_A_ID,
            km_from_pickup=2.0,
            tow_truck_types=["Flatbed"],
            display_name="Alpha Towing",
        ),
        build_provider(
            PROVIDER_B_ID,
            km_from_pickup=5.0,
            tow_truck_types=["Flatbed", "Hook and Chain"],
            display_name="Bravo Recovery",
        ),
        build_provider(
            PROVIDER_C_ID,
            km_from_pickup=1.0,
            tow_truck_types=["Hook and Chain"],
            display_name="Charlie Hook",
        ),
        build_provider(
            MECHANIC_ID,
            role=ProviderRole.MECHANIC,
            km_from_pickup=3.0,
            display_name="Delta Mechanics",
        ),
        build_provider(
            OFFLINE_ID,
            km_from_pickup=1.0,
            tow_truck_types=["Flatbed"],
            is_online=False,
            display_name="Echo Offline",
        ),
    ])
    await db.flush()


@pytest_asyncio.fixture
async def seeded_db(db_session: AsyncSession) -> AsyncSession:
    """A database session with seed data already inserted."""
    await _seed_data(db_session)
    return db_session


# ---------------------------------------------------------------------------
# Offer notifier stand-in
# ---------------------------------------------------------------------------

class RecordingNotifier:
    """Records every offer delivery request instead of pushing it."""

    def __init__(self) -> None:
        self.deliveries: list[tuple[uuid.UUID, list[uuid.UUID]]] = []

    def request_offer_delivery(self, job, providers) -> None:
        self.deliveries.append((job.id, [p.id for p in providers]))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# ---------------------------------------------------------------------------
# FastAPI test application
# ---------------------------------------------------------------------------

def _create_test_app(db_session_override: AsyncSession, notifier: RecordingNotifier):
    """Build a FastAPI app with all routes registered and the DB and notifier
    dependencies overridden."""
    from fastapi import FastAPI

    from towmech.api.deps import get_db, get_offer_notifier
    from towmech.api.routes.jobs import router as jobs_router
    from towmech.api.routes.providers import router as providers_router
    from towmech.services.offerNotifier import (
        discard_offer_deliveries,
        release_offer_deliveries,
    )

    app = FastAPI(title="TowMech Test")

    async def _override_get_db():
        # The outer test transaction stands in for the commit
        try:
            yield db_session_override
        except Exception:
            discard_offer_deliveries(db_session_override)
            raise
        release_offer_deliveries(db_session_override)

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_offer_notifier] = lambda: notifier

    app.include_router(jobs_router, prefix="/api/v1")
    app.include_router(providers_router, prefix="/api/v1")

    return app


@pytest_asyncio.fixture
async def client(
    seeded_db: AsyncSession,
    notifier: RecordingNotifier,
) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient connected to the test app via ASGI transport."""
    app = _create_test_app(seeded_db, notifier)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def tow_job_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "customer_id": str(CUSTOMER_ID),
        "title": "Sedan won't start",
        "role_needed": "tow_truck",
        "pickup": PICKUP,
        "dropoff": DROPOFF,
        "tow_truck_type_needed": "Flatbed",
        "vehicle_type": "Sedan",
        "provider_payout_cents": 85000,
    }
    payload.update(overrides)
    return payload


async def create_job_via_api(client: AsyncClient, **overrides: Any) -> dict[str, Any]:
    """Create a job and return its JSON body."""
    resp = await client.post("/api/v1/jobs", json=tow_job_payload(**overrides))
    assert resp.status_code == 201, resp.text
    return resp.json()


async def create_broadcast_job(client: AsyncClient, **overrides: Any) -> dict[str, Any]:
    """Create a job, confirm its booking fee and return the broadcast result."""
    job = await create_job_via_api(client, **overrides)
    resp = await client.post(f"/api/v1/jobs/{job['id']}/payment-confirmed")
    assert resp.status_code == 200, resp.text
    return resp.json()


async def accept(client: AsyncClient, job_id: str, provider_id: uuid.UUID):
    return await client.patch(
        f"/api/v1/jobs/{job_id}/accept",
        json={"provider_id": str(provider_id)},
    )


async def set_status(client: AsyncClient, job_id: str, new_status: str, actor_id: uuid.UUID):
    return await client.patch(
        f"/api/v1/jobs/{job_id}/status",
        json={"new_status": new_status, "actor_id": str(actor_id)},
    )

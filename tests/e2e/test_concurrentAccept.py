"""
E2E: Concurrent accepts.

Two providers accept the same job at the same moment, each through their
own session and connection, against a file-backed SQLite database. Exactly
one of them must win.
"""

from __future__ import annotations

import asyncio
import uuid

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from towmech.models.base import Base
from towmech.models.job import JobStatus
from towmech.models.provider import ProviderRole
from towmech.services.assignmentArbiter import accept_job
from towmech.services.broadcastCoordinator import confirm_payment
from towmech.services.dispatchErrors import AssignmentConflictError
from towmech.services.jobService import create_job, load_job

from tests.e2e.conftest import (
    CUSTOMER_ID,
    DROPOFF,
    PICKUP,
    PROVIDER_A_ID,
    PROVIDER_B_ID,
    RecordingNotifier,
    _enable_foreign_keys,
    build_provider,
)


pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}")
    _enable_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


async def _broadcast_job_to_a_and_b(factory) -> uuid.UUID:
    async with factory() as session:
        session.add_all([
            build_provider(PROVIDER_A_ID, km_from_pickup=2.0, tow_truck_types=["Flatbed"]),
            build_provider(PROVIDER_B_ID, km_from_pickup=5.0, tow_truck_types=["Flatbed"]),
        ])
        await session.flush()

        job = await create_job(
            session,
            customer_id=CUSTOMER_ID,
            title="Sedan won't start",
            role_needed=ProviderRole.TOW_TRUCK,
            pickup=PICKUP,
            dropoff=DROPOFF,
            tow_truck_type_needed="Flatbed",
        )
        result = await confirm_payment(session, job.id, notifier=RecordingNotifier())
        assert result.provider_ids == [PROVIDER_A_ID, PROVIDER_B_ID]
        await session.commit()
        return job.id


async def _try_accept(factory, job_id: uuid.UUID, provider_id: uuid.UUID):
    async with factory() as session:
        try:
            job = await accept_job(session, job_id, provider_id)
            await session.commit()
            return ("won", provider_id, job.assigned_to)
        except AssignmentConflictError as exc:
            await session.rollback()
            return ("lost", provider_id, exc.current_status)


class TestConcurrentAccept:

    async def test_exactly_one_winner(self, session_factory):
        job_id = await _broadcast_job_to_a_and_b(session_factory)

        outcomes = await asyncio.gather(
            _try_accept(session_factory, job_id, PROVIDER_A_ID),
            _try_accept(session_factory, job_id, PROVIDER_B_ID),
        )

        winners = [o for o in outcomes if o[0] == "won"]
        losers = [o for o in outcomes if o[0] == "lost"]
        assert len(winners) == 1
        assert len(losers) == 1
        winner_id = winners[0][1]
        assert winners[0][2] == winner_id
        assert losers[0][2] == JobStatus.ASSIGNED

        async with session_factory() as session:
            job = await load_job(session, job_id)
            assert job.status == JobStatus.ASSIGNED
            assert job.assigned_to == winner_id
            # Both original offers remain in the audit log
            assert sorted(a.provider_id for a in job.dispatch_attempts) == sorted(
                [PROVIDER_A_ID, PROVIDER_B_ID]
            )

    async def test_many_concurrent_accepts(self, session_factory):
        job_id = await _broadcast_job_to_a_and_b(session_factory)

        outcomes = await asyncio.gather(
            *(
                _try_accept(session_factory, job_id, provider_id)
                for provider_id in [PROVIDER_A_ID, PROVIDER_B_ID] * 3
            )
        )

        assert sum(1 for o in outcomes if o[0] == "won") == 1

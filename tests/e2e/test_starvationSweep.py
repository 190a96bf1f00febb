"""
E2E: Starvation sweep.

A broadcasting job with no open offers is retried by the sweep and
cancelled by the system once it has searched for longer than the TTL.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from towmech.jobs.starvationSweeper import STARVATION_CANCEL_REASON, run_starvation_sweep
from towmech.models.job import JobStatus
from towmech.services.jobService import load_job

from tests.e2e.conftest import (
    PROVIDER_A_ID,
    PROVIDER_B_ID,
    RecordingNotifier,
    accept,
    create_broadcast_job,
)


pytestmark = pytest.mark.asyncio


async def _starving_job(client: AsyncClient) -> uuid.UUID:
    """A paid, broadcasting job whose every offer was rejected."""
    result = await create_broadcast_job(client)
    job_id = result["job"]["id"]
    for provider_id in (PROVIDER_A_ID, PROVIDER_B_ID):
        resp = await client.patch(
            f"/api/v1/jobs/{job_id}/reject",
            json={"provider_id": str(provider_id)},
        )
        assert resp.status_code == 200
    return uuid.UUID(job_id)


async def _go_offline(client: AsyncClient, provider_id: uuid.UUID) -> None:
    resp = await client.patch(
        f"/api/v1/providers/{provider_id}/status", json={"is_online": False}
    )
    assert resp.status_code == 200


class TestStarvationSweep:

    async def test_searching_job_is_rebroadcast(
        self,
        client: AsyncClient,
        seeded_db: AsyncSession,
        notifier: RecordingNotifier,
    ):
        job_id = await _starving_job(client)

        sweep = await run_starvation_sweep(seeded_db, notifier=notifier)

        assert sweep.rebroadcast == [job_id]
        job = await load_job(seeded_db, job_id, refresh=True)
        assert job.status == JobStatus.BROADCASTED
        assert job.dispatch_round == 2
        assert job.broadcasted_to == [PROVIDER_A_ID, PROVIDER_B_ID]

    async def test_job_still_starving_when_nobody_online(
        self,
        client: AsyncClient,
        seeded_db: AsyncSession,
        notifier: RecordingNotifier,
    ):
        job_id = await _starving_job(client)
        await _go_offline(client, PROVIDER_A_ID)
        await _go_offline(client, PROVIDER_B_ID)

        sweep = await run_starvation_sweep(seeded_db, notifier=notifier)

        assert sweep.still_starving == [job_id]
        job = await load_job(seeded_db, job_id, refresh=True)
        assert job.status == JobStatus.BROADCASTED
        assert job.broadcasted_to == []

    async def test_job_past_ttl_is_cancelled(
        self,
        client: AsyncClient,
        seeded_db: AsyncSession,
        notifier: RecordingNotifier,
    ):
        job_id = await _starving_job(client)

        sweep = await run_starvation_sweep(
            seeded_db,
            now=datetime.now(timezone.utc) + timedelta(minutes=31),
            ttl_minutes=30,
            notifier=notifier,
        )

        assert sweep.auto_cancelled == [job_id]
        job = await load_job(seeded_db, job_id, refresh=True)
        assert job.status == JobStatus.CANCELLED
        assert job.cancel_reason == STARVATION_CANCEL_REASON
        assert job.cancelled_by is None

    async def test_jobs_with_open_offers_are_left_alone(
        self,
        client: AsyncClient,
        seeded_db: AsyncSession,
        notifier: RecordingNotifier,
    ):
        result = await create_broadcast_job(client)

        sweep = await run_starvation_sweep(
            seeded_db,
            now=datetime.now(timezone.utc) + timedelta(hours=2),
            notifier=notifier,
        )

        assert sweep.rebroadcast == []
        assert sweep.auto_cancelled == []
        job = await load_job(seeded_db, uuid.UUID(result["job"]["id"]), refresh=True)
        assert job.status == JobStatus.BROADCASTED

    async def test_assigned_jobs_are_not_swept(
        self,
        client: AsyncClient,
        seeded_db: AsyncSession,
        notifier: RecordingNotifier,
    ):
        result = await create_broadcast_job(client)
        await accept(client, result["job"]["id"], PROVIDER_A_ID)

        sweep = await run_starvation_sweep(seeded_db, notifier=notifier)

        assert sweep.rebroadcast == []
        assert sweep.still_starving == []


class _FailingGate:
    """Payment gate that blows up for one job and confirms every other."""

    def __init__(self, failing_job_id: uuid.UUID) -> None:
        self.failing_job_id = failing_job_id

    def is_payment_confirmed(self, job) -> bool:
        if job.id == self.failing_job_id:
            raise RuntimeError("payment service unreachable")
        return True


class TestSweepIsolation:

    async def test_failing_job_does_not_undo_others(
        self,
        client: AsyncClient,
        seeded_db: AsyncSession,
        notifier: RecordingNotifier,
    ):
        good_id = await _starving_job(client)
        bad_id = await _starving_job(client)
        notifier.deliveries.clear()

        sweep = await run_starvation_sweep(
            seeded_db,
            payment_gate=_FailingGate(bad_id),
            notifier=notifier,
        )

        assert sweep.rebroadcast == [good_id]
        assert sweep.failed == [bad_id]
        assert [job_id for job_id, _ in notifier.deliveries] == [good_id]

        # Whatever the test session still holds uncommitted is thrown away
        await seeded_db.rollback()

        good = await load_job(seeded_db, good_id, refresh=True)
        assert good.dispatch_round == 2
        assert good.broadcasted_to == [PROVIDER_A_ID, PROVIDER_B_ID]
        bad = await load_job(seeded_db, bad_id, refresh=True)
        assert bad.dispatch_round == 1
        assert bad.broadcasted_to == []

"""
Unit tests for the Capacity Filter.

The rules are evaluated against an in-memory active job mix; the loader is
tested against a mocked session.
"""

import uuid
from decimal import Decimal

import pytest

from towmech.models.job import JobStatus
from towmech.services.capacityFilter import (
    ActiveJobMix,
    ActiveJobRef,
    evaluate_capacity,
    load_active_job_mix,
)

from tests.conftest import DROPOFF_LAT, DROPOFF_LNG, rows_result


def _ref(status, dropoff_lat=DROPOFF_LAT, dropoff_lng=DROPOFF_LNG):
    return ActiveJobRef(
        job_id=uuid.uuid4(),
        status=status,
        dropoff_latitude=dropoff_lat,
        dropoff_longitude=dropoff_lng,
    )


def _mix(*refs):
    mix = ActiveJobMix()
    for ref in refs:
        mix.add(ref)
    return mix


# Roughly 1 km and 10 km north of the dropoff
NEAR_DROPOFF_LAT = Decimal("-26.2910070")
FAR_FROM_DROPOFF_LAT = Decimal("-26.2100700")


class TestEvaluateCapacity:

    def test_idle_provider_is_eligible(self):
        decision = evaluate_capacity(ActiveJobMix(), None, None, max_active_jobs=2)
        assert decision.eligible is True

    def test_at_limit_is_ineligible(self):
        mix = _mix(_ref(JobStatus.IN_PROGRESS), _ref(JobStatus.IN_PROGRESS))
        decision = evaluate_capacity(
            mix, NEAR_DROPOFF_LAT, DROPOFF_LNG, max_active_jobs=2
        )
        assert decision.eligible is False
        assert "limit 2" in decision.reason

    def test_assigned_job_blocks_new_offers(self):
        mix = _mix(_ref(JobStatus.ASSIGNED))
        decision = evaluate_capacity(mix, NEAR_DROPOFF_LAT, DROPOFF_LNG, max_active_jobs=2)
        assert decision.eligible is False
        assert "assigned" in decision.reason

    def test_in_progress_near_dropoff_is_eligible(self):
        mix = _mix(_ref(JobStatus.IN_PROGRESS))
        decision = evaluate_capacity(
            mix,
            NEAR_DROPOFF_LAT,
            DROPOFF_LNG,
            max_active_jobs=2,
            near_completion_radius_km=3.0,
        )
        assert decision.eligible is True

    def test_in_progress_far_from_dropoff_is_ineligible(self):
        mix = _mix(_ref(JobStatus.IN_PROGRESS))
        decision = evaluate_capacity(
            mix,
            FAR_FROM_DROPOFF_LAT,
            DROPOFF_LNG,
            max_active_jobs=2,
            near_completion_radius_km=3.0,
        )
        assert decision.eligible is False
        assert "from dropoff" in decision.reason

    def test_in_progress_without_provider_location_is_ineligible(self):
        mix = _mix(_ref(JobStatus.IN_PROGRESS))
        decision = evaluate_capacity(mix, None, None, max_active_jobs=2)
        assert decision.eligible is False

    def test_in_progress_without_dropoff_is_ineligible(self):
        mix = _mix(_ref(JobStatus.IN_PROGRESS, dropoff_lat=None, dropoff_lng=None))
        decision = evaluate_capacity(mix, NEAR_DROPOFF_LAT, DROPOFF_LNG, max_active_jobs=2)
        assert decision.eligible is False
        assert "no dropoff" in decision.reason

    def test_limit_of_one_blocks_any_active_job(self):
        mix = _mix(_ref(JobStatus.IN_PROGRESS))
        decision = evaluate_capacity(mix, NEAR_DROPOFF_LAT, DROPOFF_LNG, max_active_jobs=1)
        assert decision.eligible is False


class TestActiveJobMix:

    def test_add_splits_by_status(self):
        mix = _mix(_ref(JobStatus.ASSIGNED), _ref(JobStatus.IN_PROGRESS))
        assert len(mix.assigned) == 1
        assert len(mix.in_progress) == 1
        assert mix.total == 2

    def test_other_statuses_are_ignored(self):
        mix = _mix(_ref(JobStatus.COMPLETED), _ref(JobStatus.BROADCASTED))
        assert mix.total == 0


class TestLoadActiveJobMix:

    @pytest.mark.asyncio
    async def test_empty_ids_skip_query(self, mock_db):
        mixes = await load_active_job_mix(mock_db, [])
        assert mixes == {}
        mock_db.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_groups_rows_by_provider(self, mock_db):
        busy = uuid.uuid4()
        idle = uuid.uuid4()
        mock_db.execute.return_value = rows_result([
            (uuid.uuid4(), busy, JobStatus.ASSIGNED, DROPOFF_LAT, DROPOFF_LNG),
            (uuid.uuid4(), busy, JobStatus.IN_PROGRESS, DROPOFF_LAT, DROPOFF_LNG),
        ])

        mixes = await load_active_job_mix(mock_db, [busy, idle])

        assert mixes[busy].total == 2
        assert len(mixes[busy].assigned) == 1
        assert mixes[idle].total == 0
        mock_db.execute.assert_awaited_once()

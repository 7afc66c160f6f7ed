"""Tests for the scheduled jobs and their firing times."""

import asyncio
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from rainfall.core.errors import AuthError, ProviderUnavailable
from rainfall.models.rainfall import PeriodType
from rainfall.models.status import StatusKey
from rainfall.services.provider import Resolution
from rainfall.services.scheduler import Scheduler, next_daily_run, next_hourly_run
from tests.conftest import NOW, seed_days


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def scheduler(store, token_manager, fetcher, engine, clock) -> Scheduler:
    return Scheduler(store, token_manager, fetcher, engine, clock=clock)


class TestFiringTimes:

    def test_next_hour(self):
        assert next_hourly_run(_utc(2024, 6, 15, 12, 34, 56)) == _utc(2024, 6, 15, 13)

    def test_exactly_on_the_hour_moves_to_next(self):
        assert next_hourly_run(_utc(2024, 6, 15, 12)) == _utc(2024, 6, 15, 13)

    def test_hour_rolls_over_midnight(self):
        assert next_hourly_run(_utc(2024, 12, 31, 23, 30)) == _utc(2025, 1, 1, 0)

    def test_daily_later_today(self):
        assert next_daily_run(_utc(2024, 6, 15, 0, 30), hour=1) == _utc(2024, 6, 15, 1)

    def test_daily_already_passed_is_tomorrow(self):
        assert next_daily_run(_utc(2024, 6, 15, 1), hour=1) == _utc(2024, 6, 16, 1)


class TestTokenRefreshJob:

    @pytest.mark.asyncio
    async def test_refreshes_and_records_marker(self, scheduler, token_manager, store):
        await token_manager.initialize()

        await scheduler.refresh_tokens_job()

        assert (await store.get_token_state()).access_token == "access-1"
        assert await store.get_marker(StatusKey.LAST_TOKEN_REFRESH.value) is not None


class TestHourlyUpdateJob:

    @pytest.mark.asyncio
    async def test_updates_caches_for_every_station(self, scheduler, store, station):
        await scheduler.hourly_update_job()

        assert await store.query_records(station.id, PeriodType.MIN_30) != []
        assert await store.query_records(station.id, PeriodType.HOUR_1) != []
        assert await store.query_records(station.id, PeriodType.HOURS_3) != []
        today = await store.query_records(station.id, PeriodType.DAY, "2024-06-15")
        assert today[0].amount_mm == pytest.approx(1.0)
        marker = await store.get_marker(StatusKey.LAST_API_SUCCESS.value)
        assert marker.value == NOW.isoformat()

    @pytest.mark.asyncio
    async def test_total_outage_leaves_marker_unset(self, scheduler, provider, store, station):
        provider.fail_with = ProviderUnavailable("down", status=503)

        await scheduler.hourly_update_job()

        assert await store.get_marker(StatusKey.LAST_API_SUCCESS.value) is None

    @pytest.mark.asyncio
    async def test_no_stations_is_a_no_op(self, scheduler, provider):
        await scheduler.hourly_update_job()
        assert provider.measurement_calls == []


class TestDailyUpdateJob:

    @pytest.mark.asyncio
    async def test_finalises_yesterday_and_recomputes_aggregates(
        self, scheduler, store, station
    ):
        await seed_days(store, station.id, {"2024-06-01": 4.0})

        await scheduler.daily_update_job()

        yesterday = await store.query_records(station.id, PeriodType.DAY, "2024-06-14")
        assert yesterday[0].amount_mm == pytest.approx(1.0)
        month = await store.query_records(station.id, PeriodType.MONTH, "2024-06")
        assert month[0].amount_mm == pytest.approx(5.0)
        year = await store.query_records(station.id, PeriodType.YEAR, "2024")
        assert year[0].amount_mm == pytest.approx(5.0)
        assert await store.get_marker(StatusKey.LAST_AGGREGATES_CALCULATION.value) is not None

    @pytest.mark.asyncio
    async def test_fetch_failure_still_aggregates(self, scheduler, provider, store, station):
        await seed_days(store, station.id, {"2024-06-01": 4.0})
        provider.fail_periods = {Resolution.MIN_5}

        await scheduler.daily_update_job()

        assert await store.query_records(station.id, PeriodType.DAY, "2024-06-14") == []
        month = await store.query_records(station.id, PeriodType.MONTH, "2024-06")
        assert month[0].amount_mm == pytest.approx(4.0)

    @pytest.mark.asyncio
    async def test_runs_live_policy_with_today(self, scheduler, engine, station):
        with patch.object(engine, "run_live", new=AsyncMock(return_value={})) as run_live:
            await scheduler.daily_update_job()

        run_live.assert_awaited_once_with(station.id, date(2024, 6, 15))


class TestLoops:

    @pytest.mark.asyncio
    async def test_failing_job_is_logged_not_raised(self, scheduler, caplog):
        job = AsyncMock(side_effect=AuthError("invalid_grant"))

        await scheduler._run_job("Token refresh", job)

        assert "failed to authenticate" in caplog.text

    @pytest.mark.asyncio
    async def test_start_and_stop(self, scheduler):
        scheduler.start()
        assert len(scheduler._tasks) == 3
        await asyncio.sleep(0)

        await scheduler.stop()

        assert scheduler._tasks == []

    @pytest.mark.asyncio
    async def test_delay_uses_a_single_clock_reading(self, store, token_manager, fetcher, engine):
        # A clock that jumps between reads must not shorten the wait.
        readings = iter([_utc(2024, 6, 15, 12, 30), _utc(2024, 6, 15, 13, 45)])
        scheduler = Scheduler(store, token_manager, fetcher, engine, clock=lambda: next(readings))
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)
            scheduler._running = False

        scheduler._running = True
        with patch("rainfall.services.scheduler.asyncio.sleep", new=fake_sleep):
            await scheduler._loop("Hourly update", AsyncMock(), next_hourly_run)

        assert delays == [1800.0]

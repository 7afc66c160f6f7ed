"""Tests for the historical import driver."""

from datetime import date

import pytest

from rainfall.core.errors import ProviderUnavailable
from rainfall.models.rainfall import PeriodType
from rainfall.services.backfill import HistoricalBackfill
from tests.conftest import make_station


@pytest.fixture
def backfill(store, fetcher, engine) -> HistoricalBackfill:
    return HistoricalBackfill(store, fetcher, engine, delay_seconds=0)


class TestHistoricalBackfill:

    @pytest.mark.asyncio
    async def test_imports_days_then_aggregates(self, backfill, store, station):
        report = await backfill.run([station], date(2023, 12, 30), date(2024, 1, 2))

        days = await store.query_records(station.id, PeriodType.DAY)
        assert [d.period_value for d in days] == [
            "2024-01-02",
            "2024-01-01",
            "2023-12-31",
            "2023-12-30",
        ]
        stats = report.stations[0]
        assert (stats.processed, stats.skipped, stats.new_records) == (4, 0, 4)
        assert (stats.months_added, stats.years_added) == (2, 2)
        december = await store.query_records(station.id, PeriodType.MONTH, "2023-12")
        assert december[0].amount_mm == pytest.approx(2.0)

    @pytest.mark.asyncio
    async def test_existing_days_are_skipped(self, backfill, store, provider, station):
        await store.upsert_record(station.id, PeriodType.DAY, "2024-01-01", 9.0)

        report = await backfill.run([station], date(2024, 1, 1), date(2024, 1, 3))

        assert report.stations[0].skipped == 1
        assert len(provider.measurement_calls) == 2
        kept = await store.query_records(station.id, PeriodType.DAY, "2024-01-01")
        assert kept[0].amount_mm == 9.0

    @pytest.mark.asyncio
    async def test_rerun_fetches_nothing(self, backfill, provider, station):
        await backfill.run([station], date(2024, 1, 1), date(2024, 1, 3))
        calls = len(provider.measurement_calls)

        report = await backfill.run([station], date(2024, 1, 1), date(2024, 1, 3))

        assert len(provider.measurement_calls) == calls
        assert report.stations[0].new_records == 0

    @pytest.mark.asyncio
    async def test_provider_error_stops_the_run(self, backfill, provider, store, station):
        provider.fail_with = ProviderUnavailable("down", status=503)

        with pytest.raises(ProviderUnavailable):
            await backfill.run([station], date(2024, 1, 1), date(2024, 1, 3))

        assert await store.query_records(station.id, PeriodType.MONTH) == []

    @pytest.mark.asyncio
    async def test_every_station_is_imported(self, backfill, store, station):
        other = await store.save_station(make_station(device_id="70:ee:50:00:00:02"))

        report = await backfill.run([station, other], date(2024, 1, 1), date(2024, 1, 1))

        assert [s.station_id for s in report.stations] == [station.id, other.id]
        assert await store.query_records(other.id, PeriodType.DAY, "2024-01-01") != []

"""Tests for the aggregation engine: day -> month -> year rollups."""

from datetime import date

import pytest

from rainfall.models.rainfall import PeriodType
from rainfall.services.aggregation import AggregationEngine, RollupPolicy, month_key, year_key
from tests.conftest import june_days, seed_days


async def _amount(store, station_id, period_type, key):
    records = await store.query_records(station_id, period_type, key)
    return records[0].amount_mm if records else None


class TestKeys:

    def test_month_key_is_zero_padded(self):
        assert month_key(date(2024, 3, 9)) == "2024-03"

    def test_year_key(self):
        assert year_key(date(2024, 3, 9)) == "2024"


class TestRollupMonth:

    @pytest.mark.asyncio
    async def test_june_rollup_then_backfill_then_live(self, store, engine, station):
        """Backfill never rewrites a finalised month; live recomputes it."""
        await seed_days(store, station.id, june_days([1.2, 0.0, 7.0]))

        assert await engine.rollup_month(station.id, "2024-06", RollupPolicy.LIVE) == pytest.approx(8.2)

        await store.upsert_record(station.id, PeriodType.DAY, "2024-06-04", 1.0)
        assert await engine.rollup_month(station.id, "2024-06", RollupPolicy.BACKFILL) == pytest.approx(8.2)
        assert await _amount(store, station.id, PeriodType.MONTH, "2024-06") == pytest.approx(8.2)

        assert await engine.rollup_month(station.id, "2024-06", RollupPolicy.LIVE) == pytest.approx(9.2)
        assert await _amount(store, station.id, PeriodType.MONTH, "2024-06") == pytest.approx(9.2)

    @pytest.mark.asyncio
    async def test_dry_month_sums_to_zero(self, store, engine, station):
        await seed_days(store, station.id, june_days([0.0] * 30))

        assert await engine.rollup_month(station.id, "2024-06") == 0.0
        assert await _amount(store, station.id, PeriodType.MONTH, "2024-06") == 0.0

    @pytest.mark.asyncio
    async def test_month_without_days_stays_absent(self, store, engine, station):
        assert await engine.rollup_month(station.id, "2023-02") is None
        assert await store.query_records(station.id, PeriodType.MONTH) == []

    @pytest.mark.asyncio
    async def test_write_empty_stores_zero(self, store, engine, station):
        assert await engine.rollup_month(station.id, "2024-07", write_empty=True) == 0.0
        assert await _amount(store, station.id, PeriodType.MONTH, "2024-07") == 0.0

    @pytest.mark.asyncio
    async def test_only_days_of_that_month_are_summed(self, store, engine, station):
        await seed_days(
            store,
            station.id,
            {"2024-05-31": 5.0, "2024-06-01": 1.0, "2024-06-30": 2.0, "2024-07-01": 9.0},
        )

        assert await engine.rollup_month(station.id, "2024-06") == pytest.approx(3.0)

    @pytest.mark.asyncio
    async def test_other_stations_are_not_mixed_in(self, store, engine, station):
        await seed_days(store, station.id, {"2024-06-01": 1.0})
        await seed_days(store, station.id + 1, {"2024-06-01": 50.0})

        assert await engine.rollup_month(station.id, "2024-06") == pytest.approx(1.0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["2024-6", "2024-13", "24-06", "2024"])
    async def test_malformed_month_key_is_rejected(self, engine, station, key):
        with pytest.raises(ValueError):
            await engine.rollup_month(station.id, key)


class TestRollupYear:

    @pytest.mark.asyncio
    async def test_year_sums_months(self, store, engine, station):
        await store.upsert_record(station.id, PeriodType.MONTH, "2023-01", 40.0)
        await store.upsert_record(station.id, PeriodType.MONTH, "2023-12", 60.5)
        await store.upsert_record(station.id, PeriodType.MONTH, "2024-01", 99.0)

        assert await engine.rollup_year(station.id, "2023") == pytest.approx(100.5)

    @pytest.mark.asyncio
    async def test_backfill_keeps_existing_year(self, store, engine, station):
        await store.upsert_record(station.id, PeriodType.YEAR, "2023", 10.0)
        await store.upsert_record(station.id, PeriodType.MONTH, "2023-01", 40.0)

        assert await engine.rollup_year(station.id, "2023", RollupPolicy.BACKFILL) == 10.0

    @pytest.mark.asyncio
    async def test_malformed_year_key_is_rejected(self, engine, station):
        with pytest.raises(ValueError):
            await engine.rollup_year(station.id, "23")


class TestRunLive:

    @pytest.mark.asyncio
    async def test_mid_month_recomputes_current_month_and_year(self, store, engine, station):
        await seed_days(store, station.id, june_days([1.0, 2.0]))
        await store.upsert_record(station.id, PeriodType.MONTH, "2024-05", 10.0)

        results = await engine.run_live(station.id, date(2024, 6, 15))

        assert results == {"2024-06": pytest.approx(3.0), "2024": pytest.approx(13.0)}

    @pytest.mark.asyncio
    async def test_first_of_month_finalises_previous_month(self, store, engine, station):
        await seed_days(store, station.id, {"2024-05-30": 2.0, "2024-05-31": 3.0})

        results = await engine.run_live(station.id, date(2024, 6, 1))

        assert results["2024-05"] == pytest.approx(5.0)
        assert results["2024-06"] == 0.0
        assert await _amount(store, station.id, PeriodType.MONTH, "2024-06") == 0.0
        assert "2023" not in results

    @pytest.mark.asyncio
    async def test_new_year_finalises_december_and_previous_year(self, store, engine, station):
        await store.upsert_record(station.id, PeriodType.MONTH, "2023-11", 20.0)
        await seed_days(store, station.id, {"2023-12-31": 4.0})

        results = await engine.run_live(station.id, date(2024, 1, 1))

        assert results["2023-12"] == pytest.approx(4.0)
        assert results["2023"] == pytest.approx(24.0)
        assert results["2024-01"] == 0.0
        assert results["2024"] == 0.0


class TestBackfill:

    @pytest.mark.asyncio
    async def test_adds_missing_months_and_years(self, store, engine, station):
        await seed_days(
            store,
            station.id,
            {"2023-12-01": 1.0, "2024-01-05": 2.0, "2024-01-06": 3.0, "2024-02-10": 0.0},
        )

        added = await engine.backfill(station.id)

        assert added == (3, 2)
        assert await _amount(store, station.id, PeriodType.MONTH, "2024-01") == pytest.approx(5.0)
        assert await _amount(store, station.id, PeriodType.MONTH, "2024-02") == 0.0
        assert await _amount(store, station.id, PeriodType.YEAR, "2024") == pytest.approx(5.0)
        assert await _amount(store, station.id, PeriodType.YEAR, "2023") == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_rerun_adds_nothing_and_keeps_values(self, store, engine, station):
        await seed_days(store, station.id, june_days([1.0, 2.0]))
        await engine.backfill(station.id)
        await store.upsert_record(station.id, PeriodType.DAY, "2024-06-03", 7.0)

        assert await engine.backfill(station.id) == (0, 0)
        assert await _amount(store, station.id, PeriodType.MONTH, "2024-06") == pytest.approx(3.0)

    @pytest.mark.asyncio
    async def test_station_without_days(self, store, station):
        assert await AggregationEngine(store).backfill(station.id) == (0, 0)

"""Aggregation engine: rolls daily totals up into monthly and yearly totals.

Granularity ladder is fixed: ``day -> month -> year``. A month total is the
plain float sum of the month's day records, a year total the sum of its month
records; nothing is rounded here.

Two policies, chosen by the caller:

- **backfill**: compute a period only if it has no record yet. Re-running a
  historical import never rewrites a finalised month or year.
- **live**: always recompute. The daily job uses it for the current month and
  year (their days keep arriving) and, on the first day of a new period, to
  finalise the period that just closed.
"""

from __future__ import annotations

import enum
import logging
import re
from datetime import date, timedelta

from rainfall.models.rainfall import PeriodType, RainfallRecord
from rainfall.services.store import TimeSeriesStore

logger = logging.getLogger(__name__)

_MONTH_KEY = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
_YEAR_KEY = re.compile(r"^\d{4}$")


class RollupPolicy(str, enum.Enum):
    BACKFILL = "backfill"
    LIVE = "live"


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def year_key(day: date) -> str:
    return f"{day.year:04d}"


def _sum_amounts(records: list[RainfallRecord]) -> float:
    """Sum ``amount_mm``; malformed amounts count as zero input."""
    total = 0.0
    for record in records:
        try:
            total += float(record.amount_mm)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed amount on %r", record)
    return total


class AggregationEngine:
    def __init__(self, store: TimeSeriesStore):
        self._store = store

    async def rollup_month(
        self,
        station_id: int,
        month: str,
        policy: RollupPolicy = RollupPolicy.LIVE,
        write_empty: bool = False,
    ) -> float | None:
        """Sum the ``day`` records of ``month`` (``YYYY-MM``) into a ``month`` record.

        Returns the stored total, or None when there was nothing to aggregate
        and ``write_empty`` is false (unknown months stay absent rather than 0).
        """
        if not _MONTH_KEY.match(month):
            raise ValueError(f"Invalid month key {month!r}, expected YYYY-MM")
        return await self._rollup(
            station_id, PeriodType.DAY, PeriodType.MONTH, month, policy, write_empty
        )

    async def rollup_year(
        self,
        station_id: int,
        year: str,
        policy: RollupPolicy = RollupPolicy.LIVE,
        write_empty: bool = False,
    ) -> float | None:
        """Sum the ``month`` records of ``year`` (``YYYY``) into a ``year`` record."""
        if not _YEAR_KEY.match(year):
            raise ValueError(f"Invalid year key {year!r}, expected YYYY")
        return await self._rollup(
            station_id, PeriodType.MONTH, PeriodType.YEAR, year, policy, write_empty
        )

    async def _rollup(
        self,
        station_id: int,
        source: PeriodType,
        target: PeriodType,
        key: str,
        policy: RollupPolicy,
        write_empty: bool,
    ) -> float | None:
        if policy == RollupPolicy.BACKFILL:
            existing = await self._store.query_records(station_id, target, key)
            if existing:
                return existing[0].amount_mm

        prefix = f"{key}-"
        children = [
            r for r in await self._store.query_records(station_id, source)
            if r.period_value.startswith(prefix)
        ]
        if not children and not write_empty:
            return None

        total = _sum_amounts(children)
        await self._store.upsert_record(station_id, target, key, total)
        logger.debug(
            "Station %d %s %s = %.2fmm (%d %s record(s), %s)",
            station_id, target.value, key, total, len(children), source.value, policy.value,
        )
        return total

    async def run_live(self, station_id: int, today: date) -> dict[str, float | None]:
        """Daily live pass: finalise a just-closed month/year, recompute the current ones."""
        results: dict[str, float | None] = {}

        if today.day == 1:
            previous = month_key(today - timedelta(days=1))
            logger.info("Finalising month %s for station %d", previous, station_id)
            results[previous] = await self.rollup_month(station_id, previous, RollupPolicy.LIVE)

            if today.month == 1:
                previous_year = f"{today.year - 1:04d}"
                logger.info("Finalising year %s for station %d", previous_year, station_id)
                results[previous_year] = await self.rollup_year(
                    station_id, previous_year, RollupPolicy.LIVE
                )

        current_month = month_key(today)
        current_year = year_key(today)
        results[current_month] = await self.rollup_month(
            station_id, current_month, RollupPolicy.LIVE, write_empty=True
        )
        results[current_year] = await self.rollup_year(
            station_id, current_year, RollupPolicy.LIVE, write_empty=True
        )
        return results

    async def backfill(self, station_id: int) -> tuple[int, int]:
        """Compute every missing month and year from the stored day records.

        Returns:
            ``(months_added, years_added)``.
        """
        days = await self._store.query_records(station_id, PeriodType.DAY)
        if not days:
            logger.info("Station %d has no daily data, skipping aggregates", station_id)
            return 0, 0

        months_added = 0
        for month in sorted({d.period_value[:7] for d in days}):
            if not _MONTH_KEY.match(month):
                continue
            if await self._store.query_records(station_id, PeriodType.MONTH, month):
                continue
            await self.rollup_month(station_id, month, RollupPolicy.BACKFILL)
            months_added += 1

        months = await self._store.query_records(station_id, PeriodType.MONTH)
        years_added = 0
        for year in sorted({m.period_value[:4] for m in months}):
            if not _YEAR_KEY.match(year):
                continue
            if await self._store.query_records(station_id, PeriodType.YEAR, year):
                continue
            await self.rollup_year(station_id, year, RollupPolicy.BACKFILL)
            years_added += 1

        logger.info(
            "Station %d aggregates: %d new month(s), %d new year(s)",
            station_id, months_added, years_added,
        )
        return months_added, years_added

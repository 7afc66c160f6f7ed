"""Historical import: daily totals for past years, then monthly/yearly rollups.

Days that already have a record are skipped, so an interrupted run can simply
be started again. A provider error stops the run immediately rather than
leaving holes that would later be aggregated as if they were dry days.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta

from rainfall.models.rainfall import PeriodType
from rainfall.models.station import Station
from rainfall.services.aggregation import AggregationEngine
from rainfall.services.fetcher import FallbackFetcher
from rainfall.services.store import TimeSeriesStore

logger = logging.getLogger(__name__)

PROGRESS_LOG_EVERY = 50


@dataclass
class StationBackfill:
    station_id: int
    processed: int = 0
    skipped: int = 0
    months_added: int = 0
    years_added: int = 0

    @property
    def new_records(self) -> int:
        return self.processed - self.skipped


@dataclass
class BackfillReport:
    start: date
    end: date
    stations: list[StationBackfill] = field(default_factory=list)


class HistoricalBackfill:
    def __init__(
        self,
        store: TimeSeriesStore,
        fetcher: FallbackFetcher,
        engine: AggregationEngine,
        delay_seconds: float = 0.2,
    ):
        self._store = store
        self._fetcher = fetcher
        self._engine = engine
        self._delay = delay_seconds

    async def run(self, stations: list[Station], start: date, end: date) -> BackfillReport:
        """Import ``[start, end]`` for every station, then compute missing aggregates."""
        report = BackfillReport(start=start, end=end)
        for station in stations:
            logger.info("Processing station: %s (%s)", station.name, station.location)
            report.stations.append(await self._import_station(station, start, end))

        logger.info("Calculating monthly and yearly aggregates")
        for station, stats in zip(stations, report.stations):
            stats.months_added, stats.years_added = await self._engine.backfill(station.id)
        return report

    async def _import_station(self, station: Station, start: date, end: date) -> StationBackfill:
        stats = StationBackfill(station_id=station.id)
        existing = {r.period_value for r in await self._store.query_records(station.id, PeriodType.DAY)}
        total_days = (end - start).days + 1

        day = start
        while day <= end:
            stats.processed += 1
            key = day.isoformat()
            if key in existing:
                stats.skipped += 1
            else:
                try:
                    total = await self._fetcher.finalize_day(station, day)
                except Exception:
                    logger.error(
                        "[%d/%d] %s failed; stopping. Re-run to resume, stored days are skipped.",
                        stats.processed, total_days, key,
                    )
                    raise
                if stats.processed % PROGRESS_LOG_EVERY == 0:
                    logger.info("  [%d/%d] %s - %.1fmm", stats.processed, total_days, key, total)
                if self._delay:
                    await asyncio.sleep(self._delay)
            day += timedelta(days=1)

        logger.info(
            "Station %s complete: %d processed, %d skipped, %d new",
            station.name, stats.processed, stats.skipped, stats.new_records,
        )
        return stats

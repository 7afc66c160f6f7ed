"""Fetch-with-fallback read path for current rainfall.

For each requested period the fetcher prefers a live provider reading and
degrades to the most recent cached record when the live call fails. Callers
get a best-effort result labelled with where each number came from instead
of an error.

Periods:

- ``30min``, ``1hour``, ``3hours``: trailing window ending now, native
  resolution. Each successful poll is cached under the poll timestamp.
- ``today``: midnight UTC to now at 5-minute resolution, cached as the
  ``day`` record for today's date. A dry day is stored as 0, not skipped.

Fallback is decided per period: one failing call does not discard the
periods that were fetched live.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable

from rainfall.core.errors import PROVIDER_ERRORS
from rainfall.models.rainfall import PeriodType
from rainfall.models.station import Station
from rainfall.models.status import StatusKey
from rainfall.services.provider import MeasurementProvider, Resolution
from rainfall.services.store import TimeSeriesStore
from rainfall.services.token_manager import TokenManager

logger = logging.getLogger(__name__)

TODAY = "today"

SOURCE_API = "api"
SOURCE_CACHE = "cache"
SOURCE_MIXED = "mixed"

# period -> (trailing window, provider resolution)
SHORT_PERIODS: dict[PeriodType, tuple[timedelta, Resolution]] = {
    PeriodType.MIN_30: (timedelta(minutes=30), Resolution.MIN_30),
    PeriodType.HOUR_1: (timedelta(hours=1), Resolution.HOUR_1),
    PeriodType.HOURS_3: (timedelta(hours=3), Resolution.HOURS_3),
}

# Fine resolution for whole-day totals.
DAY_RESOLUTION = Resolution.MIN_5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """``[00:00, 24:00)`` of ``day`` in UTC."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


@dataclass
class CurrentRainfall:
    """Best-effort current readings for one station."""

    station: Station
    periods: dict[str, float] = field(default_factory=dict)
    sources: dict[str, str] = field(default_factory=dict)

    @property
    def source(self) -> str:
        origins = set(self.sources.values())
        if origins == {SOURCE_API}:
            return SOURCE_API
        if SOURCE_API in origins:
            return SOURCE_MIXED
        return SOURCE_CACHE

    @property
    def fresh(self) -> bool:
        return self.source == SOURCE_API


class FallbackFetcher:
    def __init__(
        self,
        store: TimeSeriesStore,
        provider: MeasurementProvider,
        token_manager: TokenManager,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._provider = provider
        self._tokens = token_manager
        self._clock = clock

    # ── Live primitives ───────────────────────────────────────────────────────

    async def sum_window(
        self,
        station: Station,
        start: datetime,
        end: datetime,
        resolution: Resolution,
    ) -> float:
        """Total rain in ``[start, end]``; missing samples contribute nothing."""
        measurements = await self._tokens.call(
            self._provider.get_measurements,
            station.device_id,
            station.module_id,
            start,
            end,
            resolution,
        )
        return sum(m.value for m in measurements)

    async def _fetch_short(self, station: Station, period: PeriodType, now: datetime) -> float:
        window, resolution = SHORT_PERIODS[period]
        total = await self.sum_window(station, now - window, now, resolution)
        await self._store.upsert_record(station.id, period, now.isoformat(), total)
        return total

    async def _fetch_today(self, station: Station, now: datetime) -> float:
        midnight, _ = day_bounds(now.date())
        total = await self.sum_window(station, midnight, now, DAY_RESOLUTION)
        await self._store.upsert_record(station.id, PeriodType.DAY, now.date().isoformat(), total)
        return total

    # ── Read path ─────────────────────────────────────────────────────────────

    async def get_current(self, station: Station) -> CurrentRainfall:
        """Live readings for every short period and today, cached values where live fails."""
        now = self._clock()
        result = CurrentRainfall(station=station)

        live = True
        try:
            await self._tokens.get_access_token()
        except PROVIDER_ERRORS as exc:
            logger.warning("No usable token for station %d, serving cache: %s", station.id, exc)
            live = False

        for period in SHORT_PERIODS:
            if live:
                try:
                    result.periods[period.value] = await self._fetch_short(station, period, now)
                    result.sources[period.value] = SOURCE_API
                    continue
                except PROVIDER_ERRORS as exc:
                    logger.warning(
                        "Live %s failed for station %d, using cache: %s",
                        period.value, station.id, exc,
                    )
            await self._fill_from_cache(result, station, period, period.value)

        if live:
            try:
                result.periods[TODAY] = await self._fetch_today(station, now)
                result.sources[TODAY] = SOURCE_API
            except PROVIDER_ERRORS as exc:
                logger.warning("Live today failed for station %d, using cache: %s", station.id, exc)
                await self._fill_from_cache(
                    result, station, PeriodType.DAY, TODAY, now.date().isoformat()
                )
        else:
            await self._fill_from_cache(
                result, station, PeriodType.DAY, TODAY, now.date().isoformat()
            )

        if SOURCE_API in result.sources.values():
            await self._store.set_marker(StatusKey.LAST_API_SUCCESS.value, now.isoformat())

        logger.debug(
            "Current rainfall for station %d: %s (source=%s)",
            station.id, result.periods, result.source,
        )
        return result

    async def _fill_from_cache(
        self,
        result: CurrentRainfall,
        station: Station,
        period: PeriodType,
        label: str,
        period_value: str | None = None,
    ) -> None:
        cached = await self._store.query_records(station.id, period, period_value)
        if cached:
            result.periods[label] = cached[0].amount_mm
            result.sources[label] = SOURCE_CACHE

    # ── Scheduled-job helpers ─────────────────────────────────────────────────

    async def update_short_periods(self, station: Station) -> dict[str, float]:
        """Refresh the short-period caches. Per-period failures are logged and skipped."""
        now = self._clock()
        totals: dict[str, float] = {}
        for period in SHORT_PERIODS:
            try:
                totals[period.value] = await self._fetch_short(station, period, now)
            except PROVIDER_ERRORS as exc:
                logger.error("  - Error fetching %s for station %d: %s", period.value, station.id, exc)
        return totals

    async def update_today(self, station: Station) -> float:
        """Refresh today's running total. Provider errors propagate."""
        return await self._fetch_today(station, self._clock())

    async def finalize_day(self, station: Station, day: date) -> float:
        """Fetch and store the complete total for ``day``; a dry day is stored as 0."""
        start, end = day_bounds(day)
        total = await self.sum_window(station, start, end, DAY_RESOLUTION)
        await self._store.upsert_record(station.id, PeriodType.DAY, day.isoformat(), total)
        return total

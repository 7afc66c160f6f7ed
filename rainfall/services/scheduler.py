"""Background jobs and the loops that fire them.

Three independent asyncio loops, managed by FastAPI's lifespan:

1. Token refresh every 150 minutes (Netatmo tokens live ~3 hours).
2. Hourly update at minute 0: short-period caches and today's running total
   for every station.
3. Daily update at 01:00 UTC: finalise yesterday's total, recompute the
   current month/year, and finalise the previous month/year on the 1st.

The loops share no lock; their writes are disjoint or idempotent upserts. A
failing job is logged and the loop waits for the next firing, which doubles
as the retry.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from rainfall.core.errors import PROVIDER_ERRORS, AuthError
from rainfall.models.status import StatusKey
from rainfall.services.aggregation import AggregationEngine
from rainfall.services.fetcher import FallbackFetcher
from rainfall.services.store import TimeSeriesStore
from rainfall.services.token_manager import TokenManager

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_hourly_run(now: datetime) -> datetime:
    """Next top of the hour strictly after ``now``."""
    return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)


def next_daily_run(now: datetime, hour: int) -> datetime:
    """Next ``hour``:00 strictly after ``now``."""
    candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


class Scheduler:
    def __init__(
        self,
        store: TimeSeriesStore,
        token_manager: TokenManager,
        fetcher: FallbackFetcher,
        engine: AggregationEngine,
        *,
        token_refresh_minutes: int = 150,
        daily_hour: int = 1,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._tokens = token_manager
        self._fetcher = fetcher
        self._engine = engine
        self._token_refresh_interval = timedelta(minutes=token_refresh_minutes)
        self._daily_hour = daily_hour
        self._clock = clock
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False

    # ── Jobs ──────────────────────────────────────────────────────────────────

    async def refresh_tokens_job(self) -> None:
        logger.info("[TokenRefreshJob] Starting token refresh")
        await self._tokens.refresh()
        logger.info("[TokenRefreshJob] Token refresh completed")

    async def hourly_update_job(self) -> None:
        logger.info("[HourlyUpdateJob] Starting hourly data update")
        stations = await self._store.list_stations()
        if not stations:
            logger.info("[HourlyUpdateJob] No stations found, skipping")
            return

        any_success = False
        for station in stations:
            logger.info("[HourlyUpdateJob] Updating station: %s", station.name)
            totals = await self._fetcher.update_short_periods(station)
            any_success = any_success or bool(totals)
            try:
                today = await self._fetcher.update_today(station)
                any_success = True
                logger.info("  - today: %.2fmm", today)
            except PROVIDER_ERRORS as exc:
                logger.error("  - Error fetching today for station %d: %s", station.id, exc)

        if any_success:
            await self._store.set_marker(StatusKey.LAST_API_SUCCESS.value, self._clock().isoformat())
        logger.info("[HourlyUpdateJob] Hourly update completed")

    async def daily_update_job(self) -> None:
        logger.info("[DailyUpdateJob] Starting daily aggregates calculation")
        stations = await self._store.list_stations()
        if not stations:
            logger.info("[DailyUpdateJob] No stations found, skipping")
            return

        today = self._clock().date()
        yesterday = today - timedelta(days=1)

        for station in stations:
            logger.info("[DailyUpdateJob] Processing station: %s", station.name)
            try:
                total = await self._fetcher.finalize_day(station, yesterday)
                logger.info("  - Saved daily data for %s: %.2fmm", yesterday.isoformat(), total)
            except PROVIDER_ERRORS as exc:
                logger.error("  - Error fetching daily data for station %d: %s", station.id, exc)

            await self._engine.run_live(station.id, today)

        await self._store.set_marker(
            StatusKey.LAST_AGGREGATES_CALCULATION.value, self._clock().isoformat()
        )
        logger.info("[DailyUpdateJob] Daily update completed")

    # ── Loops ─────────────────────────────────────────────────────────────────

    async def _run_job(self, name: str, job: Callable[[], Awaitable[None]]) -> None:
        try:
            await job()
        except AuthError as exc:
            logger.error("[Scheduler] %s failed to authenticate: %s", name, exc)
        except Exception:
            logger.exception("[Scheduler] %s failed unexpectedly", name)

    async def _loop(
        self,
        name: str,
        job: Callable[[], Awaitable[None]],
        next_run: Callable[[datetime], datetime],
    ) -> None:
        logger.info("[Scheduler] %s loop started", name)
        while self._running:
            now = self._clock()
            delay = (next_run(now) - now).total_seconds()
            try:
                await asyncio.sleep(max(delay, 0.0))
            except asyncio.CancelledError:
                break
            try:
                await self._run_job(name, job)
            except asyncio.CancelledError:
                break
        logger.info("[Scheduler] %s loop stopped", name)

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        interval = self._token_refresh_interval
        self._tasks = [
            asyncio.create_task(
                self._loop("Token refresh", self.refresh_tokens_job, lambda now: now + interval)
            ),
            asyncio.create_task(
                self._loop("Hourly update", self.hourly_update_job, next_hourly_run)
            ),
            asyncio.create_task(
                self._loop(
                    "Daily update",
                    self.daily_update_job,
                    lambda now: next_daily_run(now, self._daily_hour),
                )
            ),
        ]
        logger.info("[Scheduler] Jobs started")
        logger.info("  - Token refresh: every %d minutes", int(interval.total_seconds() // 60))
        logger.info("  - Hourly update: every hour at :00 UTC")
        logger.info("  - Daily update: every day at %02d:00 UTC", self._daily_hour)

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("[Scheduler] Jobs stopped")

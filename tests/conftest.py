"""Shared test fixtures for the rainfall tracker test suite.

Core components are tested against ``MemoryStore`` and an in-process fake
provider, so no database or network is needed. ``SqlStore`` tests run on a
temporary SQLite file.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest
import pytest_asyncio

from rainfall.core.errors import ProviderUnavailable, TokenExpiredSignal
from rainfall.models.rainfall import PeriodType
from rainfall.models.station import Station
from rainfall.services.aggregation import AggregationEngine
from rainfall.services.fetcher import FallbackFetcher
from rainfall.services.provider import Measurement, Resolution, TokenGrant
from rainfall.services.store import MemoryStore
from rainfall.services.token_manager import TokenManager

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


# ── Factory helpers ───────────────────────────────────────────────────────────


def make_station(
    device_id: str = "70:ee:50:00:00:01",
    module_id: str = "05:00:00:00:00:01",
    name: str = "Garden",
    location: str | None = "Lyon",
) -> Station:
    """Create an unsaved Station for testing."""
    return Station(device_id=device_id, module_id=module_id, name=name, location=location)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeProvider:
    """In-process ``MeasurementProvider``.

    ``samples`` maps a resolution to the values returned for it. Setting
    ``fail_with`` makes every data call raise; ``fail_periods`` only fails the
    listed resolutions. Token exchanges hand out ``access-N`` / ``refresh-N``.
    """

    def __init__(self, samples: dict[Resolution, list[float]] | None = None):
        self.samples = samples or {}
        self.stations: list[Station] = [make_station()]
        self.fail_with: Exception | None = None
        self.fail_periods: set[Resolution] = set()
        self.refresh_error: Exception | None = None
        self.refresh_delay = 0.0
        self.expired_tokens: set[str] = set()
        self.exchange_calls: list[str] = []
        self.measurement_calls: list[tuple[str, datetime, datetime, Resolution]] = []

    async def exchange_refresh_token(self, refresh_token: str) -> TokenGrant:
        self.exchange_calls.append(refresh_token)
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_error is not None:
            raise self.refresh_error
        n = len(self.exchange_calls)
        return TokenGrant(access_token=f"access-{n}", refresh_token=f"refresh-{n}", expires_in=10800)

    async def list_stations(self, access_token: str) -> list[Station]:
        self._check(access_token)
        return list(self.stations)

    async def get_measurements(
        self,
        access_token: str,
        device_id: str,
        module_id: str,
        start: datetime,
        end: datetime,
        resolution: Resolution,
    ) -> list[Measurement]:
        self._check(access_token)
        self.measurement_calls.append((access_token, start, end, resolution))
        if resolution in self.fail_periods:
            raise ProviderUnavailable("gateway timeout", status=504)
        return [Measurement(timestamp=start, value=v) for v in self.samples.get(resolution, [])]

    def _check(self, access_token: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        if access_token in self.expired_tokens:
            raise TokenExpiredSignal("expired")


async def seed_days(store: MemoryStore, station_id: int, amounts: dict[str, float]) -> None:
    for day, amount in amounts.items():
        await store.upsert_record(station_id, PeriodType.DAY, day, amount)


def june_days(amounts: list[float], year: int = 2024) -> dict[str, float]:
    """``{"2024-06-01": amounts[0], ...}``"""
    return {date(year, 6, i + 1).isoformat(): a for i, a in enumerate(amounts)}


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider(
        samples={
            Resolution.MIN_30: [0.4],
            Resolution.HOUR_1: [0.4, 0.3],
            Resolution.HOURS_3: [1.0, 0.5, 0.2],
            Resolution.MIN_5: [0.1] * 10,
        }
    )


@pytest.fixture
def token_manager(store, provider, clock) -> TokenManager:
    return TokenManager(
        store,
        provider,
        seed_access_token="seed-access",
        seed_refresh_token="seed-refresh",
        clock=clock,
    )


@pytest.fixture
def fetcher(store, provider, token_manager, clock) -> FallbackFetcher:
    return FallbackFetcher(store, provider, token_manager, clock=clock)


@pytest.fixture
def engine(store) -> AggregationEngine:
    return AggregationEngine(store)


@pytest_asyncio.fixture
async def station(store) -> Station:
    return await store.save_station(make_station())

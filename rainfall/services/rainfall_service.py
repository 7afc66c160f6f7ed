"""Query surface consumed by the route layer.

Wraps the core components behind the operations the API exposes: current
readings, client-pushed cache updates, historical aggregates, system status,
manual token updates, and station discovery.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from rainfall.core.errors import PROVIDER_ERRORS, AuthError, NotFound
from rainfall.models.rainfall import PeriodType
from rainfall.models.station import Station
from rainfall.models.status import StatusKey
from rainfall.services.fetcher import TODAY, CurrentRainfall, FallbackFetcher
from rainfall.services.provider import MeasurementProvider
from rainfall.services.store import TimeSeriesStore
from rainfall.services.token_manager import TokenManager

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RainfallService:
    def __init__(
        self,
        store: TimeSeriesStore,
        provider: MeasurementProvider,
        token_manager: TokenManager,
        fetcher: FallbackFetcher,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.provider = provider
        self.token_manager = token_manager
        self.fetcher = fetcher
        self._clock = clock

    # ── Stations ──────────────────────────────────────────────────────────────

    async def list_stations(self) -> list[Station]:
        """Stored stations; discovers them from the provider on first use."""
        stations = await self.store.list_stations()
        if stations:
            return stations
        logger.info("No stations in database, discovering from provider")
        return await self.refresh_stations()

    async def refresh_stations(self) -> list[Station]:
        discovered = await self.token_manager.call(self.provider.list_stations)
        for station in discovered:
            await self.store.save_station(station)
        return await self.store.list_stations()

    async def get_station(self, station_id: int) -> Station:
        station = await self.store.get_station(station_id)
        if station is None:
            raise NotFound(f"Station {station_id} not found")
        return station

    # ── Rainfall ──────────────────────────────────────────────────────────────

    async def get_current(self, station_id: int) -> CurrentRainfall:
        station = await self.get_station(station_id)
        return await self.fetcher.get_current(station)

    async def get_historical(self) -> dict[int, dict[str, Any]]:
        """Monthly and yearly totals for every station, most recent first."""
        data: dict[int, dict[str, Any]] = {}
        for station in await self.store.list_stations():
            data[station.id] = {
                "station": station,
                "months": await self.store.query_records(station.id, PeriodType.MONTH),
                "years": await self.store.query_records(station.id, PeriodType.YEAR),
            }
        return data

    async def update_cache(self, station_id: int, periods: dict[str, float]) -> None:
        """Store readings a client fetched live itself, as the read path would have."""
        station = await self.get_station(station_id)
        now = self._clock()
        for label, amount in periods.items():
            if label == TODAY:
                await self.store.upsert_record(
                    station.id, PeriodType.DAY, now.date().isoformat(), amount
                )
            else:
                await self.store.upsert_record(
                    station.id, PeriodType(label), now.isoformat(), amount
                )
        await self.store.set_marker(StatusKey.LAST_API_SUCCESS.value, now.isoformat())
        logger.info("Cache updated for station %d: %s", station.id, sorted(periods))

    # ── System ────────────────────────────────────────────────────────────────

    async def get_system_status(self) -> dict[str, Any]:
        markers = {m.key: m for m in await self.store.list_markers()}

        def _marker(key: StatusKey) -> dict[str, Any] | None:
            marker = markers.get(key.value)
            if marker is None:
                return None
            return {"value": marker.value, "updated_at": marker.updated_at}

        return {
            "token": self.token_manager.get_status(),
            "last_token_refresh": _marker(StatusKey.LAST_TOKEN_REFRESH),
            "last_aggregates_calculation": _marker(StatusKey.LAST_AGGREGATES_CALCULATION),
            "last_api_success": _marker(StatusKey.LAST_API_SUCCESS),
            "server_time": self._clock(),
        }

    async def get_admin_status(self) -> dict[str, Any]:
        return {
            "token": self.token_manager.get_status(),
            "system": await self.store.list_markers(),
        }

    async def update_tokens(self, access_token: str, refresh_token: str) -> None:
        """Install a manually issued pair after checking it against the provider."""
        try:
            await self.provider.list_stations(access_token)
        except PROVIDER_ERRORS as exc:
            logger.warning("Rejected manual token update: %s", exc)
            raise AuthError("Invalid tokens - API test failed") from exc
        await self.token_manager.update_tokens(access_token, refresh_token)

"""Public REST API routes: stations, rainfall, system status."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from rainfall.api.dependencies import get_service
from rainfall.api.schemas import (
    CacheUpdate,
    CurrentRainfallResponse,
    HistoricalResponse,
    StationHistory,
    StationListResponse,
    StationResponse,
    SystemStatusResponse,
)
from rainfall.services.rainfall_service import RainfallService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


@router.get("/health", tags=["ops"])
async def health() -> dict[str, str]:
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


# ── Stations ──────────────────────────────────────────────────────────────────


@router.get(
    "/stations",
    response_model=StationListResponse,
    tags=["stations"],
    summary="List rain gauge stations",
    description="Returns stored stations; discovers them from Netatmo on first use.",
)
async def list_stations(
    service: RainfallService = Depends(get_service),
) -> StationListResponse:
    stations = await service.list_stations()
    return StationListResponse(
        stations=[StationResponse.model_validate(s) for s in stations],
        total=len(stations),
    )


@router.post(
    "/stations/refresh",
    response_model=StationListResponse,
    tags=["stations"],
    summary="Re-discover stations from Netatmo",
)
async def refresh_stations(
    service: RainfallService = Depends(get_service),
) -> StationListResponse:
    stations = await service.refresh_stations()
    logger.info("Station refresh: %d station(s) registered", len(stations))
    return StationListResponse(
        stations=[StationResponse.model_validate(s) for s in stations],
        total=len(stations),
    )


# ── Rainfall ──────────────────────────────────────────────────────────────────


@router.get(
    "/rainfall/historical",
    response_model=HistoricalResponse,
    tags=["rainfall"],
    summary="Monthly and yearly totals for every station",
)
async def get_historical(
    service: RainfallService = Depends(get_service),
) -> HistoricalResponse:
    history = await service.get_historical()
    return HistoricalResponse(
        stations={
            station_id: StationHistory.model_validate(entry, from_attributes=True)
            for station_id, entry in history.items()
        }
    )


@router.get(
    "/rainfall/current/{station_id}",
    response_model=CurrentRainfallResponse,
    tags=["rainfall"],
    summary="Current rainfall, live when possible",
    description=(
        "Rain over the last 30 minutes, hour, 3 hours, and since midnight UTC. "
        "Each period is fetched live from Netatmo; when that fails the most "
        "recent cached value is returned instead. `fresh` is true only when "
        "every period came live."
    ),
)
async def get_current(
    station_id: int,
    service: RainfallService = Depends(get_service),
) -> CurrentRainfallResponse:
    current = await service.get_current(station_id)
    return CurrentRainfallResponse(
        station=StationResponse.model_validate(current.station),
        periods=current.periods,
        sources=current.sources,
        source=current.source,
        fresh=current.fresh,
    )


@router.post(
    "/rainfall/update-cache",
    tags=["rainfall"],
    summary="Store readings fetched live by a client",
    description=(
        "Short periods are stored at the current time and `today` as today's "
        "day total, so later cache fallbacks serve them."
    ),
)
async def update_cache(
    body: CacheUpdate,
    service: RainfallService = Depends(get_service),
) -> dict:
    await service.update_cache(body.station_id, body.periods)
    return {"success": True, "message": "Cache updated"}


# ── System ────────────────────────────────────────────────────────────────────


@router.get(
    "/system/status",
    response_model=SystemStatusResponse,
    tags=["system"],
    summary="Token state and last job/API timestamps",
)
async def get_system_status(
    service: RainfallService = Depends(get_service),
) -> SystemStatusResponse:
    return SystemStatusResponse.model_validate(await service.get_system_status())

"""Pydantic schemas for the REST API responses and request bodies."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, NonNegativeFloat


# ── Stations ──────────────────────────────────────────────────────────────────


class StationResponse(BaseModel):
    id: int
    device_id: str
    module_id: str
    name: str
    location: str | None

    model_config = {"from_attributes": True}


class StationListResponse(BaseModel):
    stations: list[StationResponse]
    total: int


# ── Rainfall ──────────────────────────────────────────────────────────────────


class RainfallRecordResponse(BaseModel):
    period_type: str
    period_value: str
    amount_mm: float
    created_at: datetime | None

    model_config = {"from_attributes": True}


class CurrentRainfallResponse(BaseModel):
    """Response from GET /api/rainfall/current/{station_id}."""

    station: StationResponse
    periods: dict[str, float] = Field(
        ..., description="Rain in mm keyed by period: 30min, 1hour, 3hours, today"
    )
    sources: dict[str, str] = Field(
        ..., description="Origin of each period value: 'api' (live) or 'cache'"
    )
    source: str = Field(..., description="'api', 'cache', or 'mixed'")
    fresh: bool


class StationHistory(BaseModel):
    station: StationResponse
    months: list[RainfallRecordResponse]
    years: list[RainfallRecordResponse]


class HistoricalResponse(BaseModel):
    stations: dict[int, StationHistory]


class CacheUpdate(BaseModel):
    """Request body for POST /api/rainfall/update-cache."""

    station_id: int
    periods: dict[Literal["30min", "1hour", "3hours", "today"], NonNegativeFloat] = Field(
        ..., min_length=1, description="Readings in mm the caller obtained live, keyed by period"
    )


# ── System ────────────────────────────────────────────────────────────────────


class MarkerResponse(BaseModel):
    value: str
    updated_at: datetime | None


class SystemStatusResponse(BaseModel):
    token: dict[str, Any]
    last_token_refresh: MarkerResponse | None
    last_aggregates_calculation: MarkerResponse | None
    last_api_success: MarkerResponse | None
    server_time: datetime


class StatusEntry(BaseModel):
    key: str
    value: str
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class AdminStatusResponse(BaseModel):
    token: dict[str, Any]
    system: list[StatusEntry]


class TokenUpdate(BaseModel):
    """Request body for POST /admin/tokens."""

    access_token: str = Field(..., min_length=1)
    refresh_token: str = Field(..., min_length=1)

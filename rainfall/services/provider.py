"""Measurement provider capability consumed by the core.

The core never talks HTTP itself: the token manager, fetcher and backfill
driver depend on this protocol. ``NetatmoClient`` is the production
implementation; tests substitute in-process fakes.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from rainfall.models.station import Station

DEFAULT_TOKEN_TTL_SECONDS = 10800


class Resolution(str, enum.Enum):
    """Sampling scale accepted by the provider's measurement endpoint."""

    MIN_5 = "5min"
    MIN_30 = "30min"
    HOUR_1 = "1hour"
    HOURS_3 = "3hours"
    DAY_1 = "1day"
    WEEK_1 = "1week"
    MONTH_1 = "1month"


@dataclass(frozen=True)
class TokenGrant:
    """Result of exchanging a refresh token."""

    access_token: str
    refresh_token: str
    expires_in: int = DEFAULT_TOKEN_TTL_SECONDS


@dataclass(frozen=True)
class Measurement:
    """A single rain sample (mm accumulated over one resolution step)."""

    timestamp: datetime
    value: float


class MeasurementProvider(Protocol):
    async def exchange_refresh_token(self, refresh_token: str) -> TokenGrant: ...

    async def list_stations(self, access_token: str) -> list[Station]: ...

    async def get_measurements(
        self,
        access_token: str,
        device_id: str,
        module_id: str,
        start: datetime,
        end: datetime,
        resolution: Resolution,
    ) -> list[Measurement]: ...

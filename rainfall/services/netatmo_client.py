"""HTTP client for the Netatmo Weather API.

Implements the ``MeasurementProvider`` protocol on top of three endpoints:

- ``POST /oauth2/token``          exchange a refresh token for a new pair
- ``GET  /api/getstationsdata``   discover rain gauge modules (``NAModule3``)
- ``GET  /api/getmeasure``        rain samples for a module and time window

Upstream failures are translated into the domain taxonomy so callers never
see raw httpx exceptions: 401 on a data endpoint becomes
``TokenExpiredSignal``, a rejected refresh becomes ``AuthError``, and
everything else (connection errors, timeouts, 5xx) is ``ProviderUnavailable``.

Docs: https://dev.netatmo.com/apidocumentation/weather
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from rainfall.core.config import settings
from rainfall.core.errors import AuthError, ProviderUnavailable, TokenExpiredSignal
from rainfall.models.station import Station
from rainfall.services.provider import (
    DEFAULT_TOKEN_TTL_SECONDS,
    Measurement,
    Resolution,
    TokenGrant,
)

logger = logging.getLogger(__name__)

RAIN_GAUGE_MODULE_TYPE = "NAModule3"

# Raised by a 2xx reply whose body is not the documented shape.
_PARSE_ERRORS = (ValueError, KeyError, TypeError, AttributeError)


class NetatmoClient:
    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_id = client_id if client_id is not None else settings.netatmo_client_id
        self.client_secret = (
            client_secret if client_secret is not None else settings.netatmo_client_secret
        )
        self.base_url = (base_url or settings.netatmo_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.netatmo_request_timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _wrap_connection_error(self, exc: httpx.HTTPError) -> ProviderUnavailable:
        return ProviderUnavailable(f"Cannot reach Netatmo at {self.base_url}: {exc}")

    # ── OAuth2 ────────────────────────────────────────────────────────────────

    async def exchange_refresh_token(self, refresh_token: str) -> TokenGrant:
        """POST /oauth2/token with ``grant_type=refresh_token``."""
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        try:
            async with self._client() as client:
                resp = await client.post(f"{self.base_url}/oauth2/token", data=form)
        except httpx.TransportError as exc:
            raise self._wrap_connection_error(exc) from exc

        if resp.status_code >= 500:
            raise ProviderUnavailable(resp.text, status=resp.status_code)
        if resp.status_code >= 400:
            raise AuthError(f"Token refresh failed: {resp.status_code} - {resp.text}")

        try:
            data = resp.json()
            return TokenGrant(
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                expires_in=int(data.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS),
            )
        except _PARSE_ERRORS as exc:
            raise AuthError(f"Token refresh returned an unreadable grant: {exc!r}") from exc

    # ── Data endpoints ────────────────────────────────────────────────────────

    async def _get(self, path: str, access_token: str, params: dict[str, str] | None = None) -> Any:
        try:
            async with self._client() as client:
                resp = await client.get(
                    f"{self.base_url}{path}",
                    params=params,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.TransportError as exc:
            raise self._wrap_connection_error(exc) from exc

        if resp.status_code == 401:
            raise TokenExpiredSignal(f"Netatmo rejected the access token for {path}")
        if resp.status_code >= 400:
            raise ProviderUnavailable(resp.text, status=resp.status_code)
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderUnavailable(f"Non-JSON reply from {path}: {resp.text[:200]}") from exc

    async def list_stations(self, access_token: str) -> list[Station]:
        """GET /api/getstationsdata and keep only rain gauge modules."""
        data = await self._get("/api/getstationsdata", access_token)

        stations: list[Station] = []
        try:
            for device in (data.get("body") or {}).get("devices") or []:
                place = device.get("place") or {}
                for module in device.get("modules") or []:
                    if module.get("type") != RAIN_GAUGE_MODULE_TYPE:
                        continue
                    stations.append(
                        Station(
                            device_id=device["_id"],
                            module_id=module["_id"],
                            name=module.get("module_name") or device.get("station_name") or device["_id"],
                            location=place.get("city") or "Unknown",
                        )
                    )
        except _PARSE_ERRORS as exc:
            raise ProviderUnavailable(f"Malformed getstationsdata reply: {exc!r}") from exc

        logger.info("Discovered %d rain gauge(s) on Netatmo", len(stations))
        return stations

    async def get_measurements(
        self,
        access_token: str,
        device_id: str,
        module_id: str,
        start: datetime,
        end: datetime,
        resolution: Resolution,
    ) -> list[Measurement]:
        """GET /api/getmeasure for rain samples in ``[start, end]``.

        With ``optimize=false`` the body maps unix timestamps to one-element
        value lists; null samples are dropped.
        """
        params = {
            "device_id": device_id,
            "module_id": module_id,
            "scale": Resolution(resolution).value,
            "type": "Rain",
            "date_begin": str(int(start.timestamp())),
            "date_end": str(int(end.timestamp())),
            "optimize": "false",
        }
        data = await self._get("/api/getmeasure", access_token, params=params)

        measurements: list[Measurement] = []
        try:
            body = data.get("body") or {}
            for ts, values in sorted(body.items(), key=lambda item: int(item[0])):
                if not values or values[0] is None:
                    continue
                measurements.append(
                    Measurement(
                        timestamp=datetime.fromtimestamp(int(ts), tz=timezone.utc),
                        value=float(values[0]),
                    )
                )
        except _PARSE_ERRORS as exc:
            raise ProviderUnavailable(f"Malformed getmeasure reply: {exc!r}") from exc

        logger.debug(
            "Fetched %d %s sample(s) for module %s (%s to %s)",
            len(measurements), params["scale"], module_id, start.isoformat(), end.isoformat(),
        )
        return measurements

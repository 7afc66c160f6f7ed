"""Time-series store: stations, rainfall records, token state, status markers.

The interface stays the same for every backend (``SqlStore`` for the
service, ``MemoryStore`` for tests and dry runs), so the token manager,
fetcher and aggregation engine do not care where the data lives.

Key uniqueness carries the upsert semantics:

- ``rainfall_data``: one row per ``(station_id, period_type, period_value)``,
  last write wins.
- ``tokens``: a single row, replaced on every save.
- ``system_status``: one row per key.
- ``stations``: one row per ``device_id``; re-registering is a no-op.
"""

from __future__ import annotations

import itertools
import logging
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine

from rainfall.core.database import create_session_factory
from rainfall.models.rainfall import PeriodType, RainfallRecord
from rainfall.models.station import Station
from rainfall.models.status import SystemStatus
from rainfall.models.token import TOKEN_ROW_ID, TokenState

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TimeSeriesStore(Protocol):
    async def get_token_state(self) -> TokenState | None: ...

    async def save_token_state(self, state: TokenState) -> None: ...

    async def list_stations(self) -> list[Station]: ...

    async def get_station(self, station_id: int) -> Station | None: ...

    async def save_station(self, station: Station) -> Station: ...

    async def upsert_record(
        self,
        station_id: int,
        period_type: PeriodType | str,
        period_value: str,
        amount_mm: float,
    ) -> RainfallRecord: ...

    async def query_records(
        self,
        station_id: int,
        period_type: PeriodType | str,
        period_value: str | None = None,
    ) -> list[RainfallRecord]: ...

    async def get_marker(self, key: str) -> SystemStatus | None: ...

    async def set_marker(self, key: str, value: str) -> None: ...

    async def list_markers(self) -> list[SystemStatus]: ...


# ── SQLAlchemy backend ────────────────────────────────────────────────────────


class SqlStore:
    """Durable store on any SQLAlchemy async engine (SQLite or PostgreSQL).

    Every call runs in its own session and commits before returning, so a
    read issued right after a write always observes it.
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._session_factory = create_session_factory(engine)
        self._insert = postgresql.insert if engine.dialect.name == "postgresql" else sqlite.insert

    # Tokens

    async def get_token_state(self) -> TokenState | None:
        async with self._session_factory() as session:
            state = await session.get(TokenState, TOKEN_ROW_ID)
        if state is not None:
            state.expires_at = _as_utc(state.expires_at)
            state.updated_at = _as_utc(state.updated_at)
        return state

    async def save_token_state(self, state: TokenState) -> None:
        values = {
            "id": TOKEN_ROW_ID,
            "access_token": state.access_token,
            "refresh_token": state.refresh_token,
            "expires_at": state.expires_at,
            "updated_at": state.updated_at or _utcnow(),
        }
        stmt = self._insert(TokenState).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={k: stmt.excluded[k] for k in values if k != "id"},
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    # Stations

    async def list_stations(self) -> list[Station]:
        async with self._session_factory() as session:
            result = await session.execute(select(Station).order_by(Station.name, Station.id))
            return list(result.scalars().all())

    async def get_station(self, station_id: int) -> Station | None:
        async with self._session_factory() as session:
            return await session.get(Station, station_id)

    async def save_station(self, station: Station) -> Station:
        stmt = (
            self._insert(Station)
            .values(
                device_id=station.device_id,
                module_id=station.module_id,
                name=station.name,
                location=station.location,
                created_at=_utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["device_id"])
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()
            result = await session.execute(
                select(Station).where(Station.device_id == station.device_id)
            )
            return result.scalar_one()

    # Rainfall records

    async def upsert_record(
        self,
        station_id: int,
        period_type: PeriodType | str,
        period_value: str,
        amount_mm: float,
    ) -> RainfallRecord:
        period_type = PeriodType(period_type).value
        stmt = self._insert(RainfallRecord).values(
            station_id=station_id,
            period_type=period_type,
            period_value=period_value,
            amount_mm=amount_mm,
            created_at=_utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["station_id", "period_type", "period_value"],
            set_={
                "amount_mm": stmt.excluded.amount_mm,
                "created_at": stmt.excluded.created_at,
            },
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()
            result = await session.execute(
                select(RainfallRecord).where(
                    RainfallRecord.station_id == station_id,
                    RainfallRecord.period_type == period_type,
                    RainfallRecord.period_value == period_value,
                )
            )
            record = result.scalar_one()
        record.created_at = _as_utc(record.created_at)
        return record

    async def query_records(
        self,
        station_id: int,
        period_type: PeriodType | str,
        period_value: str | None = None,
    ) -> list[RainfallRecord]:
        stmt = select(RainfallRecord).where(
            RainfallRecord.station_id == station_id,
            RainfallRecord.period_type == PeriodType(period_type).value,
        )
        if period_value is not None:
            stmt = stmt.where(RainfallRecord.period_value == period_value)
        stmt = stmt.order_by(RainfallRecord.period_value.desc())

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            records = list(result.scalars().all())
        for record in records:
            record.created_at = _as_utc(record.created_at)
        return records

    # Status markers

    async def get_marker(self, key: str) -> SystemStatus | None:
        async with self._session_factory() as session:
            result = await session.execute(select(SystemStatus).where(SystemStatus.key == key))
            marker = result.scalar_one_or_none()
        if marker is not None:
            marker.updated_at = _as_utc(marker.updated_at)
        return marker

    async def set_marker(self, key: str, value: str) -> None:
        stmt = self._insert(SystemStatus).values(key=key, value=value, updated_at=_utcnow())
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def list_markers(self) -> list[SystemStatus]:
        async with self._session_factory() as session:
            result = await session.execute(select(SystemStatus).order_by(SystemStatus.key))
            markers = list(result.scalars().all())
        for marker in markers:
            marker.updated_at = _as_utc(marker.updated_at)
        return markers


# ── In-memory backend ─────────────────────────────────────────────────────────


class MemoryStore:
    """Dict-backed store with the same key semantics as ``SqlStore``.

    Not durable; meant for tests and dry runs.
    """

    def __init__(self) -> None:
        self._token: TokenState | None = None
        self._stations: dict[int, Station] = {}
        self._records: dict[tuple[int, str, str], RainfallRecord] = {}
        self._markers: dict[str, SystemStatus] = {}
        self._station_ids = itertools.count(1)
        self._record_ids = itertools.count(1)

    async def get_token_state(self) -> TokenState | None:
        if self._token is None:
            return None
        return _copy_token(self._token)

    async def save_token_state(self, state: TokenState) -> None:
        self._token = _copy_token(state)
        self._token.id = TOKEN_ROW_ID
        if self._token.updated_at is None:
            self._token.updated_at = _utcnow()

    async def list_stations(self) -> list[Station]:
        return sorted(self._stations.values(), key=lambda s: (s.name, s.id))

    async def get_station(self, station_id: int) -> Station | None:
        return self._stations.get(station_id)

    async def save_station(self, station: Station) -> Station:
        for existing in self._stations.values():
            if existing.device_id == station.device_id:
                return existing
        stored = Station(
            id=next(self._station_ids),
            device_id=station.device_id,
            module_id=station.module_id,
            name=station.name,
            location=station.location,
            created_at=_utcnow(),
        )
        self._stations[stored.id] = stored
        return stored

    async def upsert_record(
        self,
        station_id: int,
        period_type: PeriodType | str,
        period_value: str,
        amount_mm: float,
    ) -> RainfallRecord:
        period_type = PeriodType(period_type).value
        key = (station_id, period_type, period_value)
        existing = self._records.get(key)
        record = RainfallRecord(
            id=existing.id if existing is not None else next(self._record_ids),
            station_id=station_id,
            period_type=period_type,
            period_value=period_value,
            amount_mm=amount_mm,
            created_at=_utcnow(),
        )
        self._records[key] = record
        return record

    async def query_records(
        self,
        station_id: int,
        period_type: PeriodType | str,
        period_value: str | None = None,
    ) -> list[RainfallRecord]:
        period_type = PeriodType(period_type).value
        matches = [
            r for (sid, ptype, pvalue), r in self._records.items()
            if sid == station_id
            and ptype == period_type
            and (period_value is None or pvalue == period_value)
        ]
        return sorted(matches, key=lambda r: r.period_value, reverse=True)

    async def get_marker(self, key: str) -> SystemStatus | None:
        return self._markers.get(key)

    async def set_marker(self, key: str, value: str) -> None:
        existing = self._markers.get(key)
        self._markers[key] = SystemStatus(
            id=existing.id if existing is not None else len(self._markers) + 1,
            key=key,
            value=value,
            updated_at=_utcnow(),
        )

    async def list_markers(self) -> list[SystemStatus]:
        return [self._markers[k] for k in sorted(self._markers)]


def _copy_token(state: TokenState) -> TokenState:
    return TokenState(
        id=TOKEN_ROW_ID,
        access_token=state.access_token,
        refresh_token=state.refresh_token,
        expires_at=state.expires_at,
        updated_at=state.updated_at,
    )

"""Rainfall time-series model.

One row per ``(station_id, period_type, period_value)``. Writes are upserts,
so re-fetching a period overwrites the earlier total instead of appending.
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rainfall.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PeriodType(str, enum.Enum):
    MIN_30 = "30min"    # period_value: ISO timestamp of the poll
    HOUR_1 = "1hour"    # period_value: ISO timestamp of the poll
    HOURS_3 = "3hours"  # period_value: ISO timestamp of the poll
    DAY = "day"         # period_value: YYYY-MM-DD
    MONTH = "month"     # period_value: YYYY-MM
    YEAR = "year"       # period_value: YYYY


class RainfallRecord(Base):
    __tablename__ = "rainfall_data"
    __table_args__ = (
        UniqueConstraint("station_id", "period_type", "period_value", name="uq_rainfall_period"),
        Index("ix_rainfall_station_period", "station_id", "period_type", "period_value"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    station_id: Mapped[int] = mapped_column(ForeignKey("stations.id"), nullable=False)
    period_type: Mapped[str] = mapped_column(String(16), nullable=False)
    period_value: Mapped[str] = mapped_column(String(40), nullable=False)
    amount_mm: Mapped[float] = mapped_column(Float, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self) -> str:
        return (
            f"<RainfallRecord station={self.station_id} "
            f"{self.period_type}={self.period_value} {self.amount_mm}mm>"
        )

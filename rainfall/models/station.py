"""Station model: one Netatmo rain gauge module attached to a base station.

Rows are created by station discovery and never mutated afterwards.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rainfall.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Station(Base):
    __tablename__ = "stations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Netatmo base station MAC, e.g. "70:ee:50:00:00:01"
    device_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    # Rain gauge (NAModule3) MAC
    module_id: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    location: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self) -> str:
        return f"<Station {self.id} {self.name!r} device={self.device_id} module={self.module_id}>"

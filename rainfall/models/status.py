"""Named status markers (observability only)."""

import enum
from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rainfall.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusKey(str, enum.Enum):
    LAST_TOKEN_REFRESH = "last_token_refresh"
    LAST_AGGREGATES_CALCULATION = "last_aggregates_calculation"
    LAST_API_SUCCESS = "last_api_success"


class SystemStatus(Base):
    __tablename__ = "system_status"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    value: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self) -> str:
        return f"<SystemStatus {self.key}={self.value}>"

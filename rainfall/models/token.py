"""OAuth2 token state: a singleton row, replaced wholesale on every refresh."""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from rainfall.core.database import Base

TOKEN_ROW_ID = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenState(Base):
    __tablename__ = "tokens"
    __table_args__ = (CheckConstraint(f"id = {TOKEN_ROW_ID}", name="ck_tokens_singleton"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=TOKEN_ROW_ID)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self) -> str:
        return f"<TokenState access={self.access_token[:8]}... expires_at={self.expires_at}>"

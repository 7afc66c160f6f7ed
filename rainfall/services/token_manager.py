"""OAuth2 token lifecycle for the measurement provider.

The manager owns the only copy of the access/refresh pair the process uses;
the store is a write-through mirror so a restart resumes with the last pair.

Freshness states::

    UNINITIALIZED -> VALID -> EXPIRING_SOON -> REFRESHING -> VALID | FAILED

Refresh is single-flight: while one exchange is in progress every other
caller awaits that same exchange. Netatmo invalidates a refresh token as soon
as it is used, so two concurrent exchanges would leave one caller holding a
dead pair.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, TypeVar

from rainfall.core.errors import AuthError, ConfigError, ProviderUnavailable, TokenExpiredSignal
from rainfall.models.status import StatusKey
from rainfall.models.token import TOKEN_ROW_ID, TokenState
from rainfall.services.provider import DEFAULT_TOKEN_TTL_SECONDS, MeasurementProvider
from rainfall.services.store import TimeSeriesStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenPhase(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    REFRESHING = "refreshing"
    FAILED = "failed"


class TokenManager:
    def __init__(
        self,
        store: TimeSeriesStore,
        provider: MeasurementProvider,
        *,
        seed_access_token: str | None = None,
        seed_refresh_token: str | None = None,
        seed_ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
        refresh_margin_seconds: int = 300,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._provider = provider
        self._seed = (seed_access_token, seed_refresh_token)
        self._seed_ttl = timedelta(seconds=seed_ttl_seconds)
        self._margin = timedelta(seconds=refresh_margin_seconds)
        self._clock = clock

        self._state: TokenState | None = None
        self._inflight: asyncio.Task[TokenState] | None = None
        self._failed = False
        # Bumped by manual updates; a refresh begun under an older value is discarded.
        self._generation = 0

    # ── State ─────────────────────────────────────────────────────────────────

    @property
    def phase(self) -> TokenPhase:
        if self._state is None:
            return TokenPhase.UNINITIALIZED
        if self._inflight is not None and not self._inflight.done():
            return TokenPhase.REFRESHING
        if self._failed:
            return TokenPhase.FAILED
        if self._state.expires_at - self._clock() < self._margin:
            return TokenPhase.EXPIRING_SOON
        return TokenPhase.VALID

    async def initialize(self) -> TokenState:
        """Load the pair from the store, or seed it from configuration."""
        stored = await self._store.get_token_state()
        if stored is not None:
            self._state = stored
            logger.info("Tokens loaded from database (expires_at=%s)", stored.expires_at.isoformat())
            return stored

        access, refresh = self._seed
        if not access or not refresh:
            raise ConfigError(
                "No stored tokens and no seed credentials; "
                "set NETATMO_ACCESS_TOKEN and NETATMO_REFRESH_TOKEN"
            )

        now = self._clock()
        seeded = TokenState(
            id=TOKEN_ROW_ID,
            access_token=access,
            refresh_token=refresh,
            expires_at=now + self._seed_ttl,
            updated_at=now,
        )
        await self._store.save_token_state(seeded)
        self._state = seeded
        logger.info("Tokens initialised from environment")
        return seeded

    async def _ensure_initialized(self) -> TokenState:
        if self._state is None:
            return await self.initialize()
        return self._state

    # ── Access ────────────────────────────────────────────────────────────────

    async def get_access_token(self) -> str:
        """Return a usable access token, refreshing first if it expires within the margin."""
        state = await self._ensure_initialized()
        if state.expires_at - self._clock() < self._margin:
            logger.info("Access token expiring soon, refreshing")
            state = await self.refresh()
        return state.access_token

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Invoke ``func(access_token, *args, **kwargs)`` with one retry on token expiry.

        A ``TokenExpiredSignal`` forces a single refresh followed by a single
        retry; a second signal propagates to the caller.
        """
        token = await self.get_access_token()
        try:
            return await func(token, *args, **kwargs)
        except TokenExpiredSignal:
            logger.info("Provider reported an expired token, refreshing and retrying once")
            # Another caller may already have rotated the pair.
            if self._state is None or self._state.access_token == token:
                await self.refresh()
            return await func(self._state.access_token, *args, **kwargs)

    # ── Refresh ───────────────────────────────────────────────────────────────

    async def refresh(self) -> TokenState:
        """Exchange the refresh token; concurrent callers share one exchange.

        Raises:
            AuthError: the provider rejected or could not serve the exchange.
                Every waiter receives the same error and the previous pair is kept.
        """
        task = self._inflight
        if task is None or task.done():
            task = asyncio.ensure_future(self._do_refresh(self._generation))
            task.add_done_callback(self._clear_inflight)
            self._inflight = task
        # Shielded: a waiter that goes away must not cancel everyone's refresh.
        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Task[TokenState]) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # Mark the exception retrieved even if every waiter was cancelled.
            task.exception()

    async def _do_refresh(self, generation: int) -> TokenState:
        current = await self._ensure_initialized()
        logger.info("Refreshing tokens")
        try:
            grant = await self._provider.exchange_refresh_token(current.refresh_token)
        except AuthError:
            self._failed = True
            logger.error("Token refresh rejected by provider")
            raise
        except ProviderUnavailable as exc:
            self._failed = True
            logger.error("Token refresh failed: %s", exc)
            raise AuthError(f"Token refresh failed: {exc}") from exc

        if generation != self._generation:
            logger.warning("Tokens were replaced manually during refresh, discarding exchanged pair")
            return self._state

        now = self._clock()
        refreshed = TokenState(
            id=TOKEN_ROW_ID,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=now + timedelta(seconds=grant.expires_in),
            updated_at=now,
        )
        # Persist first: memory only moves forward once the new pair is durable.
        await self._store.save_token_state(refreshed)
        self._state = refreshed
        self._failed = False

        await self._store.set_marker(StatusKey.LAST_TOKEN_REFRESH.value, now.isoformat())
        logger.info("Tokens refreshed (expires_at=%s)", refreshed.expires_at.isoformat())
        return refreshed

    async def update_tokens(self, access_token: str, refresh_token: str) -> TokenState:
        """Replace the pair manually (admin flow), assuming a fresh default lifetime."""
        self._generation += 1
        # Let a refresh that is already persisting finish before overwriting it.
        while self._inflight is not None and not self._inflight.done():
            await asyncio.wait([self._inflight])

        now = self._clock()
        state = TokenState(
            id=TOKEN_ROW_ID,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=now + self._seed_ttl,
            updated_at=now,
        )
        await self._store.save_token_state(state)
        # Also discards a refresh begun from the old pair while the save ran.
        self._generation += 1
        self._state = state
        self._failed = False
        await self._store.set_marker(StatusKey.LAST_TOKEN_REFRESH.value, now.isoformat())
        logger.info("Tokens updated manually")
        return state

    # ── Status ────────────────────────────────────────────────────────────────

    def get_status(self) -> dict[str, Any]:
        """Derived view of the token; never triggers a refresh."""
        if self._state is None:
            return {"initialized": False, "state": TokenPhase.UNINITIALIZED.value}

        expires_in = int((self._state.expires_at - self._clock()).total_seconds())
        return {
            "initialized": True,
            "state": self.phase.value,
            "expires_at": self._state.expires_at.isoformat(),
            "expires_in_seconds": expires_in,
            "is_expired": expires_in <= 0,
            "updated_at": self._state.updated_at.isoformat() if self._state.updated_at else None,
        }

"""Rainfall tracker: Netatmo rain gauge history and live readings.

Polls the Netatmo Weather API for every registered rain gauge, keeps daily,
monthly and yearly totals in SQL, and serves current readings that fall back
to cached values whenever Netatmo is unreachable.

Background jobs (token refresh, hourly update, daily aggregation) run as
asyncio tasks started and stopped by the application lifespan.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rainfall.api.admin.routes import router as admin_router
from rainfall.api.routes import router as api_router
from rainfall.core.config import settings
from rainfall.core.database import close_db, create_engine, init_db
from rainfall.core.errors import register_error_handlers
from rainfall.core.middleware import RequestLoggingMiddleware
from rainfall.services.aggregation import AggregationEngine
from rainfall.services.fetcher import FallbackFetcher
from rainfall.services.netatmo_client import NetatmoClient
from rainfall.services.rainfall_service import RainfallService
from rainfall.services.scheduler import Scheduler
from rainfall.services.store import SqlStore
from rainfall.services.token_manager import TokenManager

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)

logger = logging.getLogger(__name__)


DESCRIPTION = """\
Rainfall history and live readings for **Netatmo rain gauges**.

---

### Endpoints

| Endpoint | Description |
|----------|-------------|
| `GET /api/stations` | Registered rain gauges (discovered on first call) |
| `GET /api/rainfall/current/{station_id}` | Last 30 min, 1 h, 3 h and today; cached values when Netatmo is down |
| `GET /api/rainfall/historical` | Monthly and yearly totals per station |
| `GET /api/system/status` | Token state and last job timestamps |
| `GET /admin/status` | Token and status markers (HTTP Basic) |
| `POST /admin/tokens` | Replace the Netatmo token pair (HTTP Basic) |
"""


TAGS_METADATA = [
    {"name": "stations", "description": "Rain gauge discovery and listing."},
    {"name": "rainfall", "description": "Current and historical rainfall."},
    {"name": "system", "description": "Token and background job status."},
    {"name": "admin", "description": "Operator endpoints. Requires HTTP Basic credentials."},
    {"name": "ops", "description": "Health checks."},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = create_engine(settings.database_url, echo=settings.database_echo)
    await init_db(engine)

    store = SqlStore(engine)
    provider = NetatmoClient()
    token_manager = TokenManager(
        store,
        provider,
        seed_access_token=settings.netatmo_access_token,
        seed_refresh_token=settings.netatmo_refresh_token,
        seed_ttl_seconds=settings.token_default_ttl_seconds,
        refresh_margin_seconds=settings.token_refresh_margin_seconds,
    )
    await token_manager.initialize()

    fetcher = FallbackFetcher(store, provider, token_manager)
    aggregation = AggregationEngine(store)
    app.state.service = RainfallService(store, provider, token_manager, fetcher)

    scheduler = Scheduler(
        store,
        token_manager,
        fetcher,
        aggregation,
        token_refresh_minutes=settings.token_refresh_interval_minutes,
        daily_hour=settings.daily_job_hour_utc,
    )
    if settings.scheduler_enabled:
        logger.info("Starting background jobs")
        scheduler.start()

    yield

    await scheduler.stop()
    app.state.service = None
    await close_db(engine)


app = FastAPI(
    title="Rainfall Tracker",
    version="1.0.0",
    description=DESCRIPTION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=TAGS_METADATA,
    lifespan=lifespan,
)

register_error_handlers(app)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)
app.include_router(admin_router)

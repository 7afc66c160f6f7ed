"""Application configuration loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Storage (SQLite by default, any SQLAlchemy async URL works)
    database_url: str = "sqlite+aiosqlite:///./rainfall.sqlite"
    database_echo: bool = False

    # Netatmo API
    netatmo_base_url: str = "https://api.netatmo.com"
    netatmo_client_id: str = ""
    netatmo_client_secret: str = ""
    netatmo_request_timeout: float = 15.0

    # Seed credentials used when no token row exists yet
    netatmo_access_token: str | None = None
    netatmo_refresh_token: str | None = None

    # Token lifecycle
    token_default_ttl_seconds: int = 10800  # Netatmo access tokens live ~3h
    token_refresh_margin_seconds: int = 300

    # Scheduler
    scheduler_enabled: bool = True
    token_refresh_interval_minutes: int = 150
    daily_job_hour_utc: int = 1

    # Historical backfill
    backfill_years: int = 5
    backfill_delay_ms: int = 200

    # Admin panel (HTTP Basic)
    admin_username: str = "admin"
    admin_password: str = "admin"

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()

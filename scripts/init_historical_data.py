#!/usr/bin/env python3
"""Import historical daily rainfall for every station, then build aggregates.

Usage:
    python scripts/init_historical_data.py               # last 5 years
    python scripts/init_historical_data.py --years 2
    python scripts/init_historical_data.py --days 30 --delay-ms 500

This script:
1. Loads (or seeds) the Netatmo token pair and discovers stations if none exist.
2. Fetches one daily total per station per day, from N years ago up to
   yesterday, skipping days that are already stored.
3. Computes missing monthly and yearly totals.

Safe to re-run: an interrupted import resumes where it stopped.
"""

import argparse
import asyncio
import logging
import sys
from datetime import date, datetime, timedelta, timezone

from rainfall.core.config import settings
from rainfall.core.database import close_db, create_engine, init_db
from rainfall.core.errors import RainfallError
from rainfall.services.aggregation import AggregationEngine
from rainfall.services.backfill import HistoricalBackfill
from rainfall.services.fetcher import FallbackFetcher
from rainfall.services.netatmo_client import NetatmoClient
from rainfall.services.rainfall_service import RainfallService
from rainfall.services.store import SqlStore
from rainfall.services.token_manager import TokenManager

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)


def years_before(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return day.replace(year=day.year - years, day=28)


async def run(years: int, days: int | None, delay_ms: int) -> int:
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
    fetcher = FallbackFetcher(store, provider, token_manager)
    service = RainfallService(store, provider, token_manager, fetcher)
    backfill = HistoricalBackfill(
        store, fetcher, AggregationEngine(store), delay_seconds=delay_ms / 1000
    )

    end = datetime.now(timezone.utc).date() - timedelta(days=1)
    start = end - timedelta(days=days - 1) if days else years_before(end, years)

    try:
        await token_manager.initialize()
        stations = await service.list_stations()
        if not stations:
            print("No rain gauges found on this Netatmo account.")
            return 1

        print(f"Importing {start.isoformat()} .. {end.isoformat()} for {len(stations)} station(s)\n")
        report = await backfill.run(stations, start, end)
    except RainfallError as exc:
        print(f"\nERROR: {exc}")
        print("Re-run the script to resume; days already stored are skipped.")
        return 1
    finally:
        await close_db(engine)

    print("\nSummary:")
    for station, stats in zip(stations, report.stations):
        print(
            f"  {station.name}: {stats.processed} days processed, {stats.skipped} skipped, "
            f"{stats.new_records} new; {stats.months_added} month(s) and "
            f"{stats.years_added} year(s) aggregated"
        )
    print("\nDone.")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Import historical Netatmo rainfall data")
    parser.add_argument(
        "--years", type=int, default=settings.backfill_years,
        help="How many years back from yesterday to import",
    )
    parser.add_argument(
        "--days", type=int, default=None,
        help="Import only the last N days instead of --years",
    )
    parser.add_argument(
        "--delay-ms", type=int, default=settings.backfill_delay_ms,
        help="Pause between provider calls (rate limiting)",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args.years, args.days, args.delay_ms)))


if __name__ == "__main__":
    main()

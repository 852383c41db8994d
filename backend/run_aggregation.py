#!/usr/bin/env python3
"""
Daily analytics aggregation job.

Usage:
    python run_aggregation.py                      # aggregate today (UTC)
    python run_aggregation.py --date 2024-01-15    # aggregate one date
    python run_aggregation.py --backfill 7         # the last 7 dates, oldest first
    python run_aggregation.py --refresh-trending   # also recompute trending counters

Exits with status 1 when an aggregation fails.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from core.config import settings
from core.exceptions import AggregationError, ValidationError
from db.base import initialize_database
from db.session import Database
from services.aggregation_service import DailyAggregator, run_daily_aggregation
from services.popular_url_service import PopularUrlIndex
from utils.dates import format_day, parse_day

logging.basicConfig(level=logging.INFO, format="%(levelname)s - %(asctime)s - %(name)s - %(message)s")
logger = logging.getLogger("aggregation")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Aggregate raw analytics events into daily rows")
    parser.add_argument("--date", help="UTC date to aggregate (YYYY-MM-DD), defaults to today")
    parser.add_argument("--backfill", type=int, metavar="N", help="aggregate the N dates ending at --date")
    parser.add_argument("--refresh-trending", action="store_true", help="recompute popular URL trending counters")
    return parser


async def run(args: argparse.Namespace, database: Database) -> List[str]:
    await initialize_database(database)
    target = parse_day(args.date)
    popular_urls = PopularUrlIndex(database, retries=settings.POPULAR_URL_UPSERT_RETRIES)

    if args.backfill is not None:
        done = await DailyAggregator(database).backfill(args.backfill, target)
        if args.refresh_trending:
            await popular_urls.refresh_trending_counts(target)
        return done

    await run_daily_aggregation(
        database,
        target,
        refresh_trending=True if args.refresh_trending else None,
        popular_urls=popular_urls,
    )
    return [format_day(target)]


async def _main(args: argparse.Namespace) -> int:
    database = Database.from_settings(settings)
    try:
        done = await run(args, database)
    except AggregationError as e:
        logger.error(f"Aggregation failed for {e.date}: {e}")
        return 1
    except ValidationError as e:
        logger.error(str(e))
        return 2
    finally:
        await database.dispose()
    logger.info(f"Aggregated {len(done)} day(s): {', '.join(done)}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(_main(args))


if __name__ == "__main__":
    sys.exit(main())

"""Daily rollup of raw analytics events.

``compute_aggregate`` is the single definition of the per-slice statistics;
both the scheduled aggregator and the dashboard's raw-event fallback use it.
"""
from collections import Counter
from datetime import date, timedelta
from typing import Any, Iterable, List, Optional, Sequence, Union
import logging
import math

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from config import config
from core.exceptions import AggregationError, AnalyticsError, ValidationError
from db.models.analytics_event import AnalyticsEvent
from db.models.daily_analytics import DailyAnalytics
from db.session import Database
from schemas.analytics_schema import CityCount, CountryCount, DailyAggregateFields, EventType
from services.popular_url_service import PopularUrlIndex
from utils.dates import day_bounds, format_day, parse_day, today_utc, utcnow
from utils.timing import timeit

logger = logging.getLogger(__name__)

TOP_LOCATIONS_LIMIT = 10
UNKNOWN_TOOL = "unknown"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def empty_tool_usage(known_tools: Optional[Iterable[str]] = None) -> dict:
    tools = config.get_known_tools() if known_tools is None else known_tools
    return {tool: 0 for tool in tools}


def compute_aggregate(events: Sequence[Any], known_tools: Optional[Iterable[str]] = None) -> DailyAggregateFields:
    """Statistics for one slice of events (typically one UTC day)."""
    tool_events = [e for e in events if e.event_type == EventType.TOOL_USAGE.value]

    tool_usage = empty_tool_usage(known_tools)
    for e in tool_events:
        tool = e.tool_type or UNKNOWN_TOOL
        tool_usage[tool] = tool_usage.get(tool, 0) + 1

    # Counter.most_common keeps first-appearance order among equal counts
    countries = Counter(e.country for e in events if e.country)
    cities = Counter(e.city for e in events if e.city)

    response_times = [e.response_time for e in events if e.response_time is not None]
    avg_response_time = round_half_up(sum(response_times) / len(response_times)) if response_times else 0

    successful_analyses = sum(1 for e in tool_events if e.success is not False)
    success_rate = round_half_up(100.0 * successful_analyses / len(tool_events)) if tool_events else 100

    return DailyAggregateFields(
        total_events=len(events),
        total_analyses=len(tool_events),
        unique_users=len({e.session_id for e in events if e.session_id}),
        unique_ips=len({e.ip_address for e in events if e.ip_address}),
        tool_usage=tool_usage,
        top_countries=[CountryCount(country=c, count=n) for c, n in countries.most_common(TOP_LOCATIONS_LIMIT)],
        top_cities=[CityCount(city=c, count=n) for c, n in cities.most_common(TOP_LOCATIONS_LIMIT)],
        avg_response_time=avg_response_time,
        success_rate=success_rate,
        error_count=sum(1 for e in events if e.success is False),
    )


def _apply_fields(row: DailyAnalytics, fields: DailyAggregateFields) -> None:
    data = fields.model_dump()
    for key, value in data.items():
        setattr(row, key, value)
    row.updated_at = utcnow()


class DailyAggregator:
    """Builds the one ``daily_analytics`` row per UTC date from raw events."""

    def __init__(self, database: Database, known_tools: Optional[List[str]] = None):
        self.database = database
        self.known_tools = known_tools

    @timeit("aggregate_daily_analytics", slow_ms=5000)
    async def aggregate(self, day: Optional[Union[str, date]] = None) -> DailyAggregateFields:
        target = parse_day(day)
        day_key = format_day(target)
        start, end = day_bounds(target)
        logger.info(f"Aggregating analytics for {day_key}")

        try:
            async with self.database.session() as db:
                events = (await db.execute(
                    select(AnalyticsEvent)
                    .where(AnalyticsEvent.created_at >= start, AnalyticsEvent.created_at < end)
                    .order_by(AnalyticsEvent.created_at, AnalyticsEvent.id)
                )).scalars().all()
                fields = compute_aggregate(events, self.known_tools)
                await self._replace_row(db, day_key, fields)
        except AggregationError:
            raise
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Daily aggregation failed for {day_key}: {e}")
            raise AggregationError(day_key, f"Daily aggregation failed for {day_key}: {e}") from e

        logger.info(
            f"Aggregated {fields.total_events} events for {day_key}: "
            f"{fields.total_analyses} analyses, {fields.unique_users} users"
        )
        return fields

    async def _replace_row(self, db, day_key: str, fields: DailyAggregateFields) -> None:
        """Update the row for ``day_key`` in place, or insert it."""
        row = (await db.execute(select(DailyAnalytics).where(DailyAnalytics.date == day_key))).scalar_one_or_none()
        if row is None:
            row = DailyAnalytics(date=day_key)
            _apply_fields(row, fields)
            db.add(row)
        else:
            _apply_fields(row, fields)
        try:
            await db.commit()
            return
        except IntegrityError:
            # A concurrent run inserted this date first; replace its values
            await db.rollback()
            logger.info(f"daily_analytics row for {day_key} created concurrently; updating instead")

        row = (await db.execute(select(DailyAnalytics).where(DailyAnalytics.date == day_key))).scalar_one_or_none()
        if row is None:
            raise AggregationError(day_key, f"daily_analytics row for {day_key} vanished during replace")
        _apply_fields(row, fields)
        await db.commit()

    async def get_row(self, day: Union[str, date]) -> Optional[DailyAnalytics]:
        day_key = format_day(parse_day(day))
        async with self.database.session() as db:
            return (await db.execute(select(DailyAnalytics).where(DailyAnalytics.date == day_key))).scalar_one_or_none()

    async def count_rows(self) -> int:
        async with self.database.session() as db:
            return int((await db.execute(select(func.count(DailyAnalytics.id)))).scalar() or 0)

    async def recent_rows(self, limit: int = 5) -> List[DailyAnalytics]:
        async with self.database.session() as db:
            stmt = select(DailyAnalytics).order_by(DailyAnalytics.date.desc()).limit(limit)
            return list((await db.execute(stmt)).scalars().all())

    async def backfill(self, days: int, end: Optional[Union[str, date]] = None) -> List[str]:
        """Aggregate the ``days`` dates ending at ``end`` (oldest first)."""
        if isinstance(days, bool) or not isinstance(days, int) or days < 1:
            raise ValidationError("days must be a positive integer")
        last = parse_day(end)
        done = []
        for offset in range(days - 1, -1, -1):
            target = last - timedelta(days=offset)
            await self.aggregate(target)
            done.append(format_day(target))
        return done


async def run_daily_aggregation(
    database: Database,
    day: Optional[Union[str, date]] = None,
    refresh_trending: Optional[bool] = None,
    known_tools: Optional[List[str]] = None,
    popular_urls: Optional[PopularUrlIndex] = None,
) -> DailyAggregateFields:
    """Scheduler entry point: aggregate ``day`` (default today) and, for today, refresh trending counters."""
    target = parse_day(day)
    fields = await DailyAggregator(database, known_tools).aggregate(target)

    if refresh_trending is None:
        refresh_trending = target == today_utc()
    if refresh_trending:
        index = popular_urls or PopularUrlIndex(database)
        try:
            await index.refresh_trending_counts(target)
        except AnalyticsError as e:
            # The aggregate row is already committed
            logger.warning(f"Trending refresh after aggregating {format_day(target)} failed: {e}")
    return fields

"""Dashboard summary over a window of UTC days.

Reads ``daily_analytics`` when it exists and has rows for the window;
otherwise recomputes the same figures from raw events (the fallback path),
and if that fails too returns an empty, well-formed summary.
"""
from typing import Any, Awaitable, Dict, List, Optional
import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from config import config
from core.exceptions import ValidationError
from db.models.analytics_event import AnalyticsEvent
from db.models.daily_analytics import DailyAnalytics
from db.session import Database
from schemas.analytics_schema import DailyStat, DashboardSummary, TopDomain
from services.aggregation_service import compute_aggregate, empty_tool_usage, round_half_up
from services.popular_url_service import PopularUrlIndex
from utils.dates import day_bounds, format_day, window_dates

logger = logging.getLogger(__name__)

# Treated as "aggregates unavailable" rather than surfaced to the caller
READ_FAILURES = (asyncio.TimeoutError, SQLAlchemyError, OSError)
# Stored rows whose JSON columns or counters do not fit the summary schema
MALFORMED_ROW = (ValueError, TypeError)


class DashboardService:
    def __init__(
        self,
        database: Database,
        *,
        known_tools: Optional[List[str]] = None,
        table_check_timeout: float = 10.0,
        query_timeout: float = 15.0,
        top_domains_limit: int = 10,
        max_days: int = 365,
        popular_urls: Optional[PopularUrlIndex] = None,
    ):
        self.database = database
        self.known_tools = known_tools if known_tools is not None else config.get_known_tools()
        self.table_check_timeout = table_check_timeout
        self.query_timeout = query_timeout
        self.top_domains_limit = top_domains_limit
        self.max_days = max_days
        self.popular_urls = popular_urls or PopularUrlIndex(database)

    @classmethod
    def from_settings(cls, database: Database, settings) -> "DashboardService":
        return cls(
            database,
            table_check_timeout=float(settings.ANALYTICS_TABLE_CHECK_TIMEOUT),
            query_timeout=float(settings.ANALYTICS_QUERY_TIMEOUT),
            top_domains_limit=int(settings.ANALYTICS_TOP_DOMAINS_LIMIT),
            max_days=int(settings.ANALYTICS_MAX_DAYS),
        )

    def validate_days(self, days: Any) -> int:
        if isinstance(days, bool) or not isinstance(days, int):
            raise ValidationError("days must be an integer")
        if days < 1 or days > self.max_days:
            raise ValidationError(f"Days parameter must be between 1 and {self.max_days}")
        return days

    async def _with_timeout(self, awaitable: Awaitable, seconds: float):
        return await asyncio.wait_for(awaitable, timeout=seconds)

    async def get_dashboard_stats(self, days: int = 30) -> DashboardSummary:
        days = self.validate_days(days)
        dates = window_dates(days)

        try:
            exists = await self._with_timeout(self.database.has_table(DailyAnalytics.__tablename__), self.table_check_timeout)
            if not exists:
                logger.warning("daily_analytics table does not exist, using realtime data fallback")
                return await self._fallback_or_empty(days, dates)
            rows = await self._with_timeout(self._load_daily_rows(dates), self.query_timeout)
        except READ_FAILURES as e:
            logger.warning(f"Error querying daily_analytics, falling back to realtime data: {e!r}")
            return await self._fallback_or_empty(days, dates)

        if not rows:
            logger.info(f"No daily stats between {format_day(dates[0])} and {format_day(dates[-1])}, using realtime data fallback")
            return await self._fallback_or_empty(days, dates)

        try:
            return await self._summary_from_aggregates(days, dates, rows)
        except MALFORMED_ROW as e:
            logger.warning(f"Malformed daily_analytics row, falling back to realtime data: {e!r}")
            return await self._fallback_or_empty(days, dates)

    async def _load_daily_rows(self, dates) -> List[DailyAnalytics]:
        stmt = (
            select(DailyAnalytics)
            .where(
                DailyAnalytics.date >= format_day(dates[0]),
                DailyAnalytics.date <= format_day(dates[-1]),
            )
            .order_by(DailyAnalytics.date)
        )
        async with self.database.session() as db:
            return list((await db.execute(stmt)).scalars().all())

    async def _load_events(self, dates) -> List[AnalyticsEvent]:
        start, _ = day_bounds(dates[0])
        _, end = day_bounds(dates[-1])
        stmt = (
            select(AnalyticsEvent)
            .where(AnalyticsEvent.created_at >= start, AnalyticsEvent.created_at < end)
            .order_by(AnalyticsEvent.created_at, AnalyticsEvent.id)
        )
        async with self.database.session() as db:
            return list((await db.execute(stmt)).scalars().all())

    async def _load_top_domains(self) -> List[TopDomain]:
        try:
            rows = await self._with_timeout(self.popular_urls.top_urls(self.top_domains_limit), self.query_timeout)
        except READ_FAILURES as e:
            logger.warning(f"Error querying popular_urls: {e!r}")
            return []
        return [TopDomain.model_validate(row) for row in rows]

    async def _summary_from_aggregates(self, days: int, dates, rows: List[DailyAnalytics]) -> DashboardSummary:
        tool_stats = empty_tool_usage(self.known_tools)
        daily_stats = []
        for row in rows:
            usage = row.tool_usage or {}
            for tool, count in usage.items():
                tool_stats[tool] = tool_stats.get(tool, 0) + int(count or 0)
            daily_stats.append(DailyStat(
                date=row.date,
                total_events=row.total_events or 0,
                total_analyses=row.total_analyses or 0,
                unique_users=row.unique_users or 0,
                unique_ips=row.unique_ips or 0,
                tool_usage={**empty_tool_usage(self.known_tools), **usage},
                top_countries=row.top_countries or [],
                top_cities=row.top_cities or [],
                avg_response_time=row.avg_response_time or 0,
                success_rate=row.success_rate if row.success_rate is not None else 100,
                error_count=row.error_count or 0,
            ))

        # Mean of per-day means, not weighted by volume
        avg_response_time = round_half_up(sum(d.avg_response_time for d in daily_stats) / len(daily_stats))

        return DashboardSummary(
            days=days,
            start_date=format_day(dates[0]),
            end_date=format_day(dates[-1]),
            total_analyses=sum(d.total_analyses for d in daily_stats),
            total_users=sum(d.unique_users for d in daily_stats),
            avg_response_time=avg_response_time,
            daily_stats=daily_stats,
            tool_stats=tool_stats,
            top_domains=await self._load_top_domains(),
        )

    async def _fallback_or_empty(self, days: int, dates) -> DashboardSummary:
        try:
            return await self.get_dashboard_stats_from_realtime(days, dates)
        except READ_FAILURES as e:
            logger.error(f"Realtime fallback failed: {e!r}")
            return self.empty_summary(days, dates)

    async def get_dashboard_stats_from_realtime(self, days: int, dates=None) -> DashboardSummary:
        """Recompute the summary from raw events; ``top_domains`` stays empty."""
        dates = dates or window_dates(self.validate_days(days))
        logger.info(f"Using realtime data fallback for {days} days")
        events = await self._with_timeout(self._load_events(dates), self.query_timeout)

        by_day: Dict[str, List[AnalyticsEvent]] = {format_day(d): [] for d in dates}
        for event in events:
            key = format_day(event.created_at.date())
            if key in by_day:
                by_day[key].append(event)

        totals = compute_aggregate(events, self.known_tools)
        daily_stats = [
            DailyStat(date=key, **compute_aggregate(day_events, self.known_tools).model_dump())
            for key, day_events in by_day.items()
        ]

        return DashboardSummary(
            days=days,
            start_date=format_day(dates[0]),
            end_date=format_day(dates[-1]),
            total_analyses=totals.total_analyses,
            total_users=totals.unique_users,
            avg_response_time=totals.avg_response_time,
            daily_stats=daily_stats,
            tool_stats=totals.tool_usage,
            top_domains=[],
            is_realtime_fallback=True,
        )

    def empty_summary(self, days: int, dates=None) -> DashboardSummary:
        dates = dates or window_dates(days)
        return DashboardSummary(
            days=days,
            start_date=format_day(dates[0]),
            end_date=format_day(dates[-1]),
            tool_stats=empty_tool_usage(self.known_tools),
            is_empty_fallback=True,
        )

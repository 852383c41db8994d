"""
Tests for the dashboard summary and its degraded paths.
"""
import asyncio
import pytest
from datetime import timedelta

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import ValidationError
from db.models.daily_analytics import DailyAnalytics
from services.aggregation_service import DailyAggregator
from services.dashboard_service import DashboardService
from utils.dates import format_day, today_utc

COMPARED_FIELDS = (
    "total_events", "total_analyses", "unique_users", "unique_ips", "tool_usage",
    "top_countries", "top_cities", "avg_response_time", "success_rate", "error_count",
)


@pytest.fixture
def service(database, popular_urls) -> DashboardService:
    return DashboardService(database, popular_urls=popular_urls, table_check_timeout=2.0, query_timeout=5.0)


@pytest.fixture
async def two_days_of_events(add_events, popular_urls, today_start):
    yesterday = today_start - timedelta(days=1)
    await popular_urls.upsert("https://example.com", "meta-tags")
    await add_events([
        {"session_id": "a", "tool_type": "meta-tags", "response_time": 100, "country": "US", "created_at": yesterday + timedelta(hours=1)},
        {"session_id": "b", "tool_type": "opengraph", "response_time": 300, "country": "US", "created_at": yesterday + timedelta(hours=2)},
        {"session_id": "b", "event_type": "page_view", "tool_type": "opengraph", "created_at": yesterday + timedelta(hours=3)},
        {"session_id": "a", "tool_type": "meta-tags", "response_time": 50, "success": False, "created_at": today_start + timedelta(minutes=30)},
        {"session_id": "c", "tool_type": "serp-checker", "response_time": 150, "country": "DE", "created_at": today_start + timedelta(hours=1)},
    ])
    return [today_utc() - timedelta(days=1), today_utc()]


async def _aggregate(database, dates):
    aggregator = DailyAggregator(database)
    for day in dates:
        await aggregator.aggregate(day)


@pytest.mark.integration
class TestAggregatePath:
    async def test_summary_from_daily_rows(self, database, service, two_days_of_events):
        await _aggregate(database, two_days_of_events)

        summary = await service.get_dashboard_stats(7)

        assert summary.is_realtime_fallback is False
        assert summary.is_empty_fallback is False
        assert summary.days == 7
        assert summary.end_date == format_day(today_utc())
        assert summary.start_date == format_day(today_utc() - timedelta(days=6))
        assert [d.date for d in summary.daily_stats] == [format_day(d) for d in two_days_of_events]
        assert summary.total_analyses == 4
        # yesterday {a, b} + today {a, c}
        assert summary.total_users == 4
        # mean of the per-day means (200, 100)
        assert summary.avg_response_time == 150
        assert summary.tool_stats["meta-tags"] == 2
        assert summary.tool_stats["opengraph"] == 1
        assert summary.tool_stats["serp-checker"] == 1
        assert sum(summary.tool_stats.values()) == summary.total_analyses
        assert [d.domain for d in summary.top_domains] == ["example.com"]

    async def test_rows_outside_window_are_ignored(self, database, service, add_events, today_start):
        await add_events([{"created_at": today_start - timedelta(days=10)}])
        await _aggregate(database, [today_utc() - timedelta(days=10), today_utc()])

        summary = await service.get_dashboard_stats(3)

        assert [d.date for d in summary.daily_stats] == [format_day(today_utc())]
        assert summary.total_analyses == 0

    async def test_top_domains_failure_gives_empty_list(self, database, service, two_days_of_events, monkeypatch):
        await _aggregate(database, two_days_of_events)

        async def broken(limit=10):
            raise SQLAlchemyError("popular_urls unavailable")

        monkeypatch.setattr(service.popular_urls, "top_urls", broken)
        summary = await service.get_dashboard_stats(7)

        assert summary.is_realtime_fallback is False
        assert summary.top_domains == []
        assert summary.total_analyses == 4


@pytest.mark.integration
class TestRealtimeFallback:
    async def test_no_daily_rows_uses_raw_events(self, service, two_days_of_events):
        summary = await service.get_dashboard_stats(7)

        assert summary.is_realtime_fallback is True
        assert summary.top_domains == []
        assert len(summary.daily_stats) == 7
        expected_dates = [format_day(today_utc() - timedelta(days=d)) for d in range(6, -1, -1)]
        assert [d.date for d in summary.daily_stats] == expected_dates
        assert summary.total_analyses == 4
        assert summary.total_users == 3
        assert summary.tool_stats["meta-tags"] == 2
        # plain mean over the window (100, 300, 50, 150)
        assert summary.avg_response_time == 150

    async def test_single_day_window(self, service):
        summary = await service.get_dashboard_stats(1)

        assert summary.is_realtime_fallback is True
        assert [d.date for d in summary.daily_stats] == [format_day(today_utc())]
        assert summary.daily_stats[0].success_rate == 100

    async def test_per_day_stats_match_aggregates(self, database, service, two_days_of_events):
        fallback = await service.get_dashboard_stats(2)
        await _aggregate(database, two_days_of_events)
        aggregated = await service.get_dashboard_stats(2)

        assert fallback.is_realtime_fallback is True
        assert aggregated.is_realtime_fallback is False
        by_date = {d.date: d for d in fallback.daily_stats}
        for day in aggregated.daily_stats:
            for field in COMPARED_FIELDS:
                assert getattr(day, field) == getattr(by_date[day.date], field), field
        assert aggregated.total_analyses == fallback.total_analyses
        assert aggregated.tool_stats == fallback.tool_stats

    async def test_missing_table_uses_fallback(self, service, two_days_of_events, monkeypatch):
        async def no_table(name):
            return False

        monkeypatch.setattr(service.database, "has_table", no_table)
        summary = await service.get_dashboard_stats(3)

        assert summary.is_realtime_fallback is True
        assert summary.total_analyses == 4

    async def test_slow_table_check_times_out_to_fallback(self, database, service, two_days_of_events, monkeypatch):
        await _aggregate(database, two_days_of_events)

        async def slow_probe(name):
            await asyncio.sleep(1)
            return True

        monkeypatch.setattr(service.database, "has_table", slow_probe)
        service.table_check_timeout = 0.05
        summary = await service.get_dashboard_stats(3)

        assert summary.is_realtime_fallback is True
        assert len(summary.daily_stats) == 3

    async def test_daily_query_error_uses_fallback(self, database, service, two_days_of_events, monkeypatch):
        await _aggregate(database, two_days_of_events)

        async def broken(dates):
            raise SQLAlchemyError("daily_analytics unreadable")

        monkeypatch.setattr(service, "_load_daily_rows", broken)
        summary = await service.get_dashboard_stats(3)

        assert summary.is_realtime_fallback is True
        assert summary.total_analyses == 4

    async def test_malformed_daily_row_uses_fallback(self, database, service, two_days_of_events):
        await _aggregate(database, two_days_of_events)
        async with database.session() as db:
            await db.execute(
                update(DailyAnalytics)
                .where(DailyAnalytics.date == format_day(today_utc()))
                .values(top_countries="not-a-list")
            )
            await db.commit()

        summary = await service.get_dashboard_stats(3)

        assert summary.is_realtime_fallback is True
        assert summary.total_analyses == 4
        assert summary.daily_stats[-1].top_countries[0].country == "DE"


@pytest.mark.integration
class TestEmptyFallback:
    async def test_both_paths_failing(self, service, monkeypatch):
        async def broken_probe(name):
            raise SQLAlchemyError("store unreachable")

        async def broken_events(dates):
            raise OSError("connection reset")

        monkeypatch.setattr(service.database, "has_table", broken_probe)
        monkeypatch.setattr(service, "_load_events", broken_events)
        summary = await service.get_dashboard_stats(5)

        assert summary.is_empty_fallback is True
        assert summary.is_realtime_fallback is False
        assert summary.daily_stats == []
        assert summary.top_domains == []
        assert summary.total_analyses == 0
        assert summary.tool_stats["meta-tags"] == 0
        assert summary.end_date == format_day(today_utc())


@pytest.mark.unit
class TestDaysValidation:
    @pytest.mark.parametrize("days", [0, -5, 366, True, "7", 7.0, None])
    async def test_rejected(self, service, days):
        with pytest.raises(ValidationError):
            await service.get_dashboard_stats(days)

    @pytest.mark.parametrize("days", [1, 365])
    async def test_bounds_accepted(self, service, days):
        summary = await service.get_dashboard_stats(days)

        assert len(summary.daily_stats) == days

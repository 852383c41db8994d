"""
Tests for URL normalization and the popular-URL index.
"""
import asyncio
import pytest
from datetime import timedelta

from core.exceptions import PersistenceError, ValidationError
from schemas.analytics_schema import AnalyticsEventCreate, EventType
from services.popular_url_service import hash_url, normalize_url, url_domain
from utils.dates import today_utc


@pytest.mark.unit
class TestNormalizeUrl:
    @pytest.mark.parametrize("raw, expected", [
        ("HTTP://Example.COM:80/Path/?q=1#frag", "http://example.com/Path?q=1"),
        ("example.com", "http://example.com"),
        ("https://example.com:443/", "https://example.com"),
        ("https://example.com:8443/a/", "https://example.com:8443/a"),
        ("  https://example.com/a?b=2&a=1  ", "https://example.com/a?b=2&a=1"),
        ("http://[::1]:8080/x", "http://[::1]:8080/x"),
    ])
    def test_canonical_form(self, raw, expected):
        assert normalize_url(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", "http://", "https://:80/path"])
    def test_invalid_urls(self, raw):
        with pytest.raises(ValidationError):
            normalize_url(raw)

    def test_equivalent_urls_share_a_hash(self):
        assert hash_url("https://EXAMPLE.com/page/") == hash_url("https://example.com:443/page#top")
        assert hash_url("https://example.com/page?x=1") != hash_url("https://example.com/page?x=2")
        assert len(hash_url("example.com")) == 64

    def test_domain(self):
        assert url_domain("https://Sub.Example.com/path") == "sub.example.com"


def _tool_event(session_id: str, tool_type: str, url: str = "https://example.com/landing") -> AnalyticsEventCreate:
    return AnalyticsEventCreate(
        session_id=session_id,
        event_type=EventType.TOOL_USAGE,
        tool_type=tool_type,
        target_url=url,
        ip_address="198.51.100.4",
    )


@pytest.mark.integration
class TestUpsert:
    async def test_first_analysis_creates_row(self, popular_urls):
        row = await popular_urls.upsert("https://Example.com/landing/", "meta-tags", session_id="s1")

        assert row.domain == "example.com"
        assert row.full_url == "https://Example.com/landing/"
        assert row.url_hash == hash_url("https://example.com/landing")
        assert row.total_analyses == 1
        assert row.unique_users == 1
        assert row.tools_used == ["meta-tags"]
        assert (row.daily_count, row.weekly_count, row.monthly_count) == (1, 1, 1)

    async def test_repeat_analyses_accumulate(self, event_store, popular_urls):
        await event_store.track_event(_tool_event("s1", "meta-tags"))
        await event_store.track_event(_tool_event("s1", "opengraph"))
        await event_store.track_event(_tool_event("s2", "meta-tags"))

        row = await popular_urls.get("https://example.com/landing")
        assert row.total_analyses == 3
        assert row.unique_users == 2
        assert sorted(row.tools_used) == ["meta-tags", "opengraph"]
        assert row.daily_count == 3
        assert row.last_analyzed is not None

    async def test_concurrent_upserts_converge(self, popular_urls):
        await asyncio.gather(*[
            popular_urls.upsert("https://example.com/hot", "http-headers")
            for _ in range(5)
        ])

        row = await popular_urls.get("https://example.com/hot")
        assert row.total_analyses == 5
        assert len(await popular_urls.top_urls()) == 1

    async def test_concurrent_tracked_events_converge(self, event_store, popular_urls):
        sessions = 10
        await asyncio.gather(*[
            event_store.track_event(_tool_event(f"visitor-{i}", "http-headers", "https://example.com/busy"))
            for i in range(sessions)
        ])

        row = await popular_urls.get("https://example.com/busy")
        assert row.total_analyses == sessions
        assert row.unique_users == sessions
        assert await event_store.count_events() == sessions

    async def test_insert_conflict_is_retried_as_update(self, popular_urls, monkeypatch):
        await popular_urls.upsert("https://example.com/race", "meta-tags")
        original = popular_urls._increment
        calls = {"n": 0}

        async def lose_the_race(db, *args):
            calls["n"] += 1
            if calls["n"] == 1:
                # Pretend the row did not exist yet so the INSERT collides
                return None
            return await original(db, *args)

        monkeypatch.setattr(popular_urls, "_increment", lose_the_race)
        await popular_urls.upsert("https://example.com/race", "keyword-density")

        row = await popular_urls.get("https://example.com/race")
        assert calls["n"] == 2
        assert row.total_analyses == 2
        assert sorted(row.tools_used) == ["keyword-density", "meta-tags"]

    async def test_gives_up_after_retries(self, popular_urls, monkeypatch):
        await popular_urls.upsert("https://example.com/race", "meta-tags")

        async def always_missing(db, *args):
            return None

        monkeypatch.setattr(popular_urls, "_increment", always_missing)
        with pytest.raises(PersistenceError):
            await popular_urls.upsert("https://example.com/race", "meta-tags")

    async def test_invalid_url_is_rejected(self, popular_urls):
        with pytest.raises(ValidationError):
            await popular_urls.upsert("http://", "meta-tags")


@pytest.mark.integration
class TestTopUrlsAndTrending:
    async def test_top_urls_ordered_by_total(self, popular_urls):
        for url, n in [("https://a.com", 1), ("https://b.com", 3), ("https://c.com", 2)]:
            for _ in range(n):
                await popular_urls.upsert(url, "meta-tags")

        top = await popular_urls.top_urls(2)

        assert [row.domain for row in top] == ["b.com", "c.com"]

    async def test_refresh_recomputes_rolling_windows(self, popular_urls, add_events, today_start):
        url = "https://example.com/trend"
        await popular_urls.upsert(url, "meta-tags")
        await popular_urls.upsert("https://example.com/stale", "meta-tags")
        await add_events([
            {"target_url": url, "created_at": today_start + timedelta(hours=1)},
            {"target_url": url, "created_at": today_start + timedelta(hours=2)},
            {"target_url": url, "created_at": today_start - timedelta(days=3)},
            {"target_url": url, "created_at": today_start - timedelta(days=20)},
            {"target_url": url, "created_at": today_start - timedelta(days=45)},
            {"target_url": url, "created_at": today_start, "event_type": "page_view"},
        ])

        refreshed = await popular_urls.refresh_trending_counts(today_utc())

        assert refreshed == 1
        trend = await popular_urls.get(url)
        assert (trend.daily_count, trend.weekly_count, trend.monthly_count) == (2, 3, 4)
        stale = await popular_urls.get("https://example.com/stale")
        assert (stale.daily_count, stale.weekly_count, stale.monthly_count) == (0, 0, 0)
        # Lifetime totals are untouched
        assert trend.total_analyses == 1

from datetime import date, timedelta
from typing import Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit
import hashlib
import logging

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.exceptions import PersistenceError, ValidationError
from db.models.analytics_event import AnalyticsEvent
from db.models.popular_url import PopularUrl
from db.session import Database
from schemas.analytics_schema import EventType
from utils.dates import day_bounds, today_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}

TRENDING_WINDOWS = {
    "daily_count": 1,
    "weekly_count": 7,
    "monthly_count": 30,
}


def normalize_url(url: str) -> str:
    """Canonical form used for hashing.

    Lower-cases scheme and host, drops default ports and the fragment,
    strips the trailing slash from the path and keeps the query string.
    """
    raw = (url or "").strip()
    if not raw:
        raise ValidationError("URL is required")
    if "://" not in raw:
        raw = f"http://{raw}"
    try:
        parts = urlsplit(raw)
        port = parts.port
    except ValueError as e:
        raise ValidationError(f"Invalid URL {url!r}: {e}")
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if not host:
        raise ValidationError(f"Invalid URL {url!r}: missing host")
    if ":" in host:
        host = f"[{host}]"
    netloc = host if port is None or DEFAULT_PORTS.get(scheme) == port else f"{host}:{port}"
    path = parts.path.rstrip("/")
    return urlunsplit((scheme, netloc, path, parts.query, ""))


def hash_url(url: str) -> str:
    """SHA-256 hex digest of the normalized URL."""
    return hashlib.sha256(normalize_url(url).encode("utf-8")).hexdigest()


def url_domain(url: str) -> str:
    return urlsplit(normalize_url(url)).hostname or ""


class PopularUrlIndex:
    """Per-URL usage summary keyed by ``url_hash``."""

    def __init__(self, database: Database, retries: int = 3):
        self.database = database
        self.retries = max(1, int(retries))

    async def upsert(
        self,
        url: str,
        tool_type: Optional[str],
        *,
        session_id: Optional[str] = None,
        event_id: Optional[int] = None,
    ) -> PopularUrl:
        normalized = normalize_url(url)
        url_hash = hashlib.sha256(normalized.encode("utf-8")).hexdigest()

        for attempt in range(1, self.retries + 1):
            try:
                async with self.database.session() as db:
                    row = await self._increment(db, url_hash, tool_type, session_id, event_id)
                    if row is None:
                        row = PopularUrl(
                            domain=url_domain(normalized),
                            full_url=url,
                            url_hash=url_hash,
                            total_analyses=1,
                            unique_users=1,
                            tools_used=[tool_type] if tool_type else [],
                            daily_count=1,
                            weekly_count=1,
                            monthly_count=1,
                        )
                        db.add(row)
                    await db.commit()
                    return row
            except IntegrityError:
                # Another writer inserted the same url_hash first; retry as an update
                logger.info(f"Popular URL {url_hash[:12]} inserted concurrently (attempt {attempt}); retrying")
            except SQLAlchemyError as e:
                logger.warning(f"Failed to update popular URL {normalized}: {e}")
                raise PersistenceError(f"Failed to update popular URL {normalized}") from e
        raise PersistenceError(f"Popular URL upsert for {normalized} did not converge after {self.retries} attempts")

    async def _increment(self, db, url_hash: str, tool_type: Optional[str], session_id: Optional[str], event_id: Optional[int]) -> Optional[PopularUrl]:
        now = utcnow()
        # Counter arithmetic happens in the database so concurrent writers never lose increments
        result = await db.execute(
            update(PopularUrl)
            .where(PopularUrl.url_hash == url_hash)
            .values(
                total_analyses=PopularUrl.total_analyses + 1,
                daily_count=PopularUrl.daily_count + 1,
                weekly_count=PopularUrl.weekly_count + 1,
                monthly_count=PopularUrl.monthly_count + 1,
                last_analyzed=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None

        # The UPDATE above holds the row for the rest of this transaction
        row = (await db.execute(
            select(PopularUrl).where(PopularUrl.url_hash == url_hash).execution_options(populate_existing=True)
        )).scalar_one()

        tools = list(row.tools_used or [])
        if tool_type and tool_type not in tools:
            tools.append(tool_type)
            row.tools_used = tools

        if session_id and await self._is_first_visit(db, url_hash, session_id, event_id):
            row.unique_users = (row.unique_users or 0) + 1
        return row

    async def _is_first_visit(self, db, url_hash: str, session_id: str, event_id: Optional[int]) -> bool:
        conditions = [
            AnalyticsEvent.url_hash == url_hash,
            AnalyticsEvent.session_id == session_id,
            AnalyticsEvent.event_type == EventType.TOOL_USAGE.value,
        ]
        if event_id is not None:
            # The earliest event of a session is the one that counts
            conditions.append(AnalyticsEvent.id < event_id)
        earlier = (await db.execute(select(AnalyticsEvent.id).where(and_(*conditions)).limit(1))).scalar_one_or_none()
        return earlier is None

    async def get(self, url: str) -> Optional[PopularUrl]:
        async with self.database.session() as db:
            return (await db.execute(select(PopularUrl).where(PopularUrl.url_hash == hash_url(url)))).scalar_one_or_none()

    async def top_urls(self, limit: int = 10) -> List[PopularUrl]:
        async with self.database.session() as db:
            stmt = (
                select(PopularUrl)
                .order_by(PopularUrl.total_analyses.desc(), PopularUrl.last_analyzed.desc())
                .limit(limit)
            )
            return list((await db.execute(stmt)).scalars().all())

    async def refresh_trending_counts(self, as_of: Optional[date] = None) -> int:
        """Recompute daily/weekly/monthly counters as rolling windows ending at ``as_of``."""
        as_of = as_of or today_utc()
        _, window_end = day_bounds(as_of)
        counts: Dict[str, Dict[str, int]] = {}

        try:
            async with self.database.session() as db:
                await db.execute(
                    update(PopularUrl)
                    .values(daily_count=0, weekly_count=0, monthly_count=0)
                    .execution_options(synchronize_session=False)
                )
                for column, days in TRENDING_WINDOWS.items():
                    window_start, _ = day_bounds(as_of - timedelta(days=days - 1))
                    stmt = (
                        select(AnalyticsEvent.url_hash, func.count(AnalyticsEvent.id))
                        .where(
                            AnalyticsEvent.event_type == EventType.TOOL_USAGE.value,
                            AnalyticsEvent.url_hash.is_not(None),
                            AnalyticsEvent.created_at >= window_start,
                            AnalyticsEvent.created_at < window_end,
                        )
                        .group_by(AnalyticsEvent.url_hash)
                    )
                    for url_hash, count in (await db.execute(stmt)).all():
                        counts.setdefault(url_hash, {})[column] = int(count or 0)

                for url_hash, values in counts.items():
                    await db.execute(
                        update(PopularUrl)
                        .where(PopularUrl.url_hash == url_hash)
                        .values(**{column: values.get(column, 0) for column in TRENDING_WINDOWS})
                        .execution_options(synchronize_session=False)
                    )
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to refresh trending counts as of {as_of}: {e}")
            raise PersistenceError(f"Failed to refresh trending counts as of {as_of}") from e

        logger.info(f"Refreshed trending counts for {len(counts)} URLs as of {as_of}")
        return len(counts)

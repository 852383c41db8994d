from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional
import logging
import time

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from config import config
from core.exceptions import AnalyticsError, PersistenceError, ValidationError
from db.models.analytics_event import AnalyticsEvent
from db.session import Database
from schemas.analytics_schema import AnalyticsEventCreate, EventType
from services.popular_url_service import PopularUrlIndex, hash_url

logger = logging.getLogger(__name__)


def _json_safe_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _json_safe_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe_value(v) for v in value]
    return str(value)


def _normalize_metadata(metadata: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if metadata is None:
        return None
    if not isinstance(metadata, dict):
        raise ValidationError("metadata must be a JSON object")
    return {str(k): _json_safe_value(v) for k, v in metadata.items()}


def _target_url_hash(event: AnalyticsEventCreate) -> Optional[str]:
    if not event.target_url:
        return None
    try:
        return hash_url(event.target_url)
    except ValidationError:
        # Unparseable targets are still stored, just not indexed
        logger.info(f"Not indexing unparseable target URL {event.target_url!r}")
        return None


class EventStore:
    """Append-only store of raw telemetry events."""

    def __init__(self, database: Database, popular_urls: Optional[PopularUrlIndex] = None):
        self.database = database
        self.popular_urls = popular_urls or PopularUrlIndex(database)

    async def track_event(self, event: AnalyticsEventCreate) -> AnalyticsEvent:
        """Persist one event; tool usage against a URL also feeds the popular-URL index."""
        for field in ("session_id", "ip_address"):
            if not (getattr(event, field) or "").strip():
                raise ValidationError(f"Missing required field: {field}")

        if event.tool_type and not config.is_known_tool(event.tool_type):
            logger.info(f"Recording event for tool '{event.tool_type}' which is not in the catalogue")

        url_hash = _target_url_hash(event)
        row = AnalyticsEvent(
            session_id=event.session_id,
            event_type=event.event_type.value,
            tool_type=event.tool_type,
            target_url=event.target_url,
            url_hash=url_hash,
            ip_address=event.ip_address,
            user_agent=event.user_agent or "unknown",
            country=event.country,
            city=event.city,
            referrer=event.referrer,
            response_time=event.response_time,
            success=event.success,
            error_message=event.error_message,
            metadata_json=_normalize_metadata(event.metadata),
        )

        try:
            async with self.database.session() as db:
                db.add(row)
                await db.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to record analytics event '{event.event_type.value}': {e}")
            raise PersistenceError(f"Failed to record analytics event '{event.event_type.value}'") from e

        if event.event_type == EventType.TOOL_USAGE and url_hash is not None:
            try:
                await self.popular_urls.upsert(
                    event.target_url,
                    event.tool_type,
                    session_id=event.session_id,
                    event_id=row.id,
                )
            except AnalyticsError as e:
                # The event itself is already committed
                logger.warning(f"Popular URL update skipped for event {row.id}: {e}")

        return row

    async def list_events(
        self,
        start: datetime,
        end: datetime,
        event_type: Optional[EventType] = None,
    ) -> List[AnalyticsEvent]:
        """Events with ``start <= created_at < end`` in creation order."""
        stmt = select(AnalyticsEvent).where(
            AnalyticsEvent.created_at >= start,
            AnalyticsEvent.created_at < end,
        )
        if event_type is not None:
            stmt = stmt.where(AnalyticsEvent.event_type == event_type.value)
        stmt = stmt.order_by(AnalyticsEvent.created_at, AnalyticsEvent.id)
        async with self.database.session() as db:
            return list((await db.execute(stmt)).scalars().all())

    async def recent_events(self, limit: int = 10) -> List[AnalyticsEvent]:
        stmt = select(AnalyticsEvent).order_by(AnalyticsEvent.created_at.desc(), AnalyticsEvent.id.desc()).limit(limit)
        async with self.database.session() as db:
            return list((await db.execute(stmt)).scalars().all())

    async def count_events(self) -> int:
        async with self.database.session() as db:
            return int((await db.execute(select(func.count(AnalyticsEvent.id)))).scalar() or 0)


async def record_event_safely(store: EventStore, event: AnalyticsEventCreate) -> bool:
    """
    Best-effort analytics recorder.
    Returns True when event is stored, False when skipped/fails.
    """
    try:
        await store.track_event(event)
        return True
    except AnalyticsError as e:
        # Analytics should not break core user flows.
        logger.warning(f"Failed to record analytics event '{event.event_type.value}': {e}")
        return False


class ToolUsageTracker:
    """Handle yielded by ``track_tool_usage``; lets the handler attach metadata."""

    def __init__(self):
        self.metadata: Dict[str, Any] = {}
        self.response_time: Optional[int] = None
        self.recorded: bool = False


@asynccontextmanager
async def track_tool_usage(
    store: EventStore,
    *,
    session_id: str,
    tool_type: str,
    ip_address: str,
    target_url: Optional[str] = None,
    user_agent: Optional[str] = None,
    referrer: Optional[str] = None,
    country: Optional[str] = None,
    city: Optional[str] = None,
) -> AsyncIterator[ToolUsageTracker]:
    """Time a tool call and record it as a ``tool_usage`` event.

    Exceptions from the tool body are recorded as a failed event and
    re-raised; tracking failures are only logged.
    """
    tracker = ToolUsageTracker()
    start = time.perf_counter()
    success = True
    error_message = None
    try:
        yield tracker
    except Exception as e:
        success = False
        error_message = str(e) or e.__class__.__name__
        raise
    finally:
        tracker.response_time = int(round((time.perf_counter() - start) * 1000.0))
        try:
            event = AnalyticsEventCreate(
                session_id=session_id,
                event_type=EventType.TOOL_USAGE,
                tool_type=tool_type,
                target_url=target_url,
                ip_address=ip_address,
                user_agent=user_agent,
                referrer=referrer,
                country=country,
                city=city,
                response_time=tracker.response_time,
                success=success,
                error_message=error_message,
                metadata=tracker.metadata or None,
            )
        except ValueError as e:
            logger.warning(f"Tool usage for {tool_type} not recorded: {e}")
        else:
            tracker.recorded = await record_event_safely(store, event)

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as SchemaValidationError
from typing import Optional
import logging

from api.dependencies import (
    admin_required,
    get_aggregator,
    get_dashboard_service,
    get_event_store,
    get_popular_url_index,
    get_session_id,
)
from core.config import settings
from core.exceptions import PersistenceError, ValidationError
from db.session import Database, get_database
from schemas.analytics_schema import (
    AggregateRequest,
    AggregationResult,
    AnalyticsEventCreate,
    AnalyticsEventOut,
    TrackEventRequest,
)
from services.aggregation_service import DailyAggregator, run_daily_aggregation
from services.analytics_service import EventStore
from services.dashboard_service import DashboardService
from services.export_service import export_filename, render, validate_format
from services.geo_service import lookup_location
from services.popular_url_service import PopularUrlIndex
from utils.dates import format_day, parse_day
from utils.request_context import get_client_ip
from utils.responses import attachment, no_store_json
from utils.timing import timeit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics")


def _metadata_text(metadata: dict, key: str) -> Optional[str]:
    value = metadata.get(key)
    return value if isinstance(value, str) and value else None


def _parse_days(days: Optional[str]) -> int:
    if days is None or days == "":
        return settings.ANALYTICS_DEFAULT_DAYS
    try:
        return int(days)
    except (TypeError, ValueError):
        raise ValidationError(f"Days parameter must be between 1 and {settings.ANALYTICS_MAX_DAYS}")


@router.post("/track")
@timeit("analytics.track")
async def track(
    payload: TrackEventRequest,
    request: Request,
    session_id: str = Depends(get_session_id),
    store: EventStore = Depends(get_event_store),
):
    metadata = payload.metadata or {}
    ip_address = get_client_ip(request)
    location = await lookup_location(ip_address)

    try:
        event = AnalyticsEventCreate(
            session_id=payload.session_id or session_id,
            event_type=payload.event_type,
            tool_type=payload.tool_type,
            target_url=payload.target_url,
            ip_address=ip_address,
            user_agent=_metadata_text(metadata, "userAgent") or request.headers.get("user-agent") or "",
            country=location.get("country"),
            city=location.get("city"),
            referrer=_metadata_text(metadata, "referrer") or request.headers.get("referer"),
            response_time=payload.response_time,
            success=payload.success,
            error_message=payload.error_message,
            metadata=payload.metadata,
        )
    except SchemaValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"])
        raise ValidationError(f"Invalid {field}: {error['msg']}") from e
    try:
        await store.track_event(event)
    except PersistenceError as e:
        logger.error(f"Analytics tracking error: {e}")
        return no_store_json({"detail": "Failed to track event"}, status_code=500)
    return no_store_json({"success": True})


@router.get("/dashboard")
@timeit("analytics.dashboard")
async def dashboard(
    days: Optional[str] = None,
    service: DashboardService = Depends(get_dashboard_service),
):
    summary = await service.get_dashboard_stats(_parse_days(days))
    return no_store_json(summary)


@router.get("/export")
@timeit("analytics.export")
async def export(
    days: Optional[str] = None,
    format: str = "csv",
    service: DashboardService = Depends(get_dashboard_service),
):
    fmt = validate_format(format)
    n_days = _parse_days(days)
    summary = await service.get_dashboard_stats(n_days)
    body, media_type = render(summary, fmt)
    return attachment(body, export_filename(n_days, fmt), media_type)


async def _aggregate(database: Database, popular_urls: PopularUrlIndex, day: Optional[str], refresh_trending: Optional[bool]):
    target = parse_day(day)
    day_key = format_day(target)
    logger.info(f"Aggregating analytics for date: {day_key}")
    stats = await run_daily_aggregation(database, target, refresh_trending=refresh_trending, popular_urls=popular_urls)
    result = AggregationResult(date=day_key, message=f"Analytics aggregated for {day_key}", stats=stats)
    return no_store_json(result)


@router.post("/aggregate")
async def aggregate(
    payload: Optional[AggregateRequest] = None,
    _: dict = Depends(admin_required),
    database: Database = Depends(get_database),
    popular_urls: PopularUrlIndex = Depends(get_popular_url_index),
):
    payload = payload or AggregateRequest()
    return await _aggregate(database, popular_urls, payload.date, payload.refresh_trending)


@router.get("/aggregate")
async def aggregate_today(
    _: dict = Depends(admin_required),
    database: Database = Depends(get_database),
    popular_urls: PopularUrlIndex = Depends(get_popular_url_index),
):
    return await _aggregate(database, popular_urls, None, None)


@router.get("/realtime-check")
async def realtime_check(
    _: dict = Depends(admin_required),
    store: EventStore = Depends(get_event_store),
    aggregator: DailyAggregator = Depends(get_aggregator),
):
    recent_events = await store.recent_events(10)
    recent_days = await aggregator.recent_rows(5)
    return no_store_json({
        "realtime": {
            "total_events": await store.count_events(),
            "recent_events": [AnalyticsEventOut.model_validate(e) for e in recent_events],
        },
        "daily": {
            "total_days": await aggregator.count_rows(),
            "recent_days": [
                {
                    "date": day.date,
                    "total_analyses": day.total_analyses,
                    "unique_users": day.unique_users,
                    "avg_response_time": day.avg_response_time,
                }
                for day in recent_days
            ],
        },
    })

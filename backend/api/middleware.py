from datetime import timezone
from typing import Optional
import logging
import uuid

from pydantic import ValidationError as SchemaValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from core.config import settings
from schemas.analytics_schema import AnalyticsEventCreate, EventType
from services.analytics_service import EventStore, record_event_safely
from services.popular_url_service import PopularUrlIndex
from utils.dates import utcnow
from utils.request_context import get_browser_name, get_client_ip, get_device_type

logger = logging.getLogger(__name__)


def page_view_tool(path: str, prefixes) -> Optional[str]:
    """Tool id for a tracked page path, e.g. ``/tools/meta-tags`` -> ``meta-tags``."""
    for prefix in prefixes:
        if path.startswith(prefix):
            segment = path[len(prefix):].split("/", 1)[0]
            return segment[:50] or None
    return None


class AnalyticsSessionMiddleware(BaseHTTPMiddleware):
    """Assigns the anonymous session cookie and records page views for tool pages."""

    async def dispatch(self, request: Request, call_next):
        session_id = request.cookies.get(settings.SESSION_COOKIE_NAME)
        is_new = not session_id
        if is_new:
            session_id = str(uuid.uuid4())
        request.state.session_id = session_id

        response = await call_next(request)

        path = request.url.path
        if any(path.startswith(prefix) for prefix in settings.PAGE_VIEW_PATH_PREFIXES):
            await self._record_page_view(request, session_id, path)

        if is_new:
            response.set_cookie(
                settings.SESSION_COOKIE_NAME,
                session_id,
                max_age=settings.SESSION_COOKIE_MAX_AGE,
                httponly=True,
                secure=not settings.DEBUG,
                samesite="lax",
            )
        return response

    async def _record_page_view(self, request: Request, session_id: str, path: str) -> None:
        database = getattr(request.app.state, "database", None)
        if database is None:
            return
        user_agent = request.headers.get("user-agent") or ""
        try:
            event = AnalyticsEventCreate(
                session_id=session_id,
                event_type=EventType.PAGE_VIEW,
                tool_type=page_view_tool(path, settings.PAGE_VIEW_PATH_PREFIXES),
                ip_address=get_client_ip(request),
                user_agent=user_agent,
                referrer=request.headers.get("referer"),
                metadata={
                    "pathname": path,
                    "deviceType": get_device_type(user_agent),
                    "browserName": get_browser_name(user_agent),
                    "timestamp": utcnow().replace(tzinfo=timezone.utc).isoformat(),
                },
            )
        except SchemaValidationError as e:
            logger.warning(f"Page view for {path} not recorded: {e.errors()[0]['msg']}")
            return
        store = EventStore(database, PopularUrlIndex(database, retries=settings.POPULAR_URL_UPSERT_RETRIES))
        await record_event_safely(store, event)

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials
from typing import Optional
import uuid

from core.config import settings
from core.security import bearer_scheme, is_admin, verify_token
from db.session import Database, get_database
from services.aggregation_service import DailyAggregator
from services.analytics_service import EventStore
from services.dashboard_service import DashboardService
from services.popular_url_service import PopularUrlIndex


def get_popular_url_index(database: Database = Depends(get_database)) -> PopularUrlIndex:
    return PopularUrlIndex(database, retries=settings.POPULAR_URL_UPSERT_RETRIES)


def get_event_store(
    database: Database = Depends(get_database),
    popular_urls: PopularUrlIndex = Depends(get_popular_url_index),
) -> EventStore:
    return EventStore(database, popular_urls)


def get_dashboard_service(
    database: Database = Depends(get_database),
    popular_urls: PopularUrlIndex = Depends(get_popular_url_index),
) -> DashboardService:
    service = DashboardService.from_settings(database, settings)
    service.popular_urls = popular_urls
    return service


def get_aggregator(database: Database = Depends(get_database)) -> DailyAggregator:
    return DailyAggregator(database)


def get_session_id(request: Request) -> str:
    """Session set by the session middleware, else the cookie, else a fresh one."""
    session_id = getattr(request.state, "session_id", None) or request.cookies.get(settings.SESSION_COOKIE_NAME)
    return session_id or str(uuid.uuid4())


# Fast path: trust JWT claims to verify operator role without DB hit
async def admin_required(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> dict:
    payload = verify_token(credentials.credentials) if credentials else None
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not is_admin(payload):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return payload

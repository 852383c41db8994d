"""
Pytest configuration and fixtures for the backend tests.
"""
import os
import tempfile

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="seo-analytics-logs-"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from datetime import datetime, timedelta
from typing import AsyncGenerator, Dict, List
from httpx import ASGITransport, AsyncClient
from faker import Faker

from core.security import create_access_token
from db.models.analytics_event import AnalyticsEvent
from db.session import Database
from main import create_app
from services.analytics_service import EventStore
from services.popular_url_service import PopularUrlIndex, hash_url
from utils.dates import day_bounds, today_utc

# Initialize Faker for test data generation
fake = Faker()


@pytest.fixture
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    """A fresh SQLite file database with all tables created."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'analytics.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def popular_urls(database: Database) -> PopularUrlIndex:
    return PopularUrlIndex(database, retries=3)


@pytest.fixture
def event_store(database: Database, popular_urls: PopularUrlIndex) -> EventStore:
    return EventStore(database, popular_urls)


@pytest.fixture
def today_start() -> datetime:
    """00:00 UTC of the current day."""
    return day_bounds(today_utc())[0]


@pytest.fixture
def add_events(database: Database):
    """Insert raw events directly, with explicit ``created_at`` values."""

    async def _add(events: List[Dict]) -> List[AnalyticsEvent]:
        rows = []
        for data in events:
            data = dict(data)
            data.setdefault("session_id", fake.uuid4())
            data.setdefault("event_type", "tool_usage")
            data.setdefault("ip_address", fake.ipv4_public())
            data.setdefault("user_agent", fake.user_agent())
            if data.get("target_url") and "url_hash" not in data:
                data["url_hash"] = hash_url(data["target_url"])
            rows.append(AnalyticsEvent(**data))
        async with database.session() as db:
            db.add_all(rows)
            await db.commit()
        return rows

    return _add


@pytest.fixture
def app(database: Database):
    return create_app(database)


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    token = create_access_token({"sub": "operator", "role": "admin"}, expires_delta=timedelta(minutes=5))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers() -> Dict[str, str]:
    token = create_access_token({"sub": fake.user_name(), "role": "user"})
    return {"Authorization": f"Bearer {token}"}

from db.session import Base, Database
from db.models.analytics_event import AnalyticsEvent  # noqa: F401
from db.models.daily_analytics import DailyAnalytics  # noqa: F401
from db.models.popular_url import PopularUrl  # noqa: F401
import logging

logger = logging.getLogger(__name__)

async def initialize_database(database: Database):
    """Create the analytics tables if they do not exist yet."""
    try:
        await database.create_all()
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error creating database tables: {e}")
        raise

from sqlalchemy import Column, String, DateTime, Integer, UniqueConstraint
from sqlalchemy.types import JSON
from db.session import Base
from utils.dates import utcnow


class DailyAnalytics(Base):
    __tablename__ = "daily_analytics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    date = Column(String(10), nullable=False)  # YYYY-MM-DD, UTC

    total_events = Column(Integer, default=0, nullable=False)
    total_analyses = Column(Integer, default=0, nullable=False)
    unique_users = Column(Integer, default=0, nullable=False)
    unique_ips = Column(Integer, default=0, nullable=False)

    tool_usage = Column(JSON, default=dict)  # {"meta-tags": 12, "opengraph": 3, ...}
    top_countries = Column(JSON, default=list)  # [{"country": "US", "count": 150}, ...]
    top_cities = Column(JSON, default=list)

    avg_response_time = Column(Integer, default=0, nullable=False)
    success_rate = Column(Integer, default=100, nullable=False)
    error_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("date", name="uq_daily_analytics_date"),
    )

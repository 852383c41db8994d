from sqlalchemy import Column, String, DateTime, Integer, Boolean, Text, Index
from sqlalchemy.types import JSON
from db.session import Base
from utils.dates import utcnow


class AnalyticsEvent(Base):
    """One immutable telemetry record (tool usage, page view, error, export, share)."""

    __tablename__ = "realtime_analytics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(255), nullable=False)

    event_type = Column(String(50), nullable=False)
    tool_type = Column(String(50), nullable=True)
    target_url = Column(String(2048), nullable=True)
    url_hash = Column(String(64), nullable=True)  # hash of the normalized target_url

    ip_address = Column(String(45), nullable=False)
    user_agent = Column(Text, nullable=True)
    country = Column(String(2), nullable=True)
    city = Column(String(100), nullable=True)
    referrer = Column(Text, nullable=True)

    response_time = Column(Integer, nullable=True)  # milliseconds
    success = Column(Boolean, default=True, nullable=False)
    error_message = Column(Text, nullable=True)

    metadata_json = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_realtime_session", "session_id"),
        Index("ix_realtime_event_type", "event_type"),
        Index("ix_realtime_tool_type", "tool_type"),
        Index("ix_realtime_created_at", "created_at"),
        Index("ix_realtime_country", "country"),
        Index("ix_realtime_url_hash_session", "url_hash", "session_id"),
        Index("ix_realtime_event_type_created_at", "event_type", "created_at"),
    )

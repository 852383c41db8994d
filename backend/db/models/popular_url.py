from sqlalchemy import Column, String, DateTime, Integer, Index, UniqueConstraint
from sqlalchemy.types import JSON
from db.session import Base
from utils.dates import utcnow


class PopularUrl(Base):
    __tablename__ = "popular_urls"

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain = Column(String(255), nullable=False)
    full_url = Column(String(2048), nullable=False)
    url_hash = Column(String(64), nullable=False)  # SHA-256 of the normalized URL

    total_analyses = Column(Integer, default=1, nullable=False)
    unique_users = Column(Integer, default=1, nullable=False)
    tools_used = Column(JSON, default=list)

    # Rolling windows; incremented on write, recomputed by the daily job
    daily_count = Column(Integer, default=0, nullable=False)
    weekly_count = Column(Integer, default=0, nullable=False)
    monthly_count = Column(Integer, default=0, nullable=False)

    last_analyzed = Column(DateTime, default=utcnow, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("url_hash", name="uq_popular_urls_url_hash"),
        Index("ix_popular_urls_domain", "domain"),
        Index("ix_popular_urls_total_analyses", "total_analyses"),
        Index("ix_popular_urls_last_analyzed", "last_analyzed"),
    )

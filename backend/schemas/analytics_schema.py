from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class EventType(str, Enum):
    TOOL_USAGE = "tool_usage"
    PAGE_VIEW = "page_view"
    ERROR = "error"
    EXPORT = "export"
    SHARE = "share"


class AnalyticsEventCreate(BaseModel):
    """An event as handed to the event store by handlers and middleware."""

    session_id: str = Field(..., max_length=255)
    event_type: EventType
    ip_address: str = Field(..., max_length=45)
    tool_type: Optional[str] = Field(default=None, max_length=50)
    target_url: Optional[str] = Field(default=None, max_length=2048)
    user_agent: Optional[str] = None
    country: Optional[str] = Field(default=None, max_length=2)
    city: Optional[str] = Field(default=None, max_length=100)
    referrer: Optional[str] = None
    response_time: Optional[int] = Field(default=None, ge=0)
    success: bool = True
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class TrackEventRequest(BaseModel):
    """Body of POST /analytics/track; request context is filled server-side."""

    session_id: Optional[str] = Field(default=None, max_length=255)
    event_type: EventType
    tool_type: Optional[str] = Field(default=None, max_length=50)
    target_url: Optional[str] = Field(default=None, max_length=2048)
    response_time: Optional[int] = Field(default=None, ge=0)
    success: bool = True
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class AnalyticsEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: str
    event_type: str
    tool_type: Optional[str] = None
    target_url: Optional[str] = None
    country: Optional[str] = None
    success: bool
    error_message: Optional[str] = None
    response_time: Optional[int] = None
    created_at: datetime


class CountryCount(BaseModel):
    country: str
    count: int


class CityCount(BaseModel):
    city: str
    count: int


class DailyAggregateFields(BaseModel):
    """Statistics derived from one slice of raw events."""

    total_events: int = 0
    total_analyses: int = 0
    unique_users: int = 0
    unique_ips: int = 0
    tool_usage: Dict[str, int] = Field(default_factory=dict)
    top_countries: List[CountryCount] = Field(default_factory=list)
    top_cities: List[CityCount] = Field(default_factory=list)
    avg_response_time: int = 0
    success_rate: int = 100
    error_count: int = 0


class DailyStat(DailyAggregateFields):
    date: str


class TopDomain(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    domain: str
    full_url: str
    total_analyses: int
    unique_users: int
    tools_used: List[str] = Field(default_factory=list)
    daily_count: int = 0
    weekly_count: int = 0
    monthly_count: int = 0
    last_analyzed: Optional[datetime] = None


class DashboardSummary(BaseModel):
    days: int
    start_date: str
    end_date: str
    total_analyses: int = 0
    total_users: int = 0
    avg_response_time: int = 0
    daily_stats: List[DailyStat] = Field(default_factory=list)
    tool_stats: Dict[str, int] = Field(default_factory=dict)
    top_domains: List[TopDomain] = Field(default_factory=list)
    # Degraded provenance markers
    is_realtime_fallback: bool = False
    is_empty_fallback: bool = False


class AggregateRequest(BaseModel):
    date: Optional[str] = Field(default=None, description="YYYY-MM-DD, defaults to today (UTC)")
    refresh_trending: Optional[bool] = None


class AggregationResult(BaseModel):
    success: bool = True
    date: str
    message: str
    stats: DailyAggregateFields

from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    # App settings
    APP_NAME: str = "SEO Tools Analytics API"
    VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Operator token settings
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Database settings (MySQL in production, SQLite for local runs)
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 300
    DB_POOL_TIMEOUT: int = 10
    DB_PRE_PING: bool = True
    DB_CONNECT_TIMEOUT: int = 10

    # CORS settings
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "https://tinyweb.tools",
        "https://www.tinyweb.tools",
    ]

    # API settings
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TTL_DAYS: int = 7

    # Dashboard reads
    ANALYTICS_TABLE_CHECK_TIMEOUT: float = 10.0
    ANALYTICS_QUERY_TIMEOUT: float = 15.0
    ANALYTICS_DEFAULT_DAYS: int = 30
    ANALYTICS_MAX_DAYS: int = 365
    ANALYTICS_TOP_DOMAINS_LIMIT: int = 10

    # Popular URL index
    POPULAR_URL_UPSERT_RETRIES: int = 3

    # Session cookie and page view tracking
    SESSION_COOKIE_NAME: str = "session_id"
    SESSION_COOKIE_MAX_AGE: int = 60 * 60 * 24 * 30
    PAGE_VIEW_PATH_PREFIXES: List[str] = ["/tools/"]

    # IP geolocation (optional), e.g. "https://ipapi.co/{ip}/json/"
    GEOIP_LOOKUP_URL: Optional[str] = None
    GEOIP_TIMEOUT: float = 3.0

    class Config:
        env_file = ".env"
        case_sensitive = True

# Create settings instance
settings = Settings()

# Validate required settings
if not settings.SECRET_KEY:
    raise ValueError("SECRET_KEY environment variable is required")

if not settings.DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is required")

if settings.ANALYTICS_MAX_DAYS < 1:
    raise ValueError("ANALYTICS_MAX_DAYS must be at least 1")

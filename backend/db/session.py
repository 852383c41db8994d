from sqlalchemy.orm import declarative_base
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlalchemy import event, inspect, text
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional
from fastapi import Request
import logging

Base = declarative_base()
logger = logging.getLogger(__name__)

def _to_async_database_url(url: str) -> str:
    if not url:
        return url
    # Prefer aiomysql for MySQL URLs
    if url.startswith("mysql+pymysql://"):
        return url.replace("mysql+pymysql://", "mysql+aiomysql://", 1)
    if url.startswith("mysql://"):
        return url.replace("mysql://", "mysql+aiomysql://", 1)
    if url.startswith("mysql+asyncmy://"):
        return url.replace("mysql+asyncmy://", "mysql+aiomysql://", 1)
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url

def _engine_options(url: str, overrides: Dict[str, Any]) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        # SQLite files: default pool, no server-side timeouts
        return {"future": True, "echo": False}
    options = {
        "future": True,
        "echo": False,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 10,
        "connect_args": {"connect_timeout": 10},
    }
    for key, value in overrides.items():
        if value is None:
            continue
        if key == "connect_timeout":
            options["connect_args"] = {"connect_timeout": int(value)}
        else:
            options[key] = value
    return options


class Database:
    """Explicitly constructed store handle: one engine, one session factory.

    Created on application startup and disposed on shutdown; every analytics
    component receives it through its constructor.
    """

    def __init__(
        self,
        url: str,
        *,
        pool_size: Optional[int] = None,
        max_overflow: Optional[int] = None,
        pool_recycle: Optional[int] = None,
        pool_timeout: Optional[int] = None,
        pool_pre_ping: Optional[bool] = None,
        connect_timeout: Optional[int] = None,
    ):
        self.url = _to_async_database_url(url)
        self.engine: AsyncEngine = create_async_engine(
            self.url,
            **_engine_options(
                self.url,
                {
                    "pool_size": pool_size,
                    "max_overflow": max_overflow,
                    "pool_recycle": pool_recycle,
                    "pool_timeout": pool_timeout,
                    "pool_pre_ping": pool_pre_ping,
                    "connect_timeout": connect_timeout,
                },
            ),
        )
        self.SessionLocal = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        _attach_pool_logging(self.engine)

    @classmethod
    def from_settings(cls, settings) -> "Database":
        return cls(
            settings.DATABASE_URL,
            pool_size=int(settings.DB_POOL_SIZE),
            max_overflow=int(settings.DB_MAX_OVERFLOW),
            pool_recycle=int(settings.DB_POOL_RECYCLE),
            pool_timeout=int(settings.DB_POOL_TIMEOUT),
            pool_pre_ping=bool(settings.DB_PRE_PING),
            connect_timeout=int(settings.DB_CONNECT_TIMEOUT),
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a new AsyncSession; roll back when the body raises."""
        async with self.SessionLocal() as db:
            try:
                yield db
            except Exception:
                await db.rollback()
                raise

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def has_table(self, table_name: str) -> bool:
        async with self.engine.connect() as conn:
            return await conn.run_sync(lambda sync_conn: inspect(sync_conn).has_table(table_name))

    async def ping(self) -> bool:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def dispose(self) -> None:
        await self.engine.dispose()


def get_database(request: Request) -> Database:
    """FastAPI dependency returning the handle created at startup."""
    database = getattr(request.app.state, "database", None)
    if database is None:
        raise RuntimeError("Database has not been initialized")
    return database


def _attach_pool_logging(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        logger.debug("DB connect: id=%s", id(connection_record))

    @event.listens_for(engine.sync_engine, "checkout")
    def _on_checkout(dbapi_connection, connection_record, connection_proxy):
        logger.debug("DB checkout: id=%s", id(connection_record))

    @event.listens_for(engine.sync_engine, "checkin")
    def _on_checkin(dbapi_connection, connection_record):
        logger.debug("DB checkin: id=%s", id(connection_record))

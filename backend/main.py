from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError

from api.middleware import AnalyticsSessionMiddleware
from api.v1 import analytics
from core.config import settings
from core.exceptions import AggregationError, PersistenceError, ValidationError
from db.base import initialize_database
from db.session import Database
from utils.logging_config import configure_logging, RequestContextMiddleware
from utils.responses import NO_STORE_HEADERS

# Configure logging with date-based files and TTL retention
logger = configure_logging("seo_analytics")


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)}, headers=NO_STORE_HEADERS)

    @app.exception_handler(AggregationError)
    async def aggregation_error_handler(request: Request, exc: AggregationError):
        logger.error(f"Analytics aggregation error for {exc.date}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Failed to aggregate analytics", "date": exc.date},
            headers=NO_STORE_HEADERS,
        )

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        logger.error(f"Analytics storage error at {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Analytics storage unavailable"}, headers=NO_STORE_HEADERS)

    # Global exception handler to ensure 500s for unexpected errors
    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error at {request.url.path}: {exc!r}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"}, headers=NO_STORE_HEADERS)


def create_app(database: Optional[Database] = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
    )
    app.state.database = database
    app.state.owns_database = database is None

    _register_exception_handlers(app)

    # Add GZip compression for larger JSON payloads
    app.add_middleware(GZipMiddleware, minimum_size=500)

    # Session cookie + page view tracking for tool pages
    app.add_middleware(AnalyticsSessionMiddleware)

    # Add logging context middleware to capture session and API path
    app.add_middleware(RequestContextMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(analytics.router, prefix=settings.API_V1_STR, tags=["Analytics"])

    @app.on_event("startup")
    async def startup_db_client():
        """Create the database handle and tables"""
        if app.state.database is None:
            app.state.database = Database.from_settings(settings)
        await initialize_database(app.state.database)
        logger.info("Application startup complete")

    @app.on_event("shutdown")
    async def shutdown_db_client():
        """Application shutdown"""
        if app.state.database is not None and app.state.owns_database:
            await app.state.database.dispose()
            logger.info("Disposed SQL engine")
        logger.info("Application shutdown complete")

    @app.get("/")
    async def root():
        return {"message": settings.APP_NAME, "version": settings.VERSION}

    @app.get("/health")
    async def health_check():
        # Actively check DB connectivity
        database = app.state.database
        connected = False
        if database is not None:
            try:
                connected = await database.ping()
            except (SQLAlchemyError, OSError) as e:
                logger.warning(f"Health SQL check failed: {e!r}")
        if not connected:
            return JSONResponse({"status": "degraded", "database": "sql_unavailable"}, headers=NO_STORE_HEADERS)
        return JSONResponse({"status": "healthy", "database": "sql_connected"}, headers=NO_STORE_HEADERS)

    return app


app = create_app()

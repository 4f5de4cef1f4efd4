"""Sasa Backend API - FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from . import __version__
from .cache import ListingCache
from .config import Settings, get_settings
from .connections import ConnectionManager
from .database import JOBS_TABLE, get_supabase_client
from .errors import register_exception_handlers
from .logging_config import get_logger, setup_logging
from .rate_limit import limiter
from .routes import (
    applications_router,
    jobs_router,
    messages_router,
    notifications_router,
    realtime_router,
)

logger = get_logger("sasa.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = app.state.settings
    setup_logging(settings.log_level)
    logger.info(f"Starting Sasa Backend API (debug={settings.debug})")
    yield
    logger.info(f"Shutting down Sasa Backend API | open_connections={len(app.state.connections)}")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application with its own connection registry and listing cache."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Sasa Backend API",
        description="Marketplace backend: jobs, applications, messaging and notifications",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.connections = ConnectionManager()
    app.state.listing_cache = ListingCache(ttl_seconds=settings.listing_cache_ttl_seconds)

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    register_exception_handlers(app)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    for router in (jobs_router, applications_router, messages_router, notifications_router):
        app.include_router(router, prefix=settings.api_prefix)
    app.include_router(realtime_router)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {
            "service": "sasa-backend",
            "version": __version__,
            "status": "ok",
        }

    @app.get("/health")
    async def health():
        """Detailed health check with actual database verification."""
        db_status = "disconnected"
        try:
            db = get_supabase_client(settings)
            db.table(JOBS_TABLE).select("id").limit(1).execute()
            db_status = "connected"
        except Exception as e:
            db_status = f"error: {str(e)[:50]}"

        return {
            "status": "healthy" if db_status == "connected" else "degraded",
            "database": db_status,
            "live_connections": len(app.state.connections),
        }

    return app


app = create_app()

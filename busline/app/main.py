"""
FastAPI Application Entry Point.

This is the main application file for the Busline Tracking Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from busline.app.core.config import settings
from busline.app.core.observability import ObservabilityMiddleware, configure_logging
from busline.app.core.redis_client import ping_redis
from busline.app.api.v1.router import router as api_v1_router
from busline.app.api.v1.endpoints.live_tracking import ws_router as tracking_ws_router
from busline.app.db.session import create_tables
from busline.app.core.exceptions import register_exception_handlers

# Import models to ensure they are registered with Base
from busline.app.models.user import User
from busline.app.models.schedule import Schedule

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    Creates database tables on startup when enabled (development setups).
    """
    if settings.db_create_tables:
        await create_tables()
    yield


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Live location sharing and real-time bus tracking",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

register_exception_handlers(app)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": await ping_redis(),
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")

# Tracking channel lives at the root path, not under the API version
app.include_router(tracking_ws_router)


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Busline Tracking Backend API",
        "docs": "/docs",
        "health": "/health",
        "tracking": settings.tracking_ws_path,
    }

"""FastAPI application for TrackMe, a parking location tracker.

Main entry point wiring the REST routers, the realtime WebSocket channel
and the process-wide timer service.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from trackme.config import AppConfig, get_settings
from trackme.exceptions import TrackMeError
from trackme.routes import admin, auth, health, parking, realtime
from trackme.services import database
from trackme.services.connections import ConnectionManager
from trackme.services.timers import TimerService

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifespan context manager for startup and shutdown events.

    Handles:
    - Startup: Initialise MongoDB connection, ensure indexes and create the
      connection registry and timer service shared by all clients
    - Shutdown: Drop pending timers and close MongoDB connection gracefully

    Args:
        fastapi_app: FastAPI application instance.

    Yields:
        Control back to FastAPI during application lifetime.
    """
    # Startup
    logger.info("Starting TrackMe API...")

    # Load settings
    _ = get_settings()

    try:
        # Initialise database connection
        database.get_client()
        logger.info("MongoDB connection initialised")

        # Ensure database indexes exist
        database.ensure_indexes()
        logger.info("Database indexes verified")

        connections = ConnectionManager()
        fastapi_app.state.connections = connections
        fastapi_app.state.timers = TimerService(connections)

        logger.info("Application startup complete")

    except Exception as e:
        logger.error("Failed to initialise application: %s", e, exc_info=True)
        raise

    yield

    # Shutdown
    logger.info("Shutting down application...")
    try:
        fastapi_app.state.timers.shutdown()
        database.close_client()
        logger.info("MongoDB connection closed")
    except Exception as e:
        logger.error("Error during shutdown: %s", e, exc_info=True)

    logger.info("Application shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="TrackMe API",
    description=(
        "API for saving parking locations, managing API keys and receiving "
        "parking timer notifications"
    ),
    version=VERSION,
    lifespan=lifespan,
)

# Only the app section is read here; secrets load in the lifespan
app.add_middleware(
    CORSMiddleware,
    allow_origins=AppConfig().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TrackMeError)
async def trackme_exception_handler(request: Request, exc: TrackMeError):
    """Turn domain errors into structured JSON responses.

    Args:
        request: FastAPI request object.
        exc: Domain error that was raised.

    Returns:
        JSON response carrying the error code and message.
    """
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions globally without leaking internals.

    Args:
        request: FastAPI request object.
        exc: Exception that was raised.

    Returns:
        JSON response with a generic error message.
    """
    logger.error(
        "Unhandled exception for %s %s: %s",
        request.method,
        request.url,
        exc,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Register routers
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(parking.router)
app.include_router(admin.router)
app.include_router(realtime.router)


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information.

    Returns:
        Dictionary with API details and links.
    """
    return {
        "service": "TrackMe API",
        "version": VERSION,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "readiness": "/health/ready",
            "auth": "/api/v1/auth",
            "parking": "/api/v1/parking",
            "admin": "/api/v1/admin",
            "realtime": "ws /ws?token=<jwt or api key>",
            "docs": "/docs",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)

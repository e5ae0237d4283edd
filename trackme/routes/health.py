"""Health check endpoints for monitoring and readiness probes.

Provides endpoints to verify the API is running and dependencies are accessible.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, HTTPException, Request

from trackme.services import database

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["health"])


@router.get("/health")
async def health_check() -> dict:
    """Basic liveness check.

    Returns:
        Dictionary with status and timestamp.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now().astimezone().isoformat(),
    }


@router.get("/health/ready")
async def readiness_check(request: Request) -> dict:
    """Readiness check verifying database access and the timer service.

    Returns:
        Dictionary with status, individual check results and timer counts.

    Raises:
        HTTPException: If any dependency check fails.
    """
    checks = {}

    # Check MongoDB connection
    try:
        db = database.get_database()
        # Simple ping to verify connection
        db.command("ping")
        checks["database"] = "ok"
    except Exception as e:
        logger.error("Database readiness check failed: %s", e)
        checks["database"] = "error"

    timers = getattr(request.app.state, "timers", None)
    checks["timers"] = "ok" if timers is not None else "error: not started"

    # Determine overall status
    all_ok = all(check == "ok" for check in checks.values())

    if not all_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not ready", "checks": checks},
        )

    return {
        "status": "ready",
        "checks": checks,
        "active_timers": len(timers),
        "open_connections": request.app.state.connections.total_connections,
    }

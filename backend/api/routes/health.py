"""Health check endpoints.

Provides:
- Basic liveness check (/health/)
- Engine status (/health/status)
"""

import platform
import sys
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Request
import logging

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_start_datetime = datetime.now(timezone.utc).isoformat()


@router.get("/", response_model=dict[str, Any])
async def root(settings: Settings = Depends(get_settings)) -> dict[str, Any]:
    """
    Get API root information and version.
    Used as a simple liveness check.
    """
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "ok",
    }


@router.get("/status", response_model=dict[str, Any])
async def system_status(request: Request, settings: Settings = Depends(get_settings)) -> dict[str, Any]:
    """
    Detailed status: uptime, active runs, queues, scheduler and notifications.
    """
    uptime_seconds = time.monotonic() - _start_time
    hours, remainder = divmod(int(uptime_seconds), 3600)
    minutes, seconds = divmod(remainder, 60)

    orchestrator = getattr(request.app.state, "orchestrator", None)
    connections = getattr(request.app.state, "connections", None)
    engine: dict[str, Any] = {"running": orchestrator is not None}
    if orchestrator is not None:
        engine.update({
            "active_runs": len(orchestrator.get_active_runs()),
            "queued": orchestrator.get_queue_lengths(),
            "cron_jobs": sorted(orchestrator.scheduler.cron_jobs),
            "pending_approvals": orchestrator.waits.pending(),
            "notifications": orchestrator.notifications.get_status(),
        })

    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "started_at": _start_datetime,
        "uptime": f"{hours}h {minutes}m {seconds}s",
        "uptime_seconds": round(uptime_seconds, 1),
        "python": {
            "version": sys.version,
            "platform": platform.platform(),
        },
        "engine": engine,
        "websocket_clients": connections.get_connection_count() if connections else 0,
    }

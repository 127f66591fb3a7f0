"""
Health check route handlers.

Exempt from the general rate limit so probes never get throttled.
"""

import logging
import os
import resource
import sys
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from revengers.api.routes import limiter
from revengers.config import settings
from revengers.utils.datetime_utils import isoformat_utc, utcnow

logger = logging.getLogger(__name__)
router = APIRouter()

_started_at = time.monotonic()


def uptime_seconds() -> float:
    return round(time.monotonic() - _started_at, 3)


def memory_usage() -> dict:
    """Peak resident set size of this process."""
    usage = resource.getrusage(resource.RUSAGE_SELF)
    # ru_maxrss is kilobytes on Linux, bytes on macOS
    max_rss = usage.ru_maxrss if sys.platform == "darwin" else usage.ru_maxrss * 1024
    return {"maxRss": max_rss, "maxRssMb": round(max_rss / (1024 * 1024), 1)}


@router.get("/health")
@limiter.exempt
async def health(request: Request):
    return {
        "status": "ok",
        "timestamp": isoformat_utc(utcnow()),
        "uptime": uptime_seconds(),
        "environment": settings.environment,
        "memory": memory_usage(),
    }


@router.get("/health/live")
@limiter.exempt
async def liveness(request: Request):
    return {
        "alive": True,
        "pid": os.getpid(),
        "uptime": uptime_seconds(),
        "timestamp": isoformat_utc(utcnow()),
    }


@router.get("/health/ready")
@limiter.exempt
async def readiness(request: Request):
    """
    Readiness probe.

    Returns:
        200 {"ready": true} when the database answers ``SELECT 1``, else 503
    """
    gateway = getattr(request.app.state, "gateway", None)
    ready = gateway is not None and await gateway.ping()
    if not ready:
        logger.warning("Readiness check failed: database unavailable")
        return JSONResponse(status_code=503, content={"ready": False})
    return {"ready": True}

"""
Health Check Endpoints.

Provides health status for the API and its dependencies.
"""
import os
import time
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from .. import deps
from ..models import HealthStatus
from ... import __version__
from ...auth.identity_client import UnconfiguredIdentityClient

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])

# Version from environment or default
VERSION = os.getenv("APP_VERSION", __version__)

HEALTH_PROBE_KEY = "health:probe"


@router.get("", response_model=HealthStatus)
async def health_check(request: Request):
    """
    Basic health check endpoint.

    Returns overall system status. A missing identity service makes the
    status "degraded": logins still work, MFA pages fail closed.
    """
    gate = deps.get_services(request)
    services = {}
    overall = "healthy"

    # Check key-value store
    try:
        start = time.time()
        gate.store.get(HEALTH_PROBE_KEY)
        latency = (time.time() - start) * 1000
        services["store"] = f"healthy ({latency:.1f}ms)"
    except Exception as e:
        services["store"] = f"unhealthy: {str(e)}"
        overall = "unhealthy"

    # Check Redis
    try:
        redis_client = deps.get_redis_client(gate.settings)
        if redis_client:
            start = time.time()
            redis_client.ping()
            latency = (time.time() - start) * 1000
            services["redis"] = f"healthy ({latency:.1f}ms)"
        else:
            services["redis"] = "fallback_mode (in-memory)"
    except Exception as e:
        services["redis"] = f"unhealthy: {str(e)}"
        # Redis failure is not critical - we have in-memory fallback

    # Identity service
    if isinstance(gate.identity_client, UnconfiguredIdentityClient):
        services["identity_service"] = "not_configured"
        if overall == "healthy":
            overall = "degraded"
    else:
        services["identity_service"] = "configured"

    return HealthStatus(
        status=overall,
        version=VERSION,
        services=services,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/live")
async def liveness():
    """
    Kubernetes liveness probe.

    Returns 200 if the service is running.
    """
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request):
    """
    Kubernetes readiness probe.

    Returns 200 if the key-value store answers.
    """
    try:
        deps.get_services(request).store.get(HEALTH_PROBE_KEY)
        return {"status": "ready"}
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not ready", "error": str(e)},
        )

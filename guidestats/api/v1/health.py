import json
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from guidestats.api.deps import get_profile_stats_service
from guidestats.config import settings
from guidestats.core.metrics import get_metrics, get_metrics_content_type
from guidestats.services.profile_scraper import ProfileStatsService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/health",
    summary="Liveness check",
    description="Returns HTTP 200 while the process is running.",
)
async def liveness():
    return {"status": "healthy"}


@router.get(
    "/health/ready",
    summary="Readiness check",
    description="Returns HTTP 200 when a browser binary is available, 503 otherwise. The browser itself is launched lazily and may be idle.",
)
async def readiness(service: ProfileStatsService = Depends(get_profile_stats_service)):
    """Reports whether a scrape could start right now."""
    checks = {}

    try:
        service.browser.resolve_binary()
        checks["browser_binary"] = "ok"
    except Exception as e:
        checks["browser_binary"] = f"error: {e}"

    checks["browser"] = "running" if service.browser.is_running else "idle"
    checks["limiter"] = (
        f"{service.limiter.active_count}/{service.limiter.limit} active, "
        f"{service.limiter.waiting_count} waiting"
    )

    ok = checks["browser_binary"] == "ok"
    return Response(
        content=json.dumps({"status": "ready" if ok else "not ready", "checks": checks}),
        status_code=200 if ok else 503,
        media_type="application/json",
    )


@router.get(
    "/health/browser",
    summary="Browser diagnostics",
    description="Read-only view of browser binary discovery and cache directories. Never launches a browser.",
)
async def browser_diagnostics(service: ProfileStatsService = Depends(get_profile_stats_service)):
    return service.browser.describe()


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose application metrics in Prometheus exposition format. Returns HTTP 404 if metrics collection is disabled.",
)
async def metrics():
    if not settings.METRICS_ENABLED:
        return Response(content="Metrics disabled", status_code=404)

    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type(),
    )

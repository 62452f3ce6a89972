import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from guidestats.api.v1.health import router as health_router
from guidestats.api.v1.router import api_router
from guidestats.config import settings
from guidestats.core.exceptions import GuideStatsError
from guidestats.core.logging_config import configure_logging
from guidestats.middleware.request_id import RequestIDMiddleware
from guidestats.services.browser import browser_manager

# Configure logging before any logger is used
configure_logging(log_format=settings.LOG_FORMAT, log_level=settings.LOG_LEVEL)

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        environment=settings.SENTRY_ENVIRONMENT,
        release=f"guidestats@{settings.APP_VERSION}",
    )

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # The browser is launched on the first scrape, not here
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    yield

    logger.info("Shutting down...")
    await browser_manager.shutdown()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Google Maps Local Guide profile stats, extracted from the live profile page.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


@app.exception_handler(GuideStatsError)
async def guidestats_error_handler(request: Request, exc: GuideStatsError):
    if exc.status_code >= 500:
        logger.warning("%s: %s", exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.to_dict()},
    )


# Request ID middleware (must be added before other middleware)
app.add_middleware(RequestIDMiddleware)

app.add_middleware(GZipMiddleware, minimum_size=500)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_methods=["GET"],
    allow_headers=["*"],
    expose_headers=["X-Cache", "X-Request-ID"],
)

app.include_router(api_router)

# Health & metrics routes (no /v1 prefix)
app.include_router(health_router)


@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "status": "running",
    }

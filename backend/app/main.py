"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn backend.app.main:app --reload
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check
from backend.app.core.database import close_db, init_db

# ── API routers ──
from backend.app.api.v1.readings import router as readings_router
from backend.app.api.v1.thresholds import router as thresholds_router
from backend.app.api.v1.alerts import router as alert_router
from backend.app.api.v1.notifications import router as notifications_router
from backend.app.api.v1.live import router as live_router

from backend.app.alerts.broadcaster import get_broadcaster
from backend.app.alerts.channels import sms_gateway
from backend.app.ingestion.sensor_feed import get_sensor_poller

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown events."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    if settings.DATABASE_AUTO_CREATE:
        await init_db()

    poller = get_sensor_poller() if settings.SENSOR_FEED_ENABLED else None
    if poller is not None:
        await poller.start()

    yield

    logger.info("Shutting down %s", settings.APP_NAME)
    if poller is not None:
        await poller.stop()
    await get_broadcaster().close()
    await sms_gateway.close()
    await close_db()


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Radiation threshold alert engine. Ingests operator and sensor "
        "readings, resolves location-scoped thresholds through a 4-tier "
        "fallback, records auditable alerts with an acknowledgment "
        "lifecycle, notifies subscribers by email and SMS, and pushes "
        "live events over WebSocket."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (last added runs first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(readings_router)
app.include_router(thresholds_router)
app.include_router(alert_router)
app.include_router(notifications_router)
app.include_router(live_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "reading-ingestion",
            "threshold-resolution",
            "alert-recording",
            "notification-dispatch",
            "live-events",
            "sensor-feed",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Deep health probe — database, channels, live hub, runtime counters."""
    report = await run_health_check()
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness():
    """Kubernetes readiness probe — can we serve traffic?"""
    report = await run_health_check()
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()

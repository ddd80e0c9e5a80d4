"""
Health check aggregation — deep health probe for the alert engine.

Checks:
    • Database connectivity (SELECT 1 through the async engine)
    • Notification channel configuration (email / SMS providers)
    • Live observer hub
    • Sensor feed configuration

The report also carries the process runtime counters (total requests,
active live observers, last data update).

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
    - Monitoring dashboards
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from backend.app.core import runtime_state
from backend.app.core.config import Settings, settings

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)
    runtime: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
            "runtime": self.runtime,
        }


_start_time = time.monotonic()
_SEVERITY_ORDER = [HealthStatus.HEALTHY, HealthStatus.DEGRADED, HealthStatus.UNHEALTHY]


async def check_database(target: Optional[AsyncEngine] = None) -> ComponentHealth:
    """Round-trip a trivial query through the engine pool."""
    comp = ComponentHealth(name="database")
    start = time.monotonic()
    if target is None:
        from backend.app.core.database import engine as target
    try:
        async with target.connect() as conn:
            await conn.execute(text("SELECT 1"))
        comp.message = "Connection pool available"
        comp.details = {"url": target.url.render_as_string(hide_password=True).split("@")[-1]}
    except (SQLAlchemyError, OSError) as e:
        logger.error("Database health check failed: %s", e)
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_notification_channels(cfg: Settings = settings) -> ComponentHealth:
    """Configuration-only check; no message is sent."""
    comp = ComponentHealth(name="notification_channels")
    start = time.monotonic()
    problems = []

    if cfg.EMAIL_PROVIDER == "smtp" and not cfg.SMTP_HOST:
        problems.append("EMAIL_PROVIDER=smtp but SMTP_HOST is unset")
    elif cfg.EMAIL_PROVIDER not in ("simulation", "smtp"):
        problems.append(f"unknown EMAIL_PROVIDER '{cfg.EMAIL_PROVIDER}'")

    if cfg.SMS_PROVIDER == "twilio" and not (
        cfg.TWILIO_ACCOUNT_SID and cfg.TWILIO_AUTH_TOKEN and cfg.TWILIO_FROM_NUMBER
    ):
        problems.append("SMS_PROVIDER=twilio but Twilio credentials are incomplete")
    elif cfg.SMS_PROVIDER not in ("simulation", "twilio"):
        problems.append(f"unknown SMS_PROVIDER '{cfg.SMS_PROVIDER}'")

    comp.details = {"email": cfg.EMAIL_PROVIDER, "sms": cfg.SMS_PROVIDER}
    if problems:
        comp.status = HealthStatus.DEGRADED
        comp.message = "; ".join(problems)
    else:
        comp.message = "Channels configured"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_live_hub() -> ComponentHealth:
    from backend.app.alerts.broadcaster import get_broadcaster

    comp = ComponentHealth(name="live_events")
    broadcaster = get_broadcaster()
    comp.details = {
        "connections": broadcaster.connection_count(),
        "alert_room": broadcaster.room_size(settings.LIVE_ALERT_ROOM),
        "reading_room": broadcaster.room_size(settings.LIVE_READING_ROOM),
    }
    comp.message = "Broadcaster running"
    return comp


async def check_sensor_feed(cfg: Settings = settings) -> ComponentHealth:
    comp = ComponentHealth(name="sensor_feed")
    comp.details = {
        "enabled": cfg.SENSOR_FEED_ENABLED,
        "url": cfg.SENSOR_FEED_URL,
        "interval_seconds": cfg.SENSOR_FEED_INTERVAL_SECONDS,
    }
    comp.message = "Polling" if cfg.SENSOR_FEED_ENABLED else "Disabled"
    return comp


async def run_health_check(target: Optional[AsyncEngine] = None) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    report.components = list(await asyncio.gather(
        check_database(target),
        check_notification_channels(),
        check_live_hub(),
        check_sensor_feed(),
    ))
    report.runtime = runtime_state.snapshot()
    # worst component wins
    report.status = max((c.status for c in report.components), key=_SEVERITY_ORDER.index,
                        default=HealthStatus.HEALTHY)
    return report

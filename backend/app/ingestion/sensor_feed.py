"""
sensor_feed.py — Automated radiation readings from the Safecast API.

Polls the most recent public measurement near a configured point and feeds
it through the same ingestion path as operator submissions, so automated
readings are evaluated, recorded and fanned out identically.

Safecast API Reference:
    https://api.safecast.org/measurements.json
        ?latitude=&longitude=&distance=<km>&order=desc&per_page=1

Mapping
=======
Safecast reports a single value per measurement; it is used for both the
near and the far channel. The location triple comes from settings
(SENSOR_FEED_BLOCK / PLANT / AREA); the area specification defaults to
"<lat>,<lon>" so a coordinate-keyed threshold can match.

Error Handling
==============
    poll_once()  raises ExternalServiceError on HTTP or payload failure
    run loop     logs and waits for the next interval; never exits on error
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TYPE_CHECKING

import httpx

from backend.app.alerts.models import Reading, ReadingOrigin
from backend.app.core.config import Settings, settings
from backend.app.core.errors import ExternalServiceError

if TYPE_CHECKING:
    from backend.app.alerts.alert_service import AlertService, IngestionResult

logger = logging.getLogger(__name__)

SOURCE_LABEL = "safecast"


def _parse_value(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ExternalServiceError(SOURCE_LABEL, f"non-numeric measurement value {raw!r}") from None
    if not math.isfinite(value) or value < 0:
        raise ExternalServiceError(SOURCE_LABEL, f"invalid measurement value {raw!r}")
    return value


def _parse_captured_at(raw: Any) -> datetime:
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            logger.debug("Unparseable captured_at %r; using now", raw)
    return datetime.now(timezone.utc)


class SensorFeedPoller:
    """
    Periodic Safecast poller.

    Usage:
        poller = SensorFeedPoller(get_alert_service())
        await poller.start()
        ...
        await poller.stop()
    """

    def __init__(
        self,
        service: "AlertService",
        *,
        cfg: Settings = settings,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.service = service
        self.cfg = cfg
        self._http_client = client
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.cfg.SENSOR_FEED_TIMEOUT_SECONDS)
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    @property
    def area_spec(self) -> str:
        return self.cfg.SENSOR_FEED_AREA_SPEC or f"{self.cfg.SENSOR_FEED_LAT},{self.cfg.SENSOR_FEED_LON}"

    async def fetch_latest(self) -> Optional[Dict[str, Any]]:
        params = {
            "latitude": self.cfg.SENSOR_FEED_LAT,
            "longitude": self.cfg.SENSOR_FEED_LON,
            "distance": self.cfg.SENSOR_FEED_RADIUS_KM,
            "order": "desc",
            "per_page": 1,
        }
        client = await self._get_client()
        try:
            response = await client.get(self.cfg.SENSOR_FEED_URL, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                SOURCE_LABEL, f"HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalServiceError(SOURCE_LABEL, str(e)) from e

        if not isinstance(data, list) or not data:
            return None
        return data[0]

    def to_reading(self, measurement: Dict[str, Any]) -> Reading:
        value = _parse_value(measurement.get("value"))
        return Reading(
            submitter_id=self.cfg.SENSOR_FEED_SUBMITTER,
            submitter_name="Safecast Ingest",
            block=self.cfg.SENSOR_FEED_BLOCK,
            plant=self.cfg.SENSOR_FEED_PLANT,
            area=self.cfg.SENSOR_FEED_AREA,
            area_spec=self.area_spec,
            near_value=value,
            far_value=value,
            effective_date=_parse_captured_at(measurement.get("captured_at")),
            origin=ReadingOrigin.SENSOR,
            source=SOURCE_LABEL,
        )

    async def poll_once(self) -> Optional["IngestionResult"]:
        """Fetch and ingest the latest measurement; None when the feed is empty."""
        measurement = await self.fetch_latest()
        if measurement is None:
            logger.info("Safecast returned no measurement near %s", self.area_spec)
            return None
        reading = self.to_reading(measurement)
        result = await self.service.ingest_reading(reading)
        logger.info(
            "Ingested Safecast reading %s (value=%g, violation=%s)",
            reading.reading_id, reading.near_value, result.violation,
            extra={"reading_id": reading.reading_id, "block": reading.block,
                   "plant": reading.plant, "area": reading.area},
        )
        return result

    # ── Scheduling ──

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("Sensor feed poller started (every %gs)", self.cfg.SENSOR_FEED_INTERVAL_SECONDS)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.close()
        logger.info("Sensor feed poller stopped")

    async def _run(self) -> None:
        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Real-time ingestion failed: %s", e)
            await asyncio.sleep(self.cfg.SENSOR_FEED_INTERVAL_SECONDS)


_poller: Optional[SensorFeedPoller] = None


def get_sensor_poller() -> SensorFeedPoller:
    """Process-wide poller bound to the SQL-backed alert service."""
    global _poller
    if _poller is None:
        from backend.app.alerts.alert_service import get_alert_service

        _poller = SensorFeedPoller(get_alert_service())
    return _poller

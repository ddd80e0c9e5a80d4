"""
FastAPI routes: reading ingestion.

    POST /api/v1/readings          — submit one reading (operator entry)
    POST /api/v1/ingest/realtime   — poll the sensor feed once, now

The caller only learns whether the reading itself was stored; threshold
resolution, alert recording and notification problems are reflected in
the response body but never fail the request.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from backend.app.alerts.alert_service import AlertService, IngestionResult, get_alert_service
from backend.app.api.schemas import ReadingCreate, ReadingResponse
from backend.app.ingestion.sensor_feed import SensorFeedPoller, get_sensor_poller

router = APIRouter(prefix="/api/v1", tags=["readings"])


def _to_response(result: IngestionResult) -> ReadingResponse:
    dispatch = result.dispatch
    return ReadingResponse(
        reading_id=result.reading.reading_id,
        violation=result.violation,
        severity=result.severity.value if result.severity else None,
        reasons=result.reasons,
        alert_id=result.alert_id,
        alert_recorded=result.alert_recorded,
        threshold_tier=result.resolution_tier.value if result.resolution_tier else None,
        notifications_sent=dispatch.sent if dispatch else 0,
        notification_failures=len(dispatch.failed) if dispatch else 0,
    )


@router.post(
    "/readings",
    response_model=ReadingResponse,
    summary="Submit a radiation reading",
    description=(
        "Stores the reading, resolves the applicable threshold, and raises "
        "an alert (with notifications and a live event) on violation."
    ),
)
async def submit_reading(
    body: ReadingCreate,
    service: AlertService = Depends(get_alert_service),
) -> ReadingResponse:
    result = await service.ingest_reading(body.to_reading())
    return _to_response(result)


@router.post(
    "/ingest/realtime",
    summary="Trigger one sensor-feed poll",
)
async def trigger_realtime_ingest(
    poller: SensorFeedPoller = Depends(get_sensor_poller),
) -> Dict[str, Any]:
    result = await poller.poll_once()
    if result is None:
        return {"success": True, "ingested": False}
    return {
        "success": True,
        "ingested": True,
        **_to_response(result).model_dump(),
    }

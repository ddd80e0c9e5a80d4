"""
FastAPI routes: alert issuing, acknowledgment and history.

    POST /api/v1/alerts/manual                  — operator-issued alert
    PUT  /api/v1/alerts/{alert_id}/acknowledge  — PENDING → ACKNOWLEDGED
    GET  /api/v1/alerts/history                 — newest first, filterable
    POST /api/v1/alerts/test-email              — one test message via the email channel
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from backend.app.alerts.alert_service import (
    AlertService,
    ManualAlertRequest,
    get_alert_service,
)
from backend.app.api.schemas import AcknowledgeRequest, ManualAlertCreate, EmailTestRequest
from backend.app.core.config import settings

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


@router.post(
    "/manual",
    summary="Issue a manual alert",
    description=(
        "Records a MANUAL alert and notifies every active subscriber with an "
        "email address, regardless of their severity preferences."
    ),
)
async def issue_manual_alert(
    body: ManualAlertCreate,
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    record = await service.issue_manual_alert(ManualAlertRequest(
        block=body.block,
        plant=body.plant,
        area=body.area,
        severity=body.severity,
        message=body.message,
        submitter_id=body.submitter_id or "admin",
    ))
    return {
        "success": True,
        "message": "Manual alert sent successfully",
        "alert": record.to_dict(),
    }


@router.put(
    "/{alert_id}/acknowledge",
    summary="Acknowledge an alert",
    responses={404: {"description": "Unknown alert"},
               409: {"description": "Already acknowledged"}},
)
async def acknowledge_alert(
    alert_id: str,
    body: AcknowledgeRequest,
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    record = await service.acknowledge(alert_id, body.acknowledged_by)
    return {
        "success": True,
        "message": "Alert acknowledged successfully",
        "alert": record.to_dict(),
    }


@router.get("/history", summary="Alert history, newest first")
async def alert_history(
    severity: Optional[str] = Query(None, description="LOW / MEDIUM / HIGH / CRITICAL"),
    alert_type: Optional[str] = Query(None, description="THRESHOLD_EXCEEDED / MANUAL"),
    limit: int = Query(
        settings.ALERT_HISTORY_DEFAULT_LIMIT, ge=1, le=settings.ALERT_HISTORY_MAX_LIMIT,
    ),
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    records = await service.alert_history(severity=severity, alert_type=alert_type, limit=limit)
    return {"count": len(records), "alerts": [r.to_dict() for r in records]}


@router.post(
    "/test-email",
    summary="Send a test email",
    description="Checks the email provider configuration with a single message.",
    responses={502: {"description": "Email provider rejected the message"}},
)
async def send_test_email(
    body: Optional[EmailTestRequest] = None,
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    address = await service.send_test_email(body.to if body else None)
    return {"success": True, "message": "Test email sent", "to": address}

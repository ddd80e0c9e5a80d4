"""
FastAPI routes: per-subscriber notification settings.

    GET /api/v1/notifications/settings                  — active subscribers + prefs
    PUT /api/v1/notifications/settings/{subscriber_id}  — partial update
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from backend.app.alerts.alert_service import AlertService, get_alert_service
from backend.app.api.schemas import PreferenceUpdate

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


@router.get("/settings", summary="Notification settings of all active subscribers")
async def list_settings(
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    entries = await service.notification_settings()
    return {"count": len(entries), "subscribers": entries}


@router.put("/settings/{subscriber_id}", summary="Update one subscriber's settings")
async def update_settings(
    subscriber_id: str,
    body: PreferenceUpdate,
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    preference = await service.update_preferences(
        subscriber_id, body.model_dump(exclude_unset=True),
    )
    return {"success": True, "preferences": preference.to_dict()}

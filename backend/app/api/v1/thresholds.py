"""
FastAPI routes: threshold administration.

    GET   /api/v1/thresholds          — all configs, active or not
    PUT   /api/v1/thresholds          — upsert by (block, plant, area)
    PATCH /api/v1/thresholds/active   — activate / deactivate (no deletes)
    POST  /api/v1/thresholds/import   — bulk upsert of legacy documents
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from backend.app.alerts.alert_service import AlertService, get_alert_service
from backend.app.api.schemas import ThresholdActivation, ThresholdImport, ThresholdUpsert

router = APIRouter(prefix="/api/v1/thresholds", tags=["thresholds"])


@router.get("", summary="List threshold configurations")
async def list_thresholds(
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    configs = await service.list_thresholds()
    return {"count": len(configs), "thresholds": [c.to_dict() for c in configs]}


@router.put("", summary="Create or replace a threshold configuration")
async def upsert_threshold(
    body: ThresholdUpsert,
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    stored = await service.upsert_threshold(body.to_config())
    return {"success": True, "threshold": stored.to_dict()}


@router.patch("/active", summary="Activate or deactivate a threshold")
async def set_threshold_active(
    body: ThresholdActivation,
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    updated = await service.set_threshold_active(
        body.block.strip(), body.plant.strip(), body.area.strip(), body.is_active,
    )
    return {"success": True, "threshold": updated.to_dict()}


@router.post("/import", summary="Import legacy threshold documents")
async def import_thresholds(
    body: ThresholdImport,
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    outcome = await service.import_thresholds(body.thresholds)
    return {"success": not outcome["rejected"], **outcome}

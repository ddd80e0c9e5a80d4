"""
recorder.py — Sole owner of the AlertRecord lifecycle.

Creates THRESHOLD_EXCEEDED and MANUAL records and performs the one
permitted mutation, PENDING → ACKNOWLEDGED, as a compare-and-set in the
store so concurrent acknowledgers cannot overwrite each other.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from backend.app.alerts.models import (
    AckResult,
    AlertRecord,
    AlertType,
    Reading,
    Severity,
    ThresholdConfig,
    Verdict,
    format_location,
)
from backend.app.core.errors import PersistenceError, RadiationAPIError
from backend.app.storage.base import AlertStore

logger = logging.getLogger(__name__)


def violation_message(verdict: Verdict, block: str, plant: str, area: str) -> str:
    return f"RADIATION ALERT: {'; '.join(verdict.reasons)} at {format_location(block, plant, area)}"


class AlertRecorder:

    def __init__(self, store: AlertStore) -> None:
        self.store = store

    async def _append(self, record: AlertRecord) -> AlertRecord:
        try:
            stored = await self.store.add(record)
        except RadiationAPIError:
            raise
        except Exception as exc:
            raise PersistenceError("alert_add", str(exc), alert_id=record.alert_id) from exc
        logger.info(
            "Alert %s recorded: %s %s at %s",
            record.alert_id, record.severity.value, record.alert_type.value, record.location,
            extra={"alert_id": record.alert_id, "severity": record.severity.value},
        )
        return stored

    async def record_violation(
        self, reading: Reading, verdict: Verdict, config: ThresholdConfig,
    ) -> AlertRecord:
        if not verdict.is_violation:
            raise ValueError("Cannot record an alert for a compliant reading")
        record = AlertRecord(
            alert_type=AlertType.THRESHOLD_EXCEEDED,
            severity=verdict.severity,
            block=reading.block,
            plant=reading.plant,
            area=reading.area,
            submitter_id=reading.submitter_id,
            message=violation_message(verdict, reading.block, reading.plant, reading.area),
            near_reading=float(reading.near_value),
            far_reading=float(reading.far_value),
            near_threshold=config.near_limit,
            far_threshold=config.far_limit,
        )
        return await self._append(record)

    async def record_manual(
        self,
        block: str,
        plant: str,
        area: str,
        severity: Severity,
        message: str,
        submitter_id: str,
    ) -> AlertRecord:
        record = AlertRecord(
            alert_type=AlertType.MANUAL,
            severity=severity,
            block=block,
            plant=plant,
            area=area,
            submitter_id=submitter_id,
            message=message,
        )
        return await self._append(record)

    async def acknowledge(self, alert_id: str, acknowledger_id: str) -> AckResult:
        try:
            result = await self.store.compare_and_acknowledge(
                alert_id, acknowledger_id, datetime.now(timezone.utc),
            )
        except RadiationAPIError:
            raise
        except Exception as exc:
            raise PersistenceError("alert_acknowledge", str(exc), alert_id=alert_id) from exc

        if result == AckResult.ACKNOWLEDGED:
            logger.info("Alert %s acknowledged by %s", alert_id, acknowledger_id,
                        extra={"alert_id": alert_id})
        else:
            logger.info("Acknowledge of %s by %s rejected: %s", alert_id, acknowledger_id,
                        result.value, extra={"alert_id": alert_id})
        return result

    async def get(self, alert_id: str) -> Optional[AlertRecord]:
        return await self.store.get(alert_id)

    async def history(
        self,
        *,
        severity: Optional[Severity] = None,
        alert_type: Optional[AlertType] = None,
        limit: int = 50,
    ) -> List[AlertRecord]:
        return await self.store.history(severity=severity, alert_type=alert_type, limit=limit)

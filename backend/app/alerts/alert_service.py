"""
alert_service.py — Reading → alert pipeline orchestration.

This is the central coordinator that:
    1. Persists an incoming reading (the only step whose failure the
       submitter sees)
    2. Resolves the applicable threshold through the 4-tier fallback
    3. Evaluates the reading against it
    4. On violation, records an auditable alert
    5. Resolves the fan-out set from subscriber preferences
    6. Dispatches notifications and pushes the live event concurrently

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  Reading submitted  │  POST /readings  or  sensor feed poll
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  1. Persist reading │  failure → PersistenceError to caller
    │     + new_reading   │  live event to the readings room
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  2. Resolve         │  exact → area_spec → wildcard → strictest
    │     threshold       │  none → logged, reading still accepted
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  3. Evaluate        │  strict >, near and far independently
    └─────────┬───────────┘
              │ violation
              ▼
    ┌─────────────────────┐
    │  4. Record alert    │  failure → logged, fan-out still runs
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  5. Recipients      │  preferences × severity (override for manual)
    └─────────┬───────────┘
              │
              ▼
    ┌──────────────┬──────────────┐
    │ 6a. Dispatch │ 6b. Live     │  asyncio.gather, each isolated
    │  email / SMS │  broadcast   │
    └──────────────┴──────────────┘

Manual alerts enter at step 4 with override_all=True.

═══════════════════════════════════════════════════════════════════════════
FAILURE POLICY
═══════════════════════════════════════════════════════════════════════════

    Step                 Reading ingestion          Manual alert
    ──────────────────   ────────────────────────   ─────────────────────────
    reading write        raised                     n/a
    threshold lookup     logged, no evaluation      n/a
    alert write          logged, alert_recorded=F   fan-out, then raised
    recipients lookup    logged, no notifications   logged, no notifications
    dispatch / push      per-send report entries    per-send report entries
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional

from backend.app.alerts.broadcaster import LiveEventBroadcaster, get_broadcaster
from backend.app.alerts.dispatcher import NotificationDispatcher
from backend.app.alerts.evaluator import evaluate
from backend.app.alerts.models import (
    AckResult,
    AlertRecord,
    AlertType,
    DispatchReport,
    Reading,
    Recipient,
    ResolutionTier,
    Severity,
    Subscriber,
    SubscriberPreference,
    ThresholdConfig,
    format_location,
)
from backend.app.alerts.recorder import AlertRecorder, violation_message
from backend.app.alerts.subscribers import SubscriberResolver
from backend.app.alerts.threshold_resolver import ThresholdResolver
from backend.app.core import runtime_state
from backend.app.core.config import settings
from backend.app.core.errors import (
    AlreadyAcknowledgedError,
    ExternalServiceError,
    NotFoundError,
    PersistenceError,
    RadiationAPIError,
    ValidationError,
)
from backend.app.storage.base import (
    AlertStore,
    ReadingStore,
    SubscriberRegistry,
    ThresholdStore,
)
from backend.app.storage.normalize import normalize_thresholds

logger = logging.getLogger(__name__)

ALERT_EVENT = "alert"
NEW_READING_EVENT = "new_reading"


# ═══════════════════════════════════════════════════════════════════════════
# Request / Result Types
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ManualAlertRequest:
    block: str
    plant: str
    area: str
    severity: Any
    message: str
    submitter_id: str = "admin"


@dataclass
class IngestionResult:
    """What happened to one submitted reading."""
    reading: Reading
    stored: bool = True
    violation: bool = False
    severity: Optional[Severity] = None
    reasons: List[str] = field(default_factory=list)
    alert_id: Optional[str] = None
    alert_recorded: bool = False
    resolution_tier: Optional[ResolutionTier] = None
    dispatch: Optional[DispatchReport] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reading_id": self.reading.reading_id,
            "stored": self.stored,
            "violation": self.violation,
            "severity": self.severity.value if self.severity else None,
            "reasons": list(self.reasons),
            "alert_id": self.alert_id,
            "alert_recorded": self.alert_recorded,
            "threshold_tier": self.resolution_tier.value if self.resolution_tier else None,
            "dispatch": self.dispatch.to_dict() if self.dispatch else None,
        }


def _require_text(value: Optional[str], field_name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field_name} must not be empty", field=field_name)
    return text


def _parse_severity(value: Any) -> Severity:
    try:
        return Severity.parse(value)
    except ValueError as exc:
        raise ValidationError(str(exc), field="severity") from None


def _require_severity(value: Any) -> Severity:
    """Exact label match; manual alerts do not accept "critical" or " HIGH "."""
    if isinstance(value, Severity):
        return value
    if value not in {s.value for s in Severity}:
        raise ValidationError(
            f"Invalid severity '{value}'. Must be one of: {[s.value for s in Severity]}",
            field="severity",
        )
    return Severity(value)


# ═══════════════════════════════════════════════════════════════════════════
# Alert Service
# ═══════════════════════════════════════════════════════════════════════════

class AlertService:

    def __init__(
        self,
        *,
        thresholds: ThresholdStore,
        readings: ReadingStore,
        alerts: AlertStore,
        registry: SubscriberRegistry,
        dispatcher: Optional[NotificationDispatcher] = None,
        broadcaster: Optional[LiveEventBroadcaster] = None,
    ) -> None:
        self.thresholds = thresholds
        self.readings = readings
        self.registry = registry
        self.resolver = ThresholdResolver(thresholds)
        self.recorder = AlertRecorder(alerts)
        self.subscribers = SubscriberResolver(registry)
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.broadcaster = broadcaster or get_broadcaster()

    # ── Reading ingestion ──

    async def ingest_reading(self, reading: Reading) -> IngestionResult:
        log_extra = {"reading_id": reading.reading_id, "block": reading.block,
                     "plant": reading.plant, "area": reading.area}
        try:
            await self.readings.add(reading)
        except RadiationAPIError:
            raise
        except Exception as exc:
            raise PersistenceError("reading_add", str(exc), reading_id=reading.reading_id) from exc

        runtime_state.mark_data_update(reading.ingested_at)
        logger.info("Reading %s stored for %s (near=%g, far=%g, origin=%s)",
                    reading.reading_id, reading.location, reading.near_value,
                    reading.far_value, reading.origin.value, extra=log_extra)
        result = IngestionResult(reading=reading)

        await self._push(
            NEW_READING_EVENT,
            {"event_kind": NEW_READING_EVENT, "reading": reading.to_dict()},
            settings.LIVE_READING_ROOM,
        )

        try:
            resolution = await self.resolver.resolve(
                reading.block, reading.plant, reading.area, reading.area_spec,
            )
        except Exception as exc:
            logger.error("Threshold lookup failed for reading %s: %s",
                         reading.reading_id, exc, extra=log_extra)
            return result
        if resolution is None:
            return result

        result.resolution_tier = resolution.tier
        verdict = evaluate(reading, resolution.config)
        if not verdict.is_violation:
            logger.debug("Reading %s within limits (%s)", reading.reading_id,
                         resolution.tier.value, extra=log_extra)
            return result

        result.violation = True
        result.severity = verdict.severity
        result.reasons = list(verdict.reasons)

        message = violation_message(verdict, reading.block, reading.plant, reading.area)
        try:
            record = await self.recorder.record_violation(reading, verdict, resolution.config)
            result.alert_id = record.alert_id
            result.alert_recorded = True
        except RadiationAPIError as exc:
            logger.error("Alert for reading %s not recorded: %s",
                         reading.reading_id, exc.message, extra=log_extra)

        result.dispatch = await self._fan_out(
            severity=verdict.severity,
            message=message,
            block=reading.block,
            plant=reading.plant,
            area=reading.area,
            alert_id=result.alert_id,
            event_kind=AlertType.THRESHOLD_EXCEEDED.value.lower(),
            override_all=False,
        )
        return result

    # ── Manual alerts ──

    async def issue_manual_alert(self, request: ManualAlertRequest) -> AlertRecord:
        block = _require_text(request.block, "block")
        plant = _require_text(request.plant, "plant")
        area = _require_text(request.area, "area")
        message = _require_text(request.message, "message")
        severity = _require_severity(request.severity)
        submitter_id = (request.submitter_id or "").strip() or "admin"

        record: Optional[AlertRecord] = None
        failure: Optional[PersistenceError] = None
        try:
            record = await self.recorder.record_manual(
                block, plant, area, severity, message, submitter_id,
            )
        except PersistenceError as exc:
            failure = exc
            logger.error("Manual alert at %s not recorded: %s",
                         format_location(block, plant, area), exc.message)

        await self._fan_out(
            severity=severity,
            message=message,
            block=block,
            plant=plant,
            area=area,
            alert_id=record.alert_id if record else None,
            event_kind=AlertType.MANUAL.value.lower(),
            override_all=True,
        )
        if failure is not None:
            raise failure
        return record

    # ── Fan-out ──

    async def _fan_out(
        self,
        *,
        severity: Severity,
        message: str,
        block: str,
        plant: str,
        area: str,
        alert_id: Optional[str],
        event_kind: str,
        override_all: bool,
    ) -> DispatchReport:
        location = format_location(block, plant, area)
        try:
            recipients = await self.subscribers.resolve_recipients(severity, override_all)
        except Exception as exc:
            logger.error("Recipient lookup failed for %s: %s", alert_id or location, exc,
                         extra={"alert_id": alert_id, "severity": severity.value})
            recipients = []

        event = {
            "event_kind": event_kind,
            "severity": severity.value,
            "message": message,
            "location": location,
            "alert_id": alert_id,
        }
        report, _ = await asyncio.gather(
            self._dispatch(recipients, severity, message, location, alert_id, block),
            self._push(ALERT_EVENT, event, settings.LIVE_ALERT_ROOM),
        )
        return report

    async def _dispatch(
        self,
        recipients: List[Recipient],
        severity: Severity,
        message: str,
        location: str,
        alert_id: Optional[str],
        block: str,
    ) -> DispatchReport:
        try:
            return await self.dispatcher.dispatch(
                recipients, severity, message, location, alert_id=alert_id, block=block,
            )
        except Exception as exc:
            logger.error("Dispatch for %s aborted: %s", alert_id or location, exc,
                         extra={"alert_id": alert_id})
            return DispatchReport()

    async def _push(self, event_type: str, payload: Dict[str, Any], room: str) -> int:
        try:
            return await self.broadcaster.broadcast(event_type, payload, room)
        except Exception as exc:
            logger.error("Live broadcast of %s failed: %s", event_type, exc, extra={"room": room})
            return 0

    # ── Acknowledgment & history ──

    async def acknowledge(self, alert_id: str, acknowledger_id: str) -> AlertRecord:
        alert_id = _require_text(alert_id, "alert_id")
        acknowledger_id = _require_text(acknowledger_id, "acknowledged_by")
        outcome = await self.recorder.acknowledge(alert_id, acknowledger_id)
        record = await self.recorder.get(alert_id)
        if outcome == AckResult.NOT_FOUND or record is None:
            raise NotFoundError("Alert", alert_id=alert_id)
        if outcome == AckResult.ALREADY_ACKNOWLEDGED:
            raise AlreadyAcknowledgedError(alert_id, record.acknowledged_by)
        return record

    async def alert_history(
        self,
        *,
        severity: Optional[Any] = None,
        alert_type: Optional[Any] = None,
        limit: Optional[int] = None,
    ) -> List[AlertRecord]:
        limit = settings.ALERT_HISTORY_DEFAULT_LIMIT if limit is None else limit
        if not 1 <= limit <= settings.ALERT_HISTORY_MAX_LIMIT:
            raise ValidationError(
                f"limit must be between 1 and {settings.ALERT_HISTORY_MAX_LIMIT}",
                field="limit",
            )
        parsed_severity = _parse_severity(severity) if severity else None
        parsed_type = None
        if alert_type:
            try:
                parsed_type = AlertType(str(alert_type).strip().upper())
            except ValueError:
                raise ValidationError(
                    f"Invalid alert_type '{alert_type}'. "
                    f"Must be one of: {[t.value for t in AlertType]}",
                    field="alert_type",
                ) from None
        return await self.recorder.history(
            severity=parsed_severity, alert_type=parsed_type, limit=limit,
        )

    # ── Threshold administration ──

    async def list_thresholds(self) -> List[ThresholdConfig]:
        return await self.thresholds.list_all()

    async def upsert_threshold(self, config: ThresholdConfig) -> ThresholdConfig:
        stored = await self.thresholds.upsert(config)
        logger.info("Threshold %s/%s/%s set: near=%g far=%g %s active=%s",
                    config.block, config.plant, config.area, config.near_limit,
                    config.far_limit, config.severity.value, config.is_active,
                    extra={"block": config.block, "plant": config.plant, "area": config.area})
        return stored

    async def set_threshold_active(
        self, block: str, plant: str, area: str, is_active: bool,
    ) -> ThresholdConfig:
        updated = await self.thresholds.set_active(block, plant, area, is_active)
        if updated is None:
            raise NotFoundError("Threshold", block=block, plant=plant, area=area)
        logger.info("Threshold %s/%s/%s active=%s", block, plant, area, is_active)
        return updated

    async def import_thresholds(self, docs: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
        configs, rejected = normalize_thresholds(docs)
        for config in configs:
            await self.thresholds.upsert(config)
        if rejected:
            logger.warning("Threshold import rejected %d document(s)", len(rejected))
        logger.info("Threshold import stored %d config(s)", len(configs))
        return {
            "imported": len(configs),
            "rejected": rejected,
            "thresholds": [c.to_dict() for c in configs],
        }

    # ── Subscribers & preferences ──

    async def register_subscriber(self, subscriber: Subscriber) -> Subscriber:
        return await self.registry.register(subscriber)

    async def notification_settings(self) -> List[Dict[str, Any]]:
        subscribers = await self.registry.list_active()
        prefs = await self.registry.get_preferences(s.subscriber_id for s in subscribers)
        return [
            {
                **sub.to_dict(),
                "preferences": (
                    prefs.get(sub.subscriber_id)
                    or SubscriberPreference(subscriber_id=sub.subscriber_id)
                ).to_dict(),
            }
            for sub in subscribers
        ]

    async def update_preferences(
        self, subscriber_id: str, changes: Mapping[str, Any],
    ) -> SubscriberPreference:
        if await self.registry.get(subscriber_id) is None:
            raise NotFoundError("Subscriber", subscriber_id=subscriber_id)
        current = (await self.registry.get_preferences([subscriber_id])).get(
            subscriber_id
        ) or SubscriberPreference(subscriber_id=subscriber_id)

        updates: Dict[str, Any] = {}
        for key in ("email_enabled", "sms_enabled", "contact_email", "contact_phone"):
            if key in changes and changes[key] is not None:
                updates[key] = changes[key]
        if changes.get("severities") is not None:
            updates["severities"] = frozenset(_parse_severity(s) for s in changes["severities"])

        preference = replace(current, **updates)
        stored = await self.registry.upsert_preference(preference)
        logger.info("Notification preferences updated for %s", subscriber_id,
                    extra={"recipient_id": subscriber_id})
        return stored

    # ── Email configuration check ──

    async def send_test_email(self, to: Optional[str] = None) -> str:
        """Send one test message through the email channel; returns the address used."""
        address = (to or "").strip() or (settings.SMTP_USER or "").strip()
        if not address:
            raise ValidationError("No recipient email provided", field="to")

        recipient = Recipient(
            subscriber_id="email-test",
            name="Email test",
            email=address,
            phone=None,
            wants_email=True,
            wants_sms=False,
        )
        report = await self.dispatcher.dispatch(
            [recipient],
            Severity.LOW,
            "This is a test email from the Radiation Monitoring System.",
            "configuration check",
            block="TEST",
        )
        if report.failed:
            reason = report.failed[0].reason
            logger.error("Test email to %s failed: %s", address, reason,
                         extra={"channel": "email"})
            raise ExternalServiceError("email", reason, to=address)
        logger.info("Test email sent to %s", address, extra={"channel": "email"})
        return address


# ═══════════════════════════════════════════════════════════════════════════
# Module-level singleton (SQL-backed)
# ═══════════════════════════════════════════════════════════════════════════

_service: Optional[AlertService] = None


def get_alert_service() -> AlertService:
    global _service
    if _service is None:
        from backend.app.core.database import async_session_factory
        from backend.app.storage.sql import (
            SqlAlertStore,
            SqlReadingStore,
            SqlSubscriberRegistry,
            SqlThresholdStore,
        )

        _service = AlertService(
            thresholds=SqlThresholdStore(async_session_factory),
            readings=SqlReadingStore(async_session_factory),
            alerts=SqlAlertStore(async_session_factory),
            registry=SqlSubscriberRegistry(async_session_factory),
        )
    return _service

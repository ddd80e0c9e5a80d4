"""
models.py — Shared data structures for the threshold alert engine.

Defines:
    • Severity        — LOW / MEDIUM / HIGH / CRITICAL
    • AlertType       — THRESHOLD_EXCEEDED / MANUAL
    • ThresholdConfig — per-(block, plant, area) limits
    • Reading         — one near/far radiation measurement
    • Verdict         — evaluation outcome (derived, never stored)
    • AlertRecord     — persisted, auditable alert with ack lifecycle
    • Subscriber / SubscriberPreference / Recipient — fan-out inputs/outputs
    • DeliveryAttempt / DispatchReport — notification results

═══════════════════════════════════════════════════════════════════════════
LOCATION HIERARCHY
═══════════════════════════════════════════════════════════════════════════

    Block  →  Plant  →  Area          (e.g. "B1" → "P1" → "A1")

Threshold configs are keyed by the full triple. The reserved area value
WILDCARD_AREA ("ANY") applies to every area within its plant. Readings
may also carry a free-text area specification that is tried as a
secondary area key during threshold resolution.

═══════════════════════════════════════════════════════════════════════════
ACKNOWLEDGMENT STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    PENDING  ──acknowledge()──▶  ACKNOWLEDGED   (terminal)

acknowledged_by / acknowledged_at are written together, exactly once.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


WILDCARD_AREA = "ANY"


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class Severity(str, Enum):
    """Alert severity attached to a threshold config and propagated to alerts."""
    LOW      = "LOW"
    MEDIUM   = "MEDIUM"
    HIGH     = "HIGH"
    CRITICAL = "CRITICAL"

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        """Case-insensitive parse; raises ValueError on unknown labels."""
        if isinstance(value, Severity):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(
                f"Invalid severity '{value}'. "
                f"Must be one of: {[s.value for s in cls]}"
            ) from None


class AlertType(str, Enum):
    THRESHOLD_EXCEEDED = "THRESHOLD_EXCEEDED"
    MANUAL             = "MANUAL"


class AlertState(str, Enum):
    PENDING      = "pending"
    ACKNOWLEDGED = "acknowledged"


class AckResult(str, Enum):
    """Outcome of an acknowledgment compare-and-set."""
    ACKNOWLEDGED         = "acknowledged"
    NOT_FOUND            = "not_found"
    ALREADY_ACKNOWLEDGED = "already_acknowledged"


class ReadingOrigin(str, Enum):
    MANUAL = "manual"   # operator submission
    SENSOR = "sensor"   # automated feed poll


class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS   = "sms"


class DeliveryStatus(str, Enum):
    """Delivery state per recipient per channel."""
    PENDING   = "pending"
    SENDING   = "sending"
    DELIVERED = "delivered"
    FAILED    = "failed"
    SKIPPED   = "skipped"


class ResolutionTier(str, Enum):
    """Which step of the fallback search produced a threshold."""
    EXACT     = "exact"
    AREA_SPEC = "area_spec"
    WILDCARD  = "wildcard"
    STRICTEST = "strictest"


DEFAULT_SUBSCRIBED_SEVERITIES: FrozenSet[Severity] = frozenset(
    {Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL}
)


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def _generate_alert_id() -> str:
    return f"ALR-{uuid.uuid4().hex[:12].upper()}"


def _generate_reading_id() -> str:
    return f"RDG-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def format_location(block: str, plant: str, area: str) -> str:
    return f"{block} - {plant} - {area}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════════════════
# Thresholds & Readings
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ThresholdConfig:
    """
    Flat threshold record for one location.

    Attributes
    ----------
    block, plant, area : str
        Identity. ``area`` may be WILDCARD_AREA.
    near_limit, far_limit : float
        Strict upper bounds for the near and far channels.
    severity : Severity
        Severity assigned to alerts raised against this config.
    is_active : bool
        Inactive configs never participate in resolution.
    """
    block: str
    plant: str
    area: str
    near_limit: float
    far_limit: float
    severity: Severity = Severity.MEDIUM
    is_active: bool = True
    updated_at: datetime = field(default_factory=_now)

    @property
    def identity(self) -> Tuple[str, str, str]:
        return (self.block, self.plant, self.area)

    @property
    def limit_sum(self) -> float:
        return self.near_limit + self.far_limit

    @property
    def is_wildcard(self) -> bool:
        return self.area == WILDCARD_AREA

    def to_dict(self) -> Dict[str, Any]:
        return {
            "block": self.block,
            "plant": self.plant,
            "area": self.area,
            "near_limit": self.near_limit,
            "far_limit": self.far_limit,
            "severity": self.severity.value,
            "is_active": self.is_active,
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class ThresholdResolution:
    config: ThresholdConfig
    tier: ResolutionTier


@dataclass
class Reading:
    """One radiation measurement. Immutable once stored."""
    submitter_id: str
    block: str
    plant: str
    area: str
    near_value: float
    far_value: float
    effective_date: datetime = field(default_factory=_now)
    area_spec: Optional[str] = None
    submitter_name: Optional[str] = None
    origin: ReadingOrigin = ReadingOrigin.MANUAL
    source: Optional[str] = None
    reading_id: str = field(default_factory=_generate_reading_id)
    ingested_at: datetime = field(default_factory=_now)

    @property
    def location(self) -> str:
        return format_location(self.block, self.plant, self.area)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reading_id": self.reading_id,
            "submitter_id": self.submitter_id,
            "submitter_name": self.submitter_name,
            "block": self.block,
            "plant": self.plant,
            "area": self.area,
            "area_spec": self.area_spec,
            "near_value": self.near_value,
            "far_value": self.far_value,
            "effective_date": _iso(self.effective_date),
            "ingested_at": _iso(self.ingested_at),
            "origin": self.origin.value,
            "source": self.source,
        }


@dataclass
class Verdict:
    """Evaluation outcome. Computed fresh on every evaluation."""
    is_violation: bool
    severity: Severity
    matched_threshold: Optional[ThresholdConfig] = None
    reasons: List[str] = field(default_factory=list)
    near_exceeded: bool = False
    far_exceeded: bool = False


# ═══════════════════════════════════════════════════════════════════════════
# Alert Records
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class AlertRecord:
    """Auditable alert. Mutated exactly once, by acknowledgment."""
    alert_type: AlertType
    severity: Severity
    block: str
    plant: str
    area: str
    submitter_id: str
    message: str
    near_reading: float = 0.0
    far_reading: float = 0.0
    near_threshold: float = 0.0
    far_threshold: float = 0.0
    alert_id: str = field(default_factory=_generate_alert_id)
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    acknowledged_at: Optional[datetime] = None

    @property
    def state(self) -> AlertState:
        return AlertState.ACKNOWLEDGED if self.acknowledged else AlertState.PENDING

    @property
    def location(self) -> str:
        return format_location(self.block, self.plant, self.area)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "alert_type": self.alert_type.value,
            "severity": self.severity.value,
            "block": self.block,
            "plant": self.plant,
            "area": self.area,
            "submitter_id": self.submitter_id,
            "near_reading": self.near_reading,
            "far_reading": self.far_reading,
            "near_threshold": self.near_threshold,
            "far_threshold": self.far_threshold,
            "message": self.message,
            "state": self.state.value,
            "acknowledged": self.acknowledged,
            "acknowledged_by": self.acknowledged_by,
            "created_at": _iso(self.created_at),
            "acknowledged_at": _iso(self.acknowledged_at),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Subscribers
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Subscriber:
    """Registry view of a registered user."""
    subscriber_id: str
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    is_admin: bool = False
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subscriber_id": self.subscriber_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "is_admin": self.is_admin,
            "is_active": self.is_active,
        }


@dataclass
class SubscriberPreference:
    """Per-subscriber notification settings (defaults match registration)."""
    subscriber_id: str
    email_enabled: bool = True
    sms_enabled: bool = False
    severities: FrozenSet[Severity] = DEFAULT_SUBSCRIBED_SEVERITIES
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subscriber_id": self.subscriber_id,
            "email_enabled": self.email_enabled,
            "sms_enabled": self.sms_enabled,
            "severities": sorted(s.value for s in self.severities),
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
        }


@dataclass
class Recipient:
    """One entry of a fan-out set."""
    subscriber_id: str
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    wants_email: bool = False
    wants_sms: bool = False

    def wants(self, channel: NotificationChannel) -> bool:
        if channel == NotificationChannel.EMAIL:
            return self.wants_email
        return self.wants_sms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subscriber_id": self.subscriber_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "wants_email": self.wants_email,
            "wants_sms": self.wants_sms,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Notification delivery
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class AlertNotification:
    """Rendered-independent content of one outbound notification."""
    severity: Severity
    message: str
    location: str
    alert_id: Optional[str] = None
    issued_at: datetime = field(default_factory=_now)
    block: str = ""


@dataclass
class DeliveryAttempt:
    """Record of a single send to one recipient via one channel."""
    channel: NotificationChannel
    recipient_id: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempted_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    provider_response: Optional[Dict[str, Any]] = None


@dataclass
class DispatchFailure:
    recipient_id: str
    channel: NotificationChannel
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient_id": self.recipient_id,
            "channel": self.channel.value,
            "reason": self.reason,
        }


@dataclass
class DispatchReport:
    """Aggregate of one dispatch call; per-send failures never raise."""
    sent: int = 0
    emails_sent: int = 0
    sms_sent: int = 0
    failed: List[DispatchFailure] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sent": self.sent,
            "emails_sent": self.emails_sent,
            "sms_sent": self.sms_sent,
            "failed": [f.to_dict() for f in self.failed],
        }

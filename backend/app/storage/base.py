"""
Store protocols consumed by the alert engine.

The core only talks to these interfaces; both the in-memory and the SQL
implementations return canonical dataclasses from alerts.models, so no
schema variance leaks above this layer.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol

from backend.app.alerts.models import (
    AckResult,
    AlertRecord,
    AlertType,
    Reading,
    Severity,
    Subscriber,
    SubscriberPreference,
    ThresholdConfig,
)


class ThresholdStore(Protocol):
    """Per-location threshold configs. Results are ordered by identity."""

    async def find_active(self, block: str, plant: str, area: str) -> List[ThresholdConfig]: ...

    async def list_active_for_plant(self, block: str, plant: str) -> List[ThresholdConfig]: ...

    async def list_all(self) -> List[ThresholdConfig]: ...

    async def upsert(self, config: ThresholdConfig) -> ThresholdConfig: ...

    async def set_active(
        self, block: str, plant: str, area: str, is_active: bool,
    ) -> Optional[ThresholdConfig]: ...


class ReadingStore(Protocol):

    async def add(self, reading: Reading) -> Reading: ...


class AlertStore(Protocol):

    async def add(self, record: AlertRecord) -> AlertRecord: ...

    async def get(self, alert_id: str) -> Optional[AlertRecord]: ...

    async def compare_and_acknowledge(
        self, alert_id: str, acknowledged_by: str, acknowledged_at: datetime,
    ) -> AckResult:
        """Atomically move PENDING → ACKNOWLEDGED; never overwrites a prior ack."""
        ...

    async def history(
        self,
        *,
        severity: Optional[Severity] = None,
        alert_type: Optional[AlertType] = None,
        limit: int = 50,
    ) -> List[AlertRecord]: ...


class SubscriberRegistry(Protocol):

    async def list_active(self) -> List[Subscriber]: ...

    async def get(self, subscriber_id: str) -> Optional[Subscriber]: ...

    async def get_admin(self) -> Optional[Subscriber]:
        """The designated administrator: lowest-id admin, active or not."""
        ...

    async def get_preferences(
        self, subscriber_ids: Iterable[str],
    ) -> Dict[str, SubscriberPreference]: ...

    async def register(self, subscriber: Subscriber) -> Subscriber: ...

    async def upsert_preference(self, preference: SubscriberPreference) -> SubscriberPreference: ...

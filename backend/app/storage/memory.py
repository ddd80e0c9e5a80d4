"""
In-process store implementations.

Used by the test-suite and for running the API without a database
(production: storage.sql). Every read returns a copy so callers can never
mutate stored state behind the store's back.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

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


class InMemoryThresholdStore:
    """Threshold configs keyed by (block, plant, area)."""

    def __init__(self, configs: Iterable[ThresholdConfig] = ()) -> None:
        self._configs: Dict[Tuple[str, str, str], ThresholdConfig] = {}
        self._lock = threading.Lock()
        for config in configs:
            self._configs[config.identity] = replace(config)

    def _ordered(self) -> List[ThresholdConfig]:
        return [replace(self._configs[k]) for k in sorted(self._configs)]

    async def find_active(self, block: str, plant: str, area: str) -> List[ThresholdConfig]:
        config = self._configs.get((block, plant, area))
        if config is None or not config.is_active:
            return []
        return [replace(config)]

    async def list_active_for_plant(self, block: str, plant: str) -> List[ThresholdConfig]:
        return [
            c for c in self._ordered()
            if c.block == block and c.plant == plant and c.is_active
        ]

    async def list_all(self) -> List[ThresholdConfig]:
        return self._ordered()

    async def upsert(self, config: ThresholdConfig) -> ThresholdConfig:
        with self._lock:
            self._configs[config.identity] = replace(config)
        return replace(config)

    async def set_active(
        self, block: str, plant: str, area: str, is_active: bool,
    ) -> Optional[ThresholdConfig]:
        with self._lock:
            config = self._configs.get((block, plant, area))
            if config is None:
                return None
            config.is_active = is_active
            return replace(config)


class InMemoryReadingStore:

    def __init__(self) -> None:
        self.readings: Dict[str, Reading] = {}

    async def add(self, reading: Reading) -> Reading:
        self.readings[reading.reading_id] = replace(reading)
        return reading


class InMemoryAlertStore:
    """Append-only alert records with a lock-guarded acknowledgment CAS."""

    def __init__(self) -> None:
        self._records: Dict[str, AlertRecord] = {}
        self._lock = threading.Lock()

    async def add(self, record: AlertRecord) -> AlertRecord:
        with self._lock:
            self._records[record.alert_id] = replace(record)
        return replace(record)

    async def get(self, alert_id: str) -> Optional[AlertRecord]:
        record = self._records.get(alert_id)
        return replace(record) if record else None

    async def compare_and_acknowledge(
        self, alert_id: str, acknowledged_by: str, acknowledged_at: datetime,
    ) -> AckResult:
        with self._lock:
            record = self._records.get(alert_id)
            if record is None:
                return AckResult.NOT_FOUND
            if record.acknowledged:
                return AckResult.ALREADY_ACKNOWLEDGED
            record.acknowledged = True
            record.acknowledged_by = acknowledged_by
            record.acknowledged_at = acknowledged_at
            return AckResult.ACKNOWLEDGED

    async def history(
        self,
        *,
        severity: Optional[Severity] = None,
        alert_type: Optional[AlertType] = None,
        limit: int = 50,
    ) -> List[AlertRecord]:
        records = [
            r for r in self._records.values()
            if (severity is None or r.severity == severity)
            and (alert_type is None or r.alert_type == alert_type)
        ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return [replace(r) for r in records[:limit]]


class InMemorySubscriberRegistry:

    def __init__(
        self,
        subscribers: Iterable[Subscriber] = (),
        preferences: Iterable[SubscriberPreference] = (),
    ) -> None:
        self._subscribers: Dict[str, Subscriber] = {
            s.subscriber_id: replace(s) for s in subscribers
        }
        self._preferences: Dict[str, SubscriberPreference] = {
            p.subscriber_id: replace(p) for p in preferences
        }

    async def list_active(self) -> List[Subscriber]:
        return [
            replace(self._subscribers[sid])
            for sid in sorted(self._subscribers)
            if self._subscribers[sid].is_active
        ]

    async def get(self, subscriber_id: str) -> Optional[Subscriber]:
        sub = self._subscribers.get(subscriber_id)
        return replace(sub) if sub else None

    async def get_admin(self) -> Optional[Subscriber]:
        for sid in sorted(self._subscribers):
            if self._subscribers[sid].is_admin:
                return replace(self._subscribers[sid])
        return None

    async def get_preferences(
        self, subscriber_ids: Iterable[str],
    ) -> Dict[str, SubscriberPreference]:
        return {
            sid: replace(self._preferences[sid])
            for sid in subscriber_ids
            if sid in self._preferences
        }

    async def register(self, subscriber: Subscriber) -> Subscriber:
        self._subscribers[subscriber.subscriber_id] = replace(subscriber)
        self._preferences.setdefault(
            subscriber.subscriber_id,
            SubscriberPreference(subscriber_id=subscriber.subscriber_id),
        )
        return replace(subscriber)

    async def upsert_preference(self, preference: SubscriberPreference) -> SubscriberPreference:
        self._preferences[preference.subscriber_id] = replace(preference)
        return replace(preference)

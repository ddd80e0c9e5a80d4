"""
test_recorder.py — Tests for alert record creation and acknowledgment.

Covers:
    • THRESHOLD_EXCEEDED records copy reading values and limits
    • MANUAL records carry zero numeric fields
    • acknowledgment is set exactly once, never overwritten
    • history ordering, filters and limit
    • store failures surface as PersistenceError

Run with:
    pytest tests/test_recorder.py -v
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from backend.app.alerts.evaluator import evaluate
from backend.app.alerts.models import (
    AckResult,
    AlertState,
    AlertType,
    Reading,
    Severity,
    Verdict,
)
from backend.app.alerts.recorder import AlertRecorder, violation_message
from backend.app.core.errors import PersistenceError
from backend.app.storage.memory import InMemoryAlertStore

from conftest import make_threshold, run


def _make_reading(near=25.0, far=5.0) -> Reading:
    return Reading(
        submitter_id="E1001",
        block="B1",
        plant="P1",
        area="A1",
        near_value=near,
        far_value=far,
    )


class _BrokenStore(InMemoryAlertStore):
    async def add(self, record):
        raise RuntimeError("disk full")

    async def compare_and_acknowledge(self, alert_id, acknowledged_by, acknowledged_at):
        raise RuntimeError("connection reset")


class TestViolationMessage:

    def test_single_reason(self):
        verdict = Verdict(is_violation=True, severity=Severity.HIGH,
                          reasons=["near reading 25 exceeds limit 20"])
        assert violation_message(verdict, "B1", "P1", "A1") == (
            "RADIATION ALERT: near reading 25 exceeds limit 20 at B1 - P1 - A1"
        )

    def test_reasons_joined(self):
        verdict = Verdict(is_violation=True, severity=Severity.HIGH, reasons=["a", "b"])
        assert violation_message(verdict, "B", "P", "A") == "RADIATION ALERT: a; b at B - P - A"


class TestRecordViolation:

    def test_fields_copied_from_reading_and_config(self):
        recorder = AlertRecorder(InMemoryAlertStore())
        config = make_threshold(near=20, far=30, severity=Severity.HIGH)
        reading = _make_reading()
        record = run(recorder.record_violation(reading, evaluate(reading, config), config))

        assert record.alert_type == AlertType.THRESHOLD_EXCEEDED
        assert record.severity == Severity.HIGH
        assert record.submitter_id == "E1001"
        assert (record.near_reading, record.far_reading) == (25.0, 5.0)
        assert (record.near_threshold, record.far_threshold) == (20.0, 30.0)
        assert record.message.endswith("at B1 - P1 - A1")
        assert record.state == AlertState.PENDING
        assert record.acknowledged_by is None

    def test_compliant_verdict_rejected(self):
        recorder = AlertRecorder(InMemoryAlertStore())
        config = make_threshold(near=100, far=100)
        reading = _make_reading()
        with pytest.raises(ValueError):
            run(recorder.record_violation(reading, evaluate(reading, config), config))

    def test_store_failure_wrapped(self):
        recorder = AlertRecorder(_BrokenStore())
        config = make_threshold()
        reading = _make_reading()
        with pytest.raises(PersistenceError) as exc_info:
            run(recorder.record_violation(reading, evaluate(reading, config), config))
        assert exc_info.value.details["operation"] == "alert_add"


class TestRecordManual:

    def test_numeric_fields_zero(self):
        recorder = AlertRecorder(InMemoryAlertStore())
        record = run(recorder.record_manual(
            "B2", "P2", "Lobby", Severity.CRITICAL, "Evacuation drill", "admin",
        ))
        assert record.alert_type == AlertType.MANUAL
        assert record.message == "Evacuation drill"
        assert record.near_reading == record.far_reading == 0
        assert record.near_threshold == record.far_threshold == 0


class TestAcknowledge:

    def _recorded(self):
        recorder = AlertRecorder(InMemoryAlertStore())
        record = run(recorder.record_manual("B", "P", "A", Severity.LOW, "m", "admin"))
        return recorder, record.alert_id

    def test_first_ack_wins(self):
        recorder, alert_id = self._recorded()
        assert run(recorder.acknowledge(alert_id, "E2001")) == AckResult.ACKNOWLEDGED
        stored = run(recorder.get(alert_id))
        assert stored.acknowledged is True
        assert stored.acknowledged_by == "E2001"
        assert stored.acknowledged_at is not None

    def test_second_ack_rejected_and_not_overwritten(self):
        recorder, alert_id = self._recorded()
        run(recorder.acknowledge(alert_id, "E2001"))
        first_at = run(recorder.get(alert_id)).acknowledged_at

        assert run(recorder.acknowledge(alert_id, "E3001")) == AckResult.ALREADY_ACKNOWLEDGED
        stored = run(recorder.get(alert_id))
        assert stored.acknowledged_by == "E2001"
        assert stored.acknowledged_at == first_at

    def test_unknown_alert(self):
        recorder = AlertRecorder(InMemoryAlertStore())
        assert run(recorder.acknowledge("ALR-MISSING", "E1")) == AckResult.NOT_FOUND

    def test_concurrent_acks_exactly_one_succeeds(self):
        recorder, alert_id = self._recorded()

        async def race():
            return await asyncio.gather(*[
                recorder.acknowledge(alert_id, f"E{i}") for i in range(10)
            ])

        outcomes = run(race())
        assert outcomes.count(AckResult.ACKNOWLEDGED) == 1
        assert outcomes.count(AckResult.ALREADY_ACKNOWLEDGED) == 9

    def test_store_failure_wrapped(self):
        recorder = AlertRecorder(_BrokenStore())
        with pytest.raises(PersistenceError):
            run(recorder.acknowledge("ALR-1", "E1"))


class TestHistory:

    def _seeded(self):
        store = InMemoryAlertStore()
        recorder = AlertRecorder(store)
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        plan = [
            (Severity.LOW, AlertType.MANUAL),
            (Severity.HIGH, AlertType.THRESHOLD_EXCEEDED),
            (Severity.HIGH, AlertType.MANUAL),
            (Severity.CRITICAL, AlertType.THRESHOLD_EXCEEDED),
        ]
        for i, (severity, alert_type) in enumerate(plan):
            record = run(recorder.record_manual("B", "P", "A", severity, f"m{i}", "admin"))
            record.alert_type = alert_type
            record.created_at = base + timedelta(minutes=i)
            run(store.add(record))
        return recorder

    def test_newest_first(self):
        records = run(self._seeded().history())
        assert [r.message for r in records] == ["m3", "m2", "m1", "m0"]

    def test_filter_by_severity(self):
        records = run(self._seeded().history(severity=Severity.HIGH))
        assert [r.message for r in records] == ["m2", "m1"]

    def test_filter_by_type(self):
        records = run(self._seeded().history(alert_type=AlertType.THRESHOLD_EXCEEDED))
        assert [r.message for r in records] == ["m3", "m1"]

    def test_limit(self):
        records = run(self._seeded().history(limit=1))
        assert [r.message for r in records] == ["m3"]

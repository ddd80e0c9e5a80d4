"""
test_alert_service.py — Tests for the reading → alert pipeline.

Covers:
    • Reading ingestion (store, resolve, evaluate, record, fan-out)
    • Failure policy (reading write raised, alert write logged)
    • Manual alerts (override fan-out, validation, persistence failure)
    • Acknowledgment lifecycle and history
    • Live events for readings and alerts
    • Threshold administration and bulk import
    • Subscriber preferences

Run with:
    pytest tests/test_alert_service.py -v
"""

from __future__ import annotations

import asyncio

import pytest

from backend.app.alerts.alert_service import (
    ALERT_EVENT,
    NEW_READING_EVENT,
    AlertService,
    ManualAlertRequest,
)
from backend.app.alerts.broadcaster import LiveEventBroadcaster
from backend.app.alerts.dispatcher import NotificationDispatcher
from backend.app.alerts.models import (
    WILDCARD_AREA,
    AlertState,
    AlertType,
    NotificationChannel,
    Reading,
    ResolutionTier,
    Severity,
)
from backend.app.core import runtime_state
from backend.app.core.config import settings
from backend.app.core.errors import (
    AlreadyAcknowledgedError,
    ExternalServiceError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from backend.app.storage.memory import (
    InMemoryAlertStore,
    InMemoryReadingStore,
    InMemorySubscriberRegistry,
    InMemoryThresholdStore,
)

from conftest import (
    FakeObserver,
    RecordingSender,
    make_preference,
    make_subscriber,
    make_threshold,
    run,
)


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

class _Harness:
    """AlertService wired to in-memory stores and recording channel doubles."""

    def __init__(
        self,
        thresholds=(),
        subscribers=(),
        preferences=(),
        email_fail=(),
        alerts=None,
        readings=None,
    ):
        self.thresholds = InMemoryThresholdStore(thresholds)
        self.readings = readings or InMemoryReadingStore()
        self.alerts = alerts or InMemoryAlertStore()
        self.registry = InMemorySubscriberRegistry(subscribers, preferences)
        self.email = RecordingSender(NotificationChannel.EMAIL, fail_for=email_fail)
        self.sms = RecordingSender(NotificationChannel.SMS)
        self.broadcaster = LiveEventBroadcaster()
        self.service = AlertService(
            thresholds=self.thresholds,
            readings=self.readings,
            alerts=self.alerts,
            registry=self.registry,
            dispatcher=NotificationDispatcher({
                NotificationChannel.EMAIL: self.email,
                NotificationChannel.SMS: self.sms,
            }),
            broadcaster=self.broadcaster,
        )

    def watch(self, room: str) -> FakeObserver:
        observer = FakeObserver()
        run(self.broadcaster.join(observer, room))
        return observer


def _make_reading(block="B1", plant="P1", area="A1", near=25.0, far=5.0,
                  area_spec=None) -> Reading:
    return Reading(
        submitter_id="E1001",
        submitter_name="Asha",
        block=block,
        plant=plant,
        area=area,
        area_spec=area_spec,
        near_value=near,
        far_value=far,
    )


def _manual(severity="CRITICAL", message="drill", block="B2", plant="P2", area="Lobby"):
    return ManualAlertRequest(
        block=block, plant=plant, area=area, severity=severity, message=message,
    )


class _FailingReadingStore(InMemoryReadingStore):
    async def add(self, reading):
        raise RuntimeError("database unavailable")


class _FailingAlertStore(InMemoryAlertStore):
    async def add(self, record):
        raise RuntimeError("database unavailable")


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Reading Ingestion
# ═══════════════════════════════════════════════════════════════════════════

class TestIngestViolation:

    def test_reference_scenario(self):
        h = _Harness(
            thresholds=[make_threshold(near=20, far=30, severity=Severity.HIGH)],
            subscribers=[make_subscriber("E1")],
        )
        result = run(h.service.ingest_reading(_make_reading(near=25, far=5)))

        assert result.violation is True
        assert result.severity == Severity.HIGH
        assert result.reasons == ["near reading 25 exceeds limit 20"]
        assert result.resolution_tier == ResolutionTier.EXACT
        assert result.alert_recorded is True

        (record,) = run(h.alerts.history())
        assert record.alert_id == result.alert_id
        assert record.alert_type == AlertType.THRESHOLD_EXCEEDED
        assert record.state == AlertState.PENDING
        assert record.message == (
            "RADIATION ALERT: near reading 25 exceeds limit 20 at B1 - P1 - A1"
        )

    def test_notifications_sent_to_subscribers(self):
        h = _Harness(
            thresholds=[make_threshold()],
            subscribers=[make_subscriber("E1"), make_subscriber("E2", phone="+1")],
            preferences=[make_preference("E1"), make_preference("E2", sms=True)],
        )
        result = run(h.service.ingest_reading(_make_reading()))
        assert result.dispatch.emails_sent == 2
        assert result.dispatch.sms_sent == 1
        notification, _ = h.email.calls[0]
        assert notification.alert_id == result.alert_id
        assert notification.location == "B1 - P1 - A1"

    def test_recipient_failure_does_not_fail_ingestion(self):
        h = _Harness(
            thresholds=[make_threshold()],
            subscribers=[make_subscriber(f"E{i}") for i in (1, 2, 3)],
            email_fail={"E2"},
        )
        result = run(h.service.ingest_reading(_make_reading()))
        assert result.dispatch.emails_sent == 2
        assert [f.recipient_id for f in result.dispatch.failed] == ["E2"]

    def test_wildcard_threshold(self):
        h = _Harness(thresholds=[make_threshold(area=WILDCARD_AREA, near=10)])
        result = run(h.service.ingest_reading(_make_reading(area="Anything", near=11)))
        assert result.violation is True
        assert result.resolution_tier == ResolutionTier.WILDCARD

    def test_area_spec_threshold(self):
        h = _Harness(thresholds=[make_threshold(area="Hall East", near=10)])
        result = run(h.service.ingest_reading(
            _make_reading(area="A7", near=11, area_spec="Hall East"),
        ))
        assert result.resolution_tier == ResolutionTier.AREA_SPEC

    def test_strictest_fallback(self):
        h = _Harness(thresholds=[
            make_threshold(area="A2", near=5, far=5, severity=Severity.CRITICAL),
            make_threshold(area="A3", near=10, far=15, severity=Severity.LOW),
        ])
        result = run(h.service.ingest_reading(_make_reading(area="A9", near=6, far=0)))
        assert result.resolution_tier == ResolutionTier.STRICTEST
        assert result.severity == Severity.CRITICAL


class TestIngestCompliant:

    def test_no_alert_and_no_notifications(self):
        h = _Harness(
            thresholds=[make_threshold(near=20, far=30)],
            subscribers=[make_subscriber("E1")],
        )
        result = run(h.service.ingest_reading(_make_reading(near=20, far=30)))
        assert result.violation is False
        assert result.alert_id is None
        assert result.dispatch is None
        assert run(h.alerts.history()) == []
        assert h.email.calls == []

    def test_no_threshold_reading_still_stored(self):
        h = _Harness()
        reading = _make_reading()
        result = run(h.service.ingest_reading(reading))
        assert result.stored is True
        assert result.resolution_tier is None
        assert reading.reading_id in h.readings.readings


class TestIngestFailurePolicy:

    def test_reading_write_failure_raised(self):
        h = _Harness(thresholds=[make_threshold()], readings=_FailingReadingStore())
        with pytest.raises(PersistenceError):
            run(h.service.ingest_reading(_make_reading()))
        assert h.email.calls == []

    def test_alert_write_failure_still_notifies(self):
        h = _Harness(
            thresholds=[make_threshold()],
            subscribers=[make_subscriber("E1")],
            alerts=_FailingAlertStore(),
        )
        result = run(h.service.ingest_reading(_make_reading()))
        assert result.violation is True
        assert result.alert_recorded is False
        assert result.alert_id is None
        assert result.dispatch.emails_sent == 1

    def test_marks_last_data_update(self):
        h = _Harness()
        run(h.service.ingest_reading(_make_reading()))
        assert runtime_state.snapshot()["last_data_update"] is not None


class TestLiveEvents:

    def test_reading_and_alert_pushed(self):
        h = _Harness(thresholds=[make_threshold()])
        readings_room = h.watch("readings")
        alerts_room = h.watch("alerts")
        result = run(h.service.ingest_reading(_make_reading()))

        (reading_event,) = readings_room.frames
        assert reading_event["event"] == NEW_READING_EVENT
        assert reading_event["reading"]["reading_id"] == result.reading.reading_id

        (alert_event,) = alerts_room.frames
        assert alert_event["event"] == ALERT_EVENT
        assert alert_event["event_kind"] == "threshold_exceeded"
        assert alert_event["severity"] == "HIGH"
        assert alert_event["location"] == "B1 - P1 - A1"
        assert alert_event["alert_id"] == result.alert_id

    def test_compliant_reading_pushes_no_alert(self):
        h = _Harness(thresholds=[make_threshold(near=100, far=100)])
        alerts_room = h.watch("alerts")
        run(h.service.ingest_reading(_make_reading()))
        assert alerts_room.frames == []

    def test_stalled_observer_does_not_block_ingestion(self):
        h = _Harness(thresholds=[make_threshold()], subscribers=[make_subscriber("E1")])
        h.broadcaster.send_timeout = 0.05
        stuck = FakeObserver(stall=True)
        run(h.broadcaster.join(stuck, "readings"))
        alerts_room = h.watch("alerts")

        result = run(asyncio.wait_for(h.service.ingest_reading(_make_reading()), 2.0))

        assert result.alert_id is not None
        assert len(h.email.calls) == 1
        assert len(alerts_room.frames) == 1
        assert stuck.frames == []


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Manual Alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestManualAlert:

    def test_record_fields(self):
        h = _Harness()
        record = run(h.service.issue_manual_alert(_manual()))
        assert record.alert_type == AlertType.MANUAL
        assert record.severity == Severity.CRITICAL
        assert record.message == "drill"
        assert record.submitter_id == "admin"
        assert record.near_reading == record.far_reading == 0
        assert record.near_threshold == record.far_threshold == 0

    def test_override_reaches_every_subscriber_with_email(self):
        h = _Harness(
            subscribers=[
                make_subscriber("E1"),
                make_subscriber("E2"),
                make_subscriber("E3", email=None, phone="+1"),
                make_subscriber("E4"),
                make_subscriber("E5", email=None),
            ],
            preferences=[
                make_preference("E1", email=False, severities=[]),
                make_preference("E2", severities=[Severity.LOW]),
                make_preference("E3", sms=True),
            ],
        )
        run(h.service.issue_manual_alert(_manual(severity="LOW")))
        assert sorted(r.subscriber_id for _, r in h.email.calls) == ["E1", "E2", "E4"]

    def test_manual_alert_pushed_live(self):
        h = _Harness()
        room = h.watch("alerts")
        record = run(h.service.issue_manual_alert(_manual()))
        (event,) = room.frames
        assert event["event_kind"] == "manual"
        assert event["alert_id"] == record.alert_id
        assert event["location"] == "B2 - P2 - Lobby"

    @pytest.mark.parametrize("kwargs", [
        {"message": "   "},
        {"block": ""},
        {"severity": "SEVERE"},
    ])
    def test_invalid_request_rejected(self, kwargs):
        h = _Harness(subscribers=[make_subscriber("E1")])
        with pytest.raises(ValidationError):
            run(h.service.issue_manual_alert(_manual(**kwargs)))
        assert h.email.calls == []

    @pytest.mark.parametrize("label", ["critical", " HIGH ", "High", ""])
    def test_severity_must_match_exactly(self, label):
        h = _Harness(subscribers=[make_subscriber("E1")])
        with pytest.raises(ValidationError):
            run(h.service.issue_manual_alert(_manual(severity=label)))
        assert h.email.calls == []
        assert run(h.service.alert_history()) == []

    def test_persistence_failure_raised_after_fan_out(self):
        h = _Harness(subscribers=[make_subscriber("E1")], alerts=_FailingAlertStore())
        with pytest.raises(PersistenceError):
            run(h.service.issue_manual_alert(_manual()))
        assert len(h.email.calls) == 1


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Acknowledgment & History
# ═══════════════════════════════════════════════════════════════════════════

class TestAcknowledge:

    def test_acknowledge_once(self):
        h = _Harness()
        record = run(h.service.issue_manual_alert(_manual()))
        acked = run(h.service.acknowledge(record.alert_id, "E2001"))
        assert acked.state == AlertState.ACKNOWLEDGED
        assert acked.acknowledged_by == "E2001"

    def test_second_acknowledge_conflicts(self):
        h = _Harness()
        record = run(h.service.issue_manual_alert(_manual()))
        run(h.service.acknowledge(record.alert_id, "E2001"))
        with pytest.raises(AlreadyAcknowledgedError) as exc_info:
            run(h.service.acknowledge(record.alert_id, "E3001"))
        assert exc_info.value.details["acknowledged_by"] == "E2001"
        assert run(h.alerts.get(record.alert_id)).acknowledged_by == "E2001"

    def test_unknown_alert(self):
        with pytest.raises(NotFoundError):
            run(_Harness().service.acknowledge("ALR-NOPE", "E1"))

    def test_blank_acknowledger_rejected(self):
        h = _Harness()
        record = run(h.service.issue_manual_alert(_manual()))
        with pytest.raises(ValidationError):
            run(h.service.acknowledge(record.alert_id, "  "))

    def test_concurrent_acknowledgers(self):
        h = _Harness()
        record = run(h.service.issue_manual_alert(_manual()))

        async def race():
            return await asyncio.gather(
                *[h.service.acknowledge(record.alert_id, f"E{i}") for i in range(5)],
                return_exceptions=True,
            )

        outcomes = run(race())
        assert sum(1 for o in outcomes if not isinstance(o, Exception)) == 1
        assert sum(1 for o in outcomes if isinstance(o, AlreadyAcknowledgedError)) == 4


class TestHistory:

    def test_filters_parsed_from_strings(self):
        h = _Harness(thresholds=[make_threshold()])
        run(h.service.ingest_reading(_make_reading()))
        run(h.service.issue_manual_alert(_manual(severity="LOW")))

        assert len(run(h.service.alert_history())) == 2
        (only,) = run(h.service.alert_history(alert_type="manual"))
        assert only.alert_type == AlertType.MANUAL
        (high,) = run(h.service.alert_history(severity="high"))
        assert high.alert_type == AlertType.THRESHOLD_EXCEEDED

    @pytest.mark.parametrize("kwargs", [
        {"limit": 0},
        {"limit": 10_000},
        {"severity": "SEVERE"},
        {"alert_type": "AUTOMATIC"},
    ])
    def test_invalid_query_rejected(self, kwargs):
        with pytest.raises(ValidationError):
            run(_Harness().service.alert_history(**kwargs))


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Threshold Administration
# ═══════════════════════════════════════════════════════════════════════════

class TestThresholdAdmin:

    def test_upsert_then_resolve(self):
        h = _Harness()
        run(h.service.upsert_threshold(make_threshold(near=20)))
        run(h.service.upsert_threshold(make_threshold(near=50)))
        (config,) = run(h.service.list_thresholds())
        assert config.near_limit == 50

    def test_deactivate_stops_matching(self):
        h = _Harness(thresholds=[make_threshold()])
        run(h.service.set_threshold_active("B1", "P1", "A1", False))
        result = run(h.service.ingest_reading(_make_reading()))
        assert result.resolution_tier is None
        assert result.violation is False

    def test_deactivate_unknown(self):
        with pytest.raises(NotFoundError):
            run(_Harness().service.set_threshold_active("B", "P", "A", False))

    def test_import_legacy_documents(self):
        h = _Harness()
        outcome = run(h.service.import_thresholds([
            {"block": "B1", "plant": "P1", "area": "A1", "nearThreshold": 20,
             "onemThreshold": 30, "alertLevel": "HIGH"},
            {"block": "B1", "plant": "P1", "area": "A2", "nearThreshold": "n/a",
             "onemThreshold": 30},
        ]))
        assert outcome["imported"] == 1
        assert outcome["rejected"][0]["index"] == 1
        result = run(h.service.ingest_reading(_make_reading(near=21)))
        assert result.severity == Severity.HIGH


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Subscribers & Preferences
# ═══════════════════════════════════════════════════════════════════════════

class TestPreferences:

    def test_registration_gets_defaults(self):
        h = _Harness()
        run(h.service.register_subscriber(make_subscriber("E1")))
        (entry,) = run(h.service.notification_settings())
        assert entry["subscriber_id"] == "E1"
        assert entry["preferences"]["email_enabled"] is True
        assert entry["preferences"]["severities"] == ["CRITICAL", "HIGH", "MEDIUM"]

    def test_partial_update_keeps_other_fields(self):
        h = _Harness(
            subscribers=[make_subscriber("E1", phone="+1")],
            preferences=[make_preference("E1", email=True, sms=False)],
        )
        pref = run(h.service.update_preferences("E1", {"sms_enabled": True,
                                                       "severities": ["critical"]}))
        assert pref.sms_enabled is True
        assert pref.email_enabled is True
        assert pref.severities == frozenset({Severity.CRITICAL})

    def test_update_changes_fan_out(self):
        h = _Harness(thresholds=[make_threshold()], subscribers=[make_subscriber("E1")])
        run(h.service.update_preferences("E1", {"severities": ["CRITICAL"]}))
        result = run(h.service.ingest_reading(_make_reading()))
        assert result.dispatch.sent == 0

    def test_unknown_subscriber(self):
        with pytest.raises(NotFoundError):
            run(_Harness().service.update_preferences("E404", {"sms_enabled": True}))

    def test_bad_severity_label(self):
        h = _Harness(subscribers=[make_subscriber("E1")])
        with pytest.raises(ValidationError):
            run(h.service.update_preferences("E1", {"severities": ["URGENT"]}))


# ═══════════════════════════════════════════════════════════════════════════
# Section 6: Email Configuration Check
# ═══════════════════════════════════════════════════════════════════════════

class TestSendTestEmail:

    def test_sent_to_requested_address(self):
        h = _Harness()
        assert run(h.service.send_test_email(" ops@plant.example ")) == "ops@plant.example"
        ((notification, recipient),) = h.email.calls
        assert recipient.email == "ops@plant.example"
        assert notification.alert_id is None
        assert h.sms.calls == []

    def test_defaults_to_smtp_user(self, monkeypatch):
        monkeypatch.setattr(settings, "SMTP_USER", "smtp@plant.example")
        h = _Harness()
        assert run(h.service.send_test_email()) == "smtp@plant.example"

    def test_no_address_rejected(self, monkeypatch):
        monkeypatch.setattr(settings, "SMTP_USER", None)
        h = _Harness()
        with pytest.raises(ValidationError):
            run(h.service.send_test_email(""))
        assert h.email.calls == []

    def test_provider_failure_surfaced(self):
        h = _Harness(email_fail=("email-test",))
        with pytest.raises(ExternalServiceError) as excinfo:
            run(h.service.send_test_email("ops@plant.example"))
        assert excinfo.value.details["to"] == "ops@plant.example"
        assert run(h.service.alert_history()) == []

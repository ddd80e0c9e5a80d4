"""
test_subscribers.py — Tests for fan-out set computation.

Covers:
    • severity filtering through preferences
    • channel flags and contact fallbacks
    • admin always reached by email
    • override_all for manual alerts
    • stable ordering by subscriber id

Run with:
    pytest tests/test_subscribers.py -v
"""

from __future__ import annotations

from backend.app.alerts.models import Severity
from backend.app.alerts.subscribers import SubscriberResolver
from backend.app.storage.memory import InMemorySubscriberRegistry

from conftest import make_preference, make_subscriber, run


def _make_resolver(subscribers, preferences=()) -> SubscriberResolver:
    return SubscriberResolver(InMemorySubscriberRegistry(subscribers, preferences))


def _ids(recipients):
    return [r.subscriber_id for r in recipients]


class TestSeverityFiltering:

    def test_unsubscribed_severity_excluded(self):
        resolver = _make_resolver(
            [make_subscriber("E1"), make_subscriber("E2")],
            [make_preference("E1", severities=[Severity.CRITICAL]),
             make_preference("E2", severities=[Severity.HIGH])],
        )
        assert _ids(run(resolver.resolve_recipients(Severity.HIGH))) == ["E2"]

    def test_missing_preference_uses_defaults(self):
        resolver = _make_resolver([make_subscriber("E1")])
        assert _ids(run(resolver.resolve_recipients(Severity.MEDIUM))) == ["E1"]
        assert run(resolver.resolve_recipients(Severity.LOW)) == []

    def test_inactive_subscriber_excluded(self):
        resolver = _make_resolver(
            [make_subscriber("E1", active=False)], [make_preference("E1")],
        )
        assert run(resolver.resolve_recipients(Severity.HIGH)) == []


class TestChannels:

    def test_email_disabled_and_sms_disabled_excluded(self):
        resolver = _make_resolver(
            [make_subscriber("E1", phone="+15550001")],
            [make_preference("E1", email=False, sms=False)],
        )
        assert run(resolver.resolve_recipients(Severity.HIGH)) == []

    def test_sms_requires_phone(self):
        resolver = _make_resolver(
            [make_subscriber("E1", email=None, phone=None)],
            [make_preference("E1", email=False, sms=True)],
        )
        assert run(resolver.resolve_recipients(Severity.HIGH)) == []

    def test_sms_only_recipient(self):
        resolver = _make_resolver(
            [make_subscriber("E1", phone="+15550001")],
            [make_preference("E1", email=False, sms=True)],
        )
        (recipient,) = run(resolver.resolve_recipients(Severity.HIGH))
        assert recipient.wants_sms is True
        assert recipient.wants_email is False

    def test_preference_contacts_override_registry(self):
        resolver = _make_resolver(
            [make_subscriber("E1", email="old@example.com", phone="+1000")],
            [make_preference("E1", sms=True, contact_email="new@example.com",
                             contact_phone="+2000")],
        )
        (recipient,) = run(resolver.resolve_recipients(Severity.HIGH))
        assert recipient.email == "new@example.com"
        assert recipient.phone == "+2000"

    def test_blank_preference_contact_falls_back(self):
        resolver = _make_resolver(
            [make_subscriber("E1", email="reg@example.com")],
            [make_preference("E1", contact_email="   ")],
        )
        (recipient,) = run(resolver.resolve_recipients(Severity.HIGH))
        assert recipient.email == "reg@example.com"


class TestAdmin:

    def test_admin_reached_regardless_of_preferences(self):
        resolver = _make_resolver(
            [make_subscriber("A1", admin=True, phone="+1999"), make_subscriber("E1")],
            [make_preference("A1", email=False, sms=False, severities=[]),
             make_preference("E1", severities=[Severity.CRITICAL])],
        )
        (admin,) = run(resolver.resolve_recipients(Severity.LOW))
        assert admin.subscriber_id == "A1"
        assert admin.wants_email is True
        assert admin.wants_sms is True

    def test_inactive_admin_still_emailed(self):
        resolver = _make_resolver(
            [make_subscriber("A1", admin=True, active=False), make_subscriber("E1")],
        )
        recipients = run(resolver.resolve_recipients(Severity.HIGH))
        assert _ids(recipients) == ["A1", "E1"]
        assert recipients[0].wants_email is True
        assert recipients[0].wants_sms is False

    def test_admin_not_duplicated(self):
        resolver = _make_resolver([make_subscriber("A1", admin=True)])
        assert _ids(run(resolver.resolve_recipients(Severity.HIGH))) == ["A1"]

    def test_lowest_id_admin_is_designated(self):
        resolver = _make_resolver([
            make_subscriber("Z9", admin=True, active=False, email="z@example.com"),
            make_subscriber("B2", admin=True, active=False, email="b@example.com"),
        ])
        assert _ids(run(resolver.resolve_recipients(Severity.HIGH))) == ["B2"]

    def test_admin_without_email_not_added(self):
        resolver = _make_resolver([make_subscriber("A1", admin=True, active=False, email=None)])
        assert run(resolver.resolve_recipients(Severity.HIGH)) == []

    def test_admin_reached_at_preferred_contact_email(self):
        resolver = _make_resolver(
            [make_subscriber("A1", admin=True, active=False, email=None)],
            [make_preference("A1", contact_email="  admin@plant.example  ")],
        )
        (admin,) = run(resolver.resolve_recipients(Severity.LOW))
        assert admin.subscriber_id == "A1"
        assert admin.email == "admin@plant.example"
        assert admin.wants_email is True


class TestOverrideAll:

    def test_everyone_with_email_included(self):
        resolver = _make_resolver(
            [make_subscriber("E1"), make_subscriber("E2"),
             make_subscriber("E3", email=None, phone="+1")],
            [make_preference("E1", email=False, severities=[]),
             make_preference("E2", severities=[Severity.LOW]),
             make_preference("E3", sms=True)],
        )
        recipients = run(resolver.resolve_recipients(Severity.CRITICAL, override_all=True))
        assert _ids(recipients) == ["E1", "E2"]
        assert all(r.wants_email for r in recipients)

    def test_sms_still_follows_preference(self):
        resolver = _make_resolver(
            [make_subscriber("E1", phone="+1"), make_subscriber("E2", phone="+2")],
            [make_preference("E1", sms=True), make_preference("E2", sms=False)],
        )
        recipients = run(resolver.resolve_recipients(Severity.LOW, override_all=True))
        assert [r.wants_sms for r in recipients] == [True, False]


class TestOrdering:

    def test_sorted_by_subscriber_id(self):
        resolver = _make_resolver(
            [make_subscriber("E3"), make_subscriber("E1"), make_subscriber("E2")],
        )
        assert _ids(run(resolver.resolve_recipients(Severity.HIGH))) == ["E1", "E2", "E3"]

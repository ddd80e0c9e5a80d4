"""
Shared test configuration.

Environment overrides must be in place before any backend module is
imported: settings are read once and the engine is built at import time.
"""

from __future__ import annotations

import asyncio
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DATABASE_AUTO_CREATE"] = "false"
os.environ["EMAIL_PROVIDER"] = "simulation"
os.environ["SMS_PROVIDER"] = "simulation"
os.environ["SENSOR_FEED_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"

import pytest  # noqa: E402

from backend.app.alerts.models import (  # noqa: E402
    DeliveryAttempt,
    DeliveryStatus,
    NotificationChannel,
    Severity,
    Subscriber,
    SubscriberPreference,
    ThresholdConfig,
)
from backend.app.core import runtime_state  # noqa: E402


def run(coro):
    """Drive one coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


def make_threshold(
    block: str = "B1",
    plant: str = "P1",
    area: str = "A1",
    near: float = 20.0,
    far: float = 30.0,
    severity: Severity = Severity.HIGH,
    active: bool = True,
) -> ThresholdConfig:
    return ThresholdConfig(
        block=block,
        plant=plant,
        area=area,
        near_limit=near,
        far_limit=far,
        severity=severity,
        is_active=active,
    )


def make_subscriber(
    sid: str = "E1",
    name: str = "Operator",
    email: str | None = "op@example.com",
    phone: str | None = None,
    admin: bool = False,
    active: bool = True,
) -> Subscriber:
    return Subscriber(
        subscriber_id=sid,
        name=name,
        email=email,
        phone=phone,
        is_admin=admin,
        is_active=active,
    )


def make_preference(
    sid: str = "E1",
    email: bool = True,
    sms: bool = False,
    severities=(Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL),
    contact_email: str | None = None,
    contact_phone: str | None = None,
) -> SubscriberPreference:
    return SubscriberPreference(
        subscriber_id=sid,
        email_enabled=email,
        sms_enabled=sms,
        severities=frozenset(severities),
        contact_email=contact_email,
        contact_phone=contact_phone,
    )


class RecordingSender:
    """Channel sender double: records calls, fails for selected recipients."""

    def __init__(self, channel: NotificationChannel, fail_for=(), delay: float = 0.0):
        self.channel = channel
        self.fail_for = set(fail_for)
        self.delay = delay
        self.calls = []

    async def __call__(self, notification, recipient):
        self.calls.append((notification, recipient))
        if self.delay:
            await asyncio.sleep(self.delay)
        status = (
            DeliveryStatus.FAILED if recipient.subscriber_id in self.fail_for
            else DeliveryStatus.DELIVERED
        )
        return DeliveryAttempt(
            channel=self.channel,
            recipient_id=recipient.subscriber_id,
            status=status,
            error_message="provider rejected" if status == DeliveryStatus.FAILED else None,
        )


class FakeObserver:
    """Live observer double collecting every pushed frame."""

    def __init__(self, fail: bool = False, stall: bool = False):
        self.fail = fail
        self.stall = stall
        self.frames = []

    async def send_json(self, data):
        if self.stall:
            await asyncio.Event().wait()
        if self.fail:
            raise ConnectionError("socket closed")
        self.frames.append(data)


@pytest.fixture(autouse=True)
def _reset_runtime_state():
    runtime_state.reset()
    yield
    runtime_state.reset()

"""
subscribers.py — Fan-out set computation.

Turns (severity, override_all) into an ordered list of Recipients from the
subscriber registry and per-subscriber preferences. Never mutates either.

    override_all=False   admin, or severity ∈ subscribed severities
                         email ⇐ (admin or email_enabled) and has email
                         sms   ⇐ (admin or sms_enabled) and has phone
    override_all=True    every active subscriber with an email
                         sms   ⇐ (admin or sms_enabled) and has phone

The designated administrator is appended for email afterwards if it is
not already an email recipient.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from backend.app.alerts.models import (
    Recipient,
    Severity,
    Subscriber,
    SubscriberPreference,
)
from backend.app.storage.base import SubscriberRegistry

logger = logging.getLogger(__name__)


def _contact(preferred: Optional[str], fallback: Optional[str]) -> Optional[str]:
    for value in (preferred, fallback):
        if value and value.strip():
            return value.strip()
    return None


class SubscriberResolver:

    def __init__(self, registry: SubscriberRegistry) -> None:
        self.registry = registry

    async def resolve_recipients(
        self, severity: Severity, override_all: bool = False,
    ) -> List[Recipient]:
        subscribers = await self.registry.list_active()
        preferences = await self.registry.get_preferences(s.subscriber_id for s in subscribers)

        recipients: List[Recipient] = []
        for sub in subscribers:
            pref = preferences.get(sub.subscriber_id) or SubscriberPreference(
                subscriber_id=sub.subscriber_id,
            )
            recipient = self._build(sub, pref, severity, override_all)
            if recipient is not None:
                recipients.append(recipient)

        admin = await self.registry.get_admin()
        if admin is not None:
            admin_pref = preferences.get(admin.subscriber_id)
            if admin_pref is None:
                # inactive admins are not in the batch lookup above
                admin_pref = (await self.registry.get_preferences([admin.subscriber_id])).get(
                    admin.subscriber_id)
            self._ensure_admin(admin, admin_pref, recipients)

        logger.info(
            "Resolved %d recipient(s) for %s (override_all=%s)",
            len(recipients), severity.value, override_all,
            extra={"severity": severity.value, "recipient_count": len(recipients)},
        )
        return recipients

    @staticmethod
    def _build(
        sub: Subscriber,
        pref: SubscriberPreference,
        severity: Severity,
        override_all: bool,
    ) -> Optional[Recipient]:
        email = _contact(pref.contact_email, sub.email)
        phone = _contact(pref.contact_phone, sub.phone)
        wants_sms = bool((sub.is_admin or pref.sms_enabled) and phone)

        if override_all:
            if not email:
                return None
            wants_email = True
        else:
            if not (sub.is_admin or severity in pref.severities):
                return None
            wants_email = bool((sub.is_admin or pref.email_enabled) and email)
            if not (wants_email or wants_sms):
                return None

        return Recipient(
            subscriber_id=sub.subscriber_id,
            name=sub.name,
            email=email,
            phone=phone,
            wants_email=wants_email,
            wants_sms=wants_sms,
        )

    @staticmethod
    def _ensure_admin(
        admin: Subscriber,
        pref: Optional[SubscriberPreference],
        recipients: List[Recipient],
    ) -> None:
        email = _contact(pref.contact_email if pref else None, admin.email)
        if not email:
            return
        for recipient in recipients:
            if recipient.subscriber_id == admin.subscriber_id:
                if not recipient.wants_email:
                    recipient.email = recipient.email or email
                    recipient.wants_email = True
                return
        recipients.append(Recipient(
            subscriber_id=admin.subscriber_id,
            name=admin.name,
            email=email,
            phone=None,
            wants_email=True,
            wants_sms=False,
        ))
        recipients.sort(key=lambda r: r.subscriber_id)

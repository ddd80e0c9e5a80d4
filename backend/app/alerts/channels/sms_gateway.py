"""
sms_gateway.py — SMS delivery channel via gateway integration.

Delivery mechanism:
    • simulation — log only, always delivered
    • twilio     — Messages REST resource over httpx with basic auth
    • Payload: ≤160 chars (GSM 7-bit); longer bodies are truncated

═══════════════════════════════════════════════════════════════════════════
SMS GATEWAY ARCHITECTURE
═══════════════════════════════════════════════════════════════════════════

    App  →  HTTP POST  →  Twilio API  →  Carrier  →  Handset

        POST {TWILIO_API_BASE}/Accounts/{SID}/Messages.json
             form: To, From, Body

═══════════════════════════════════════════════════════════════════════════
MESSAGE TEMPLATING
═══════════════════════════════════════════════════════════════════════════

    "RADIATION ALERT - {SEVERITY}: {location}. {message}"

    Example:
        "RADIATION ALERT - HIGH: B1 - P1 - A1. RADIATION ALERT: near
         reading 25 exceeds limit 20 at B1 - P1 - A1"
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from backend.app.alerts.models import (
    AlertNotification,
    DeliveryAttempt,
    DeliveryStatus,
    NotificationChannel,
    Recipient,
)

logger = logging.getLogger(__name__)

SMS_MAX_GSM7 = 160

_client: Optional[httpx.AsyncClient] = None


def _get_client(timeout_seconds: float) -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))
    return _client


async def close() -> None:
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
    _client = None


def format_sms(notification: AlertNotification) -> str:
    """Format the SMS body within the 160-char GSM limit."""
    prefix = f"RADIATION ALERT - {notification.severity.value}: {notification.location}. "
    body = notification.message
    available = SMS_MAX_GSM7 - len(prefix)
    if len(body) > available:
        body = body[: max(available - 3, 0)] + "..."
    return f"{prefix}{body}"[:SMS_MAX_GSM7]


async def send(
    notification: AlertNotification,
    recipient: Recipient,
    *,
    provider: str = "simulation",
    account_sid: Optional[str] = None,
    auth_token: Optional[str] = None,
    from_number: Optional[str] = None,
    api_base: str = "https://api.twilio.com/2010-04-01",
    timeout_seconds: float = 15.0,
    client: Optional[httpx.AsyncClient] = None,
) -> DeliveryAttempt:
    """
    Send an SMS alert to a recipient.

    Parameters
    ----------
    notification : AlertNotification
    recipient : Recipient
        Must have .phone set (E.164 format).
    provider : str
        "simulation" or "twilio".
    account_sid, auth_token, from_number : str | None
        Twilio credentials (not needed for simulation).
    client : httpx.AsyncClient | None
        Overrides the shared module client.

    Returns
    -------
    DeliveryAttempt
    """
    attempt = DeliveryAttempt(
        channel=NotificationChannel.SMS,
        recipient_id=recipient.subscriber_id,
        status=DeliveryStatus.SENDING,
    )

    try:
        # ── Phone validation ──
        if not recipient.phone:
            attempt.status = DeliveryStatus.SKIPPED
            attempt.completed_at = datetime.now(timezone.utc)
            attempt.error_message = "No phone number on file"
            return attempt

        sms_body = format_sms(notification)

        # ── Provider dispatch ──
        if provider == "simulation":
            logger.info(
                "[SMS] Alert %s → %s (%s): %d chars → '%s'",
                notification.alert_id,
                recipient.phone,
                recipient.name,
                len(sms_body),
                sms_body[:80] + ("..." if len(sms_body) > 80 else ""),
                extra={"alert_id": notification.alert_id,
                       "recipient_id": recipient.subscriber_id, "channel": "sms"},
            )
            attempt.status = DeliveryStatus.DELIVERED
            attempt.provider_response = {
                "mode": "simulated",
                "message_length": len(sms_body),
                "phone": recipient.phone,
            }

        elif provider == "twilio":
            if not (account_sid and auth_token and from_number):
                raise RuntimeError("Twilio credentials are not configured")
            http = client or _get_client(timeout_seconds)
            resp = await http.post(
                f"{api_base.rstrip('/')}/Accounts/{account_sid}/Messages.json",
                data={"To": recipient.phone, "From": from_number, "Body": sms_body},
                auth=(account_sid, auth_token),
            )
            resp.raise_for_status()
            data = resp.json()
            logger.info(
                "[SMS/Twilio] Alert %s sent to %s (sid=%s)",
                notification.alert_id, recipient.phone, data.get("sid"),
                extra={"alert_id": notification.alert_id,
                       "recipient_id": recipient.subscriber_id, "channel": "sms"},
            )
            attempt.status = DeliveryStatus.DELIVERED
            attempt.provider_response = {
                "mode": "twilio",
                "sid": data.get("sid"),
                "status": data.get("status"),
            }

        else:
            attempt.status = DeliveryStatus.FAILED
            attempt.error_message = f"Unknown SMS provider: {provider}"

        attempt.completed_at = datetime.now(timezone.utc)

    except (httpx.HTTPError, ValueError, RuntimeError) as exc:
        logger.error("[SMS] Failed for %s: %s", recipient.subscriber_id, exc,
                     extra={"recipient_id": recipient.subscriber_id, "channel": "sms"})
        attempt.status = DeliveryStatus.FAILED
        attempt.completed_at = datetime.now(timezone.utc)
        attempt.error_message = str(exc)

    return attempt

"""
email_alert.py — Email alert delivery channel.

Delivery mechanism:
    • simulation — log only, always delivered (development, tests)
    • smtp       — aiosmtplib; STARTTLS when offered, implicit TLS when
                   SMTP_USE_TLS is set (port 465)

═══════════════════════════════════════════════════════════════════════════
EMAIL TEMPLATE STRUCTURE
═══════════════════════════════════════════════════════════════════════════

    Subject: 🚨 RADIATION ALERT - {SEVERITY} LEVEL - {block}
    Body (multipart/alternative, plain + HTML):
        ┌─────────────────────────────────────────┐
        │  🚨 RADIATION ALERT                      │
        │  {SEVERITY} LEVEL        (severity colour)│
        ├─────────────────────────────────────────┤
        │  Dear {name},                            │
        │  Alert Level / Location / Message / Time │
        └─────────────────────────────────────────┘
"""

from __future__ import annotations

import html
import logging
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Optional

import aiosmtplib

from backend.app.alerts.models import (
    AlertNotification,
    DeliveryAttempt,
    DeliveryStatus,
    NotificationChannel,
    Recipient,
    Severity,
)

logger = logging.getLogger(__name__)

SEVERITY_COLOURS = {
    Severity.LOW: "#28a745",
    Severity.MEDIUM: "#ffc107",
    Severity.HIGH: "#fd7e14",
    Severity.CRITICAL: "#dc3545",
}


def build_subject(notification: AlertNotification) -> str:
    block = notification.block or notification.location
    return f"🚨 RADIATION ALERT - {notification.severity.value} LEVEL - {block}"


def _build_html_body(notification: AlertNotification, name: str) -> str:
    colour = SEVERITY_COLOURS.get(notification.severity, "#ffc107")
    level = notification.severity.value
    return f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;">
      <div style="background:{colour};color:white;padding:20px;text-align:center;">
        <h1>🚨 RADIATION ALERT</h1>
        <h2>{level} LEVEL</h2>
      </div>
      <div style="padding:20px;background:#f8f9fa;">
        <h3>Dear {html.escape(name)},</h3>
        <p><strong>Alert Level:</strong> {level}</p>
        <p><strong>Location:</strong> {html.escape(notification.location)}</p>
        <p><strong>Message:</strong> {html.escape(notification.message)}</p>
        <p><strong>Time:</strong> {notification.issued_at.strftime('%Y-%m-%d %H:%M:%S UTC')}</p>
        <hr>
        <p><em>This is an automated alert from the Radiation Monitoring System.
        Please take appropriate action immediately.</em></p>
      </div>
    </div>
    """


def _build_plain_body(notification: AlertNotification, name: str) -> str:
    return (
        f"RADIATION ALERT - {notification.severity.value} LEVEL\n\n"
        f"Dear {name},\n\n"
        f"Alert Level: {notification.severity.value}\n"
        f"Location: {notification.location}\n"
        f"Message: {notification.message}\n"
        f"Time: {notification.issued_at.strftime('%Y-%m-%d %H:%M:%S UTC')}\n\n"
        "This is an automated alert from the Radiation Monitoring System. "
        "Please take appropriate action immediately.\n"
    )


def build_message(
    notification: AlertNotification, recipient: Recipient, from_address: str,
) -> EmailMessage:
    name = recipient.name or recipient.subscriber_id
    message = EmailMessage()
    message["From"] = from_address
    message["To"] = recipient.email
    message["Subject"] = build_subject(notification)
    message["Date"] = formatdate(localtime=False)
    message["Message-ID"] = make_msgid()
    message.set_content(_build_plain_body(notification, name))
    message.add_alternative(_build_html_body(notification, name), subtype="html")
    return message


async def send(
    notification: AlertNotification,
    recipient: Recipient,
    *,
    provider: str = "simulation",
    smtp_host: Optional[str] = None,
    smtp_port: int = 587,
    smtp_user: Optional[str] = None,
    smtp_password: Optional[str] = None,
    use_tls: bool = False,
    validate_certs: bool = True,
    from_address: str = "alerts@radiation-monitoring.local",
    timeout_seconds: float = 15.0,
) -> DeliveryAttempt:
    """
    Send an email alert to a recipient.

    Parameters
    ----------
    notification : AlertNotification
    recipient : Recipient
        Must have .email set.
    provider : str
        "simulation" or "smtp".
    smtp_host, smtp_port, smtp_user, smtp_password : SMTP server config.
    use_tls : bool
        Implicit TLS instead of STARTTLS.

    Returns
    -------
    DeliveryAttempt
    """
    attempt = DeliveryAttempt(
        channel=NotificationChannel.EMAIL,
        recipient_id=recipient.subscriber_id,
        status=DeliveryStatus.SENDING,
    )

    try:
        if not recipient.email:
            attempt.status = DeliveryStatus.SKIPPED
            attempt.completed_at = datetime.now(timezone.utc)
            attempt.error_message = "No email address on file"
            return attempt

        message = build_message(notification, recipient, from_address)

        if provider == "simulation":
            logger.info(
                "[EMAIL] Alert %s → %s (%s): Subject='%s'",
                notification.alert_id, recipient.email, recipient.name, message["Subject"],
                extra={"alert_id": notification.alert_id, "recipient_id": recipient.subscriber_id,
                       "channel": "email"},
            )
            attempt.status = DeliveryStatus.DELIVERED
            attempt.provider_response = {
                "mode": "simulated",
                "subject": message["Subject"],
                "to": recipient.email,
            }

        elif provider == "smtp":
            if not smtp_host:
                raise RuntimeError("SMTP_HOST is not configured")
            errors, response = await aiosmtplib.send(
                message,
                hostname=smtp_host,
                port=smtp_port,
                username=smtp_user,
                password=smtp_password,
                use_tls=use_tls,
                validate_certs=validate_certs,
                timeout=timeout_seconds,
            )
            if errors:
                attempt.status = DeliveryStatus.FAILED
                attempt.error_message = f"Recipient refused: {errors}"
            else:
                logger.info(
                    "[EMAIL/SMTP] Alert %s sent to %s", notification.alert_id, recipient.email,
                    extra={"alert_id": notification.alert_id,
                           "recipient_id": recipient.subscriber_id, "channel": "email"},
                )
                attempt.status = DeliveryStatus.DELIVERED
                attempt.provider_response = {"mode": "smtp", "response": response}

        else:
            attempt.status = DeliveryStatus.FAILED
            attempt.error_message = f"Unknown email provider: {provider}"

        attempt.completed_at = datetime.now(timezone.utc)

    except (aiosmtplib.SMTPException, OSError, RuntimeError) as exc:
        logger.error("[EMAIL] Failed for %s: %s", recipient.subscriber_id, exc,
                     extra={"recipient_id": recipient.subscriber_id, "channel": "email"})
        attempt.status = DeliveryStatus.FAILED
        attempt.completed_at = datetime.now(timezone.utc)
        attempt.error_message = str(exc)

    return attempt

"""
dispatcher.py — Concurrent best-effort notification fan-out.

═══════════════════════════════════════════════════════════════════════════
DISPATCH FLOW
═══════════════════════════════════════════════════════════════════════════

    recipients ──▶ one job per (recipient, wanted channel)
                        │
                        ▼
               semaphore(NOTIFY_MAX_CONCURRENCY)
                        │
                        ▼
               wait_for(sender(...), NOTIFY_SEND_TIMEOUT_SECONDS)
                        │
          ┌─────────────┴──────────────┐
      DELIVERED                 exception / timeout / FAILED
          │                            │
     sent += 1                 DispatchFailure(recipient, channel, reason)

No retries and no delivery guarantee: a failed send is reported and logged,
never raised. Zero delivered emails for an alert is logged as an anomaly.
"""

from __future__ import annotations

import asyncio
import logging
import time
from functools import partial
from typing import Awaitable, Callable, Dict, Optional, Sequence

from backend.app.alerts.channels import email_alert, sms_gateway
from backend.app.alerts.models import (
    AlertNotification,
    DeliveryAttempt,
    DeliveryStatus,
    DispatchFailure,
    DispatchReport,
    NotificationChannel,
    Recipient,
    Severity,
)
from backend.app.core.config import Settings, settings
from backend.app.core.errors import DispatchError

logger = logging.getLogger(__name__)

Sender = Callable[[AlertNotification, Recipient], Awaitable[DeliveryAttempt]]


# ═══════════════════════════════════════════════════════════════════════════
# Channel Sender Registry
# ═══════════════════════════════════════════════════════════════════════════

def build_default_senders(cfg: Settings = settings) -> Dict[NotificationChannel, Sender]:
    """Bind each channel's send() to the configured provider."""
    return {
        NotificationChannel.EMAIL: partial(
            email_alert.send,
            provider=cfg.EMAIL_PROVIDER,
            smtp_host=cfg.SMTP_HOST,
            smtp_port=cfg.SMTP_PORT,
            smtp_user=cfg.SMTP_USER,
            smtp_password=cfg.SMTP_PASSWORD,
            use_tls=cfg.SMTP_USE_TLS,
            validate_certs=cfg.SMTP_VALIDATE_CERTS,
            from_address=cfg.SMTP_FROM,
            timeout_seconds=cfg.NOTIFY_SEND_TIMEOUT_SECONDS,
        ),
        NotificationChannel.SMS: partial(
            sms_gateway.send,
            provider=cfg.SMS_PROVIDER,
            account_sid=cfg.TWILIO_ACCOUNT_SID,
            auth_token=cfg.TWILIO_AUTH_TOKEN,
            from_number=cfg.TWILIO_FROM_NUMBER,
            api_base=cfg.TWILIO_API_BASE,
            timeout_seconds=cfg.NOTIFY_SEND_TIMEOUT_SECONDS,
        ),
    }


class NotificationDispatcher:

    def __init__(
        self,
        senders: Optional[Dict[NotificationChannel, Sender]] = None,
        *,
        max_concurrency: int = settings.NOTIFY_MAX_CONCURRENCY,
        send_timeout: float = settings.NOTIFY_SEND_TIMEOUT_SECONDS,
    ) -> None:
        self.senders = senders if senders is not None else build_default_senders()
        self.max_concurrency = max(1, max_concurrency)
        self.send_timeout = send_timeout

    async def dispatch(
        self,
        recipients: Sequence[Recipient],
        severity: Severity,
        message: str,
        location: str,
        *,
        alert_id: Optional[str] = None,
        block: str = "",
    ) -> DispatchReport:
        notification = AlertNotification(
            severity=severity,
            message=message,
            location=location,
            alert_id=alert_id,
            block=block,
        )
        jobs = [
            (recipient, channel)
            for recipient in recipients
            for channel in (NotificationChannel.EMAIL, NotificationChannel.SMS)
            if recipient.wants(channel)
        ]

        started = time.perf_counter()
        semaphore = asyncio.Semaphore(self.max_concurrency)
        outcomes = await asyncio.gather(*[
            self._send_one(semaphore, notification, recipient, channel)
            for recipient, channel in jobs
        ])

        report = DispatchReport()
        for (recipient, channel), failure in zip(jobs, outcomes):
            if failure is not None:
                report.failed.append(failure)
                continue
            report.sent += 1
            if channel == NotificationChannel.EMAIL:
                report.emails_sent += 1
            else:
                report.sms_sent += 1

        duration_ms = round((time.perf_counter() - started) * 1000, 1)
        logger.info(
            "Dispatch for %s complete: %d sent (%d email, %d sms), %d failed in %.0fms",
            alert_id or location, report.sent, report.emails_sent, report.sms_sent,
            len(report.failed), duration_ms,
            extra={"alert_id": alert_id, "severity": severity.value,
                   "recipient_count": len(recipients), "duration_ms": duration_ms},
        )
        if report.emails_sent == 0:
            logger.warning(
                "No email delivered for alert %s at %s (%d recipient(s), %d failure(s))",
                alert_id or "-", location, len(recipients), len(report.failed),
                extra={"alert_id": alert_id, "severity": severity.value},
            )
        return report

    async def _send_one(
        self,
        semaphore: asyncio.Semaphore,
        notification: AlertNotification,
        recipient: Recipient,
        channel: NotificationChannel,
    ) -> Optional[DispatchFailure]:
        async with semaphore:
            try:
                sender = self.senders.get(channel)
                if sender is None:
                    raise DispatchError(recipient.subscriber_id, channel.value,
                                        f"No sender for channel: {channel.value}")
                attempt = await asyncio.wait_for(
                    sender(notification, recipient), timeout=self.send_timeout,
                )
                if attempt.status != DeliveryStatus.DELIVERED:
                    raise DispatchError(
                        recipient.subscriber_id, channel.value,
                        attempt.error_message or attempt.status.value,
                    )
                return None
            except DispatchError as exc:
                reason = exc.reason
            except asyncio.TimeoutError:
                reason = f"timed out after {self.send_timeout:g}s"
            except Exception as exc:
                reason = f"{type(exc).__name__}: {exc}"

        logger.error(
            "Notification to %s via %s failed: %s",
            recipient.subscriber_id, channel.value, reason,
            extra={"alert_id": notification.alert_id,
                   "recipient_id": recipient.subscriber_id, "channel": channel.value},
        )
        return DispatchFailure(recipient_id=recipient.subscriber_id, channel=channel, reason=reason)


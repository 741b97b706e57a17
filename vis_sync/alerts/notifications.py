"""Channel-keyed notification dispatch for triggered alerts.

The engine decides whether and what to send; targets only deliver. Delivery
problems are reported back in a :class:`DispatchReport`, never raised.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from typing import Any, Protocol

import httpx

from ..monitoring.metrics import record_notification
from ..utils.config import GlobalSettings
from ..utils.logging import setup_logger
from ..utils.timeutils import Clock, utc_now
from .rules import AlertSeverity, NotificationChannel

logger = setup_logger(__name__, context={"component": "Notifications"})

WEBHOOK_FORMAT = "sync_monitoring_v1"
ALERT_SOURCE = "vis-sync"

_SEVERITY_MARKERS = {
    AlertSeverity.CRITICAL.value: "[CRITICAL]",
    AlertSeverity.HIGH.value: "[HIGH]",
    AlertSeverity.MEDIUM.value: "[MEDIUM]",
    AlertSeverity.LOW.value: "[LOW]",
}

_ENTITY_HINTS = {
    "tournaments": "Check tournament sync job logs and upstream API connectivity.",
    "matches_schedule": "Verify match schedule sync performance and database connectivity.",
    "all": "Check overall sync system health and investigate recent failures.",
}


@dataclass(slots=True)
class AlertNotification:
    alert_id: str
    rule_name: str
    severity: str
    entity_type: str
    message: str
    current_value: float
    threshold: float
    triggered_at: datetime
    channels: list[str] = field(default_factory=list)
    recovery_suggestion: str | None = None
    dashboard_url: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "rule_name": self.rule_name,
            "severity": self.severity,
            "entity_type": self.entity_type,
            "message": self.message,
            "current_value": self.current_value,
            "threshold": self.threshold,
            "triggered_at": self.triggered_at.isoformat(),
            "dashboard_url": self.dashboard_url,
            "recovery_suggestion": self.recovery_suggestion,
        }


@dataclass(slots=True)
class DispatchReport:
    alert_id: str
    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def sent_count(self) -> int:
        return len(self.sent)

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "sent": list(self.sent),
            "failed": list(self.failed),
            "skipped": list(self.skipped),
        }


class NotificationDispatcher(Protocol):
    async def dispatch(self, alert: AlertNotification) -> DispatchReport: ...


class NotificationTarget(ABC):
    """One delivery channel; ``send`` reports success instead of raising."""

    name: str = "target"

    def enabled(self) -> bool:
        return True

    @abstractmethod
    async def send(self, alert: AlertNotification) -> bool:
        ...


def recovery_hint(entity_type: str) -> str:
    base = "Review the monitoring dashboard for detailed information."
    hint = _ENTITY_HINTS.get(entity_type)
    return f"{base} {hint}" if hint else base


class DashboardSink(Protocol):
    def log_dashboard_alert(
        self,
        rule_name: str,
        *,
        severity: str,
        message: str,
        context: dict[str, Any],
        occurred_at: datetime,
    ) -> None: ...


class DashboardTarget(NotificationTarget):
    """Writes a structured log line and, when a sink is given, a dashboard row."""

    name = NotificationChannel.DASHBOARD.value

    def __init__(self, base_url: str, *, sink: DashboardSink | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self._sink = sink

    def url_for(self, alert_id: str) -> str:
        return f"{self.base_url}/monitoring/alerts/{alert_id}"

    async def send(self, alert: AlertNotification) -> bool:
        logger.warning(
            "ALERT %s: %s",
            alert.rule_name,
            alert.message,
            extra={
                "entity_type": alert.entity_type,
                "status": "alert",
                "severity": alert.severity,
                "dashboard_url": alert.dashboard_url,
            },
        )
        if self._sink is not None:
            await asyncio.to_thread(
                self._sink.log_dashboard_alert,
                alert.rule_name,
                severity=alert.severity,
                message=f"{alert.rule_name}: {alert.message}",
                context={
                    "alert_id": alert.alert_id,
                    "entity_type": alert.entity_type,
                    "current_value": alert.current_value,
                    "threshold": alert.threshold,
                    "triggered_at": alert.triggered_at.isoformat(),
                    "dashboard_url": alert.dashboard_url,
                    "notification_channel": self.name,
                },
                occurred_at=alert.triggered_at,
            )
        return True


def sign_payload(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class WebhookTarget(NotificationTarget):
    """Signed JSON POST to a configured URL."""

    name = NotificationChannel.WEBHOOK.value

    def __init__(
        self,
        url: str | None,
        *,
        secret: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url.strip() if isinstance(url, str) and url.strip() else None
        self._secret = secret
        self._timeout = timeout
        self._transport = transport

    def enabled(self) -> bool:
        return bool(self.url)

    def build_request_body(self, alert: AlertNotification) -> bytes:
        payload = {**alert.to_payload(), "webhook_format": WEBHOOK_FORMAT}
        return json.dumps(payload, sort_keys=True).encode("utf-8")

    async def send(self, alert: AlertNotification) -> bool:
        if not self.url:
            return False

        body = self.build_request_body(alert)
        headers = {"Content-Type": "application/json", "X-Alert-Source": ALERT_SOURCE}
        if self._secret:
            headers["X-Alert-Signature"] = sign_payload(body, self._secret)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(self.url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Failed to send webhook notification: %s", exc)
            return False

        if response.status_code >= 400:
            logger.warning(
                "Webhook %s responded with %s: %s",
                self.url,
                response.status_code,
                response.text[:200],
            )
            return False
        return True


Mailer = Callable[[EmailMessage], Awaitable[None] | None]


class EmailTarget(NotificationTarget):
    """Renders an alert email and hands it to an external mailer."""

    name = NotificationChannel.EMAIL.value

    def __init__(
        self,
        recipients: Iterable[str],
        *,
        sender: str,
        mailer: Mailer | None = None,
    ) -> None:
        self.recipients = [address.strip() for address in recipients if address and address.strip()]
        self.sender = sender
        self._mailer = mailer

    def enabled(self) -> bool:
        return bool(self.recipients)

    def compose(self, alert: AlertNotification) -> EmailMessage:
        marker = _SEVERITY_MARKERS.get(alert.severity.lower(), "[ALERT]")
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = ", ".join(self.recipients)
        message["Subject"] = f"{marker} Sync Alert: {alert.rule_name}"

        lines = [
            f"{marker} Sync Monitoring Alert",
            "",
            f"Alert: {alert.rule_name}",
            f"Severity: {alert.severity}",
            f"Entity: {alert.entity_type}",
            f"Triggered: {alert.triggered_at.isoformat()}",
            "",
            f"Message: {alert.message}",
            "",
            f"Current Value: {alert.current_value}",
            f"Threshold: {alert.threshold}",
        ]
        if alert.dashboard_url:
            lines.append(f"Dashboard: {alert.dashboard_url}")
        if alert.recovery_suggestion:
            lines.extend(["", f"Suggested action: {alert.recovery_suggestion}"])
        lines.extend(
            [
                "",
                "---",
                "If you believe this is a false alert, review the alert rules configuration.",
            ]
        )
        message.set_content("\n".join(lines))
        return message

    async def send(self, alert: AlertNotification) -> bool:
        if not self.enabled():
            return False
        message = self.compose(alert)
        if self._mailer is None:
            logger.info(
                "No mailer configured; email for %s not delivered (subject: %s)",
                alert.rule_name,
                message["Subject"],
            )
            return False
        outcome = self._mailer(message)
        if outcome is not None:
            await outcome
        return True


class ChannelDispatcher:
    """Routes an alert to the targets named in its channel list."""

    def __init__(self, targets: Iterable[NotificationTarget], *, clock: Clock = utc_now) -> None:
        self._targets = {target.name: target for target in targets}
        self._clock = clock

    @property
    def targets(self) -> dict[str, NotificationTarget]:
        return dict(self._targets)

    def _dashboard_url(self, alert_id: str) -> str | None:
        dashboard = self._targets.get(NotificationChannel.DASHBOARD.value)
        if isinstance(dashboard, DashboardTarget):
            return dashboard.url_for(alert_id)
        return None

    async def dispatch(self, alert: AlertNotification) -> DispatchReport:
        if alert.dashboard_url is None:
            alert.dashboard_url = self._dashboard_url(alert.alert_id)

        report = DispatchReport(alert_id=alert.alert_id)
        for channel in alert.channels:
            target = self._targets.get(channel)
            if target is None or not target.enabled():
                logger.info("Notification channel %s is not configured; skipping", channel)
                report.skipped.append(channel)
                record_notification(channel, "skipped")
                continue
            try:
                delivered = await target.send(alert)
            except Exception:
                logger.exception("Notification via %s failed for %s", channel, alert.rule_name)
                delivered = False
            (report.sent if delivered else report.failed).append(channel)
            record_notification(channel, "sent" if delivered else "failed")

        logger.info(
            "Sent %d/%d notifications for alert %s",
            report.sent_count,
            len(alert.channels),
            alert.rule_name,
        )
        return report

    async def test_channels(self) -> dict[str, bool]:
        """Send a synthetic low-severity alert through every enabled target."""

        alert = AlertNotification(
            alert_id=f"test-alert-{uuid.uuid4()}",
            rule_name="Test Alert",
            severity=AlertSeverity.LOW.value,
            entity_type="test",
            message="This is a test notification to verify channel configuration",
            current_value=1.0,
            threshold=0.5,
            triggered_at=self._clock(),
        )
        results: dict[str, bool] = {}
        for name, target in self._targets.items():
            if not target.enabled():
                continue
            alert.channels = [name]
            report = await self.dispatch(alert)
            results[name] = name in report.sent
        return results


def build_dispatcher(
    settings: GlobalSettings,
    *,
    sink: DashboardSink | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    mailer: Mailer | None = None,
    clock: Clock = utc_now,
) -> ChannelDispatcher:
    alerts = settings.alerts
    return ChannelDispatcher(
        [
            DashboardTarget(alerts.dashboard_base_url, sink=sink),
            WebhookTarget(alerts.webhook_url, secret=alerts.webhook_secret, transport=transport),
            EmailTarget(alerts.email_recipients, sender=alerts.email_sender, mailer=mailer),
        ],
        clock=clock,
    )

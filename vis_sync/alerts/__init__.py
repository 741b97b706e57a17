"""Alert rules, evaluation and notification dispatch."""

from .engine import AlertEngine, AlertEvaluation, AlertRunSummary, AlertState
from .notifications import (
    AlertNotification,
    ChannelDispatcher,
    DashboardTarget,
    DispatchReport,
    EmailTarget,
    WebhookTarget,
    build_dispatcher,
)
from .rules import AlertMetric, AlertRule, AlertSeverity, NotificationChannel, parse_window

__all__ = [
    "AlertEngine",
    "AlertEvaluation",
    "AlertMetric",
    "AlertNotification",
    "AlertRule",
    "AlertRunSummary",
    "AlertSeverity",
    "AlertState",
    "ChannelDispatcher",
    "DashboardTarget",
    "DispatchReport",
    "EmailTarget",
    "NotificationChannel",
    "WebhookTarget",
    "build_dispatcher",
    "parse_window",
]

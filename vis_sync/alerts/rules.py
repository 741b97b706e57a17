"""Declarative alert rule model."""

from __future__ import annotations

from datetime import timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..utils.config import AlertRuleConfig
from ..utils.timeutils import parse_duration

DEFAULT_WINDOW = timedelta(hours=1)
DEFAULT_ESCALATION_DELAY = timedelta(minutes=30)


class AlertMetric(str, Enum):
    SUCCESS_RATE = "success_rate"
    CONSECUTIVE_FAILURES = "consecutive_failures"
    DURATION_EXCEEDED = "duration_exceeded"
    MEMORY_USAGE = "memory_usage"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NotificationChannel(str, Enum):
    DASHBOARD = "dashboard"
    WEBHOOK = "webhook"
    EMAIL = "email"


def parse_window(value: str | None, default: timedelta = DEFAULT_WINDOW) -> timedelta:
    """Parse ``"1 hour"``, ``"30 minutes"``, ``"2 days"`` or ``"15m"``; fall back to ``default``."""

    return parse_duration(value, default)


class AlertRule(BaseModel):
    """A health threshold evaluated against the execution ledger.

    ``entity_type`` of ``None`` evaluates executions of every entity type.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    id: int | None = None
    name: str
    description: str | None = None
    entity_type: str | None = None
    metric: AlertMetric
    threshold: float
    evaluation_window: str = "1 hour"
    severity: AlertSeverity = AlertSeverity.MEDIUM
    notification_channels: list[NotificationChannel] = Field(
        default_factory=lambda: [NotificationChannel.DASHBOARD]
    )
    escalation_delay: str = "30 minutes"
    is_active: bool = True

    @property
    def window(self) -> timedelta:
        return parse_window(self.evaluation_window)

    @property
    def escalation_window(self) -> timedelta:
        return parse_window(self.escalation_delay, DEFAULT_ESCALATION_DELAY)

    @classmethod
    def from_config(cls, config: AlertRuleConfig) -> AlertRule:
        return cls.model_validate(config.model_dump())

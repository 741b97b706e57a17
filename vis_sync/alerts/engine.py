"""Threshold evaluation of alert rules against the sync execution ledger."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from ..monitoring.metrics import record_alert_triggered
from ..utils.logging import setup_logger
from ..utils.timeutils import Clock, utc_now
from .notifications import AlertNotification, NotificationDispatcher, recovery_hint
from .rules import AlertMetric, AlertRule

logger = setup_logger(__name__, context={"component": "AlertEngine"})

CONSECUTIVE_FAILURE_LOOKBACK = 20
ALL_ENTITIES = "all"

_RECOVERY_SUGGESTIONS: dict[AlertMetric, str] = {
    AlertMetric.SUCCESS_RATE: (
        "Check sync job logs for errors. Verify API connectivity and authentication."
    ),
    AlertMetric.CONSECUTIVE_FAILURES: (
        "Investigate the latest sync job failures. Consider a manual sync trigger if needed."
    ),
    AlertMetric.DURATION_EXCEEDED: (
        "Check for performance issues. Verify database connectivity and API response times."
    ),
    AlertMetric.MEMORY_USAGE: (
        "Monitor sync job memory usage. Consider reducing batch sizes or optimizing queries."
    ),
}


class ExecutionView(Protocol):
    success: bool | None
    duration_ms: int | None
    memory_mb: float | None


class ExecutionLedger(Protocol):
    def executions_since(
        self, entity_type: str | None, since: datetime
    ) -> Sequence[ExecutionView]: ...

    def recent_executions(
        self, entity_type: str | None, limit: int = 20
    ) -> Sequence[ExecutionView]: ...


class AlertLog(Protocol):
    def last_alert_trigger(self, rule_name: str, since: datetime) -> datetime | None: ...

    def log_alert_trigger(
        self,
        rule_name: str,
        *,
        severity: str,
        message: str,
        context: dict[str, Any],
        recovery_suggestion: str | None,
        occurred_at: datetime,
    ) -> int | None: ...


class RuleSource(Protocol):
    def active_alert_rules(self) -> list[AlertRule]: ...


class AlertState(str, Enum):
    HEALTHY = "healthy"
    ESCALATED = "escalated"
    SUPPRESSED = "suppressed"


@dataclass(slots=True)
class AlertEvaluation:
    rule_name: str
    triggered: bool
    current_value: float
    threshold: float
    message: str
    escalation_required: bool
    state: AlertState
    evaluated_at: datetime
    alert_id: str | None = None
    recovery_suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_name": self.rule_name,
            "triggered": self.triggered,
            "current_value": self.current_value,
            "threshold": self.threshold,
            "message": self.message,
            "escalation_required": self.escalation_required,
            "state": self.state.value,
            "evaluated_at": self.evaluated_at.isoformat(),
            "alert_id": self.alert_id,
        }


@dataclass(slots=True)
class AlertRunSummary:
    rules_evaluated: int = 0
    alerts_triggered: int = 0
    notifications_sent: int = 0
    evaluations: list[AlertEvaluation] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rules_evaluated": self.rules_evaluated,
            "alerts_triggered": self.alerts_triggered,
            "notifications_sent": self.notifications_sent,
            "evaluations": [evaluation.to_dict() for evaluation in self.evaluations],
            "errors": list(self.errors),
        }


def _scope(rule: AlertRule) -> str | None:
    if not rule.entity_type or rule.entity_type == ALL_ENTITIES:
        return None
    return rule.entity_type


def _format_value(metric: AlertMetric, value: float) -> str:
    match metric:
        case AlertMetric.SUCCESS_RATE:
            return f"{value * 100:.1f}%"
        case AlertMetric.CONSECUTIVE_FAILURES:
            return f"{round(value)} failures"
        case AlertMetric.DURATION_EXCEEDED:
            return f"{round(value)}s"
        case AlertMetric.MEMORY_USAGE:
            return f"{round(value)}MB"
    return str(value)


def build_message(rule: AlertRule, value: float, triggered: bool) -> str:
    """Human-readable, metric-specific description of an evaluation."""

    subject = "all sync jobs" if _scope(rule) is None else f"{rule.entity_type} sync"
    current = _format_value(rule.metric, value)
    threshold = _format_value(rule.metric, rule.threshold)

    if not triggered:
        return f"{subject} {rule.metric.value} is healthy: {current} (threshold: {threshold})"

    match rule.metric:
        case AlertMetric.SUCCESS_RATE:
            return (
                f"{subject} success rate has dropped to {current} "
                f"(below threshold of {threshold})"
            )
        case AlertMetric.CONSECUTIVE_FAILURES:
            return f"{subject} has {round(value)} consecutive failures (threshold: {threshold})"
        case AlertMetric.DURATION_EXCEEDED:
            return (
                f"{subject} average duration is {current} "
                f"(at or above threshold of {threshold})"
            )
        case AlertMetric.MEMORY_USAGE:
            return (
                f"{subject} peak memory usage is {current} "
                f"(at or above threshold of {threshold})"
            )
    return f"{subject} {rule.metric.value} is {current} (threshold: {threshold})"


def recovery_suggestion(metric: AlertMetric) -> str:
    return _RECOVERY_SUGGESTIONS.get(metric, "Review sync job performance and logs for issues.")


class AlertEngine:
    """Evaluates rules, deduplicates escalations and hands alerts to a dispatcher.

    Args:
        ledger: Source of execution history.
        alert_log: Records and looks up previous triggers.
        dispatcher: Notification boundary.
        rules: Source of active rules used when ``process_alerts`` gets none.
        clock: Time source.
    """

    def __init__(
        self,
        ledger: ExecutionLedger,
        alert_log: AlertLog,
        dispatcher: NotificationDispatcher,
        *,
        rules: RuleSource | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._ledger = ledger
        self._alert_log = alert_log
        self._dispatcher = dispatcher
        self._rules = rules
        self._clock = clock

    def current_value(self, rule: AlertRule, now: datetime | None = None) -> float:
        now = now or self._clock()
        scope = _scope(rule)

        if rule.metric is AlertMetric.CONSECUTIVE_FAILURES:
            recent = self._ledger.recent_executions(scope, CONSECUTIVE_FAILURE_LOOKBACK)
            failures = 0
            for execution in recent:
                if execution.success:
                    break
                failures += 1
            return float(failures)

        executions = self._ledger.executions_since(scope, now - rule.window)
        match rule.metric:
            case AlertMetric.SUCCESS_RATE:
                if not executions:
                    return 1.0
                return sum(1 for execution in executions if execution.success) / len(executions)
            case AlertMetric.DURATION_EXCEEDED:
                durations = [e.duration_ms for e in executions if e.duration_ms is not None]
                if not durations:
                    return 0.0
                return sum(durations) / len(durations) / 1000.0
            case AlertMetric.MEMORY_USAGE:
                peaks = [e.memory_mb for e in executions if e.memory_mb is not None]
                return max(peaks, default=0.0)
        raise ValueError(f"Unknown metric: {rule.metric}")

    @staticmethod
    def is_triggered(rule: AlertRule, value: float) -> bool:
        if rule.metric is AlertMetric.SUCCESS_RATE:
            return value < rule.threshold
        return value >= rule.threshold

    def evaluate_rule(self, rule: AlertRule) -> AlertEvaluation:
        """Compute the rule's metric and decide whether a notification is due."""

        now = self._clock()
        value = self.current_value(rule, now)
        triggered = self.is_triggered(rule, value)
        message = build_message(rule, value, triggered)

        if not triggered:
            return AlertEvaluation(
                rule_name=rule.name,
                triggered=False,
                current_value=value,
                threshold=rule.threshold,
                message=message,
                escalation_required=False,
                state=AlertState.HEALTHY,
                evaluated_at=now,
            )

        previous = self._alert_log.last_alert_trigger(rule.name, now - rule.escalation_window)
        escalate = previous is None
        suggestion = recovery_suggestion(rule.metric)
        alert_id: str | None = None

        if escalate:
            log_id = self._alert_log.log_alert_trigger(
                rule.name,
                severity=rule.severity.value,
                message=f"Alert triggered: {rule.name} - {message}",
                context={
                    "rule_id": rule.id,
                    "current_value": value,
                    "threshold": rule.threshold,
                    "entity_type": rule.entity_type or ALL_ENTITIES,
                    "metric": rule.metric.value,
                    "evaluation_window": rule.evaluation_window,
                    "escalation_required": True,
                },
                recovery_suggestion=suggestion,
                occurred_at=now,
            )
            alert_id = str(log_id) if log_id is not None else str(uuid.uuid4())
            record_alert_triggered(rule.name, rule.severity.value)
            logger.warning(
                "Alert %s triggered: %s",
                rule.name,
                message,
                extra={"entity_type": rule.entity_type or ALL_ENTITIES, "status": "escalated"},
            )
        else:
            logger.info(
                "Alert %s still triggered; last notified at %s",
                rule.name,
                previous.isoformat() if previous else "-",
                extra={"entity_type": rule.entity_type or ALL_ENTITIES, "status": "suppressed"},
            )

        return AlertEvaluation(
            rule_name=rule.name,
            triggered=True,
            current_value=value,
            threshold=rule.threshold,
            message=message,
            escalation_required=escalate,
            state=AlertState.ESCALATED if escalate else AlertState.SUPPRESSED,
            evaluated_at=now,
            alert_id=alert_id,
            recovery_suggestion=suggestion,
        )

    async def process_alerts(self, rules: Sequence[AlertRule] | None = None) -> AlertRunSummary:
        """Evaluate every active rule and notify for new escalations."""

        if rules is None:
            rules = await asyncio.to_thread(self._rules.active_alert_rules) if self._rules else []

        summary = AlertRunSummary()
        for rule in rules:
            if not rule.is_active:
                continue
            summary.rules_evaluated += 1
            try:
                evaluation = await asyncio.to_thread(self.evaluate_rule, rule)
            except Exception as exc:
                logger.exception("Evaluation of alert rule %s failed", rule.name)
                summary.errors.append({"rule": rule.name, "error": str(exc)})
                continue

            summary.evaluations.append(evaluation)
            if not evaluation.triggered:
                continue
            summary.alerts_triggered += 1
            if not evaluation.escalation_required:
                continue

            entity = rule.entity_type or ALL_ENTITIES
            notification = AlertNotification(
                alert_id=evaluation.alert_id or str(uuid.uuid4()),
                rule_name=rule.name,
                severity=rule.severity.value,
                entity_type=entity,
                message=evaluation.message,
                current_value=evaluation.current_value,
                threshold=rule.threshold,
                triggered_at=evaluation.evaluated_at,
                channels=[channel.value for channel in rule.notification_channels],
                recovery_suggestion=f"{evaluation.recovery_suggestion} {recovery_hint(entity)}",
            )
            report = await self._dispatcher.dispatch(notification)
            summary.notifications_sent += report.sent_count

        logger.info(
            "Processed %d alert rules: %d triggered, %d notifications sent",
            summary.rules_evaluated,
            summary.alerts_triggered,
            summary.notifications_sent,
            extra={"status": "success" if not summary.errors else "partial"},
        )
        return summary

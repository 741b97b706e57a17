"""SQLAlchemy-backed storage for synchronized entities and the sync ledger."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from pydantic import BaseModel
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..alerts.rules import AlertRule
from ..exceptions import StorageError
from ..monitoring.tracing import get_correlation_id
from ..resilience.executor import ClassifiedFailure
from ..schemas.records import SyncCandidate
from ..sync.entities import MATCH_ENTITY, TOURNAMENT_ENTITY
from ..sync.normalize import SyncStatus
from ..utils.config import AlertRuleConfig
from ..utils.logging import setup_logger
from ..utils.timeutils import ensure_aware
from .base import Base, get_session_factory
from .tables import (
    AlertRuleRecord,
    Match,
    SyncErrorLog,
    SyncExecution,
    SyncStatusRecord,
    Tournament,
)

logger = setup_logger(__name__, context={"component": "SyncStore"})

ALERT_ENTITY = "alert_system"
ALERT_TRIGGER_TYPE = "alert_triggered"

_ENTITY_MODELS: dict[str, type[Tournament] | type[Match]] = {
    TOURNAMENT_ENTITY: Tournament,
    MATCH_ENTITY: Match,
}

_INACTIVE_STATUSES = (SyncStatus.FINISHED.value, SyncStatus.CANCELLED.value)


@dataclass(frozen=True, slots=True)
class ExecutionSnapshot:
    """Detached view of a ``sync_execution_history`` row."""

    id: int
    entity_type: str
    started_at: datetime
    completed_at: datetime | None
    success: bool | None
    records_processed: int
    duration_ms: int | None
    memory_mb: float | None
    error_message: str | None

    @classmethod
    def from_row(cls, row: SyncExecution) -> ExecutionSnapshot:
        return cls(
            id=row.id,
            entity_type=row.entity_type,
            started_at=ensure_aware(row.started_at),
            completed_at=ensure_aware(row.completed_at) if row.completed_at else None,
            success=row.success,
            records_processed=row.records_processed,
            duration_ms=row.duration_ms,
            memory_mb=row.memory_mb,
            error_message=row.error_message,
        )

    def to_dict(self) -> dict[str, Any]:
        payload = dataclasses.asdict(self)
        for key in ("started_at", "completed_at"):
            if payload[key] is not None:
                payload[key] = payload[key].isoformat()
        return payload


def _context_payload(failure: ClassifiedFailure) -> dict[str, Any] | None:
    if failure.context is None:
        return None
    return dataclasses.asdict(failure.context)


def _row_dict(row: Base) -> dict[str, Any]:
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


class SyncStore:
    """Storage port implementation for synchronizers, the executor and the alert engine."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    @contextmanager
    def _scope(self, operation: str, table: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(
                f"Database {operation} on {table} failed: {exc}",
                operation=operation,
                table=table,
                transient=isinstance(exc, OperationalError),
            ) from exc
        finally:
            session.close()

    @staticmethod
    def _model(entity_type: str) -> type[Tournament] | type[Match]:
        try:
            return _ENTITY_MODELS[entity_type]
        except KeyError:
            raise ValueError(f"Unknown entity type: {entity_type}") from None

    # Entities

    def find_sync_candidates(self, today: date, horizon: date) -> list[SyncCandidate]:
        """Return tournaments that are running or scheduled between ``today`` and ``horizon``."""

        statement = select(Tournament).where(
            or_(
                Tournament.status == SyncStatus.RUNNING.value,
                (
                    (Tournament.start_date <= horizon)
                    & (Tournament.end_date >= today)
                    & Tournament.status.not_in(_INACTIVE_STATUSES)
                ),
            )
        ).order_by(Tournament.start_date, Tournament.id)

        with self._scope("select", Tournament.__tablename__) as session:
            rows = session.scalars(statement).all()
            return [
                SyncCandidate(
                    no=row.no,
                    code=row.code,
                    name=row.name,
                    status=row.status,
                    start_date=row.start_date,
                    end_date=row.end_date,
                    last_synced=(
                        ensure_aware(row.matches_last_synced) if row.matches_last_synced else None
                    ),
                )
                for row in rows
            ]

    def existing_keys(self, entity_type: str, keys: Sequence[str]) -> set[str]:
        if not keys:
            return set()
        model = self._model(entity_type)
        with self._scope("select", model.__tablename__) as session:
            return set(session.scalars(select(model.no).where(model.no.in_(list(keys)))).all())

    def upsert(self, entity_type: str, rows: Sequence[BaseModel], synced_at: datetime) -> None:
        """Insert or update ``rows`` keyed on the external ``no``."""

        if not rows:
            return
        model = self._model(entity_type)
        values = [
            {**row.model_dump(), "last_synced": synced_at, "updated_at": synced_at} for row in rows
        ]

        with self._scope("upsert", model.__tablename__) as session:
            dialect = session.get_bind().dialect.name
            if dialect == "postgresql":
                statement = postgresql.insert(model).values(values)
            elif dialect == "sqlite":
                statement = sqlite.insert(model).values(values)
            else:
                self._upsert_generic(session, model, values)
                return

            updatable = [key for key in values[0] if key != "no"]
            statement = statement.on_conflict_do_update(
                index_elements=[model.no],
                set_={
                    **{key: statement.excluded[key] for key in updatable},
                    "version": model.version + 1,
                },
            )
            session.execute(statement)

    @staticmethod
    def _upsert_generic(
        session: Session,
        model: type[Tournament] | type[Match],
        values: list[dict[str, Any]],
    ) -> None:
        for payload in values:
            existing = session.scalars(select(model).where(model.no == payload["no"])).first()
            if existing is None:
                session.add(model(**payload))
                continue
            for key, value in payload.items():
                setattr(existing, key, value)
            existing.version += 1

    def mark_matches_synced(self, tournament_no: str, synced_at: datetime) -> None:
        with self._scope("update", Tournament.__tablename__) as session:
            session.execute(
                update(Tournament)
                .where(Tournament.no == tournament_no)
                .values(matches_last_synced=synced_at)
            )

    def snapshot(self, entity_type: str, keys: Sequence[str]) -> dict[str, dict[str, Any]]:
        if not keys:
            return {}
        model = self._model(entity_type)
        with self._scope("select", model.__tablename__) as session:
            rows = session.scalars(select(model).where(model.no.in_(list(keys)))).all()
            return {row.no: _row_dict(row) for row in rows}

    def live_match_snapshot(self, tournament_no: str) -> dict[str, dict[str, Any]]:
        """Stored matches of ``tournament_no`` currently marked as running."""

        statement = (
            select(Match)
            .where(Match.tournament_no == tournament_no, Match.status == SyncStatus.RUNNING.value)
            .order_by(Match.local_time)
        )
        with self._scope("select", Match.__tablename__) as session:
            return {row.no: _row_dict(row) for row in session.scalars(statement).all()}

    def cleanup_stale(self, entity_type: str, cutoff: datetime) -> int:
        model = self._model(entity_type)
        with self._scope("delete", model.__tablename__) as session:
            result = session.execute(delete(model).where(model.last_synced < cutoff))
            return int(result.rowcount or 0)

    def statistics(self, entity_type: str) -> dict[str, Any]:
        model = self._model(entity_type)
        with self._scope("select", model.__tablename__) as session:
            by_status = {
                status: count
                for status, count in session.execute(
                    select(model.status, func.count()).group_by(model.status)
                ).all()
            }
            last_sync = session.scalar(select(func.max(model.last_synced)))
        return {
            "entity_type": entity_type,
            "total": sum(by_status.values()),
            "by_status": by_status,
            "last_sync": ensure_aware(last_sync).isoformat() if last_sync else None,
        }

    # Execution history

    def start_execution(
        self,
        entity_type: str,
        started_at: datetime,
        correlation_id: str | None = None,
    ) -> int:
        with self._scope("insert", SyncExecution.__tablename__) as session:
            row = SyncExecution(
                entity_type=entity_type,
                started_at=started_at,
                correlation_id=correlation_id,
            )
            session.add(row)
            session.flush()
            return row.id

    def finish_execution(
        self,
        execution_id: int,
        *,
        completed_at: datetime,
        success: bool,
        records_processed: int,
        duration_ms: int,
        memory_mb: float | None = None,
        error_message: str | None = None,
    ) -> None:
        with self._scope("update", SyncExecution.__tablename__) as session:
            row = session.get(SyncExecution, execution_id)
            if row is None:
                raise StorageError(
                    f"Execution {execution_id} not found",
                    operation="update",
                    table=SyncExecution.__tablename__,
                )
            # end >= start even when clocks disagree.
            row.completed_at = max(completed_at, ensure_aware(row.started_at))
            row.success = success
            row.records_processed = records_processed
            row.duration_ms = duration_ms
            row.memory_mb = memory_mb
            row.error_message = error_message

    def record_execution(self, entity_type: str, *, started_at: datetime, **fields: Any) -> int:
        """Insert and finalize an execution in one call."""

        execution_id = self.start_execution(entity_type, started_at)
        self.finish_execution(execution_id, **fields)
        return execution_id

    def executions_since(self, entity_type: str | None, since: datetime) -> list[ExecutionSnapshot]:
        statement = select(SyncExecution).where(
            SyncExecution.started_at >= since,
            SyncExecution.completed_at.is_not(None),
        )
        if entity_type:
            statement = statement.where(SyncExecution.entity_type == entity_type)
        statement = statement.order_by(SyncExecution.started_at.desc(), SyncExecution.id.desc())
        with self._scope("select", SyncExecution.__tablename__) as session:
            return [ExecutionSnapshot.from_row(row) for row in session.scalars(statement).all()]

    def recent_executions(
        self, entity_type: str | None, limit: int = 20
    ) -> list[ExecutionSnapshot]:
        """Most recent completed executions, newest first."""

        statement = select(SyncExecution).where(SyncExecution.completed_at.is_not(None))
        if entity_type:
            statement = statement.where(SyncExecution.entity_type == entity_type)
        statement = statement.order_by(
            SyncExecution.started_at.desc(), SyncExecution.id.desc()
        ).limit(limit)
        with self._scope("select", SyncExecution.__tablename__) as session:
            return [ExecutionSnapshot.from_row(row) for row in session.scalars(statement).all()]

    # Error log

    def log_error(self, failure: ClassifiedFailure) -> None:
        classification = failure.classification
        with self._scope("insert", SyncErrorLog.__tablename__) as session:
            session.add(
                SyncErrorLog(
                    entity_type=failure.operation.split(":", 1)[0],
                    operation=failure.operation,
                    entity_key=failure.entity_key,
                    error_type=classification.category.value,
                    severity=classification.severity.value,
                    retryable=classification.retryable,
                    error_message=failure.message,
                    context={
                        "error_class": failure.error_type,
                        "attempt": failure.attempt,
                        "details": _context_payload(failure),
                    },
                    recovery_suggestion=classification.recovery_suggestion,
                    occurred_at=failure.occurred_at,
                    correlation_id=get_correlation_id(),
                )
            )

    def resolve_error(
        self, error_id: int, notes: str | None = None, *, resolved_at: datetime
    ) -> bool:
        with self._scope("update", SyncErrorLog.__tablename__) as session:
            row = session.get(SyncErrorLog, error_id)
            if row is None or row.resolved_at is not None:
                return False
            row.resolved_at = resolved_at
            row.resolution_notes = notes
            return True

    def recent_errors(
        self, limit: int = 50, *, unresolved_only: bool = False
    ) -> list[dict[str, Any]]:
        statement = select(SyncErrorLog).where(SyncErrorLog.entity_type != ALERT_ENTITY)
        if unresolved_only:
            statement = statement.where(SyncErrorLog.resolved_at.is_(None))
        statement = statement.order_by(SyncErrorLog.occurred_at.desc()).limit(limit)
        with self._scope("select", SyncErrorLog.__tablename__) as session:
            return [_row_dict(row) for row in session.scalars(statement).all()]

    # Alerts

    def last_alert_trigger(self, rule_name: str, since: datetime) -> datetime | None:
        statement = select(func.max(SyncErrorLog.occurred_at)).where(
            SyncErrorLog.entity_type == ALERT_ENTITY,
            SyncErrorLog.error_type == ALERT_TRIGGER_TYPE,
            SyncErrorLog.operation == rule_name,
            SyncErrorLog.occurred_at >= since,
        )
        with self._scope("select", SyncErrorLog.__tablename__) as session:
            latest = session.scalar(statement)
        return ensure_aware(latest) if latest else None

    def log_alert_trigger(
        self,
        rule_name: str,
        *,
        severity: str,
        message: str,
        context: dict[str, Any],
        recovery_suggestion: str | None,
        occurred_at: datetime,
    ) -> int:
        with self._scope("insert", SyncErrorLog.__tablename__) as session:
            row = SyncErrorLog(
                entity_type=ALERT_ENTITY,
                operation=rule_name,
                error_type=ALERT_TRIGGER_TYPE,
                severity=severity,
                retryable=False,
                error_message=message,
                context=context,
                recovery_suggestion=recovery_suggestion,
                occurred_at=occurred_at,
                correlation_id=get_correlation_id(),
            )
            session.add(row)
            session.flush()
            return row.id

    def log_dashboard_alert(
        self,
        rule_name: str,
        *,
        severity: str,
        message: str,
        context: dict[str, Any],
        occurred_at: datetime,
    ) -> None:
        with self._scope("insert", SyncErrorLog.__tablename__) as session:
            session.add(
                SyncErrorLog(
                    entity_type=ALERT_ENTITY,
                    operation=rule_name,
                    error_type="dashboard_alert",
                    severity=severity,
                    retryable=False,
                    error_message=message,
                    context=context,
                    occurred_at=occurred_at,
                    correlation_id=get_correlation_id(),
                )
            )

    def active_alert_rules(self) -> list[AlertRule]:
        statement = select(AlertRuleRecord).where(AlertRuleRecord.is_active.is_(True))
        with self._scope("select", AlertRuleRecord.__tablename__) as session:
            rows = session.scalars(statement.order_by(AlertRuleRecord.id)).all()
            return [
                AlertRule.model_validate(
                    {
                        "id": row.id,
                        "name": row.name,
                        "description": row.description,
                        "entity_type": row.entity_type,
                        "metric": row.metric,
                        "threshold": row.threshold,
                        "evaluation_window": row.evaluation_window,
                        "severity": row.severity,
                        "notification_channels": list(row.notification_channels or []),
                        "escalation_delay": row.escalation_delay,
                        "is_active": row.is_active,
                    }
                )
                for row in rows
            ]

    def seed_alert_rules(self, rules: Sequence[AlertRuleConfig]) -> int:
        """Insert configured rules whose name is not stored yet; return the count added."""

        if not rules:
            return 0
        with self._scope("insert", AlertRuleRecord.__tablename__) as session:
            existing = set(session.scalars(select(AlertRuleRecord.name)).all())
            added = 0
            for rule in rules:
                if rule.name in existing:
                    continue
                session.add(AlertRuleRecord(**rule.model_dump()))
                added += 1
        if added:
            logger.info("Seeded %d alert rules from configuration", added)
        return added

    # Sync status

    def get_sync_status(self, entity_type: str) -> dict[str, Any] | None:
        with self._scope("select", SyncStatusRecord.__tablename__) as session:
            row = session.get(SyncStatusRecord, entity_type)
            return _row_dict(row) if row is not None else None

    def sync_status_overview(self) -> list[dict[str, Any]]:
        with self._scope("select", SyncStatusRecord.__tablename__) as session:
            rows = session.scalars(select(SyncStatusRecord).order_by(SyncStatusRecord.entity_type))
            return [_row_dict(row) for row in rows.all()]

    def update_sync_status(
        self,
        entity_type: str,
        *,
        run_at: datetime,
        success: bool,
        duration_seconds: float,
        frequency_minutes: int,
        error_message: str | None = None,
    ) -> None:
        """Advance counters, the rolling average duration and the next scheduled run."""

        with self._scope("upsert", SyncStatusRecord.__tablename__) as session:
            row = session.get(SyncStatusRecord, entity_type)
            if row is None:
                row = SyncStatusRecord(
                    entity_type=entity_type,
                    success_count=0,
                    error_count=0,
                    average_duration=0.0,
                    is_active=True,
                )
                session.add(row)

            runs = (row.success_count or 0) + (row.error_count or 0)
            row.average_duration = ((row.average_duration or 0.0) * runs + duration_seconds) / (
                runs + 1
            )
            row.last_sync = run_at
            row.sync_frequency_minutes = frequency_minutes
            row.next_sync = run_at + timedelta(minutes=frequency_minutes)
            if success:
                row.success_count = (row.success_count or 0) + 1
            else:
                row.error_count = (row.error_count or 0) + 1
                row.last_error = error_message
                row.last_error_time = run_at

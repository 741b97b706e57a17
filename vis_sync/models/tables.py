"""SQLAlchemy model definitions for synchronized entities and the sync ledger."""

from __future__ import annotations

from datetime import date, datetime, time, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Tournament(Base):
    """A tournament as last seen upstream."""

    __tablename__ = "tournaments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    no: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gender: Mapped[str | None] = mapped_column(String(32), nullable=True)
    surface: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tournament_type: Mapped[str] = mapped_column(String(16), nullable=False, default="LOCAL")
    last_synced: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    matches_last_synced: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Tournament no={self.no} code={self.code} status={self.status}>"


class Match(Base):
    """A beach volleyball match within a tournament."""

    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    no: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    tournament_no: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    no_in_tournament: Mapped[str | None] = mapped_column(String(32), nullable=True)
    team_a_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    team_b_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    local_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    local_time: Mapped[time] = mapped_column(Time, nullable=False)
    court: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    round: Mapped[str | None] = mapped_column(String(64), nullable=True)
    match_points_a: Mapped[int | None] = mapped_column(Integer, nullable=True)
    match_points_b: Mapped[int | None] = mapped_column(Integer, nullable=True)
    points_team_a_set1: Mapped[int | None] = mapped_column(Integer, nullable=True)
    points_team_b_set1: Mapped[int | None] = mapped_column(Integer, nullable=True)
    points_team_a_set2: Mapped[int | None] = mapped_column(Integer, nullable=True)
    points_team_b_set2: Mapped[int | None] = mapped_column(Integer, nullable=True)
    points_team_a_set3: Mapped[int | None] = mapped_column(Integer, nullable=True)
    points_team_b_set3: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_set1: Mapped[str | None] = mapped_column(String(16), nullable=True)
    duration_set2: Mapped[str | None] = mapped_column(String(16), nullable=True)
    duration_set3: Mapped[str | None] = mapped_column(String(16), nullable=True)
    no_referee1: Mapped[str | None] = mapped_column(String(32), nullable=True)
    no_referee2: Mapped[str | None] = mapped_column(String(32), nullable=True)
    referee1_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    referee2_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    referee1_federation_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    referee2_federation_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    last_synced: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Match no={self.no} tournament={self.tournament_no} status={self.status}>"


class SyncStatusRecord(Base):
    """Scheduling and health counters per entity type."""

    __tablename__ = "sync_status"

    entity_type: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_sync: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_frequency_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=15)
    next_sync: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_duration: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class SyncExecution(Base):
    """One row per sync run."""

    __tablename__ = "sync_execution_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    success: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    memory_mb: Mapped[float | None] = mapped_column(Float, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    def __repr__(self) -> str:
        return (
            f"<SyncExecution id={self.id} entity={self.entity_type} "
            f"success={self.success} records={self.records_processed}>"
        )


class SyncErrorLog(Base):
    """A classified failure, or an alert trigger when ``entity_type`` is ``alert_system``."""

    __tablename__ = "sync_error_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    operation: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    entity_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    retryable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    context: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    recovery_suggestion: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False, index=True
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(255), nullable=True)


class AlertRuleRecord(Base):
    """Declarative alert threshold."""

    __tablename__ = "alert_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    entity_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    metric: Mapped[str] = mapped_column(String(64), nullable=False)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)
    evaluation_window: Mapped[str] = mapped_column(String(64), nullable=False, default="1 hour")
    severity: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    notification_channels: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    escalation_delay: Mapped[str] = mapped_column(String(64), nullable=False, default="30 minutes")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

"""Create entity, sync ledger and alert rule tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op as alembic_op  # type: ignore[import-untyped]

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("last_synced", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    """Create the six tables used by the sync engine."""

    alembic_op.create_table(
        "tournaments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("no", sa.String(length=32), nullable=False, unique=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=255), nullable=True),
        sa.Column("gender", sa.String(length=32), nullable=True),
        sa.Column("surface", sa.String(length=64), nullable=True),
        sa.Column("tournament_type", sa.String(length=16), nullable=False, server_default="LOCAL"),
        sa.Column("matches_last_synced", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    alembic_op.create_index("ix_tournaments_start_date", "tournaments", ["start_date"])
    alembic_op.create_index("ix_tournaments_end_date", "tournaments", ["end_date"])
    alembic_op.create_index("ix_tournaments_status", "tournaments", ["status"])

    score_columns = [
        sa.Column(name, sa.Integer(), nullable=True)
        for name in (
            "match_points_a",
            "match_points_b",
            "points_team_a_set1",
            "points_team_b_set1",
            "points_team_a_set2",
            "points_team_b_set2",
            "points_team_a_set3",
            "points_team_b_set3",
        )
    ]
    alembic_op.create_table(
        "matches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("no", sa.String(length=32), nullable=False, unique=True),
        sa.Column("tournament_no", sa.String(length=32), nullable=False),
        sa.Column("no_in_tournament", sa.String(length=32), nullable=True),
        sa.Column("team_a_name", sa.String(length=255), nullable=True),
        sa.Column("team_b_name", sa.String(length=255), nullable=True),
        sa.Column("local_date", sa.Date(), nullable=False),
        sa.Column("local_time", sa.Time(), nullable=False),
        sa.Column("court", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("round", sa.String(length=64), nullable=True),
        *score_columns,
        sa.Column("duration_set1", sa.String(length=16), nullable=True),
        sa.Column("duration_set2", sa.String(length=16), nullable=True),
        sa.Column("duration_set3", sa.String(length=16), nullable=True),
        sa.Column("no_referee1", sa.String(length=32), nullable=True),
        sa.Column("no_referee2", sa.String(length=32), nullable=True),
        sa.Column("referee1_name", sa.String(length=255), nullable=True),
        sa.Column("referee2_name", sa.String(length=255), nullable=True),
        sa.Column("referee1_federation_code", sa.String(length=16), nullable=True),
        sa.Column("referee2_federation_code", sa.String(length=16), nullable=True),
        *_timestamps(),
    )
    alembic_op.create_index("ix_matches_tournament_no", "matches", ["tournament_no"])
    alembic_op.create_index("ix_matches_local_date", "matches", ["local_date"])
    alembic_op.create_index("ix_matches_status", "matches", ["status"])

    alembic_op.create_table(
        "sync_status",
        sa.Column("entity_type", sa.String(length=64), primary_key=True),
        sa.Column("last_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_frequency_minutes", sa.Integer(), nullable=False, server_default="15"),
        sa.Column("next_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("success_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("average_duration", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_error_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    alembic_op.create_table(
        "sync_execution_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=True),
        sa.Column("records_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("memory_mb", sa.Float(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("correlation_id", sa.String(length=255), nullable=True),
    )
    alembic_op.create_index(
        "ix_sync_execution_history_entity_type", "sync_execution_history", ["entity_type"]
    )
    alembic_op.create_index(
        "ix_sync_execution_history_started_at", "sync_execution_history", ["started_at"]
    )
    alembic_op.create_index(
        "ix_sync_execution_history_correlation_id", "sync_execution_history", ["correlation_id"]
    )

    alembic_op.create_table(
        "sync_error_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("operation", sa.String(length=255), nullable=False),
        sa.Column("entity_key", sa.String(length=64), nullable=True),
        sa.Column("error_type", sa.String(length=64), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("retryable", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("error_message", sa.Text(), nullable=False),
        sa.Column("context", sa.JSON(), nullable=True),
        sa.Column("recovery_suggestion", sa.Text(), nullable=True),
        sa.Column(
            "occurred_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("correlation_id", sa.String(length=255), nullable=True),
    )
    alembic_op.create_index("ix_sync_error_log_entity_type", "sync_error_log", ["entity_type"])
    alembic_op.create_index("ix_sync_error_log_operation", "sync_error_log", ["operation"])
    alembic_op.create_index("ix_sync_error_log_error_type", "sync_error_log", ["error_type"])
    alembic_op.create_index("ix_sync_error_log_occurred_at", "sync_error_log", ["occurred_at"])

    alembic_op.create_table(
        "alert_rules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=128), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("entity_type", sa.String(length=64), nullable=True),
        sa.Column("metric", sa.String(length=64), nullable=False),
        sa.Column("threshold", sa.Float(), nullable=False),
        sa.Column("evaluation_window", sa.String(length=64), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("notification_channels", sa.JSON(), nullable=False),
        sa.Column("escalation_delay", sa.String(length=64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    """Drop every sync table."""

    alembic_op.drop_table("alert_rules")
    for index in (
        "ix_sync_error_log_occurred_at",
        "ix_sync_error_log_error_type",
        "ix_sync_error_log_operation",
        "ix_sync_error_log_entity_type",
    ):
        alembic_op.drop_index(index, table_name="sync_error_log")
    alembic_op.drop_table("sync_error_log")
    for index in (
        "ix_sync_execution_history_correlation_id",
        "ix_sync_execution_history_started_at",
        "ix_sync_execution_history_entity_type",
    ):
        alembic_op.drop_index(index, table_name="sync_execution_history")
    alembic_op.drop_table("sync_execution_history")
    alembic_op.drop_table("sync_status")
    for index in ("ix_matches_status", "ix_matches_local_date", "ix_matches_tournament_no"):
        alembic_op.drop_index(index, table_name="matches")
    alembic_op.drop_table("matches")
    for index in ("ix_tournaments_status", "ix_tournaments_end_date", "ix_tournaments_start_date"):
        alembic_op.drop_index(index, table_name="tournaments")
    alembic_op.drop_table("tournaments")

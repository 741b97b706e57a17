"""Celery task package exposing the configured app and sync tasks."""

from __future__ import annotations

from .celery_app import celery_app as app
from .sync import evaluate_alerts, process_dead_letters, sync_matches, sync_tournaments

__all__ = [
    "app",
    "evaluate_alerts",
    "process_dead_letters",
    "sync_matches",
    "sync_tournaments",
]

"""Celery application and beat schedule for the VIS sync service."""

from __future__ import annotations

from datetime import timedelta

from celery import Celery
from celery.schedules import crontab

from ..utils.config import get_settings


def _resolve_redis_url() -> str:
    """Return the Redis URL configured for the application."""

    settings = get_settings()
    return settings.redis_url or "redis://localhost:6379/0"


celery_app = Celery(
    "vis_sync",
    broker=_resolve_redis_url(),
    backend=_resolve_redis_url(),
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_hijack_root_logger=False,
    beat_schedule={
        "sync-matches": {
            "task": "vis_sync.sync_matches",
            "schedule": crontab(minute="*/15"),
        },
        "sync-live-scores": {
            "task": "vis_sync.sync_live_scores",
            "schedule": timedelta(seconds=get_settings().sync.live_interval_seconds),
        },
        "sync-tournaments": {
            "task": "vis_sync.sync_tournaments",
            "schedule": crontab(minute=0, hour=2),
        },
        "evaluate-alerts": {
            "task": "vis_sync.evaluate_alerts",
            "schedule": crontab(minute="*/5"),
        },
        "process-dead-letters": {
            "task": "vis_sync.process_dead_letters",
            "schedule": crontab(minute=30),
        },
    },
)

celery_app.autodiscover_tasks(["vis_sync.tasks"], related_name="sync")

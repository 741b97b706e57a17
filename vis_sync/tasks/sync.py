"""Celery tasks: thin synchronous wrappers around the sync runner."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

from ..jobs.runner import (
    SyncServices,
    get_sync_services,
    http_status,
    run_alert_evaluation,
    run_dead_letter_processing,
    run_live_score_sync,
    run_match_sync,
    run_tournament_sync,
)
from ..performance.governor import is_active_hours
from ..utils.config import ensure_runtime_configuration, get_settings
from ..utils.logging import setup_logger
from .celery_app import celery_app

logger = setup_logger(__name__, context={"component": "CeleryTasks"})


def _services() -> SyncServices:
    ensure_runtime_configuration(get_settings())
    return get_sync_services()


def _render(result: Any) -> dict[str, Any]:
    body = result.to_response()
    body["httpStatus"] = http_status(result)
    return body


@celery_app.task(name="vis_sync.sync_tournaments")
def sync_tournaments() -> dict[str, Any]:
    """Daily full refresh of the tournament list."""

    return _render(asyncio.run(run_tournament_sync(_services())))


@celery_app.task(name="vis_sync.sync_matches")
def sync_matches(force: bool = False) -> dict[str, Any]:
    """Match schedule sync; outside tournament hours it is skipped unless forced."""

    services = _services()
    if not force and not is_active_hours(services.clock()):
        logger.info(
            "Outside active tournament hours; skipping match sync", extra={"status": "skipped"}
        )
        return {"status": "skipped", "reason": "outside active hours"}
    return _render(asyncio.run(run_match_sync(services)))


@celery_app.task(name="vis_sync.sync_live_scores")
def sync_live_scores(force: bool = False) -> dict[str, Any]:
    """Score refresh for running matches, on the same active-hours gate as match sync."""

    services = _services()
    if not force and not is_active_hours(services.clock()):
        return {"status": "skipped", "reason": "outside active hours"}
    return _render(asyncio.run(run_live_score_sync(services)))


@celery_app.task(name="vis_sync.evaluate_alerts")
def evaluate_alerts() -> dict[str, Any]:
    summary = asyncio.run(run_alert_evaluation(_services()))
    return summary.to_dict()


@celery_app.task(name="vis_sync.process_dead_letters")
def process_dead_letters(max_age_hours: float = 24.0, force: bool = False) -> dict[str, int]:
    return asyncio.run(
        run_dead_letter_processing(
            _services(), max_age=timedelta(hours=max_age_hours), force=force
        )
    )


__all__ = [
    "evaluate_alerts",
    "process_dead_letters",
    "sync_live_scores",
    "sync_matches",
    "sync_tournaments",
]

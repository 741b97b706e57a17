"""Health check endpoint."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends

from ...exceptions import StorageError
from ...jobs.runner import SyncServices
from ...performance.governor import is_active_hours
from ..dependencies import get_services

router = APIRouter()


@router.get("/health")
async def health_check(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    """Report per-entity sync status and the dead-letter backlog."""

    try:
        entities = await asyncio.to_thread(services.store.sync_status_overview)
    except StorageError as exc:
        return {"status": "unhealthy", "service": "vis_sync", "database": str(exc)}

    overall_status = "healthy"
    if any((entity.get("error_count") or 0) and entity.get("last_error") for entity in entities):
        overall_status = "degraded"

    stats = services.executor.statistics()
    return {
        "status": overall_status,
        "service": "vis_sync",
        "entities": entities,
        "dead_letter_queue_size": stats["dead_letter_queue_size"],
        "active_hours": is_active_hours(services.clock()),
    }

"""Dead-letter inspection and replay endpoints."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query

from ...jobs.runner import SyncServices, run_dead_letter_processing
from ...resilience.dead_letter import DeadLetterStatus
from ..dependencies import get_services, require_api_key

router = APIRouter(prefix="/dead-letters", dependencies=[Depends(require_api_key)])


@router.get("")
async def list_dead_letters(
    status: DeadLetterStatus | None = None,
    services: SyncServices = Depends(get_services),
) -> dict[str, Any]:
    entries = services.executor.dead_letter_entries(status)
    return {
        "entries": [entry.to_dict() for entry in entries],
        "statistics": services.executor.statistics(),
    }


@router.post("/process")
async def process_dead_letters(
    max_age_hours: float = Query(default=24.0, gt=0),
    force: bool = False,
    services: SyncServices = Depends(get_services),
) -> dict[str, int]:
    """Replay failed entries once; stale or non-replayable entries stay failed."""

    return await run_dead_letter_processing(
        services, max_age=timedelta(hours=max_age_hours), force=force
    )

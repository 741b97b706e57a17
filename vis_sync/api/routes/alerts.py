"""Alert evaluation and error log endpoints."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from ...jobs.runner import SyncServices, run_alert_evaluation
from ..dependencies import get_services, require_api_key

router = APIRouter(prefix="/alerts", dependencies=[Depends(require_api_key)])


class ResolveErrorRequest(BaseModel):
    notes: str | None = None


@router.post("/evaluate")
async def evaluate_alerts(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    summary = await run_alert_evaluation(services)
    return summary.to_dict()


@router.post("/test-channels")
async def test_channels(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    """Send a synthetic alert through every enabled notification channel."""

    return {"channels": await services.dispatcher.test_channels()}


@router.get("/errors")
async def recent_errors(
    limit: int = Query(default=50, ge=1, le=500),
    unresolved_only: bool = False,
    services: SyncServices = Depends(get_services),
) -> dict[str, Any]:
    errors = await asyncio.to_thread(
        services.store.recent_errors, limit, unresolved_only=unresolved_only
    )
    return {"errors": errors}


@router.post("/errors/{error_id}/resolve")
async def resolve_error(
    error_id: int,
    request: ResolveErrorRequest,
    services: SyncServices = Depends(get_services),
) -> dict[str, Any]:
    resolved = await asyncio.to_thread(
        services.store.resolve_error,
        error_id,
        request.notes,
        resolved_at=services.clock(),
    )
    if not resolved:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No unresolved error with id {error_id}.",
        )
    return {"id": error_id, "resolved": True}

"""HTTP triggers for the sync jobs."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ...jobs.runner import (
    SyncServices,
    http_status,
    run_live_score_sync,
    run_match_sync,
    run_tournament_sync,
)
from ...sync.entities import LIVE_SCORE_ENTITY
from ...utils.logging import setup_logger
from ..dependencies import get_services, require_api_key

logger = setup_logger(__name__, context={"component": "SyncAPI"})
router = APIRouter(prefix="/sync", dependencies=[Depends(require_api_key)])


@router.post("/tournaments")
async def sync_tournaments(services: SyncServices = Depends(get_services)) -> JSONResponse:
    """Run the tournament sync; 200 clean, 207 partial, 500 nothing processed."""

    result = await run_tournament_sync(services)
    status_code = http_status(result)
    logger.info(
        "HTTP trigger finished with %s", status_code, extra={"entity_type": "tournaments"}
    )
    return JSONResponse(status_code=status_code, content=result.to_response())


@router.post("/matches")
async def sync_matches(services: SyncServices = Depends(get_services)) -> JSONResponse:
    """Run the match schedule sync; 200 clean, 207 partial, 500 nothing processed."""

    result = await run_match_sync(services)
    status_code = http_status(result)
    logger.info(
        "HTTP trigger finished with %s", status_code, extra={"entity_type": "matches_schedule"}
    )
    return JSONResponse(status_code=status_code, content=result.to_response())


@router.get("/status")
async def sync_status(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    entities = await asyncio.to_thread(services.store.sync_status_overview)
    return {"entities": entities}


@router.get("/statistics")
async def sync_statistics(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    tournaments = await asyncio.to_thread(services.tournament_sync.statistics)
    matches = await asyncio.to_thread(services.match_sync.statistics)
    return {
        "tournaments": tournaments,
        "matches": matches,
        "performance": services.governor.performance_report(
            total_matches=matches.get("total", 0),
        ),
        "cache_ttl_policy": {
            name: int(value.total_seconds())
            for name, value in services.cache.policy.model_dump().items()
        },
    }


@router.post("/live-scores")
async def sync_live_scores(services: SyncServices = Depends(get_services)) -> JSONResponse:
    result = await run_live_score_sync(services)
    status_code = http_status(result)
    logger.info(
        "HTTP trigger finished with %s", status_code, extra={"entity_type": LIVE_SCORE_ENTITY}
    )
    return JSONResponse(status_code=status_code, content=result.to_response())


@router.get("/history")
async def sync_history(
    hours: int = Query(default=24, ge=1, le=24 * 30),
    entity_type: str = Query(default="all"),
    services: SyncServices = Depends(get_services),
) -> dict[str, Any]:
    """Completed executions of the last ``hours``, newest first, with per-entity totals."""

    end = services.clock()
    start = end - timedelta(hours=hours)
    executions = await asyncio.to_thread(
        services.store.executions_since, None if entity_type == "all" else entity_type, start
    )

    by_entity: dict[str, int] = {}
    for execution in executions:
        by_entity[execution.entity_type] = by_entity.get(execution.entity_type, 0) + 1
    succeeded = sum(1 for execution in executions if execution.success)

    return {
        "total_records": len(executions),
        "executions": [execution.to_dict() for execution in executions],
        "summary": {
            "by_entity_type": by_entity,
            "by_status": {"success": succeeded, "failed": len(executions) - succeeded},
        },
        "time_range": {"start": start.isoformat(), "end": end.isoformat(), "hours": hours},
    }

"""Upstream authentication diagnostics."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from ...jobs.runner import SyncServices
from ..dependencies import get_services, require_api_key

router = APIRouter(prefix="/auth", dependencies=[Depends(require_api_key)])


@router.get("/status")
async def auth_status(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    return services.authenticator.auth_status()


@router.post("/test")
async def test_authentication(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    """Check the upstream API with bearer, then embedded, credentials."""

    authenticator = services.authenticator
    authenticator.clear_cache()
    result = await authenticator.test_authentication()
    return result.to_dict()

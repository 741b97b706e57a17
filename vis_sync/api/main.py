"""FastAPI application for the VIS sync service."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..exceptions import VisSyncError
from ..monitoring.tracing import extract_correlation_id_from_headers
from ..utils.config import ensure_runtime_configuration, get_settings
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "FastAPI"})


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore
    """Application lifespan context manager for startup/shutdown."""
    ensure_runtime_configuration(get_settings())
    logger.info("VIS sync API starting up...")
    yield
    logger.info("VIS sync API shutting down...")


app = FastAPI(
    title="VIS Sync API",
    description="Scheduled synchronization of FIVB VIS tournaments and match schedules",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(VisSyncError)
async def vis_sync_exception_handler(request: Request, exc: VisSyncError) -> JSONResponse:
    """Render uncaught service errors as a JSON 500."""
    correlation_id = extract_correlation_id_from_headers(dict(request.headers)) or "-"
    logger.error(
        "VisSyncError: %s",
        exc,
        extra={
            "path": request.url.path,
            "correlation_id": correlation_id,
            "status": "error",
        },
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"status": "error", "message": str(exc), "error_type": exc.__class__.__name__},
    )


from .routes import alerts, auth, dead_letters, health, metrics, sync  # noqa: E402

app.include_router(health.router, tags=["health"])
app.include_router(sync.router, prefix="/api/v1", tags=["sync"])
app.include_router(alerts.router, prefix="/api/v1", tags=["alerts"])
app.include_router(dead_letters.router, prefix="/api/v1", tags=["dead-letters"])
app.include_router(auth.router, prefix="/api/v1", tags=["auth"])
app.include_router(metrics.router, tags=["monitoring"])

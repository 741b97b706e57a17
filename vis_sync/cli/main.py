"""Command line entry point: serve the API or run one sync job in the foreground."""
import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

import click
import uvicorn

from vis_sync.exceptions import VisSyncError
from vis_sync.jobs.runner import (
    SyncRunResult,
    SyncServices,
    get_sync_services,
    http_status,
    run_alert_evaluation,
    run_dead_letter_processing,
    run_live_score_sync,
    run_match_sync,
    run_tournament_sync,
)
from vis_sync.utils.config import ensure_runtime_configuration, get_settings

SYNC_JOBS: dict[str, Callable[[SyncServices], Awaitable[SyncRunResult]]] = {
    "tournaments": run_tournament_sync,
    "matches": run_match_sync,
    "live-scores": run_live_score_sync,
}
JOB_NAMES = [*SYNC_JOBS, "alerts", "dead-letters"]


def _services() -> SyncServices:
    ensure_runtime_configuration(get_settings())
    return get_sync_services()


def print_run_summary(body: dict[str, Any]) -> None:
    """Print the invocation contract of a sync run as aligned text."""
    click.echo("=" * 60)
    click.echo(f"  HTTP status:  {body['httpStatus']}")
    click.echo(f"  Success:      {body['success']}")
    for key in ("tournamentsProcessed", "matchesProcessed"):
        if key in body:
            click.echo(f"  Processed:    {body[key]}")
    click.echo(
        f"  Inserts:      {body['insertsCount']}   Updates: {body['updatesCount']}"
        f"   Skipped: {body['skippedCount']}"
    )
    click.echo(f"  Duration:     {body['duration']} ms")
    if body.get("timedOut"):
        click.echo("  Timed out:    yes")
    if body["errors"]:
        click.echo(f"\n  Errors ({body['errorsCount']}):")
        for error in body["errors"]:
            click.echo(f"    - {error}")
    click.echo("=" * 60)


@click.group()
def cli() -> None:
    """FIVB VIS sync service."""


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True, help="Interface to bind")
@click.option("--port", default=8000, show_default=True, type=int, help="Port to listen on")
@click.option("--reload", is_flag=True, help="Restart on code changes (development only)")
def serve(host: str, port: int, reload: bool) -> None:
    """Serve the HTTP API with uvicorn."""
    uvicorn.run(
        "vis_sync.api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=get_settings().log_level.lower(),
    )


@cli.command()
@click.argument("job", type=click.Choice(JOB_NAMES))
@click.option("--json", "output_json", is_flag=True, help="Print the raw result as JSON")
@click.option("--force", is_flag=True, help="Replay dead letters regardless of their backoff")
def run(job: str, output_json: bool, force: bool) -> None:
    """
    Run one job to completion and report its outcome.

    Examples:

        # Refresh the tournament list
        vis-sync run tournaments

        # Live scores as JSON for automation
        vis-sync run live-scores --json
    """
    try:
        services = _services()
        if job in SYNC_JOBS:
            result = asyncio.run(SYNC_JOBS[job](services))
            body: dict[str, Any] = result.to_response()
            body["httpStatus"] = http_status(result)
        elif job == "alerts":
            body = asyncio.run(run_alert_evaluation(services)).to_dict()
        else:
            body = asyncio.run(run_dead_letter_processing(services, force=force))
    except VisSyncError as e:
        click.echo(f"Error running {job}: {e}", err=True)
        raise click.Abort()

    if output_json or job not in SYNC_JOBS:
        click.echo(json.dumps(body, indent=2))
    else:
        print_run_summary(body)

    if body.get("httpStatus") == 500:
        raise SystemExit(1)


if __name__ == "__main__":
    cli()

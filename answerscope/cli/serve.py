"""Serve command: HTTP API plus the reconciliation scheduler."""

import asyncio
from pathlib import Path

import typer

from answerscope.cli.utils import (
    DEFAULT_CONFIG,
    display_success,
    display_warning,
    handle_errors,
    load_config,
    logger,
)
from answerscope.models.config import AppConfig


@handle_errors
def serve_command(
    config_path: Path = typer.Option(
        DEFAULT_CONFIG, "--config", "-c", help="Path to collection config YAML"
    ),
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="API port"),
    sweep: bool = typer.Option(
        True, "--sweep/--no-sweep", help="Run the reconciliation sweep"
    ),
):
    """Serve the collection API with background reconciliation.

    Press Ctrl+C to stop gracefully.
    """
    config = load_config(config_path)
    try:
        asyncio.run(_run_server(config, host, port, sweep))
    except KeyboardInterrupt:
        display_warning("\nServer stopped.")


async def _run_server(config: AppConfig, host: str, port: int, sweep: bool) -> None:
    from answerscope.api.server import run_server_async
    from answerscope.orchestration.service import CollectionService
    from answerscope.scheduling import ReconciliationScheduler, ReconciliationSweepJob

    service = CollectionService(config)
    scheduler = ReconciliationScheduler()

    typer.secho("Starting answerscope", fg=typer.colors.CYAN, bold=True)
    typer.echo(f"  Config version: {config.version}")
    typer.echo(f"  API: http://{host}:{port}/collections")
    typer.echo(f"  Health: http://{host}:{port}/health")
    typer.echo(f"  Metrics: http://{host}:{port}/metrics")

    if sweep:
        scheduler.add_job(
            ReconciliationSweepJob(service),
            job_id="reconciliation_sweep",
            trigger="interval",
            seconds=config.polling.sweep_interval_seconds,
        )
        display_success(
            f"Reconciliation sweep every {config.polling.sweep_interval_seconds}s"
        )

    try:
        if sweep:
            await asyncio.gather(
                run_server_async(service, host=host, port=port, log_level="warning"),
                scheduler.start(),
            )
        else:
            await run_server_async(service, host=host, port=port, log_level="warning")
    finally:
        logger.info("serve_shutting_down")
        await scheduler.shutdown(wait=False)
        await service.close()

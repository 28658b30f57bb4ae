"""Collect command: run one batch in the foreground.

Submits the batch to an in-process service, prints progress while it runs
and a per-request summary at the end.
"""

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer

from answerscope.cli.utils import (
    DEFAULT_CONFIG,
    display_error,
    display_info,
    display_success,
    display_warning,
    handle_errors,
    load_config,
    read_queries,
)
from answerscope.models.batch import BatchState, CollectionOutcome, OutcomeStatus
from answerscope.models.config import AppConfig
from answerscope.orchestration.service import CollectionService

_STATUS_COLORS = {
    OutcomeStatus.COMPLETED: typer.colors.GREEN,
    OutcomeStatus.FAILED: typer.colors.RED,
    OutcomeStatus.HANDED_OFF: typer.colors.YELLOW,
    OutcomeStatus.CANCELLED: typer.colors.YELLOW,
}


@handle_errors
def collect_command(
    brand_id: str = typer.Option(..., "--brand", "-b", help="Brand id"),
    customer_id: str = typer.Option("default", "--customer", help="Customer id"),
    collector_types: List[str] = typer.Option(
        ..., "--collector-type", "-t", help="Collector type (repeatable)"
    ),
    queries: Optional[List[str]] = typer.Option(
        None, "--query", "-q", help="Query text (repeatable)"
    ),
    queries_file: Optional[Path] = typer.Option(
        None, "--queries-file", "-f", help="File with one query per line"
    ),
    config_path: Path = typer.Option(
        DEFAULT_CONFIG, "--config", "-c", help="Path to collection config YAML"
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write outcomes as JSON to this file"
    ),
    locale: str = typer.Option("en", "--locale", help="Answer locale"),
    country: str = typer.Option("US", "--country", help="Answer country"),
):
    """Collect answers for a batch of queries and print the outcomes."""
    config = load_config(config_path)
    query_list = read_queries(queries, queries_file)
    if not query_list:
        display_error("Provide --query or --queries-file")
        raise typer.Exit(code=1)

    outcomes = asyncio.run(
        _run_collect(
            config,
            brand_id,
            customer_id,
            query_list,
            collector_types,
            locale,
            country,
        )
    )

    for outcome in outcomes:
        provider = outcome.result.provider_used if outcome.result else "-"
        typer.secho(
            f"  [{outcome.status.value:>10}] {outcome.request.collector_type}: "
            f"{outcome.request.query_text[:60]} ({provider}, "
            f"{len(outcome.attempts)} attempts)",
            fg=_STATUS_COLORS[outcome.status],
        )

    if output is not None:
        output.write_text(
            json.dumps([o.model_dump(mode="json") for o in outcomes], indent=2)
        )
        display_info(f"Outcomes written to {output}")

    failed = sum(1 for o in outcomes if o.status == OutcomeStatus.FAILED)
    if failed:
        display_warning(f"{failed} of {len(outcomes)} requests failed")
    else:
        display_success(f"Collected {len(outcomes)} requests")


async def _run_collect(
    config: AppConfig,
    brand_id: str,
    customer_id: str,
    queries: List[str],
    collector_types: List[str],
    locale: str,
    country: str,
    progress_interval: float = 2.0,
) -> List[CollectionOutcome]:
    service = CollectionService(config)
    try:
        batch_id = await service.submit_collection(
            brand_id,
            customer_id,
            queries,
            collector_types,
            locale=locale,
            country=country,
        )
        display_info(f"Batch {batch_id} started")

        waiter = asyncio.create_task(service.wait_for_batch(batch_id))
        while not waiter.done():
            await asyncio.wait({waiter}, timeout=progress_interval)
            progress = service.get_batch_progress(batch_id)
            typer.echo(
                f"  {progress.completed + progress.failed + progress.handed_off}"
                f"/{progress.total} done, {progress.in_flight} in flight"
            )
            if progress.state != BatchState.RUNNING:
                break

        return await waiter
    finally:
        await service.close()

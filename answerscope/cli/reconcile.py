"""Reconcile command: run one reconciliation sweep and exit."""

import asyncio
from pathlib import Path
from typing import Dict

import typer

from answerscope.cli.utils import (
    DEFAULT_CONFIG,
    display_info,
    display_success,
    display_warning,
    handle_errors,
    load_config,
)
from answerscope.models.config import AppConfig
from answerscope.orchestration.service import CollectionService


@handle_errors
def reconcile_command(
    config_path: Path = typer.Option(
        DEFAULT_CONFIG, "--config", "-c", help="Path to collection config YAML"
    ),
):
    """Resume every pending async-job handoff once."""
    config = load_config(config_path)
    if config.storage.backend == "memory":
        display_warning(
            "Storage backend is 'memory'; handoffs from other processes are "
            "not visible. Configure storage.backend: json to reconcile them."
        )

    summary = asyncio.run(_run_reconcile(config))
    if summary["pending"] == 0:
        display_info("No pending handoffs.")
        return
    display_success(
        f"Reconciled {summary['pending']} handoffs: "
        f"{summary['completed']} completed, {summary['failed']} failed, "
        f"{summary['skipped']} skipped"
    )


async def _run_reconcile(config: AppConfig) -> Dict[str, int]:
    service = CollectionService(config)
    try:
        return await service.reconcile_pending()
    finally:
        await service.close()

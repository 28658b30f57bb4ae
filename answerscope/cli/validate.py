"""Validate command for configuration files."""

from pathlib import Path

import typer

from answerscope.cli.utils import display_error, display_info, display_success
from answerscope.cli.utils import handle_errors
from answerscope.services.config_manager import ConfigManager
from answerscope.utils.exceptions import ConfigValidationError


@handle_errors
def validate_command(
    config_path: Path = typer.Argument(..., help="Config file to validate"),
):
    """Validate configuration file syntax and cross-references."""
    try:
        config = ConfigManager(config_path=str(config_path)).load_config()
    except (FileNotFoundError, ConfigValidationError) as e:
        display_error(f"Validation failed: {e}")
        raise typer.Exit(code=1)

    display_success("Configuration is valid! ✅")
    display_info(f"  Version: {config.version}")
    for name, collector in config.collector_types.items():
        chain = " -> ".join(b.provider_name for b in collector.enabled_bindings)
        typer.echo(f"  {name}: {chain or '(no enabled bindings)'}")

"""Shared CLI utilities."""

import functools
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

import structlog
import typer

from answerscope.models.config import AppConfig
from answerscope.observability.logging import configure_logging
from answerscope.services.config_manager import ConfigManager
from answerscope.utils.exceptions import ConfigValidationError

configure_logging(json_output=False)
logger = structlog.get_logger()

F = TypeVar("F", bound=Callable)

DEFAULT_CONFIG = Path("config/collection_config.yaml")


def load_config(config_path: Path) -> AppConfig:
    """Load and validate configuration.

    Raises:
        typer.Exit: If configuration is invalid.
    """
    try:
        return ConfigManager(config_path=str(config_path)).load_config()
    except (FileNotFoundError, ConfigValidationError) as e:
        typer.secho(f"Configuration Error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def read_queries(
    queries: Optional[List[str]], queries_file: Optional[Path]
) -> List[str]:
    """Merge --query options with a one-query-per-line file.

    Blank lines and lines starting with '#' are ignored.
    """
    collected = list(queries or [])
    if queries_file is not None:
        for line in queries_file.read_text().splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                collected.append(line)
    return collected


def handle_errors(func: F) -> F:
    """Turn unexpected exceptions into a red message and exit code 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except Exception as e:
            logger.exception("command_failed")
            typer.secho(f"Error: {e}", fg=typer.colors.RED)
            raise typer.Exit(code=1)

    return wrapper  # type: ignore[return-value]


def display_success(message: str) -> None:
    typer.secho(message, fg=typer.colors.GREEN)


def display_warning(message: str) -> None:
    typer.secho(message, fg=typer.colors.YELLOW)


def display_error(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)


def display_info(message: str) -> None:
    typer.secho(message, fg=typer.colors.CYAN)

"""answerscope CLI.

Usage:
    python -m answerscope.cli collect -b acme -t chatgpt -q "best crm"
    python -m answerscope.cli validate config/collection_config.yaml
    python -m answerscope.cli reconcile
    python -m answerscope.cli serve --port 8000
"""

import typer

from answerscope.cli.collect import collect_command
from answerscope.cli.reconcile import reconcile_command
from answerscope.cli.serve import serve_command
from answerscope.cli.validate import validate_command

app = typer.Typer(help="answerscope: brand answer collection and scoring")

app.command(name="collect")(collect_command)
app.command(name="validate")(validate_command)
app.command(name="reconcile")(reconcile_command)
app.command(name="serve")(serve_command)

__all__ = [
    "app",
    "collect_command",
    "reconcile_command",
    "serve_command",
    "validate_command",
]

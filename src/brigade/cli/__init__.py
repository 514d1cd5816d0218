"""CLI commands for Brigade.

Provides command-line ops tooling using Typer:
- brigade watch: Follow a collection through a change feed cache
- brigade signal send: Append an invalidation signal
- brigade signal tail: Print invalidation signals as they arrive
- brigade status: Show cache health for a set of collections

Usage:
    brigade --help
    brigade watch stock --duration 60
    brigade signal send menu --action update --actor manager-1
    brigade status menu stock tables
"""

import typer

from brigade.cli.signal_cmd import app as signal_app
from brigade.cli.status_cmd import app as status_app
from brigade.cli.watch_cmd import app as watch_app
from brigade.config import settings
from brigade.observability.logging import configure_logging

# Main CLI application
app = typer.Typer(
    name="brigade",
    help="Brigade: client-side sync and caching for the restaurant POS",
    no_args_is_help=True,
)

# Add subcommands
app.add_typer(watch_app, name="watch")
app.add_typer(signal_app, name="signal")
app.add_typer(status_app, name="status")


@app.callback()
def callback(
    log_level: str = typer.Option(
        settings.log_level,
        "--log-level",
        "-l",
        help="Log level (DEBUG, INFO, WARNING, ERROR)",
    ),
) -> None:
    """Brigade: client-side sync and caching for the restaurant POS."""
    configure_logging(json_format=settings.log_json, level=log_level)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()

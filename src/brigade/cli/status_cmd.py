"""CLI command for inspecting cache health.

Usage:
    brigade status menu stock
    brigade status menu --settle 5 --format json
    BRIGADE_ENABLE_METRICS=true brigade status menu --format prometheus
"""

from __future__ import annotations

import asyncio
from typing import Any

import typer

app = typer.Typer(help="Show cache health for a set of collections")


@app.callback(invoke_without_command=True)
def status(
    collections: list[str] = typer.Argument(..., help="Collections to inspect"),
    settle: float = typer.Option(
        2.0,
        "--settle",
        "-s",
        help="Seconds to let listeners connect before reporting",
    ),
    output_format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Output format: text, json, prometheus",
    ),
) -> None:
    """Attach a change feed cache per collection and report its status."""
    report = asyncio.run(_collect(collections, settle))

    from rich.console import Console

    console = Console()
    if output_format == "json":
        import orjson

        console.print(orjson.dumps(report, option=orjson.OPT_INDENT_2).decode())
    elif output_format == "prometheus":
        from brigade.observability.metrics import get_metrics

        typer.echo(get_metrics().generate_latest().decode(), nl=False)
    else:
        _print_table(console, report["change_feed"])

    if any(entry["has_error"] for entry in report["change_feed"].values()):
        raise typer.Exit(code=1)


async def _collect(collections: list[str], settle: float) -> dict[str, Any]:
    from brigade.registry import close_registry, get_registry

    registry = get_registry()
    unsubscribes = [
        registry.get_change_feed_cache(name, dict).subscribe(lambda items: None)
        for name in collections
    ]
    try:
        await asyncio.sleep(settle)
        return registry.get_all_cache_status()
    finally:
        for unsubscribe in unsubscribes:
            unsubscribe()
        await close_registry()


def _print_table(console: Any, statuses: dict[str, dict[str, Any]]) -> None:
    from rich.table import Table

    table = Table(title="Change feed caches")
    table.add_column("Collection", style="cyan")
    table.add_column("State", style="green")
    table.add_column("Items", justify="right")
    table.add_column("Retries", justify="right")
    table.add_column("Error", style="red")

    for name, entry in statuses.items():
        table.add_row(
            name,
            entry["state"],
            str(entry["item_count"]),
            str(entry["retry_attempt"]),
            entry["last_error"] or "-",
        )

    console.print(table)

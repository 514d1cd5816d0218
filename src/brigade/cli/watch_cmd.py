"""CLI command for following a collection through its change feed.

Usage:
    brigade watch stock
    brigade watch commandes --duration 120
"""

from __future__ import annotations

import asyncio

import typer

from brigade.store.base import Record

app = typer.Typer(help="Follow a collection through a change feed cache")


@app.callback(invoke_without_command=True)
def watch(
    collection: str = typer.Argument(..., help="Collection to watch"),
    duration: float | None = typer.Option(
        None,
        "--duration",
        "-d",
        help="Stop after this many seconds (default: until interrupted)",
    ),
    show_ids: bool = typer.Option(
        False,
        "--ids",
        help="Print document ids of every snapshot",
    ),
) -> None:
    """Print every snapshot pushed for a collection."""
    try:
        asyncio.run(_watch(collection, duration, show_ids))
    except KeyboardInterrupt:
        pass


async def _watch(collection: str, duration: float | None, show_ids: bool) -> None:
    from rich.console import Console

    from brigade.registry import close_registry, get_registry

    console = Console()
    registry = get_registry()
    cache = registry.get_change_feed_cache(collection, _identity)

    def on_snapshot(records: list[Record]) -> None:
        console.print(f"[green]{collection}[/green]: {len(records)} record(s)")
        if show_ids:
            for record in records:
                console.print(f"  [cyan]{record.get('id')}[/cyan]")

    unsubscribe = cache.subscribe(on_snapshot)
    console.print(f"[blue]Watching {collection}...[/blue]")
    try:
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)
    finally:
        unsubscribe()
        status = cache.get_status()
        if status.has_error:
            console.print(f"[red]Listener error:[/red] {status.last_error}")
        await close_registry()


def _identity(record: Record) -> Record:
    return record

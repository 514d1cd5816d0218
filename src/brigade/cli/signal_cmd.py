"""CLI commands for invalidation signals.

Usage:
    brigade signal send menu --action create --document-id abc123
    brigade signal tail
"""

from __future__ import annotations

import asyncio

import typer

from brigade.invalidation.schemas import InvalidationAction

app = typer.Typer(help="Send and follow cache invalidation signals")


@app.command("send")
def send(
    collection: str = typer.Argument(..., help="Collection whose caches are stale"),
    action: InvalidationAction = typer.Option(
        InvalidationAction.UPDATE,
        "--action",
        "-a",
        help="Kind of write that happened",
    ),
    actor: str | None = typer.Option(
        None,
        "--actor",
        help="Actor recorded on the signal (default: this instance)",
    ),
    document_id: str | None = typer.Option(
        None,
        "--document-id",
        "-d",
        help="Id of the written document",
    ),
) -> None:
    """Append an invalidation signal for a collection."""
    record_id = asyncio.run(_send(collection, action, actor, document_id))
    if record_id is None:
        raise typer.Exit(code=1)


@app.command("tail")
def tail(
    duration: float | None = typer.Option(
        None,
        "--duration",
        "-d",
        help="Stop after this many seconds (default: until interrupted)",
    ),
) -> None:
    """Print invalidation signals as the bus observes them."""
    try:
        asyncio.run(_tail(duration))
    except KeyboardInterrupt:
        pass


async def _send(
    collection: str,
    action: InvalidationAction,
    actor: str | None,
    document_id: str | None,
) -> str | None:
    from rich.console import Console

    from brigade.invalidation.bus import InvalidationSignalBus
    from brigade.registry import close_registry, get_registry

    console = Console()
    # Sending does not need the feed subscription
    bus = InvalidationSignalBus(store=get_registry().store)
    try:
        record_id = await bus.send_invalidation_signal(collection, action, actor, document_id)
    finally:
        await close_registry()

    if record_id is None:
        console.print(f"[red]Failed to send signal for {collection}[/red]")
    else:
        console.print(f"[green]Signal sent:[/green] {collection}:{action.value} ({record_id})")
    return record_id


async def _tail(duration: float | None) -> None:
    from rich.console import Console

    from brigade.invalidation.schemas import InvalidationRecord
    from brigade.registry import close_registry, get_registry

    console = Console()
    bus = get_registry().get_invalidation_bus()
    seen: set[str | None] = set()

    def on_records(records: list[InvalidationRecord]) -> None:
        for record in reversed(records):
            if record.id in seen:
                continue
            seen.add(record.id)
            typer.echo(record.to_bytes().decode())

    unsubscribe = bus.feed.subscribe(on_records)
    console.print(f"[blue]Following {bus.collection}...[/blue]")
    try:
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)
    finally:
        unsubscribe()
        await close_registry()

"""
CLI: ``redular`` — operator commands against a live store.

Every command builds a short-lived :class:`~redular.scheduler.Redular` from
``REDULAR_*`` settings. Use ``--client`` to act as a specific instance id,
otherwise a throwaway id is generated (so non-global events scheduled from
the CLI only reach an instance started with that same id).
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any, NoReturn, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from redular.logging import configure_logging
from redular.scheduler import Redular, to_utc, utc_now
from redular.settings import get_settings
from redular.store import configure_keyspace_notifications

T = TypeVar("T")

app = typer.Typer(
    name="redular",
    help="redular — delayed events scheduled on Redis key expiry.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError, version

        try:
            v = version("redular")
        except PackageNotFoundError:
            v = "unknown"
        typer.echo(f"redular {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """redular CLI — schedule, inspect and prune delayed events."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_format == "json")


# ── Helpers ──────────────────────────────────────────────────────────────


def make_redular(client: str | None = None) -> Redular:
    """Build a Redular instance from settings, optionally with a fixed id."""
    return Redular(get_settings(), id=client)


def _run(client: str | None, action: Callable[[Redular], Awaitable[T]]) -> T:
    async def runner() -> T:
        redular = make_redular(client)
        try:
            return await action(redular)
        finally:
            await redular.close()

    return asyncio.run(runner())


def _parse_payload(raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError as e:
        raise typer.BadParameter(f"--payload must be valid JSON: {e}") from e


def _fail(message: str) -> NoReturn:
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=1)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("schedule")
def schedule(
    name: str = typer.Argument(..., help="Event name"),
    in_seconds: float | None = typer.Option(None, "--in", help="Fire after this many seconds"),
    at: str | None = typer.Option(None, "--at", help="Fire at this ISO-8601 time (UTC if naive)"),
    is_global: bool = typer.Option(False, "--global", help="Fire on every instance"),
    payload: str | None = typer.Option(None, "--payload", help="JSON payload"),
    event_id: str | None = typer.Option(None, "--id", help="Occurrence id (reuse to overwrite)"),
    client: str | None = typer.Option(None, "--client", help="Act as this instance id"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Schedule an event."""
    if (in_seconds is None) == (at is None):
        raise typer.BadParameter("Pass exactly one of --in or --at")
    when = to_utc(at) if at is not None else utc_now() + timedelta(seconds=in_seconds)
    data = _parse_payload(payload)

    keys = _run(
        client,
        lambda r: r.schedule_event(name, when, is_global=is_global, payload=data, id=event_id),
    )
    if keys is None:
        _fail("Event not scheduled (fire time is in the past or the store is unreachable)")
    if json_out:
        console.print_json(json.dumps({"event": keys.event, "data": keys.data}))
        return
    console.print(f"[green]Scheduled[/green] {keys.event} at {when.isoformat()}")


@app.command("instant")
def instant(
    name: str = typer.Argument(..., help="Event name"),
    is_global: bool = typer.Option(False, "--global", help="Deliver to every instance"),
    payload: str | None = typer.Option(None, "--payload", help="JSON payload"),
    client: str | None = typer.Option(None, "--client", help="Act as this instance id"),
) -> None:
    """Publish an event for immediate handling."""
    data = _parse_payload(payload)
    if not _run(client, lambda r: r.instant_event(name, is_global=is_global, payload=data)):
        _fail("Publish failed")
    console.print(f"[green]Published[/green] {name}")


@app.command("events")
def events(
    start: str | None = typer.Option(None, "--from", help="Range start, ISO-8601 (default: now)"),
    end: str | None = typer.Option(None, "--to", help="Range end, ISO-8601 (default: now + 24h)"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List pending events firing within a time range."""
    start_at = to_utc(start) if start else utc_now()
    end_at = to_utc(end) if end else start_at + timedelta(hours=24)

    async def collect(redular: Redular) -> list[tuple[str, Any]]:
        keys = await redular.get_events(start_at, end_at)
        return [(key, await redular.get_event_expiry(key)) for key in keys]

    rows = _run(None, collect)
    rows.sort(key=lambda row: (row[1] is None, row[1] or start_at))

    if json_out:
        payload = [
            {"event": key, "expires_at": expiry.isoformat() if expiry else None}
            for key, expiry in rows
        ]
        console.print_json(json.dumps(payload))
        return

    table = Table(title=f"Events ({len(rows)})")
    table.add_column("Event key")
    table.add_column("Fires at")
    for key, expiry in rows:
        table.add_row(key, expiry.isoformat() if expiry else "-")
    console.print(table)


@app.command("expiry")
def expiry(key: str = typer.Argument(..., help="Event key")) -> None:
    """Show when an event fires."""
    fires_at = _run(None, lambda r: r.get_event_expiry(key))
    if fires_at is None:
        _fail(f"No pending event {key}")
    console.print(fires_at.isoformat())


@app.command("delete")
def delete(key: str = typer.Argument(..., help="Event key")) -> None:
    """Delete an event and its payload."""
    if not _run(None, lambda r: r.delete_event(key)):
        _fail(f"Could not delete {key}")
    console.print(f"[green]Deleted[/green] {key}")


@app.command("prune")
def prune() -> None:
    """Delete payloads whose event no longer exists."""
    if not _run(None, lambda r: r.prune_data()):
        _fail("Prune failed")
    console.print("[green]Pruned[/green] orphaned event data")


@app.command("configure")
def configure() -> None:
    """Enable keyspace expiry notifications on the store."""
    if not _run(None, lambda r: configure_keyspace_notifications(r.connections.primary)):
        _fail("Could not update notify-keyspace-events")
    console.print("[green]Keyspace expiry notifications enabled[/green]")


@app.command("listen")
def listen(
    names: list[str] = typer.Argument(..., help="Event names to print when they fire"),
    client: str | None = typer.Option(None, "--client", help="Listen as this instance id"),
) -> None:
    """Print events as they fire until interrupted."""

    def printer(event_name: str) -> Callable[[Any], None]:
        def handler(payload: Any) -> None:
            console.print(f"[bold]{event_name}[/bold] {json.dumps(payload)}")

        return handler

    async def run(redular: Redular) -> None:
        for name in names:
            redular.define_handler(name, printer(name))
        await redular.start()
        console.print(f"Listening as [bold]{redular.client_id}[/bold] for {', '.join(names)}")
        await redular.run_forever()

    try:
        _run(client, run)
    except KeyboardInterrupt:
        console.print("Stopped")

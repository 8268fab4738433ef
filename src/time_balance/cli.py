"""Command-line interface for the time balance account."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, List, Optional
from uuid import UUID

import typer

from .bootstrap import AppServices, create_services
from .controller import AccountController
from .errors import NotFoundError, TimeBalanceError
from .models import CatalogVariant, Meter, MeterEvent
from .reporting import SummaryPrinter, format_signed_duration

app = typer.Typer(help="Signed time balance tracker.")


@app.callback(no_args_is_help=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs."),
    db_path: Optional[Path] = typer.Option(
        None,
        "--db",
        path_type=Path,
        help="Location of the account SQLite database.",
    ),
    variant: CatalogVariant = typer.Option(
        CatalogVariant.METER,
        "--variant",
        case_sensitive=False,
        help="'meter' for weighted meters, 'activity' for commented activities.",
    ),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    ctx.obj = {"db_path": db_path, "variant": variant}


@contextmanager
def _session(ctx: typer.Context, *, mutating: bool = False) -> Iterator[AppServices]:
    options = ctx.obj or {}
    services: Optional[AppServices] = None
    try:
        services = create_services(
            db_path=options.get("db_path"),
            variant=options.get("variant", CatalogVariant.METER),
        )
        yield services
        services.controller.flush()
        if mutating and services.sync.is_enabled:
            services.sync.sync_now()
    except TimeBalanceError as exc:
        typer.secho(f"Error: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    finally:
        if services is not None:
            services.close()


@app.command()
def status(ctx: typer.Context) -> None:
    """Show the balance, the running meter and the configured meters."""
    with _session(ctx) as services:
        SummaryPrinter(services.controller).print_status()


@app.command()
def meters(ctx: typer.Context) -> None:
    """List meters in display order."""
    with _session(ctx) as services:
        for position, meter in enumerate(services.controller.ordered_meters(), start=1):
            typer.echo(f"{position}. {meter.name:<40} x{meter.factor:g}  {meter.id}")


@app.command("add-meter")
def add_meter(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Display name (1-40 characters)."),
    factor: Optional[float] = typer.Option(
        None, "--factor", "-f", help="Multiplier between -10 and 10 (meter variant only)."
    ),
) -> None:
    """Add a meter to the end of the catalog."""
    with _session(ctx, mutating=True) as services:
        meter = services.controller.add_meter(name, factor)
        typer.echo(f"Added {meter.name} (x{meter.factor:g}).")


@app.command("rename-meter")
def rename_meter(
    ctx: typer.Context,
    meter: str = typer.Argument(..., help="Position, id or name of the meter."),
    new_name: str = typer.Argument(..., help="New display name."),
) -> None:
    """Rename a meter; past events keep their old name."""
    with _session(ctx, mutating=True) as services:
        target = _resolve_meter(services.controller, meter)
        renamed = services.controller.rename_meter(target.id, new_name)
        typer.echo(f"Renamed to {renamed.name}.")


@app.command("delete-meter")
def delete_meter(
    ctx: typer.Context,
    meter: str = typer.Argument(..., help="Position, id or name of the meter."),
) -> None:
    """Delete a meter that is not currently running."""
    with _session(ctx, mutating=True) as services:
        target = _resolve_meter(services.controller, meter)
        services.controller.delete_meter(target.id)
        typer.echo(f"Deleted {target.name}.")


@app.command()
def reorder(
    ctx: typer.Context,
    meters: List[str] = typer.Argument(..., help="Every meter, in the desired order."),
) -> None:
    """Set the display order of all meters."""
    with _session(ctx, mutating=True) as services:
        controller = services.controller
        ids = [_resolve_meter(controller, ref).id for ref in meters]
        if not controller.reorder_meters(ids):
            typer.echo("Order unchanged: list every meter exactly once.")
            return
        typer.echo(", ".join(meter.name for meter in controller.ordered_meters()))


@app.command()
def start(
    ctx: typer.Context,
    meter: str = typer.Argument(..., help="Position, id or name of the meter."),
    comment: Optional[str] = typer.Option(
        None, "--comment", "-c", help="What you are doing (required for activities)."
    ),
) -> None:
    """Start a meter, stopping whichever one is running."""
    with _session(ctx, mutating=True) as services:
        target = _resolve_meter(services.controller, meter)
        services.controller.activate(target.id, comment)
        typer.echo(f"Started {target.name}.")


@app.command()
def stop(ctx: typer.Context) -> None:
    """Stop the running meter."""
    with _session(ctx, mutating=True) as services:
        closed = services.controller.deactivate()
        if closed is None:
            typer.echo("Nothing is running.")
        else:
            typer.echo(f"Stopped {closed.meter_name}.")


@app.command()
def events(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Number of events to show."),
) -> None:
    """List the most recent events."""
    with _session(ctx) as services:
        SummaryPrinter(services.controller).print_events(limit)


@app.command("edit-event")
def edit_event(
    ctx: typer.Context,
    event: str = typer.Argument(..., help="Event id or unique id prefix."),
    start_time: str = typer.Argument(..., help="New start (ISO 8601; local time if no offset)."),
    end_time: str = typer.Argument(..., help="New end (ISO 8601; local time if no offset)."),
) -> None:
    """Change the start and end of a finished event."""
    with _session(ctx, mutating=True) as services:
        target = _resolve_event(services.controller, event)
        services.controller.update_event_times(
            target.id, _parse_timestamp(start_time), _parse_timestamp(end_time)
        )
        typer.echo("Event updated.")


@app.command("delete-event")
def delete_event(
    ctx: typer.Context,
    event: str = typer.Argument(..., help="Event id or unique id prefix."),
) -> None:
    """Delete an event from the log."""
    with _session(ctx, mutating=True) as services:
        target = _resolve_event(services.controller, event)
        services.controller.delete_event(target.id)
        typer.echo("Event deleted.")


@app.command()
def timeline(
    ctx: typer.Context,
    hours: Optional[float] = typer.Option(
        None, "--hours", min=0.01, help="Lookback window. Defaults to the saved period."
    ),
    samples: int = typer.Option(12, "--samples", min=2, help="Rows to print."),
) -> None:
    """Print the balance over time."""
    with _session(ctx) as services:
        controller = services.controller
        period = timedelta(hours=hours) if hours else controller.timeline_period
        SummaryPrinter(controller).print_timeline(period, samples)


@app.command()
def period(
    ctx: typer.Context,
    hours: float = typer.Argument(..., min=0.01, help="Default timeline window in hours."),
) -> None:
    """Save the default timeline window."""
    with _session(ctx, mutating=True) as services:
        services.controller.timeline_period = timedelta(hours=hours)
        typer.echo(f"Timeline period set to {hours:g}h.")


@app.command("export")
def export_data(
    ctx: typer.Context,
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", path_type=Path, help="Write to a file instead of stdout."
    ),
) -> None:
    """Export meters, events and preferences as JSON."""
    with _session(ctx) as services:
        data = services.controller.export_data()
        if output is None:
            typer.echo(data)
        else:
            output.write_text(data, encoding="utf-8")
            typer.echo(f"Exported to {output}.")


@app.command("import")
def import_data(
    ctx: typer.Context,
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="Exported JSON file."),
) -> None:
    """Replace meters and events with the contents of an export."""
    with _session(ctx, mutating=True) as services:
        services.controller.import_data(source.read_text(encoding="utf-8"))
        controller = services.controller
        typer.echo(f"Imported {len(controller.catalog)} meters and {len(controller.events)} events.")
        typer.echo(f"Balance: {format_signed_duration(controller.current_balance().total_seconds())}")


@app.command()
def reset(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Delete all events and restore the default meters."""
    if not yes:
        typer.confirm("This deletes every event. Continue?", abort=True)
    with _session(ctx, mutating=True) as services:
        services.controller.reset_data()
        typer.echo("Account reset.")


@app.command()
def sync(
    ctx: typer.Context,
    enable: Optional[str] = typer.Option(None, "--enable", help="Provider to back up to."),
    disable: bool = typer.Option(False, "--disable", help="Turn auto-sync off."),
    push: bool = typer.Option(False, "--push", help="Upload a backup right away."),
    pull: bool = typer.Option(False, "--pull", help="Restore if the backup is newer."),
) -> None:
    """Configure and run the backup provider."""
    with _session(ctx) as services:
        auto_sync = services.sync
        if disable:
            auto_sync.disable()
        if enable:
            auto_sync.enable(enable, start_polling=False)
        if push:
            auto_sync.sync_now()
        if pull:
            auto_sync.check_for_remote_changes()
        last = auto_sync.last_sync_time.isoformat() if auto_sync.last_sync_time else "never"
        typer.echo(
            f"Provider: {auto_sync.active_provider_name or 'disabled'}  "
            f"status: {auto_sync.status.value}  last sync: {last}"
        )


@app.command()
def web(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(
        8765, "--port", min=1, max=65535, help="TCP port for the API."
    ),
    open_browser: bool = typer.Option(
        True,
        "--open-browser/--no-open-browser",
        help="Automatically open the API docs in your default browser.",
    ),
) -> None:
    """Serve the local HTTP API."""
    from .server_runner import run_dashboard

    options = ctx.obj or {}
    run_dashboard(
        host=host,
        port=port,
        db_path=options.get("db_path"),
        variant=options.get("variant", CatalogVariant.METER),
        open_browser=open_browser,
    )


def _resolve_meter(controller: AccountController, ref: str) -> Meter:
    if ref.isdigit():
        meter = controller.catalog.nth(int(ref))
        if meter is not None:
            return meter
    try:
        return controller.catalog.get(UUID(ref))
    except ValueError:
        pass
    folded = ref.strip().casefold()
    for meter in controller.ordered_meters():
        if meter.name.casefold() == folded:
            return meter
    raise NotFoundError(f"No meter matches '{ref}'.")


def _resolve_event(controller: AccountController, ref: str) -> MeterEvent:
    prefix = ref.strip().lower()
    matches = [event for event in controller.events if str(event.id).startswith(prefix)]
    if len(matches) != 1:
        raise NotFoundError(f"No unique event matches '{ref}'.")
    return matches[0]


def _parse_timestamp(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid timestamp: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed.astimezone(timezone.utc)

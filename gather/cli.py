"""Typer CLI for Gather."""

from __future__ import annotations

import json
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .crud import get_event_by_slug
from .dashboard import export_csv
from .database import get_session
from .seed import seed_fake_data
from .storage import head_revision, init_db, upgrade_database

app = typer.Typer(help="Gather command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False, "--no-backup", help="Skip copying the SQLite file to <name>.bak first"
    ),
) -> None:
    """Migrate the Gather schema to the newest revision."""
    typer.echo(f"Database: {settings.database_path} (target {head_revision()})")
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        typer.secho(
            f"Schema upgrade failed: {getattr(exc, 'orig', exc)}",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Interface to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Serve the Gather JSON API."""
    init_db()
    typer.echo(
        f"Gather API on http://{host}:{port}/api/events "
        f"(public links use {settings.public_base_url})"
    )
    uvicorn.run(
        "gather.api:app",
        host=host,
        port=port,
        reload=reload,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )


@app.command("seed-data")
def seed_data(
    events: int = typer.Option(
        settings.seed_events, "--events", min=0, help="Number of events to create"
    ),
    max_attendees: int = typer.Option(
        settings.seed_attendees_per_event,
        "--max-attendees",
        min=0,
        help="Maximum registrations to attempt per event",
    ),
    max_waitlist: int = typer.Option(
        settings.seed_waitlist_per_event,
        "--max-waitlist",
        min=0,
        help="Maximum waitlist entries per event",
    ),
):
    """Populate the database with fake events, attendees and waitlists."""
    stats = seed_fake_data(
        event_count=events,
        max_attendees_per_event=max_attendees,
        max_waitlist_per_event=max_waitlist,
    )
    typer.echo(
        f"Seed complete: {stats['events']} events, {stats['attendees']} attendees, "
        f"{stats['waitlist']} waitlist entries created."
    )


@app.command("export-csv")
def export_csv_command(
    slug: str = typer.Argument(..., help="Event slug"),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write to this file instead of stdout"
    ),
) -> None:
    """Export an event's registrations as CSV."""
    init_db()
    with get_session() as session:
        event = get_event_by_slug(session, slug)
        if not event:
            typer.secho(f"Event not found: {slug}", err=True, fg=typer.colors.RED)
            raise typer.Exit(code=1)
        csv_text = export_csv(session, event, None, check_owner=False)
    if output:
        output.write_text(csv_text, encoding="utf-8")
        typer.echo(f"Wrote {output}")
    else:
        typer.echo(csv_text, nl=False)


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    default_capacity: int | None = typer.Option(
        None, "--default-capacity", min=0, help="Capacity for events created without one"
    ),
    busy_timeout: int | None = typer.Option(
        None,
        "--busy-timeout",
        min=1,
        help="Seconds to wait for the SQLite write lock",
    ),
    qr_box_size: int | None = typer.Option(
        None, "--qr-box-size", min=1, help="Pixels per QR module"
    ),
    qr_border: int | None = typer.Option(
        None, "--qr-border", min=0, help="Quiet-zone width in QR modules"
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    base_url: str | None = typer.Option(
        None, "--base-url", help="Public URL prefix for event links"
    ),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to gather.toml (default: ./gather.toml)"
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "default_capacity": default_capacity,
        "sqlite_busy_timeout_seconds": busy_timeout,
        "qr_box_size": qr_box_size,
        "qr_border": qr_border,
        "app_host": host,
        "app_port": port,
        "base_url": base_url,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    target_path = config_path or settings.config_path
    if clean_updates:
        settings_ref = update_config_file(clean_updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


if __name__ == "__main__":
    app()

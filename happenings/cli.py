"""Typer CLI for Happenings."""

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
from .crud import get_discovery_events, get_overrides_in_range
from .database import get_session
from .dates import add_days, format_date_group_header, is_valid_date_key, today
from .digest import get_upcoming_happenings, render_digest_text
from .scheduler import start_scheduler, stop_scheduler
from .seed import seed_fake_data
from .storage import init_db, upgrade_database
from .timeline import build_timeline
from .utils import format_time_12h

app = typer.Typer(help="Happenings command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        message = str(getattr(exc, "orig", exc)).lower()
        if "readonly" in message or "read-only" in message:
            typer.secho(
                "Unable to upgrade because the database is read-only. "
                f"Ensure write access to {settings.database_path}.",
                err=True,
                fg=typer.colors.RED,
            )
            raise typer.Exit(code=1)
        raise

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start FastAPI with APScheduler."""
    init_db()
    start_scheduler()
    config = uvicorn.Config(
        "happenings.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    try:
        typer.echo(f"Starting Happenings on {host}:{port}")
        server.run()
    finally:
        stop_scheduler()


@app.command("seed-data")
def seed_data(
    venues: int = typer.Option(
        settings.seed_venues, "--venues", min=0, help="Number of venues to create"
    ),
    max_events: int = typer.Option(
        settings.seed_events_per_venue,
        "--max-events",
        min=1,
        help="Maximum events to assign to each venue",
    ),
    override_percent: int = typer.Option(
        settings.seed_override_percent,
        "--override-percent",
        min=0,
        max=100,
        help="Percentage of upcoming occurrences that get an override (0-100)",
    ),
) -> None:
    """Populate the SQLite database with synthetic venues and series."""
    stats = seed_fake_data(
        venue_count=venues,
        max_events_per_venue=max_events,
        override_percentage=override_percent,
    )
    typer.echo(
        "Seeded {venues} venues, {events} events, and {overrides} overrides.".format(
            **stats
        )
    )


def _validate_date_option(name: str, value: str | None) -> str | None:
    if value is not None and not is_valid_date_key(value):
        raise typer.BadParameter(f"{name} must be YYYY-MM-DD")
    return value


@app.command("timeline")
def timeline(
    start: str | None = typer.Option(None, "--start", help="First day (YYYY-MM-DD)"),
    days: int = typer.Option(
        7, "--days", min=0, help="Number of days after --start to show"
    ),
    include_cancelled: bool = typer.Option(
        False, "--include-cancelled", help="Also list cancelled occurrences"
    ),
) -> None:
    """Print the happenings timeline for a date range."""
    start_key = _validate_date_option("--start", start) or today(tz=settings.timezone)
    end_key = add_days(start_key, days)
    today_key = today(tz=settings.timezone)
    init_db()
    with get_session() as session:
        events = get_discovery_events(session)
        overrides = get_overrides_in_range(
            session,
            start_key,
            add_days(end_key, settings.window_days),
            event_ids=[event.id for event in events],
        )
        result = build_timeline(
            events,
            overrides,
            start_key=start_key,
            end_key=end_key,
            lookahead_days=settings.window_days,
            max_events=settings.expansion_max_events,
            max_total_occurrences=settings.expansion_max_total_occurrences,
            max_per_event=settings.expansion_max_per_event,
            tz=settings.timezone,
        )
        for date_key in result.groups:
            entries = result.entries_on(date_key, include_cancelled=include_cancelled)
            if not entries:
                continue
            typer.echo(format_date_group_header(date_key, today_key))
            for entry in entries:
                flags = []
                if entry.is_cancelled:
                    flags.append("CANCELLED")
                if entry.is_rescheduled:
                    flags.append(f"moved from {entry.original_date_key}")
                suffix = f" [{', '.join(flags)}]" if flags else ""
                typer.echo(
                    f"  {format_time_12h(entry.start_time)}  {entry.event.title}{suffix}"
                )
        if result.unknown_events:
            typer.echo(f"{len(result.unknown_events)} events have no computable schedule.")


@app.command("digest")
def digest(
    today_key: str | None = typer.Option(
        None, "--today", help="Digest start date (YYYY-MM-DD); defaults to today"
    ),
) -> None:
    """Render the weekly digest as plain text."""
    _validate_date_option("--today", today_key)
    init_db()
    with get_session() as session:
        data = get_upcoming_happenings(session, today_key=today_key)
        typer.echo(render_digest_text(data), nl=False)


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    timezone: str | None = typer.Option(
        None, "--timezone", help="IANA timezone used for civil dates"
    ),
    window_days: int | None = typer.Option(
        None, "--window-days", min=1, help="Default forward window for listings"
    ),
    expansion_max_events: int | None = typer.Option(
        None, "--expansion-max-events", min=1, help="Events expanded per request"
    ),
    expansion_max_total_occurrences: int | None = typer.Option(
        None,
        "--expansion-max-total-occurrences",
        min=1,
        help="Occurrences generated per request",
    ),
    expansion_max_per_event: int | None = typer.Option(
        None, "--expansion-max-per-event", min=1, help="Occurrences per event"
    ),
    digest_weekday: str | None = typer.Option(
        None, "--digest-weekday", help="Weekday the digest job runs (mon..sun)"
    ),
    digest_hour: int | None = typer.Option(
        None, "--digest-hour", min=0, max=23, help="Hour the digest job runs"
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None,
        "--config-path",
        help="Path to happenings.toml (default: ./happenings.toml)",
    ),
    seed_venues: int | None = typer.Option(
        None, "--seed-venues", min=0, help="Default seed-data venues"
    ),
    seed_events_per_venue: int | None = typer.Option(
        None, "--seed-events-per-venue", min=1, help="Default seed-data events/venue"
    ),
    seed_override_percent: int | None = typer.Option(
        None,
        "--seed-override-percent",
        min=0,
        max=100,
        help="Default percent of occurrences with overrides for seed-data",
    ),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Toggle the background digest scheduler",
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "timezone": timezone,
        "window_days": window_days,
        "expansion_max_events": expansion_max_events,
        "expansion_max_total_occurrences": expansion_max_total_occurrences,
        "expansion_max_per_event": expansion_max_per_event,
        "digest_weekday": digest_weekday,
        "digest_hour": digest_hour,
        "app_host": host,
        "app_port": port,
        "seed_venues": seed_venues,
        "seed_events_per_venue": seed_events_per_venue,
        "seed_override_percent": seed_override_percent,
        "enable_scheduler": enable_scheduler,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    target_path = config_path or settings.config_path
    if clean_updates:
        try:
            settings_ref = update_config_file(clean_updates, path=target_path)
        except ValueError as exc:
            typer.secho(str(exc), err=True, fg=typer.colors.RED)
            raise typer.Exit(code=1)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


if __name__ == "__main__":
    app()

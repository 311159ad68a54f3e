"""Command-line interface with Rich formatting."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import click
from dateutil.parser import isoparse
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table
import structlog

from . import __version__
from .config import load_settings, create_example_config
from .database import DatabaseManager
from .event_service import EventService
from .hebrew_dates import current_hebrew_year
from .models import YearProgressionStatus
from .sync_window import calculate_sync_window

console = Console()
logger = structlog.get_logger()


def setup_logging(level: str, debug: bool = False, fmt: Optional[str] = None) -> None:
    """Set up structured logging."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=fmt or "%(message)s")
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def async_command(f):
    """Decorator to wrap async click commands."""
    @click.pass_context
    def wrapper(ctx, *args, **kwargs):
        return asyncio.run(f(ctx, *args, **kwargs))
    wrapper.__name__ = f.__name__
    wrapper.__doc__ = f.__doc__
    return wrapper


def _current_year_fn(as_of: Optional[str]):
    """Current Hebrew year, optionally pinned to an ISO date."""
    if not as_of:
        return None
    today = isoparse(as_of).date()
    return lambda: current_hebrew_year(today)


@click.group()
@click.version_option(version=__version__)
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Path to configuration file')
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.pass_context
def cli(ctx, config, debug, verbose):
    """Calbrew Sync - Hebrew calendar anniversaries in Google Calendar.

    Every event is anchored to a Hebrew date and materialized as one all-day
    Google Calendar entry per Hebrew year, over a rolling window around the
    current year.
    """
    ctx.ensure_object(dict)

    try:
        settings = load_settings(config)
        if debug:
            settings.debug = True
        if verbose:
            settings.log_level = 'DEBUG'

        ctx.obj['settings'] = settings

        setup_logging(settings.log_level, settings.debug, settings.log_format)

    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.option('--host', default='0.0.0.0', help='Bind host for HTTP server')
@click.option('--port', default=8080, type=int, help='Bind port for HTTP server')
def serve(host, port):
    """Run the HTTP API server."""
    try:
        import uvicorn
        uvicorn.run("calbrew_sync.server:app", host=host, port=port, reload=False)
    except Exception as e:
        console.print(f"[red]Failed to start server: {e}[/red]")
        sys.exit(1)


@cli.command('init-db')
@click.pass_context
def init_db(ctx):
    """Create the database tables."""
    settings = ctx.obj['settings']

    try:
        DatabaseManager(settings).init_db()
        console.print(f"[green]✓ Database ready at {settings.database_url}[/green]")
    except Exception as e:
        console.print(f"[red]Failed to initialize database: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument('anchor', type=int)
@click.option('--current', type=int, help='Current Hebrew year (defaults to today)')
@click.pass_context
def window(ctx, anchor, current):
    """Show the sync window for an ANCHOR Hebrew year."""
    settings = ctx.obj['settings']
    if current is None:
        current = current_hebrew_year(tz=settings.tzinfo)

    sync_window = calculate_sync_window(
        anchor,
        current,
        past_years=settings.past_window_years,
        future_years=settings.future_window_years,
    )
    console.print(Panel(
        f"Anchor year: [bold]{anchor}[/bold]\n"
        f"Current year: [bold]{current}[/bold]\n"
        f"Window: [cyan]{sync_window.start}..{sync_window.end}[/cyan] ({len(sync_window)} years)",
        title="Sync Window"
    ))


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command('create')
@click.option('--path', '-p', type=click.Path(), default='.env',
              help='Path to create config file')
@click.option('--force', '-f', is_flag=True,
              help='Overwrite existing file')
def create_config(path, force):
    """Create an example configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        if not Confirm.ask(f"File {path} already exists. Overwrite?"):
            console.print("[yellow]Configuration creation cancelled[/yellow]")
            return

    try:
        create_example_config(config_path)
        console.print(f"[green]Configuration file created at {path}[/green]")
    except OSError as e:
        console.print(f"[red]Failed to create configuration file: {e}[/red]")


@cli.group()
def progression():
    """Year progression commands."""
    pass


@progression.command('status')
@click.argument('user')
@click.option('--as-of', help='Evaluate as of this ISO date instead of today')
@click.pass_context
def progression_status(ctx, user, as_of):
    """Show the progression state of every event of USER."""
    settings = ctx.obj['settings']
    service = EventService(settings, current_year_fn=_current_year_fn(as_of))
    engine = service.progression

    summary = engine.get_summary(user)
    statuses = engine.check_user_progression(user)

    console.print(Panel(
        f"Events: [bold]{summary.total_events}[/bold]  "
        f"Needing update: [yellow]{summary.events_needing_update}[/yellow]  "
        f"Up to date: [green]{summary.events_up_to_date}[/green]",
        title=f"Year Progression for {user}"
    ))
    if statuses:
        _display_statuses(statuses)


@progression.command('sync')
@click.argument('user')
@click.option('--token', '-t', required=True, envvar='GOOGLE_ACCESS_TOKEN',
              help='Google OAuth access token of USER')
@click.option('--as-of', help='Evaluate as of this ISO date instead of today')
@async_command
async def progression_sync(ctx, user, token, as_of):
    """Fill the missing years of every event of USER."""
    settings = ctx.obj['settings']
    service = EventService(settings, current_year_fn=_current_year_fn(as_of))

    envelope = await service.process_year_progression(user, token)
    if not envelope.success:
        console.print(f"[red]Year progression failed ({envelope.code.value}): {envelope.error}[/red]")
        sys.exit(1)

    result = envelope.data
    logger.info("year_progression_complete", user=user, updated=result['events_updated'],
                failed=result['events_failed'])

    table = Table(title="Year Progression")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Events", str(result['total_events']))
    table.add_row("Needing update", str(result['events_needing_update']))
    table.add_row("Updated", f"[green]{result['events_updated']}[/green]")
    table.add_row("Failed", f"[red]{result['events_failed']}[/red]")
    console.print(table)

    for error in result['errors']:
        console.print(f"[red]• {error}[/red]")


def _display_statuses(statuses: List[YearProgressionStatus]) -> None:
    table = Table(title="Events Needing Update")
    table.add_column("Event", style="cyan")
    table.add_column("Anchor", justify="right")
    table.add_column("Last synced", justify="right")
    table.add_column("Window")
    table.add_column("Missing years")

    for status in statuses:
        years = status.years_needing_sync
        missing = f"{years[0]}..{years[-1]} ({len(years)})" if len(years) > 1 else str(years[0])
        table.add_row(
            status.title,
            str(status.hebrew_year),
            str(status.last_synced_year) if status.last_synced_year is not None else "-",
            f"{status.window.start}..{status.window.end}",
            missing,
        )
    console.print(table)


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == '__main__':
    main()

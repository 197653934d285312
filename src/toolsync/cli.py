"""ToolSync CLI (toolsync).

Usage:
    toolsync init                 # Create the sync root layout and default config
    toolsync plan                 # Rebuild registry and plans from snapshot files
    toolsync status               # Show revision, last run and pending actions
    toolsync report               # Write a diagnostic report
    toolsync watch                # Run the periodic scheduler until interrupted
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click

from .config import (
    DEFAULT_CYCLE_INTERVAL_SECONDS,
    DEFAULT_SYNC_ROOT,
    ConfigurationError,
    EngineSettings,
    resolve_home_path,
)
from .engine import SyncEngine
from .main import serve, setup_logging
from .models import ToolPlan
from .scheduler import CycleScheduler
from .storage import read_json_result

logger = logging.getLogger(__name__)

CLI_PLAN_REASON = "cli:plan"


def _engine(ctx: click.Context) -> SyncEngine:
    return SyncEngine(ctx.obj["root"])


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="toolsync")
@click.option(
    "--root",
    envvar="TOOLSYNC_ROOT",
    default=DEFAULT_SYNC_ROOT,
    show_default=True,
    help="Sync root directory shared by all connectors.",
)
@click.pass_context
def cli(ctx: click.Context, root: str) -> None:
    """ToolSync CLI (toolsync).

    Reconciles extensions, MCP servers, skills, themes and allow-listed
    environment variables across tools sharing one local sync root.
    """
    ctx.ensure_object(dict)
    ctx.obj["root"] = resolve_home_path(root)


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create the sync root layout and a default config.json."""
    engine = _engine(ctx)
    engine.ensure_layout()
    click.secho(f"✓ Sync root ready at {engine.layout.root}", fg="green")


@cli.command()
@click.pass_context
def plan(ctx: click.Context) -> None:
    """Run one reconciliation cycle: rebuild the registry and every tool's plan."""
    scheduler = CycleScheduler(_engine(ctx))

    try:
        result = asyncio.run(scheduler.run_cycle(CLI_PLAN_REASON))
    except OSError as e:
        raise click.ClickException(f"Could not write plans: {e}") from e

    click.echo(f"Revision {result.revision}")
    for tool, count in result.action_counts.items():
        click.echo(f"  {tool}: {count} action(s)")


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show revision state and pending plan sizes."""
    engine = _engine(ctx)
    config = engine.load_config()
    state = engine.load_state()

    click.echo(f"Sync root: {engine.layout.root}")
    click.echo(f"Revision:  {state.revision}")
    click.echo(f"Last run:  {state.last_run_at or 'never'}")
    click.echo("Tools:")
    for tool in config.tools:
        result = read_json_result(engine.layout.plan_file(tool))
        if not result.ok or not isinstance(result.value, dict):
            click.echo(f"  {tool}: no plan")
            continue
        try:
            tool_plan = ToolPlan.model_validate(result.value)
        except ValueError:
            click.echo(f"  {tool}: unreadable plan")
            continue
        click.echo(
            f"  {tool}: {tool_plan.action_count} action(s) at revision {tool_plan.revision}"
        )


@cli.command()
@click.option("--reason", default="manual", show_default=True, help="Why the report was requested.")
@click.pass_context
def report(ctx: click.Context, reason: str) -> None:
    """Write a diagnostic report bundling state and log tails."""
    engine = _engine(ctx)
    engine.ensure_layout()
    path = engine.generate_report(reason)
    click.echo(str(path))


@cli.command()
@click.option(
    "--interval",
    type=int,
    default=DEFAULT_CYCLE_INTERVAL_SECONDS,
    show_default=True,
    help="Seconds between periodic cycles.",
)
@click.option("--log-level", default="INFO", show_default=True)
@click.pass_context
def watch(ctx: click.Context, interval: int, log_level: str) -> None:
    """Run periodic reconciliation cycles until interrupted."""
    try:
        settings = EngineSettings(
            sync_root=Path(ctx.obj["root"]),
            cycle_interval_seconds=interval,
            log_level=log_level.upper(),
        )
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    setup_logging(settings.log_level)
    exit_code = asyncio.run(serve(settings))
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    cli()

"""
CLI entry point for the campaign engine.

Usage:
    python -m kioskads.cli init-db
    python -m kioskads.cli run-once
    python -m kioskads.cli trigger check_expired_campaigns
    python -m kioskads.cli serve-scheduler --interval 3600
    python -m kioskads.cli quote KIOSK_ID [KIOSK_ID ...]
"""

import logging
import os
import signal
import sys
import time
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from kioskads.campaign_engine import (
    CampaignEngine,
    CampaignEngineConfig,
    CampaignEngineError,
    ReconciliationSummary,
    build_engine,
)
from kioskads.campaign_engine.object_store import LocalObjectStore
from kioskads.campaign_engine.scheduler import TRIGGER_ACTIONS
from kioskads.db import create_db_engine, create_session_factory, init_schema

# Setup logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(__name__)

console = Console()


def _load_config() -> CampaignEngineConfig:
    try:
        return CampaignEngineConfig.from_env()
    except CampaignEngineError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)


def _build(local_storage: Optional[str]) -> CampaignEngine:
    config = _load_config()
    session_factory = create_session_factory(create_db_engine(config.database_url))
    object_store = None
    if local_storage:
        object_store = LocalObjectStore(
            local_storage,
            active_prefix=config.active_prefix,
            archive_prefix=config.archive_prefix,
        )
    try:
        return build_engine(config, session_factory=session_factory, object_store=object_store)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        console.print("[dim]Set SUPABASE_URL/SUPABASE_KEY or pass --local-storage DIR[/dim]")
        sys.exit(1)


def _print_summary(summary: ReconciliationSummary, title: str) -> None:
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Reference date", summary.reference_date or "-")
    table.add_row("Campaigns due", str(summary.campaigns_found))
    table.add_row("Activated", str(summary.campaigns_activated))
    table.add_row("Completed", str(summary.campaigns_completed))
    table.add_row("Assets archived", str(summary.assets_archived))
    table.add_row("Flagged for review", str(summary.campaigns_flagged))
    console.print(table)

    if summary.errors:
        console.print(f"[yellow]{len(summary.errors)} errors:[/yellow]")
        for error in summary.errors:
            console.print(f"  [red]•[/red] {error}")


local_storage_option = click.option(
    "--local-storage",
    type=click.Path(file_okay=False),
    help="Archive media on a local directory instead of Supabase Storage",
)


@click.group()
@click.option(
    "--log-level",
    envvar="LOG_LEVEL",
    default="INFO",
    show_default=True,
    help="Logging level (also read from LOG_LEVEL)",
)
def cli(log_level: str):
    """Kiosk ad campaign engine.

    Reconcile campaign statuses, archive finished media and quote volume
    discounts.
    """
    logging.getLogger().setLevel(getattr(logging, log_level.upper(), logging.INFO))


@cli.command("init-db")
def init_db():
    """Create any missing tables (local development; production uses Alembic)."""
    config = _load_config()
    init_schema(create_db_engine(config.database_url))
    console.print("[green]Schema ready.[/green]")


@cli.command("run-once")
@local_storage_option
def run_once(local_storage: Optional[str]):
    """Run a single full reconciliation pass."""
    engine = _build(local_storage)
    try:
        summary = engine.scheduler.run_once()
    finally:
        engine.shutdown()
    _print_summary(summary, "Reconciliation pass")
    if summary.errors:
        sys.exit(2)


@cli.command()
@click.argument("action", type=click.Choice(sorted(TRIGGER_ACTIONS)))
@local_storage_option
def trigger(action: str, local_storage: Optional[str]):
    """Run one manual scheduler action."""
    engine = _build(local_storage)
    try:
        summary = engine.scheduler.trigger(action)
    finally:
        engine.shutdown()
    _print_summary(summary, f"Action: {action}")
    if summary.errors:
        sys.exit(2)


@cli.command("serve-scheduler")
@click.option(
    "--interval",
    "-i",
    type=int,
    help="Seconds between passes (default: RECONCILE_INTERVAL_SECONDS)",
)
@local_storage_option
def serve_scheduler(interval: Optional[int], local_storage: Optional[str]):
    """Run reconciliation passes on an interval until interrupted."""
    engine = _build(local_storage)
    interval = interval or engine.config.reconcile_interval_seconds
    if interval <= 0:
        console.print("[red]Error:[/red] --interval must be positive")
        sys.exit(1)

    def _handle_signal(signum, frame):
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, _handle_signal)

    console.print(
        Panel(
            f"[bold]Timezone:[/bold] {engine.config.reference_timezone}\n"
            f"[bold]Interval:[/bold] {interval}s\n"
            f"[bold]Archive workers:[/bold] {engine.config.archive_max_workers}",
            title="Campaign scheduler",
        )
    )

    engine.scheduler.start(interval_seconds=interval)
    try:
        while engine.scheduler.is_running():
            time.sleep(1.0)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping scheduler...[/yellow]")
    finally:
        engine.shutdown()

    status = engine.scheduler.get_status()
    console.print(f"[dim]{status['runs']} passes, {status['failed_runs']} failed[/dim]")


@cli.command()
@click.argument("kiosk_ids", nargs=-1, required=True)
def quote(kiosk_ids):
    """Price a kiosk selection (order matters for discount tiers)."""
    config = _load_config()
    session_factory = create_session_factory(create_db_engine(config.database_url))
    engine = build_engine(
        config,
        session_factory=session_factory,
        object_store=LocalObjectStore(".", config.active_prefix, config.archive_prefix),
    )
    try:
        pricing = engine.campaigns.quote(list(kiosk_ids))
    except CampaignEngineError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    finally:
        engine.shutdown()

    table = Table(title="Volume discount quote")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Kiosk")
    table.add_column("Base", justify="right")
    table.add_column("Discount", justify="right", style="green")
    table.add_column("Final", justify="right", style="bold")
    table.add_column("Reason", style="dim")
    for position, line in enumerate(pricing.per_kiosk, start=1):
        table.add_row(
            str(position),
            line.kiosk_name or line.kiosk_id,
            f"${line.base_price:.2f}",
            f"${line.discount_amount:.2f}",
            f"${line.final_price:.2f}",
            line.discount_reason,
        )
    table.add_row(
        "",
        "[bold]Total[/bold]",
        f"${pricing.total_base:.2f}",
        f"${pricing.total_discount:.2f}",
        f"${pricing.total_final:.2f}",
        "",
    )
    console.print(table)


if __name__ == "__main__":
    cli()

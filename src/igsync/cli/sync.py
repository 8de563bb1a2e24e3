"""CLI commands for running syncs."""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy.orm import sessionmaker

from igsync.config import get_settings
from igsync.models.base import get_engine
from igsync.services.instagram.credentials import CredentialError
from igsync.services.sync_service import (
    DAILY_DAYS_BACK_DEFAULT,
    DAILY_DAYS_BACK_MAX,
    AccountNotFoundError,
    SyncInProgressError,
    SyncService,
)

sync_app = typer.Typer(help="Sync data from the Graph API")
console = Console()

DATE_FORMATS = ["%Y-%m-%d"]


def get_session():
    """Create a database session."""
    settings = get_settings()
    Session = sessionmaker(bind=get_engine(settings.database_url))
    return Session()


@sync_app.command("run")
def run_sync(
    account_id: int = typer.Argument(..., help="Account ID"),
    since: Optional[datetime] = typer.Option(None, "--since", formats=DATE_FORMATS, help="First day (YYYY-MM-DD)"),
    until: Optional[datetime] = typer.Option(None, "--until", formats=DATE_FORMATS, help="Last day (YYYY-MM-DD)"),
):
    """Run a full sync of one account."""
    settings = get_settings()
    session = get_session()
    service = SyncService(session, settings)

    try:
        account = service.load_account(account_id)
        until_day = until.date() if until else service.account_today(account)
        since_day = since.date() if since else until_day - timedelta(days=settings.default_window_days - 1)

        console.print(f"[bold blue]Syncing {account.label} ({since_day} to {until_day})...[/bold blue]")
        report = asyncio.run(service.sync_account(account_id, since_day, until_day))
    except (AccountNotFoundError, CredentialError, SyncInProgressError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    finally:
        session.close()

    console.print(f"  Posts synced: {report.posts_synced}")
    console.print(f"  Daily rows written: {report.insight_days}")
    console.print(f"  Stories: {len(report.stories)}")
    if report.dropped_values:
        console.print(f"  [yellow]Dropped implausible values: {len(report.dropped_values)}[/yellow]")
    for message in report.messages:
        console.print(f"  [yellow][!][/yellow] {message}")

    if report.success:
        console.print("\n[bold green]Sync completed.[/bold green]")
    else:
        console.print(f"\n[yellow]Sync completed with {len(report.errors)} degraded categories.[/yellow]")


@sync_app.command("daily")
def daily_sync(
    account_id: Optional[int] = typer.Option(None, "--account", "-a", help="Account ID (all active if omitted)"),
    days_back: int = typer.Option(DAILY_DAYS_BACK_DEFAULT, "--days-back", "-d", help="Days to refresh (1-30)"),
    backfill: bool = typer.Option(False, "--backfill", help=f"Refresh the last {DAILY_DAYS_BACK_MAX} days"),
):
    """Refresh daily account metrics."""
    session = get_session()
    service = SyncService(session)

    if backfill:
        days_back = DAILY_DAYS_BACK_MAX

    try:
        summary = asyncio.run(service.sync_daily_insights(account_id, days_back))
    except AccountNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    finally:
        session.close()

    if not summary.results:
        console.print("[yellow]No connected accounts to sync.[/yellow]")
        return

    table = Table(title=f"Daily Sync ({summary.days_back} days back)")
    table.add_column("Account", style="cyan")
    table.add_column("Result")
    table.add_column("Days", justify="right")
    table.add_column("Error")

    for result in summary.results:
        table.add_row(
            result.account,
            "[green]OK[/green]" if result.success else "[red]Failed[/red]",
            str(result.days),
            result.error or "",
        )

    console.print(table)
    console.print(
        f"\n{summary.accounts_synced}/{len(summary.results)} accounts synced, "
        f"{summary.total_days} total day rows"
    )
    if summary.accounts_synced < len(summary.results):
        raise typer.Exit(1)

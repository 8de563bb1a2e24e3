"""CLI commands for dashboards and period comparisons."""

import asyncio
import json
from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.orm import sessionmaker

from igsync.config import get_settings
from igsync.models.base import get_engine
from igsync.repositories import AccountRepository, InsightsRepository
from igsync.services.comparison import ComparisonEngine, DateWindow, InvalidWindowError
from igsync.services.dashboard_service import DashboardService
from igsync.services.instagram.credentials import TokenFamily

analytics_app = typer.Typer(help="Dashboards and period comparisons")
console = Console()

DATE_FORMATS = ["%Y-%m-%d"]


def get_session():
    """Create a database session."""
    settings = get_settings()
    Session = sessionmaker(bind=get_engine(settings.database_url))
    return Session()


def _comparison_table(title: str, metrics: dict) -> Table:
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Current", justify="right")
    table.add_column("Previous", justify="right")
    table.add_column("Change", justify="right")
    table.add_column("Change %", justify="right")

    for name, values in metrics.items():
        percent = values["changePercent"]
        style = "green" if percent > 0 else "red" if percent < 0 else "dim"
        table.add_row(
            name,
            f"{values['current']:,}",
            f"{values['previous']:,}",
            f"{values['change']:+,}",
            f"[{style}]{percent:+.1f}%[/{style}]",
        )
    return table


@analytics_app.command("dashboard")
def dashboard(
    account_id: int = typer.Argument(..., help="Account ID"),
    since: Optional[datetime] = typer.Option(None, "--since", formats=DATE_FORMATS, help="First day (YYYY-MM-DD)"),
    until: Optional[datetime] = typer.Option(None, "--until", formats=DATE_FORMATS, help="Last day (YYYY-MM-DD)"),
    force: bool = typer.Option(False, "--force", "-f", help="Refetch even if the cache is fresh"),
    family: Optional[TokenFamily] = typer.Option(None, "--family", help="Require a token family"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw JSON response"),
):
    """Show the dashboard for an account, syncing when the cache is stale."""
    session = get_session()
    service = DashboardService(session)

    try:
        status, body = asyncio.run(
            service.handle(
                account_id,
                since=since.date() if since else None,
                until=until.date() if until else None,
                force=force,
                expected_family=family,
            )
        )
    finally:
        session.close()

    if as_json:
        console.print_json(json.dumps(body, default=str))
        if status != 200:
            raise typer.Exit(1)
        return

    if status != 200:
        console.print(f"[red]Error ({status}):[/red] {body['error']}")
        raise typer.Exit(1)

    profile = body.get("profile") or {}
    source = (
        f"cache, {body['cache_age_hours']}h old" if body["from_cache"] else "fresh sync"
    )
    console.print(Panel(
        f"@{profile.get('username') or '-'}: {profile.get('followers_count') or 'N/A'} followers",
        title="[bold blue]igsync Dashboard[/bold blue]",
        subtitle=f"{body['since']} to {body['until']} ({source}, {body['duration_ms']} ms)",
    ))

    console.print(f"\n[bold]Posts in window:[/bold] {body['total_posts']}")
    console.print(f"[bold]Stories:[/bold] {body['stories_aggregate']['total_stories']}")
    coverage = body["coverage"]
    console.print(
        f"[bold]Coverage:[/bold] {coverage['covered_days']}/{coverage['expected_days']} days"
    )

    console.print(_comparison_table(
        f"Compared with {body['previous_since']} to {body['previous_until']}",
        body["comparison_metrics"],
    ))

    for message in body["messages"]:
        console.print(f"[yellow][!][/yellow] {message}")


@analytics_app.command("compare")
def compare(
    account_id: int = typer.Argument(..., help="Account ID"),
    since: datetime = typer.Option(..., "--since", formats=DATE_FORMATS, help="First day (YYYY-MM-DD)"),
    until: datetime = typer.Option(..., "--until", formats=DATE_FORMATS, help="Last day (YYYY-MM-DD)"),
):
    """Compare a window with the preceding one using stored data only."""
    session = get_session()
    account_repo = AccountRepository(session)
    insights_repo = InsightsRepository(session)

    try:
        account = account_repo.get(account_id)
        if not account:
            console.print(f"[red]Error:[/red] Account {account_id} not found.")
            raise typer.Exit(1)

        window = DateWindow(since.date(), until.date())
        previous = window.previous()
        current_rows = [r.to_dict() for r in insights_repo.get_range(account.id, window.since, window.until)]
        previous_rows = [r.to_dict() for r in insights_repo.get_range(account.id, previous.since, previous.until)]
    except InvalidWindowError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    finally:
        session.close()

    consolidation = ComparisonEngine().build(window, current_rows, previous_rows)
    console.print(_comparison_table(
        f"{account.label}: {window.since} to {window.until} vs {previous.since} to {previous.until}",
        consolidation.comparison_metrics(),
    ))
    coverage = consolidation.coverage_dict()
    console.print(
        f"Coverage: {coverage['covered_days']}/{coverage['expected_days']} days "
        f"(previous window {consolidation.previous_coverage.covered_days}/{previous.days})"
    )

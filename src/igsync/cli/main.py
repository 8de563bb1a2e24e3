"""Main CLI entry point for igsync."""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler
from sqlalchemy.orm import sessionmaker

from igsync import __version__
from igsync.cli.accounts import accounts_app
from igsync.cli.analytics import analytics_app
from igsync.cli.sync import sync_app
from igsync.config import get_settings
from igsync.models.base import get_engine, init_db

app = typer.Typer(
    name="igsync",
    help="igsync - Instagram analytics sync and caching engine",
    no_args_is_help=True,
)

console = Console()

# Register sub-commands
app.add_typer(accounts_app, name="accounts", help="Manage connected accounts")
app.add_typer(sync_app, name="sync", help="Sync data from the Graph API")
app.add_typer(analytics_app, name="analytics", help="Dashboards and period comparisons")


def get_session():
    """Create a database session."""
    settings = get_settings()
    Session = sessionmaker(bind=get_engine(settings.database_url))
    return Session()


def configure_logging(level: str) -> None:
    """Route log records through rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """igsync command-line interface."""
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level)


@app.command()
def init():
    """Initialize the igsync database."""
    settings = get_settings()

    console.print("[bold blue]Initializing igsync...[/bold blue]")

    init_db(settings.database_url)
    console.print(f"  Database initialized: {settings.database_url}")

    console.print("\n[bold]Configuration Status:[/bold]")
    if settings.is_encryption_configured:
        console.print("  [green][+][/green] ENCRYPTION_KEY set (tokens are stored encrypted)")
    else:
        console.print("  [yellow][!][/yellow] ENCRYPTION_KEY not set (tokens are stored as given)")

    console.print("\n[bold green]igsync initialized successfully![/bold green]")
    console.print("\nNext steps:")
    console.print("  1. Run 'igsync accounts add <business-id>' to connect an account")
    console.print("  2. Run 'igsync analytics dashboard <account-id>' to sync and view data")


@app.command()
def version():
    """Show the igsync version."""
    console.print(f"igsync v{__version__}")


@app.command()
def status():
    """Show accounts and their sync state."""
    settings = get_settings()
    session = get_session()

    from igsync.repositories import AccountRepository, SyncMetadataRepository

    account_repo = AccountRepository(session)
    metadata_repo = SyncMetadataRepository(session)

    console.print("[bold blue]igsync Status[/bold blue]\n")

    accounts = account_repo.get_active_accounts()
    console.print(f"[bold]Connected Accounts:[/bold] {len(accounts)}")
    for account in accounts:
        meta = metadata_repo.get_for_account(account.id)
        if meta is None:
            console.print(f"  - {account.label}: never synced")
            continue
        state = "[yellow]syncing[/yellow]" if meta.is_syncing else "idle"
        console.print(
            f"  - {account.label}: {state}, {meta.total_posts_cached} posts, "
            f"{meta.total_insights_days} days, last insights sync {meta.last_insights_sync or '-'}"
        )
        if meta.last_sync_error:
            console.print(f"    [red]Last error:[/red] {meta.last_sync_error}")

    console.print(f"\n[bold]Configuration:[/bold]")
    console.print(f"  Database: {settings.database_url}")
    console.print(f"  Graph API: {settings.graph_api_version}")
    console.print(f"  Cache TTL: {settings.cache_ttl_minutes} minutes")
    console.print(
        f"  Encryption: {'[green][+][/green]' if settings.is_encryption_configured else '[red][x][/red]'}"
    )

    session.close()


if __name__ == "__main__":
    app()

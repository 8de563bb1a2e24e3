"""CLI commands for connected account management."""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy.orm import sessionmaker

from igsync.config import get_settings
from igsync.models.base import get_engine
from igsync.repositories import AccountRepository
from igsync.services.instagram.credentials import (
    CredentialError,
    TokenFamily,
    classify_token,
    encrypt_token,
    resolve_credential,
)

accounts_app = typer.Typer(help="Manage connected accounts")
console = Console()


def get_session():
    """Create a database session."""
    settings = get_settings()
    Session = sessionmaker(bind=get_engine(settings.database_url))
    return Session()


def _store_token(token: str) -> str:
    settings = get_settings()
    if settings.is_encryption_configured:
        return encrypt_token(token, settings.encryption_key)
    return token


@accounts_app.command("add")
def add_account(
    business_id: str = typer.Argument(..., help="Instagram business account ID"),
    token: str = typer.Option(..., "--token", "-t", prompt=True, hide_input=True, help="Access token"),
    username: Optional[str] = typer.Option(None, "--username", "-u", help="Account username"),
    timezone: Optional[str] = typer.Option(None, "--timezone", help="IANA timezone, e.g. America/Sao_Paulo"),
):
    """Register an account with an existing access token."""
    family = classify_token(token)
    provider = "facebook" if family is TokenFamily.FACEBOOK else "instagram"

    session = get_session()
    account_repo = AccountRepository(session)

    try:
        existing = account_repo.get_by_business_id(business_id)
        if existing:
            account_repo.update_token(existing.id, _store_token(token))
            account_repo.commit()
            console.print(f"[green]Updated token for existing account:[/green] {existing.label}")
            return

        account = account_repo.create_account(
            business_id=business_id,
            access_token=_store_token(token),
            provider=provider,
            username=username,
            timezone=timezone,
        )
        account_repo.commit()
        console.print(f"[green]Account added successfully:[/green] {account.label} (ID {account.id})")
        if family is TokenFamily.UNKNOWN:
            console.print("[yellow]Warning:[/yellow] token format not recognized")
    except CredentialError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    finally:
        session.close()


@accounts_app.command("list")
def list_accounts(
    all_accounts: bool = typer.Option(False, "--all", "-a", help="Show all accounts including inactive"),
):
    """List connected accounts."""
    session = get_session()
    account_repo = AccountRepository(session)

    if all_accounts:
        accounts = account_repo.get_all()
    else:
        accounts = account_repo.get_active_accounts()

    if not accounts:
        console.print("[yellow]No accounts found.[/yellow]")
        console.print("Run 'igsync accounts add' to connect an account.")
        session.close()
        return

    table = Table(title="Connected Accounts")
    table.add_column("ID", style="dim")
    table.add_column("Business ID")
    table.add_column("Username", style="cyan")
    table.add_column("Provider")
    table.add_column("Timezone")
    table.add_column("Status")

    for account in accounts:
        status = "[green]Active[/green]" if account.is_active else "[red]Inactive[/red]"
        if account.is_token_expired:
            status = "[yellow]Token Expired[/yellow]"

        table.add_row(
            str(account.id),
            account.business_id,
            f"@{account.username}" if account.username else "-",
            account.provider,
            account.timezone or "-",
            status,
        )

    console.print(table)
    session.close()


@accounts_app.command("remove")
def remove_account(
    account_id: int = typer.Argument(..., help="Account ID to deactivate"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Deactivate an account; its cached data is kept."""
    session = get_session()
    account_repo = AccountRepository(session)

    account = account_repo.get(account_id)
    if not account:
        console.print(f"[red]Error:[/red] Account {account_id} not found.")
        session.close()
        raise typer.Exit(1)

    if not force:
        confirm = typer.confirm(f"Deactivate {account.label}?")
        if not confirm:
            console.print("Cancelled.")
            session.close()
            return

    account_repo.deactivate(account_id)
    account_repo.commit()
    console.print(f"[green]Account {account.label} deactivated.[/green]")
    session.close()


@accounts_app.command("check-token")
def check_token(
    account_id: int = typer.Argument(..., help="Account ID"),
):
    """Check that the stored token can be decrypted and classified."""
    settings = get_settings()
    session = get_session()
    account_repo = AccountRepository(session)

    account = account_repo.get(account_id)
    if not account:
        console.print(f"[red]Error:[/red] Account {account_id} not found.")
        session.close()
        raise typer.Exit(1)

    try:
        credential = resolve_credential(account.access_token, settings.encryption_key)
    except CredentialError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    finally:
        session.close()

    console.print(f"[bold]{account.label}[/bold]")
    console.print(f"  Storage: {credential.source}")
    console.print(f"  Token family: {credential.family.value}")
    if not credential.recognized:
        console.print("  [yellow]Token format not recognized; Graph calls will likely fail.[/yellow]")
    else:
        console.print("  [green]Token is usable.[/green]")

"""tenantvault store / get — Store and look up access tokens from the command line."""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from rich import box

from tenantvault.cli.commands.config import mask
from tenantvault.types import TenantContext

console = Console()


async def _store(token: str, context: TenantContext, **kwargs):
    from tenantvault.credentials import CredentialVault

    async with CredentialVault.from_config() as vault:
        return await vault.store_access_token(token, context, **kwargs)


async def _get(context: TenantContext, credential_name: Optional[str],
               connector_name: Optional[str], remote_account_id: Optional[str]) -> Optional[str]:
    from tenantvault.credentials import CredentialVault

    async with CredentialVault.from_config() as vault:
        if credential_name or connector_name:
            lookup = await vault.get_access_token_by_name(
                account_id=context.account_id,
                enterprise_id=context.enterprise_id,
                credential_name=credential_name,
                connector_name=connector_name,
                account_name=context.account_name,
                enterprise_name=context.enterprise_name,
                workstream=context.workstream,
                product=context.product,
                service=context.service,
                remote_account_id=remote_account_id,
            )
            return lookup.access_token if lookup else None
        return await vault.get_access_token(context, remote_account_id=remote_account_id)


def store_token(
    enterprise_id: str = typer.Option(None, "--enterprise-id", "-e"),
    account_id: str = typer.Option(None, "--account-id", "-a"),
    enterprise_name: str = typer.Option(None, "--enterprise-name"),
    account_name: str = typer.Option(None, "--account-name"),
    workstream: str = typer.Option(None, "--workstream"),
    product: str = typer.Option(None, "--product"),
    service: str = typer.Option(None, "--service"),
    user_id: str = typer.Option(None, "--user-id", "-u"),
    credential_name: str = typer.Option(None, "--credential-name"),
    connector_name: str = typer.Option(None, "--connector-name"),
    scope: str = typer.Option(None, "--scope"),
    remote_account_id: str = typer.Option(None, "--remote-account-id", help="AWS account of a dedicated store"),
    cloud_class: str = typer.Option(None, "--cloud-class", help="public or private"),
    token: str = typer.Option(..., "--token", prompt=True, hide_input=True, help="Token to store"),
):
    """Encrypt a token and store it under a tenant context.

    The token is prompted for (hidden) unless --token is given.

    Example:
        tenantvault store -e E1 -a A1 --credential-name github
    """
    context = TenantContext(
        enterprise_id=enterprise_id, account_id=account_id,
        enterprise_name=enterprise_name, account_name=account_name,
        workstream=workstream, product=product, service=service,
    )
    try:
        record = asyncio.run(_store(
            token, context,
            user_id=user_id,
            credential_name=credential_name,
            connector_name=connector_name,
            scope=scope,
            remote_account_id=remote_account_id,
            cloud_class=cloud_class,
        ))
    except Exception as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)

    table = Table(box=box.ROUNDED, header_style="bold dim", show_header=False)
    table.add_column("Field", style="cyan", width=20)
    table.add_column("Value", width=50)
    table.add_row("id", record.id)
    table.add_row("cloud", record.cloud_class.value)
    table.add_row("remote account", record.remote_account_id or "[dim](shared)[/dim]")
    table.add_row("created", record.created_at.isoformat())

    console.print("[bold green]Token stored.[/bold green]")
    console.print(table)


def get_token(
    enterprise_id: str = typer.Option(None, "--enterprise-id", "-e"),
    account_id: str = typer.Option(None, "--account-id", "-a"),
    enterprise_name: str = typer.Option(None, "--enterprise-name"),
    account_name: str = typer.Option(None, "--account-name"),
    workstream: str = typer.Option(None, "--workstream"),
    product: str = typer.Option(None, "--product"),
    service: str = typer.Option(None, "--service"),
    credential_name: str = typer.Option(None, "--credential-name"),
    connector_name: str = typer.Option(None, "--connector-name"),
    remote_account_id: str = typer.Option(None, "--remote-account-id"),
    reveal: bool = typer.Option(False, "--reveal", help="Print the token unmasked"),
):
    """Look up the token for a tenant context.

    With --credential-name or --connector-name the lookup is by name
    (both --account-id and --enterprise-id are then required).

    Example:
        tenantvault get -e E1 -a A1
        tenantvault get -e E1 -a A1 --connector-name github --reveal
    """
    context = TenantContext(
        enterprise_id=enterprise_id, account_id=account_id,
        enterprise_name=enterprise_name, account_name=account_name,
        workstream=workstream, product=product, service=service,
    )
    if (credential_name or connector_name) and not (context.account_id and context.enterprise_id):
        console.print("[red]Error:[/red] name lookups need --account-id and --enterprise-id")
        raise typer.Exit(2)

    try:
        token = asyncio.run(_get(context, credential_name, connector_name, remote_account_id))
    except Exception as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)

    if token is None:
        console.print("[yellow]No token found.[/yellow]")
        raise typer.Exit(1)

    console.print(token if reveal else mask(token), soft_wrap=True, markup=False, highlight=False)

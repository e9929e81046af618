"""tenantvault migrate — Create or upgrade the relational credential table."""

import asyncio

import typer
from rich.console import Console

console = Console()


async def _migrate(database_url: str) -> None:
    from tenantvault.db.database import Database

    db = Database(database_url)
    try:
        with console.status("[dim]Connecting to database...[/dim]"):
            await db.open()
    finally:
        await db.close()


def migrate_db(
    database_url: str = typer.Option(None, "--database-url", help="Override TENANTVAULT_DATABASE_URL"),
):
    """Create the credential table, or add columns and indexes an older one lacks.

    Safe to run repeatedly.

    Example:
        tenantvault migrate
        tenantvault migrate --database-url sqlite+aiosqlite:///vault.db
    """
    from tenantvault.config import VaultConfig
    url = database_url or VaultConfig().database_url

    try:
        asyncio.run(_migrate(url))
    except Exception as exc:
        console.print(f"[red]Error:[/red] {exc}")
        console.print("[dim]Is the database running and TENANTVAULT_DATABASE_URL correct?[/dim]")
        raise typer.Exit(1)

    console.print("[bold green]Credential table is up to date.[/bold green]")

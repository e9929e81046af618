"""tenantvault CLI — Typer application."""

import logging

import typer
from rich.console import Console

from tenantvault.version import __version__

app = typer.Typer(
    name="tenantvault",
    help="tenantvault — encrypted, tenant-routed credential storage.",
    no_args_is_help=True,
    invoke_without_command=True,
)
console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", is_eager=True, help="Show version"),
    log_level: str = typer.Option(None, "--log-level", help="Override TENANTVAULT_LOG_LEVEL"),
):
    """tenantvault CLI."""
    if version:
        console.print(f"tenantvault v{__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        return

    from tenantvault.config import VaultConfig
    logging.basicConfig(
        level=(log_level or VaultConfig().log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


from tenantvault.cli.commands import config, migrate, tokens  # noqa: E402

app.command(name="config", help="Show resolved configuration")(config.config_show)
app.command(name="migrate", help="Create or upgrade the relational credential table")(migrate.migrate_db)
app.command(name="store", help="Encrypt and store an access token")(tokens.store_token)
app.command(name="get", help="Look up the access token for a tenant context")(tokens.get_token)


if __name__ == "__main__":
    app()

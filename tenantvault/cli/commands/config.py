"""tenantvault config — Show resolved configuration."""

from rich.console import Console
from rich.table import Table
from rich import box

console = Console()


def mask(val: str) -> str:
    s = str(val)
    if len(s) <= 8:
        return "***"
    return s[:4] + "…" + "***"


def _display(cfg, attr: str, sensitive: set) -> str:
    val = cfg.resolved_admin_table() if attr == "admin_table" else getattr(cfg, attr, None)
    if val is None or val == "":
        return "[dim](not set)[/dim]"
    if attr in sensitive:
        return mask(str(val))
    # StorageMode and other enums show their stored value
    return str(getattr(val, "value", val))


def config_show():
    """Show the resolved tenantvault configuration.

    Reads from environment variables and .env file. The master key is masked.

    Example:
        tenantvault config
    """
    from tenantvault.config import VaultConfig
    cfg = VaultConfig()

    sensitive = {"master_key"}

    table = Table(
        box=box.ROUNDED,
        header_style="bold dim",
        show_lines=False,
        title="[bold]tenantvault Configuration[/bold]",
    )
    table.add_column("Key", style="cyan", width=26)
    table.add_column("Value", width=50)
    table.add_column("Env Var", style="dim", width=38)

    sections = [
        ("App", [
            ("debug", "TENANTVAULT_DEBUG"),
            ("log_level", "TENANTVAULT_LOG_LEVEL"),
        ]),
        ("Encryption", [
            ("master_key", "TENANTVAULT_MASTER_KEY / TOKEN_ENCRYPTION_KEY"),
            ("kdf_iterations", "TENANTVAULT_KDF_ITERATIONS"),
        ]),
        ("Storage", [
            ("storage_mode", "TENANTVAULT_STORAGE_MODE"),
            ("workspace", "TENANTVAULT_WORKSPACE"),
            ("database_url", "TENANTVAULT_DATABASE_URL"),
        ]),
        ("Tables", [
            ("admin_table", "TENANTVAULT_ADMIN_TABLE"),
            ("public_table_template", "TENANTVAULT_PUBLIC_TABLE_TEMPLATE"),
            ("private_table_template", "TENANTVAULT_PRIVATE_TABLE_TEMPLATE"),
        ]),
        ("AWS", [
            ("aws_region", "TENANTVAULT_AWS_REGION"),
            ("dynamodb_endpoint", "TENANTVAULT_DYNAMODB_ENDPOINT"),
            ("cross_account_role_name", "TENANTVAULT_CROSS_ACCOUNT_ROLE_NAME"),
            ("assume_role_duration", "TENANTVAULT_ASSUME_ROLE_DURATION"),
            ("directory_cache_ttl", "TENANTVAULT_DIRECTORY_CACHE_TTL"),
        ]),
    ]

    for index, (section_name, fields) in enumerate(sections):
        if index:
            table.add_row("", "", "")
        table.add_row(f"[bold dim]── {section_name} ──[/bold dim]", "", "")
        for attr, env_var in fields:
            table.add_row(f"  {attr}", _display(cfg, attr, sensitive), env_var)

    console.print()
    console.print(table)
    console.print()
    console.print("[dim]Source: environment variables + .env file (prefix: TENANTVAULT_)[/dim]")

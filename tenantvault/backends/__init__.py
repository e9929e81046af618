"""Storage backends and the factory that picks one from configuration."""

from tenantvault.backends.base import Item, StorageBackend
from tenantvault.exceptions import ConfigurationError
from tenantvault.types import StorageMode


def create_backend(cfg) -> StorageBackend:
    """Build the backend for ``cfg.storage_mode``.

    Raises:
        ConfigurationError: for filesystem mode, which cannot hold tokens.
    """
    mode = StorageMode(cfg.storage_mode)
    if mode == StorageMode.KEYVALUE:
        from tenantvault.backends.dynamodb import DynamoDBBackend
        return DynamoDBBackend.from_config(cfg)
    if mode == StorageMode.RELATIONAL:
        from tenantvault.backends.sql import SqlBackend
        from tenantvault.db.database import Database
        return SqlBackend(Database(cfg.database_url, echo=cfg.debug))
    raise ConfigurationError(
        "Token storage not supported for filesystem mode. Use relational or keyvalue.",
        details={"storage_mode": mode.value},
    )


__all__ = ["Item", "StorageBackend", "create_backend"]

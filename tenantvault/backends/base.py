"""Storage backend contract shared by the key/value and relational stores."""

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from tenantvault.types import TableRef

Item = dict[str, Any]


class StorageBackend(ABC):
    """Item-level operations the vault needs from a physical store.

    Items are flat dicts addressed by ``PK`` / ``SK``. A missing item is a
    normal outcome (``None``, ``[]`` or ``False``), never an exception.
    Store failures raise :class:`~tenantvault.exceptions.BackendError` and
    are not retried here.
    """

    #: Whether the vault should also write ``USER#<id>`` lookup items.
    supports_user_index_records: bool = True

    async def open(self) -> None:
        """Acquire connections. Safe to call more than once."""

    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    async def get(self, table: TableRef, key: Mapping[str, Any]) -> Optional[Item]:
        """Fetch one item by its full key."""

    @abstractmethod
    async def put(self, table: TableRef, item: Item) -> Item:
        """Write *item* and return what was stored."""

    @abstractmethod
    async def update(
        self, table: TableRef, key: Mapping[str, Any], changes: Mapping[str, Any],
    ) -> Optional[Item]:
        """Set the attributes in *changes* on the item at *key*.

        Returns the updated item, or ``None`` when nothing matched.
        """

    @abstractmethod
    async def delete(self, table: TableRef, key: Mapping[str, Any]) -> bool:
        """Remove one item. ``True`` if something was deleted."""

    @abstractmethod
    async def query_by_key_prefix(
        self, table: TableRef, partition_key: str, sk_prefix: str = "",
    ) -> list[Item]:
        """All items in *partition_key* whose sort key starts with *sk_prefix*."""

    @abstractmethod
    async def scan_by_attribute(
        self, table: TableRef, attributes: Mapping[str, Any],
    ) -> list[Item]:
        """Every item whose attributes equal all of *attributes*."""

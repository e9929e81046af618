"""Test fixtures: cipher, in-memory backend, fake account directory, vaults.

All tests should use these fixtures for consistency.
"""

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

import pytest
import pytest_asyncio

from tenantvault.backends.base import Item, StorageBackend
from tenantvault.credentials.encryption import TokenCipher
from tenantvault.credentials.routing import AccountDirectory, TableNaming, TenantRouter
from tenantvault.credentials.vault import CredentialVault
from tenantvault.db.database import Database
from tenantvault.exceptions import BackendError, ConstraintViolation
from tenantvault.types import AccountEntry, TableRef

MASTER_KEY = "test-master-key-0123456789abcdef-0123"


class InMemoryBackend(StorageBackend):
    """Dict-backed :class:`StorageBackend` with a call log."""

    def __init__(self, supports_user_index_records: bool = True) -> None:
        self.supports_user_index_records = supports_user_index_records
        self.tables: dict[str, dict[tuple[str, str], Item]] = {}
        self.calls: list[tuple[str, str]] = []
        self.opened = False
        self.closed = False

    def _rows(self, table: TableRef) -> dict[tuple[str, str], Item]:
        return self.tables.setdefault(table.name, {})

    def items(self, table_name: str) -> list[Item]:
        return list(self.tables.get(table_name, {}).values())

    async def open(self) -> None:
        self.opened = True

    async def close(self) -> None:
        self.closed = True

    async def get(self, table: TableRef, key: Mapping[str, Any]) -> Optional[Item]:
        self.calls.append(("get", table.name))
        item = self._rows(table).get((key["PK"], key["SK"]))
        return dict(item) if item else None

    async def put(self, table: TableRef, item: Item) -> Item:
        self.calls.append(("put", table.name))
        self._rows(table)[(item["PK"], item["SK"])] = dict(item)
        return dict(item)

    async def update(
        self, table: TableRef, key: Mapping[str, Any], changes: Mapping[str, Any],
    ) -> Optional[Item]:
        self.calls.append(("update", table.name))
        for row in self._rows(table).values():
            if all(row.get(k) == v for k, v in key.items()):
                row.update(changes)
                return dict(row)
        return None

    async def delete(self, table: TableRef, key: Mapping[str, Any]) -> bool:
        self.calls.append(("delete", table.name))
        return self._rows(table).pop((key["PK"], key["SK"]), None) is not None

    async def query_by_key_prefix(
        self, table: TableRef, partition_key: str, sk_prefix: str = "",
    ) -> list[Item]:
        self.calls.append(("query", table.name))
        return [
            dict(item) for (pk, sk), item in self._rows(table).items()
            if pk == partition_key and sk.startswith(sk_prefix)
        ]

    async def scan_by_attribute(
        self, table: TableRef, attributes: Mapping[str, Any],
    ) -> list[Item]:
        self.calls.append(("scan", table.name))
        return [
            dict(item) for item in self._rows(table).values()
            if all(item.get(k) == v for k, v in attributes.items())
        ]


class OwnerUniqueBackend(InMemoryBackend):
    """Rejects a second item for the same (user_id, account_id, enterprise_id)."""

    async def put(self, table: TableRef, item: Item) -> Item:
        owner = [item.get(f) for f in ("user_id", "account_id", "enterprise_id")]
        if all(owner):
            for row in self._rows(table).values():
                if [row.get(f) for f in ("user_id", "account_id", "enterprise_id")] == owner:
                    raise ConstraintViolation("duplicate owner", table=table.name, operation="put")
        return await super().put(table, item)


class FailingBackend(InMemoryBackend):
    """Every data call fails like an unreachable store."""

    def _rows(self, table: TableRef):
        raise BackendError("store unavailable", table=table.name)


class FakeDirectory(AccountDirectory):
    """Account directory over a dict, counting lookups."""

    def __init__(self, entries: Optional[dict[str, AccountEntry]] = None, error: Exception = None) -> None:
        self.entries = entries or {}
        self.error = error
        self.lookups = 0

    async def get_account(self, account_id: str) -> Optional[AccountEntry]:
        self.lookups += 1
        if self.error is not None:
            raise self.error
        return self.entries.get(account_id)


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def master_key() -> str:
    return MASTER_KEY


@pytest.fixture(scope="session")
def cipher() -> TokenCipher:
    return TokenCipher(MASTER_KEY)


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def naming() -> TableNaming:
    return TableNaming(admin_table="vault-admin-test", workspace="test")


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def vault(cipher, backend, naming) -> CredentialVault:
    """Vault without an account directory: everything lands in the admin table."""
    return CredentialVault(cipher, backend, TenantRouter(), naming)


@pytest.fixture
def routed_vault(cipher, backend, naming, directory) -> CredentialVault:
    """Vault whose router consults ``directory``."""
    return CredentialVault(cipher, backend, TenantRouter(directory), naming)


@pytest_asyncio.fixture
async def database(tmp_path):
    """SQLite database file, schema created on first open."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'vault.db'}")
    yield db
    await db.close()


@pytest.fixture
def make_directory():
    """Factory for :class:`FakeDirectory` instances."""
    return FakeDirectory


@pytest.fixture
def scan_only_backend() -> InMemoryBackend:
    """Backend that keeps no USER# lookup items, like the relational store."""
    return InMemoryBackend(supports_user_index_records=False)


@pytest.fixture
def owner_unique_backend() -> OwnerUniqueBackend:
    return OwnerUniqueBackend(supports_user_index_records=False)


@pytest.fixture
def failing_backend() -> FailingBackend:
    return FailingBackend()


@pytest.fixture
def clock(monkeypatch):
    """Vault clock that advances one second per call, so store order is visible in timestamps."""
    ticks = itertools.count()
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    monkeypatch.setattr(
        "tenantvault.credentials.vault.utc_now", lambda: start + timedelta(seconds=next(ticks)),
    )
    return start

"""Relational storage backend (PostgreSQL in production, SQLite in tests).

Every credential lives in the single ``oauth_credentials`` table, so the
table name on a :class:`TableRef` is ignored. Items keep their ``PK`` /
``SK`` in the ``partition_key`` / ``sort_key`` columns, which lets the vault
run the same lookup ladder it runs against DynamoDB.
"""

import logging
import re
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional

from sqlalchemy import and_, delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tenantvault.backends.base import Item, StorageBackend
from tenantvault.db.database import Database
from tenantvault.db.models import OWNER_COMPLETE, CredentialModel
from tenantvault.exceptions import BackendError, ConstraintViolation
from tenantvault.types import TableRef, format_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

_MAPPER = CredentialModel.__mapper__

# ORM attribute name -> table column key
_COLUMN_KEYS = {attr.key: attr.columns[0].key for attr in _MAPPER.column_attrs}

_KEY_ALIASES = {
    "PK": "partition_key",
    "SK": "sort_key",
    # Items written before the secret column was renamed
    "access_token": "encrypted_secret",
    "accessToken": "encrypted_secret",
}

_DATETIME_ATTRS = frozenset({"created_at", "updated_at", "expires_at"})
_OWNER_ATTRS = ("user_id", "account_id", "enterprise_id")

# Left untouched when an upsert lands on an existing owner row
_KEPT_ON_CONFLICT = frozenset({"id", "sort_key", "created_at", *_OWNER_ATTRS})

# Column defaults applied when an item leaves the attribute out
_COLUMN_DEFAULTS = {"token_type": "bearer", "entity_type": "CREDENTIAL"}

_UPSERT_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _attr_name(name: str) -> Optional[str]:
    """Map an item attribute (snake_case, camelCase, PK/SK) onto the model."""
    if name in _KEY_ALIASES:
        return _KEY_ALIASES[name]
    snake = _CAMEL_BOUNDARY.sub("_", name).lower()
    return snake if snake in _COLUMN_KEYS else None


def _row_values(item: Mapping[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name, value in item.items():
        attr = _attr_name(name)
        if attr is None:
            continue
        if attr in _DATETIME_ATTRS:
            value = parse_timestamp(value)
        # snake_case wins when an item carries both spellings
        if attr not in values or name == attr:
            values[attr] = value
    return values


def _to_item(row: CredentialModel) -> Item:
    item: Item = {"PK": row.partition_key, "SK": row.sort_key}
    for attr in _COLUMN_KEYS:
        if attr in ("partition_key", "sort_key"):
            continue
        value = getattr(row, attr)
        if attr in _DATETIME_ATTRS and value is not None:
            value = format_timestamp(value)
        item[attr] = value
    return item


def _describe(exc: Exception) -> str:
    """Error text without bound statement parameters, which can hold secrets."""
    orig = getattr(exc, "orig", None)
    return f"{type(exc).__name__}: {orig}" if orig is not None else type(exc).__name__


def _conditions(mapping: Mapping[str, Any]) -> Optional[list]:
    """WHERE clauses for *mapping*, or None if it names an unknown attribute."""
    clauses = []
    for attr, value in _row_values(mapping).items():
        column = getattr(CredentialModel, attr)
        clauses.append(column.is_(None) if value is None else column == value)
    if len(clauses) < len(mapping):
        return None
    return clauses


class SqlBackend(StorageBackend):
    """:class:`StorageBackend` over one SQLAlchemy async database.

    Args:
        database: Owner of the engine pool.
        atomic_upsert: Use ``INSERT ... ON CONFLICT DO UPDATE`` on the owner
            triple when the dialect supports it. When off, a duplicate owner
            raises :class:`ConstraintViolation` and the caller updates instead.
    """

    # User lookups scan on the user_id column instead
    supports_user_index_records = False

    def __init__(self, database: Database, atomic_upsert: bool = True) -> None:
        self.database = database
        self.atomic_upsert = atomic_upsert

    async def open(self) -> None:
        try:
            await self.database.open()
        except (SQLAlchemyError, OSError) as exc:
            raise BackendError(f"Could not open credential database: {_describe(exc)}", operation="open") from exc

    async def close(self) -> None:
        await self.database.close()

    @asynccontextmanager
    async def _guard(self, table: TableRef, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except IntegrityError as exc:
            raise ConstraintViolation(
                f"{operation} violated a uniqueness constraint",
                table=CredentialModel.__tablename__,
                operation=operation,
                details={"table_ref": table.name},
            ) from exc
        except (SQLAlchemyError, OSError) as exc:
            logger.error("SQL %s failed: %s", operation, _describe(exc))
            raise BackendError(
                f"SQL {operation} failed: {_describe(exc)}",
                table=CredentialModel.__tablename__,
                operation=operation,
            ) from exc

    # ------------------------------------------------------------------
    # StorageBackend
    # ------------------------------------------------------------------

    async def get(self, table: TableRef, key: Mapping[str, Any]) -> Optional[Item]:
        clauses = _conditions(key)
        if clauses is None:
            return None
        async with self._guard(table, "get"):
            async with self.database.session() as session:
                row = (
                    await session.execute(select(CredentialModel).where(*clauses).limit(1))
                ).scalar_one_or_none()
        return _to_item(row) if row is not None else None

    async def put(self, table: TableRef, item: Item) -> Item:
        values = _row_values(item)
        values.setdefault("id", str(uuid.uuid4()))
        values.setdefault("created_at", utc_now())
        values.setdefault("updated_at", values["created_at"])
        # A put replaces the whole row, so absent attributes are stored as NULL
        for attr in _COLUMN_KEYS:
            values.setdefault(attr, _COLUMN_DEFAULTS.get(attr))

        owner_complete = all(values.get(attr) for attr in _OWNER_ATTRS)
        dialect = self.database.dialect_name
        async with self._guard(table, "put"):
            if self.atomic_upsert and owner_complete and dialect in _UPSERT_INSERTS:
                return await self._upsert(dialect, values)
            async with self.database.session() as session:
                row = CredentialModel(**values)
                session.add(row)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    raise
                return _to_item(row)

    async def _upsert(self, dialect: str, values: dict[str, Any]) -> Item:
        columns = {_COLUMN_KEYS[attr]: value for attr, value in values.items()}
        stmt = _UPSERT_INSERTS[dialect](CredentialModel.__table__).values(**columns)
        stmt = stmt.on_conflict_do_update(
            index_elements=[_COLUMN_KEYS[attr] for attr in _OWNER_ATTRS],
            index_where=OWNER_COMPLETE,
            set_={
                _COLUMN_KEYS[attr]: stmt.excluded[_COLUMN_KEYS[attr]]
                for attr in _COLUMN_KEYS
                if attr not in _KEPT_ON_CONFLICT
            },
        )
        owner = [getattr(CredentialModel, attr) == values[attr] for attr in _OWNER_ATTRS]
        async with self.database.session() as session:
            await session.execute(stmt)
            await session.commit()
            row = (await session.execute(select(CredentialModel).where(*owner))).scalar_one()
        logger.debug("Upserted credential %s", row.id)
        return _to_item(row)

    async def update(
        self, table: TableRef, key: Mapping[str, Any], changes: Mapping[str, Any],
    ) -> Optional[Item]:
        clauses = _conditions(key)
        if clauses is None:
            return None
        async with self._guard(table, "update"):
            async with self.database.session() as session:
                row = (
                    await session.execute(select(CredentialModel).where(*clauses).limit(1))
                ).scalar_one_or_none()
                if row is None:
                    return None
                for attr, value in _row_values(changes).items():
                    if attr != "id":
                        setattr(row, attr, value)
                await session.commit()
                return _to_item(row)

    async def delete(self, table: TableRef, key: Mapping[str, Any]) -> bool:
        clauses = _conditions(key)
        if clauses is None:
            return False
        async with self._guard(table, "delete"):
            async with self.database.session() as session:
                result = await session.execute(delete(CredentialModel).where(and_(*clauses)))
                await session.commit()
        return result.rowcount > 0

    async def query_by_key_prefix(
        self, table: TableRef, partition_key: str, sk_prefix: str = "",
    ) -> list[Item]:
        stmt = select(CredentialModel).where(CredentialModel.partition_key == partition_key)
        if sk_prefix:
            stmt = stmt.where(CredentialModel.sort_key.startswith(sk_prefix, autoescape=True))
        async with self._guard(table, "query"):
            async with self.database.session() as session:
                rows = (await session.execute(stmt)).scalars().all()
        return [_to_item(row) for row in rows]

    async def scan_by_attribute(
        self, table: TableRef, attributes: Mapping[str, Any],
    ) -> list[Item]:
        clauses = _conditions(attributes)
        if clauses is None:
            return []
        async with self._guard(table, "scan"):
            async with self.database.session() as session:
                rows = (await session.execute(select(CredentialModel).where(*clauses))).scalars().all()
        return [_to_item(row) for row in rows]

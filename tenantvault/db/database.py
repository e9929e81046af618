"""Async SQLAlchemy engine, session factory, and first-use schema migration."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import inspect, text, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from tenantvault.db.models import ADDITIVE_COLUMNS, Base, CredentialModel

logger = logging.getLogger(__name__)


def _add_missing_columns(sync_conn) -> list[str]:
    """ALTER the credential table to add any column it predates. Idempotent."""
    table = CredentialModel.__table__
    existing = {col["name"] for col in inspect(sync_conn).get_columns(table.name)}
    added = []
    for name in ADDITIVE_COLUMNS:
        if name in existing:
            continue
        column_type = table.c[name].type.compile(dialect=sync_conn.dialect)
        sync_conn.execute(text(f"ALTER TABLE {table.name} ADD COLUMN {name} {column_type}"))
        added.append(name)
    if "entity_type" in added:
        # Rows that predate the column are all credentials
        sync_conn.execute(
            update(table).where(table.c.entity_type.is_(None)).values(entity_type="CREDENTIAL")
        )
    for index in table.indexes:
        index.create(sync_conn, checkfirst=True)
    return added


class Database:
    """Owns the engine pool for one database URL.

    Nothing connects until :meth:`open`; the first open creates the schema
    and brings older tables up to date.

    Usage:
        db = Database("sqlite+aiosqlite:///:memory:")
        await db.open()
        async with db.session() as session:
            ...
        await db.close()
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[async_sessionmaker[AsyncSession]] = None
        self._ready = False
        self._lock = asyncio.Lock()

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self.url, echo=self.echo, hide_parameters=True)
            self._sessions = async_sessionmaker(self._engine, class_=AsyncSession, expire_on_commit=False)
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    async def open(self) -> None:
        """Create tables and apply additive migrations. Runs once per instance."""
        if self._ready:
            return
        async with self._lock:
            if self._ready:
                return
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
                added = await conn.run_sync(_add_missing_columns)
            if added:
                logger.info("Added columns to %s: %s", CredentialModel.__tablename__, ", ".join(added))
            self._ready = True

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        await self.open()
        async with self._sessions() as session:
            yield session

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessions = None
        self._ready = False

"""Tenant routing: which physical table holds an account's credentials.

Most accounts share the administrative table. An account registered with
its own remote AWS account keeps credentials there, in either the shared
public table of the workspace or a private table of its own.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Optional, Union

from tenantvault.backends.base import Item, StorageBackend
from tenantvault.exceptions import CredentialError
from tenantvault.types import AccountEntry, CloudClass, RouteDecision, TableRef

logger = logging.getLogger(__name__)

ACCOUNT_REGISTRY_PK = "PLATFORM#ACCOUNTS"
ACCOUNT_SK_PREFIX = "ACCOUNT#"


def normalize_cloud_class(raw: Optional[Union[str, CloudClass]]) -> CloudClass:
    """Map free-text cloud labels onto :class:`CloudClass`.

    ``"Private Cloud"`` and ``"private"`` become PRIVATE. Anything else,
    including ``"platform"`` and empty values, is PUBLIC.
    """
    if isinstance(raw, CloudClass):
        return raw
    if raw and "private" in raw.lower():
        return CloudClass.PRIVATE
    return CloudClass.PUBLIC


class AccountDirectory(ABC):
    """Read side of the account registry."""

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[AccountEntry]:
        """Entry for *account_id*, or None when the account is unknown."""


def _first(item: Item, *names: str) -> Optional[str]:
    for name in names:
        value = item.get(name)
        if value:
            return str(value)
    return None


class BackendAccountDirectory(AccountDirectory):
    """Account registry items stored in the administrative table.

    Each account is one item under ``PK = "PLATFORM#ACCOUNTS"``,
    ``SK = "ACCOUNT#<account_id>"``.
    """

    def __init__(self, backend: StorageBackend, admin_table: TableRef) -> None:
        self._backend = backend
        self._table = admin_table

    async def get_account(self, account_id: str) -> Optional[AccountEntry]:
        item = await self._backend.get(
            self._table, {"PK": ACCOUNT_REGISTRY_PK, "SK": f"{ACCOUNT_SK_PREFIX}{account_id}"},
        )
        if item is None:
            return None
        return AccountEntry(
            account_id=account_id,
            remote_account_id=_first(item, "awsAccountId", "aws_account_id", "remoteAccountId", "remote_account_id"),
            cloud_type=_first(item, "cloudType", "cloud_type"),
            subscription_tier=_first(item, "subscriptionTier", "subscription_tier"),
        )


class TenantRouter:
    """Resolves an account to a :class:`RouteDecision`.

    Args:
        directory: Account registry. Without one every account routes to the
            administrative table unless the caller names a remote account.
        cache_ttl_seconds: How long directory answers are reused. 0 disables
            caching.
    """

    def __init__(
        self,
        directory: Optional[AccountDirectory] = None,
        cache_ttl_seconds: float = 0,
    ) -> None:
        self._directory = directory
        self._ttl = cache_ttl_seconds
        self._cache: dict[str, tuple[float, Optional[AccountEntry]]] = {}

    async def _lookup(self, account_id: str) -> Optional[AccountEntry]:
        if self._ttl > 0:
            cached = self._cache.get(account_id)
            if cached and cached[0] > time.monotonic():
                return cached[1]

        try:
            entry = await self._directory.get_account(account_id)
        except Exception as exc:
            # Treated as "no dedicated store"; not cached so the next call retries
            logger.warning("Account directory lookup failed for %s: %s", account_id, exc)
            return None

        if self._ttl > 0:
            self._cache[account_id] = (time.monotonic() + self._ttl, entry)
        return entry

    async def resolve(
        self,
        account_id: Optional[str],
        remote_account_id: Optional[str] = None,
        cloud_class: Optional[Union[str, CloudClass]] = None,
    ) -> RouteDecision:
        explicit_class = normalize_cloud_class(cloud_class) if cloud_class else None

        if remote_account_id:
            return RouteDecision(
                remote_account_id=remote_account_id,
                cloud_class=explicit_class or CloudClass.PUBLIC,
            )
        if not account_id or self._directory is None:
            return RouteDecision(cloud_class=explicit_class or CloudClass.PUBLIC)

        entry = await self._lookup(account_id)
        if entry is None or not entry.remote_account_id:
            logger.debug("Account %s has no dedicated store", account_id)
            return RouteDecision(cloud_class=explicit_class or CloudClass.PUBLIC)

        resolved = explicit_class or normalize_cloud_class(entry.cloud_type or entry.subscription_tier)
        logger.debug("Account %s routes to %s store in %s", account_id, resolved.value, entry.remote_account_id)
        return RouteDecision(remote_account_id=entry.remote_account_id, cloud_class=resolved)

    def clear_cache(self) -> None:
        self._cache.clear()


class TableNaming:
    """Physical table names for the administrative, public and private stores."""

    def __init__(
        self,
        admin_table: str,
        public_template: str = "account-admin-public-{workspace}",
        private_template: str = "account-{account_id}-admin-private-{workspace}",
        workspace: str = "dev",
    ) -> None:
        self.admin_table = admin_table
        self.public_template = public_template
        self.private_template = private_template
        self.workspace = workspace

    @classmethod
    def from_config(cls, cfg) -> "TableNaming":
        return cls(
            admin_table=cfg.resolved_admin_table(),
            public_template=cfg.public_table_template,
            private_template=cfg.private_table_template,
            workspace=cfg.workspace,
        )

    def admin(self) -> TableRef:
        return TableRef(name=self.admin_table)

    def for_route(self, route: RouteDecision, account_id: Optional[str]) -> TableRef:
        if not route.has_dedicated_store:
            return self.admin()
        if route.cloud_class == CloudClass.PRIVATE:
            if not account_id:
                raise CredentialError("A private store requires an account id")
            name = self.private_template.format(account_id=account_id, workspace=self.workspace)
        else:
            name = self.public_template.format(account_id=account_id or "", workspace=self.workspace)
        return TableRef(name=name, remote_account_id=route.remote_account_id, account_id=account_id)

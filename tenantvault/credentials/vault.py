"""CredentialVault — encrypted, tenant-scoped access token storage.

Each token is encrypted with its own derived key and stored under a
partition built from the tenant context it was written with. Readers rarely
have exactly that context (names missing, or extra product/service detail),
so reads walk a ladder of progressively looser keys before falling back to
scans.

Returned :class:`CredentialRecord` objects never carry the ciphertext.
"""

import logging
from datetime import datetime
from typing import Any, Optional, Union

from tenantvault.backends import StorageBackend, create_backend
from tenantvault.backends.base import Item
from tenantvault.credentials.context_key import (
    DEFAULT_CONTEXT_KEY,
    SORT_PREFIX,
    USER_PARTITION_PREFIX,
    build_context_key,
    lookup_variants,
    partition_key,
    sort_key,
    user_partition_key,
)
from tenantvault.credentials.encryption import TokenCipher
from tenantvault.credentials.items import (
    ENTITY_TYPE,
    absent_fields,
    camel,
    item_secret,
    item_value,
    matches_filters,
    newest_first,
    record_from_item,
    redact_item,
    to_item,
)
from tenantvault.credentials.routing import BackendAccountDirectory, TableNaming, TenantRouter
from tenantvault.exceptions import ConstraintViolation, CredentialError, DecryptionError
from tenantvault.types import (
    CONTEXT_FIELDS,
    CloudClass,
    CredentialRecord,
    RouteDecision,
    StorageMode,
    TableRef,
    TenantContext,
    TokenLookup,
    format_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

_OWNER_FIELDS = ("user_id", "account_id", "enterprise_id")

# Never overwritten when a relational write is redirected to an existing row
_IMMUTABLE_ON_UPDATE = frozenset(
    {"id", "SK", "created_at", *_OWNER_FIELDS}
    | {camel(f) for f in ("created_at", *_OWNER_FIELDS)}
)


class CredentialVault:
    """Stores and looks up access tokens for many tenants.

    Args:
        cipher: Encrypts and decrypts the secrets.
        backend: Physical store for credential items.
        router: Decides whether an account has a dedicated store.
        naming: Table names for the administrative and tenant stores.

    Usage:
        async with CredentialVault.from_config() as vault:
            await vault.store_access_token("ghp_...", TenantContext(account_id="A1"))
            token = await vault.get_access_token(TenantContext(account_id="A1"))
    """

    def __init__(
        self,
        cipher: TokenCipher,
        backend: StorageBackend,
        router: Optional[TenantRouter] = None,
        naming: Optional[TableNaming] = None,
    ) -> None:
        self._cipher = cipher
        self._backend = backend
        self._router = router or TenantRouter()
        if naming is None:
            from tenantvault.config import config
            naming = TableNaming.from_config(config)
        self._naming = naming

    @classmethod
    def from_config(cls, cfg=None) -> "CredentialVault":
        """Wire a vault from :class:`~tenantvault.config.VaultConfig`.

        Raises:
            ConfigurationError: missing master key or filesystem storage mode.
        """
        if cfg is None:
            from tenantvault.config import config as cfg

        cipher = TokenCipher(cfg.master_key, iterations=cfg.kdf_iterations)
        backend = create_backend(cfg)
        naming = TableNaming.from_config(cfg)
        directory = None
        # The account registry only exists in the key/value admin table
        if StorageMode(cfg.storage_mode) == StorageMode.KEYVALUE:
            directory = BackendAccountDirectory(backend, naming.admin())
        router = TenantRouter(directory, cache_ttl_seconds=cfg.directory_cache_ttl)
        return cls(cipher, backend, router, naming)

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    async def open(self) -> None:
        await self._backend.open()

    async def close(self) -> None:
        await self._backend.close()

    async def __aenter__(self) -> "CredentialVault":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _resolve_table(
        self,
        account_id: Optional[str],
        remote_account_id: Optional[str],
        cloud_class: Optional[Union[str, CloudClass]],
    ) -> tuple[RouteDecision, TableRef]:
        route = await self._router.resolve(account_id, remote_account_id, cloud_class)
        return route, self._naming.for_route(route, account_id)

    def _open_item(self, item: Item, source: str) -> Optional[str]:
        """Plaintext token of *item*, or None when it cannot be decrypted."""
        secret = item_secret(item)
        if not secret:
            logger.warning("[Vault] Item from %s has no secret: %s", source, redact_item(item))
            return None
        try:
            return self._cipher.decrypt(secret).token
        except DecryptionError as exc:
            logger.warning("[Vault] Could not decrypt item %s from %s: %s",
                           item_value(item, "id"), source, exc)
            return None

    def _open_newest(
        self, items: list[Item], filters: dict[str, str], source: str,
    ) -> Optional[tuple[Item, str]]:
        candidates = [i for i in items if matches_filters(i, filters)]
        if not candidates:
            return None
        newest = newest_first(candidates)[0]
        token = self._open_item(newest, source)
        return (newest, token) if token is not None else None

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def store_access_token(
        self,
        access_token: str,
        context: TenantContext,
        *,
        user_id: Optional[str] = None,
        credential_name: Optional[str] = None,
        connector_name: Optional[str] = None,
        token_type: str = "bearer",
        scope: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        remote_account_id: Optional[str] = None,
        cloud_class: Optional[Union[str, CloudClass]] = None,
    ) -> CredentialRecord:
        """Encrypt *access_token* and store it under *context*.

        Returns the stored record with ``encrypted_secret`` blanked.

        Raises:
            CredentialError: empty token, or a private route without an
                account id.
            BackendError: the store rejected the write.
        """
        secret = self._cipher.encrypt(access_token)
        route, table = await self._resolve_table(context.account_id, remote_account_id, cloud_class)

        context_key = build_context_key(context)
        if context_key == DEFAULT_CONTEXT_KEY:
            logger.warning("[Vault] Storing token without tenant context under %s", DEFAULT_CONTEXT_KEY)

        now = utc_now()
        record = CredentialRecord(
            context=context,
            user_id=user_id or None,
            credential_name=credential_name or None,
            connector_name=connector_name or None,
            encrypted_secret=secret.serialize(),
            token_type=token_type or "bearer",
            scope=scope,
            cloud_class=route.cloud_class,
            remote_account_id=route.remote_account_id,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )

        if record.user_id and self._backend.supports_user_index_records:
            await self._backend.put(
                table, to_item(record, user_partition_key(record.user_id), sort_key(record.id)),
            )

        item = to_item(record, partition_key(context_key), sort_key(record.id))
        try:
            stored = await self._backend.put(table, item)
        except ConstraintViolation:
            owner = {f: item_value(item, f) for f in _OWNER_FIELDS}
            logger.info("[Vault] Credential exists for user %s in account %s; updating in place",
                        owner["user_id"], owner["account_id"])
            # The new record replaces the old one, so fields it leaves out are cleared
            replacement = {**absent_fields(item), **item}
            changes = {k: v for k, v in replacement.items() if k not in _IMMUTABLE_ON_UPDATE}
            stored = await self._backend.update(table, owner, changes)
            if stored is None:
                raise

        logger.info("[Vault] Stored token %s in %s (context=%s, cloud=%s)",
                    item_value(stored, "id"), table.name, context_key, route.cloud_class.value)
        return record_from_item(stored)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def _read_ladder(
        self, context: TenantContext, table: TableRef,
    ) -> Optional[tuple[Item, str]]:
        filters = context.filters()
        variants = lookup_variants(context)

        for context_key in variants:
            logger.debug("[Vault] Trying %s in %s", context_key, table.name)
            items = await self._backend.query_by_key_prefix(table, partition_key(context_key), SORT_PREFIX)
            found = self._open_newest(items, filters, context_key)
            if found:
                logger.info("[Vault] Found token under %s", context_key)
                return found

        if context.account_id and context.enterprise_id:
            logger.debug("[Vault] Scanning %s for account %s", table.name, context.account_id)
            items = await self._backend.scan_by_attribute(table, {"entity_type": ENTITY_TYPE})
            found = self._open_newest(items, filters, "scan")
            if found:
                logger.info("[Vault] Found token by scan for account %s", context.account_id)
                return found

        admin = self._naming.admin()
        if table == admin and DEFAULT_CONTEXT_KEY in variants:
            return None
        items = await self._backend.query_by_key_prefix(admin, partition_key(DEFAULT_CONTEXT_KEY), SORT_PREFIX)
        found = self._open_newest(items, {}, DEFAULT_CONTEXT_KEY)
        if found:
            logger.info("[Vault] Falling back to %s token", DEFAULT_CONTEXT_KEY)
        return found

    async def get_access_token(
        self,
        context: TenantContext,
        *,
        remote_account_id: Optional[str] = None,
        cloud_class: Optional[Union[str, CloudClass]] = None,
    ) -> Optional[str]:
        """Newest decryptable token for *context*, or None.

        Tries, in order: each key from :func:`lookup_variants` (items must
        match every supplied account/enterprise/workstream/product/service
        value), a scan of the tenant table when both account and enterprise
        ids are known, and finally the context-less ``DEFAULT`` partition of
        the administrative table.

        Raises:
            BackendError: the store failed at any step.
        """
        _, table = await self._resolve_table(context.account_id, remote_account_id, cloud_class)
        found = await self._read_ladder(context, table)
        if found is None:
            logger.info("[Vault] No token found for account %s", context.account_id)
            return None
        return found[1]

    async def get_access_token_by_name(
        self,
        *,
        account_id: str,
        enterprise_id: str,
        credential_name: Optional[str] = None,
        connector_name: Optional[str] = None,
        account_name: Optional[str] = None,
        enterprise_name: Optional[str] = None,
        workstream: Optional[str] = None,
        product: Optional[str] = None,
        service: Optional[str] = None,
        remote_account_id: Optional[str] = None,
        cloud_class: Optional[Union[str, CloudClass]] = None,
    ) -> Optional[TokenLookup]:
        """Token stored under a credential or connector name.

        Falls back to :meth:`get_access_token` for the same context when no
        named credential decrypts.

        Raises:
            CredentialError: neither name given.
        """
        if not credential_name and not connector_name:
            raise CredentialError("Either credential_name or connector_name is required")

        context = TenantContext(
            account_id=account_id,
            account_name=account_name,
            enterprise_id=enterprise_id,
            enterprise_name=enterprise_name,
            workstream=workstream,
            product=product,
            service=service,
        )
        _, table = await self._resolve_table(context.account_id, remote_account_id, cloud_class)

        def named(item: Item) -> bool:
            return bool(
                (credential_name and item_value(item, "credential_name") == credential_name)
                or (connector_name and item_value(item, "connector_name") == connector_name)
            )

        items = await self._backend.scan_by_attribute(table, {"entity_type": ENTITY_TYPE})
        owner = {"account_id": context.account_id, "enterprise_id": context.enterprise_id}
        found = self._open_newest([i for i in items if named(i)], owner, "name scan")
        if found:
            item, token = found
            expires_at = item_value(item, "expires_at")
            if isinstance(expires_at, datetime):
                expires_at = format_timestamp(expires_at)
            logger.info("[Vault] Found token %s by name", item_value(item, "id"))
            return TokenLookup(
                access_token=token,
                token_type=item_value(item, "token_type") or "bearer",
                scope=item_value(item, "scope"),
                expires_at=expires_at,
            )

        logger.debug("[Vault] No named credential %s/%s; trying context lookup",
                     credential_name, connector_name)
        found = await self._read_ladder(context, table)
        if found is None:
            return None
        return TokenLookup(access_token=found[1], token_type="bearer")

    async def get_access_token_for_user(
        self,
        user_id: str,
        *,
        account_id: Optional[str] = None,
        remote_account_id: Optional[str] = None,
        cloud_class: Optional[Union[str, CloudClass]] = None,
    ) -> Optional[str]:
        """Newest decryptable token stored for *user_id*, or None."""
        _, table = await self._resolve_table(account_id, remote_account_id, cloud_class)
        if self._backend.supports_user_index_records:
            items = await self._backend.query_by_key_prefix(table, user_partition_key(user_id), SORT_PREFIX)
        else:
            items = await self._backend.scan_by_attribute(table, {"user_id": user_id})
        found = self._open_newest(items, {}, user_partition_key(user_id))
        return found[1] if found else None

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def get_credential(
        self,
        record_id: str,
        context: TenantContext,
        *,
        remote_account_id: Optional[str] = None,
        cloud_class: Optional[Union[str, CloudClass]] = None,
    ) -> Optional[CredentialRecord]:
        """Metadata of one record stored under exactly *context*."""
        _, table = await self._resolve_table(context.account_id, remote_account_id, cloud_class)
        item = await self._backend.get(
            table, {"PK": partition_key(build_context_key(context)), "SK": sort_key(record_id)},
        )
        return record_from_item(item) if item else None

    async def list_credentials(
        self,
        context: TenantContext,
        *,
        remote_account_id: Optional[str] = None,
        cloud_class: Optional[Union[str, CloudClass]] = None,
    ) -> list[CredentialRecord]:
        """Metadata of every record matching all supplied context fields, newest first."""
        _, table = await self._resolve_table(context.account_id, remote_account_id, cloud_class)
        wanted: dict[str, Any] = {f: getattr(context, f) for f in CONTEXT_FIELDS if getattr(context, f)}
        items = await self._backend.scan_by_attribute(table, {"entity_type": ENTITY_TYPE})
        primary = [
            i for i in items
            if not str(i.get("PK", "")).startswith(USER_PARTITION_PREFIX) and matches_filters(i, wanted)
        ]
        return [record_from_item(i) for i in newest_first(primary)]

    async def delete_access_token(
        self,
        record_id: str,
        context: TenantContext,
        *,
        user_id: Optional[str] = None,
        remote_account_id: Optional[str] = None,
        cloud_class: Optional[Union[str, CloudClass]] = None,
    ) -> bool:
        """Remove a record and, when *user_id* is given, its user-scoped copy.

        Returns ``True`` if the primary item existed.
        """
        _, table = await self._resolve_table(context.account_id, remote_account_id, cloud_class)
        deleted = await self._backend.delete(
            table, {"PK": partition_key(build_context_key(context)), "SK": sort_key(record_id)},
        )
        if user_id and self._backend.supports_user_index_records:
            await self._backend.delete(table, {"PK": user_partition_key(user_id), "SK": sort_key(record_id)})
        logger.info("[Vault] Deleted token %s from %s: %s", record_id, table.name, deleted)
        return deleted

"""Conversion between :class:`CredentialRecord` and stored items.

Items carry every attribute twice, snake_case and camelCase, because both
spellings exist in tables shared with other services. Readers take whichever
is present.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from tenantvault.backends.base import Item
from tenantvault.types import (
    CONTEXT_FIELDS,
    CloudClass,
    CredentialRecord,
    TenantContext,
    format_timestamp,
    parse_timestamp,
)

ENTITY_TYPE = "CREDENTIAL"

_SECRET_ATTRS = ("encrypted_secret", "encryptedSecret", "access_token", "accessToken")

# Masked by redact_item() before an item is logged
_SENSITIVE_KEYS: frozenset[str] = frozenset({
    *_SECRET_ATTRS,
    "token",
    "refresh_token",
    "refreshToken",
    "secret",
    "client_secret",
})

_RECORD_FIELDS = (
    "id",
    "user_id",
    *CONTEXT_FIELDS,
    "credential_name",
    "connector_name",
    "encrypted_secret",
    "token_type",
    "scope",
    "cloud_class",
    "remote_account_id",
    "created_at",
    "updated_at",
    "expires_at",
    "entity_type",
)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _store_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, CloudClass):
        return value.value
    return value


def to_item(record: CredentialRecord, partition_key: str, sort_key: str) -> Item:
    """Item for *record* under the given keys. Absent values are omitted."""
    values = {
        "id": record.id,
        "user_id": record.user_id,
        **{f: getattr(record.context, f) for f in CONTEXT_FIELDS},
        "credential_name": record.credential_name,
        "connector_name": record.connector_name,
        "encrypted_secret": record.encrypted_secret,
        "token_type": record.token_type,
        "scope": record.scope,
        "cloud_class": record.cloud_class,
        "remote_account_id": record.remote_account_id,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
        "expires_at": record.expires_at,
        "entity_type": ENTITY_TYPE,
    }
    item: Item = {"PK": partition_key, "SK": sort_key}
    for name in _RECORD_FIELDS:
        value = values[name]
        if value is None:
            continue
        item[name] = _store_value(value)
        item[camel(name)] = item[name]
    return item


def absent_fields(item: Mapping[str, Any]) -> dict[str, None]:
    """Explicit ``None`` for every record attribute *item* leaves out."""
    cleared: dict[str, None] = {}
    for name in _RECORD_FIELDS:
        if item.get(name) is None:
            cleared[name] = cleared[camel(name)] = None
    return cleared


def item_value(item: Mapping[str, Any], field: str) -> Any:
    value = item.get(field)
    if value is None:
        value = item.get(camel(field))
    return value


def item_secret(item: Mapping[str, Any]) -> Optional[str]:
    """Serialized secret of *item*, including items that predate the rename."""
    for name in _SECRET_ATTRS:
        if item.get(name):
            return item[name]
    return None


def item_created_at(item: Mapping[str, Any]) -> datetime:
    return parse_timestamp(item_value(item, "created_at")) or _EPOCH


def newest_first(items: Iterable[Mapping[str, Any]]) -> list:
    return sorted(items, key=item_created_at, reverse=True)


def matches_filters(item: Mapping[str, Any], filters: Mapping[str, str]) -> bool:
    """True when every supplied filter equals the stored value exactly."""
    return all(item_value(item, field) == value for field, value in filters.items())


def record_from_item(item: Mapping[str, Any]) -> CredentialRecord:
    """Redacted :class:`CredentialRecord` for a stored item."""
    raw_class = item_value(item, "cloud_class")
    try:
        cloud_class = CloudClass(raw_class) if raw_class else CloudClass.PUBLIC
    except ValueError:
        cloud_class = CloudClass.PUBLIC
    return CredentialRecord(
        id=item_value(item, "id") or "",
        context=TenantContext(**{f: item_value(item, f) for f in CONTEXT_FIELDS}),
        user_id=item_value(item, "user_id"),
        credential_name=item_value(item, "credential_name"),
        connector_name=item_value(item, "connector_name"),
        token_type=item_value(item, "token_type") or "bearer",
        scope=item_value(item, "scope"),
        cloud_class=cloud_class,
        remote_account_id=item_value(item, "remote_account_id"),
        created_at=item_created_at(item),
        updated_at=parse_timestamp(item_value(item, "updated_at")) or item_created_at(item),
        expires_at=parse_timestamp(item_value(item, "expires_at")),
    )


def redact_item(item: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of *item* with secret attributes replaced by ``'***'``."""
    return {k: "***" if k in _SENSITIVE_KEYS else v for k, v in item.items()}

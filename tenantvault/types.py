"""All shared types, enums, and type aliases. Everything imports from here."""

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ── Enums ──────────────────────────────────────────────────────────────

class StorageMode(str, Enum):
    KEYVALUE = "keyvalue"
    RELATIONAL = "relational"
    FILESYSTEM = "filesystem"  # CRUD-only mode, never valid for token storage

class CloudClass(str, Enum):
    PUBLIC = "public"    # tenant shares the public per-workspace table
    PRIVATE = "private"  # tenant has a dedicated table


# ── Tenant context ─────────────────────────────────────────────────────

CONTEXT_FIELDS: tuple[str, ...] = (
    "enterprise_id",
    "enterprise_name",
    "account_id",
    "account_name",
    "workstream",
    "product",
    "service",
)

# Fields a read compares against stored items by exact equality
FILTER_FIELDS: tuple[str, ...] = ("account_id", "enterprise_id", "workstream", "product", "service")


class TenantContext(BaseModel):
    """Optional tenant coordinates a credential is stored under.

    An empty string is the same as an absent field.
    """
    model_config = ConfigDict(frozen=True)

    enterprise_id: Optional[str] = None
    enterprise_name: Optional[str] = None
    account_id: Optional[str] = None
    account_name: Optional[str] = None
    workstream: Optional[str] = None
    product: Optional[str] = None
    service: Optional[str] = None

    @field_validator(*CONTEXT_FIELDS, mode="before")
    @classmethod
    def _blank_is_absent(cls, value):
        if value is None:
            return None
        value = str(value)
        return value if value else None

    def without(self, *fields: str) -> "TenantContext":
        """Copy of this context with *fields* removed."""
        return self.model_copy(update={f: None for f in fields})

    def filters(self) -> dict[str, str]:
        """Supplied subset of the fields reads match exactly."""
        return {f: getattr(self, f) for f in FILTER_FIELDS if getattr(self, f)}

    @property
    def is_empty(self) -> bool:
        return not any(getattr(self, f) for f in CONTEXT_FIELDS)


# ── Encryption ─────────────────────────────────────────────────────────

class EncryptedSecret(BaseModel):
    """Ciphertext plus the material needed to re-derive its key.

    Serialized under the attribute names already present in stored
    records: ``encrypted``, ``iv``, ``salt``, ``timestamp``.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    ciphertext_hex: str = Field(alias="encrypted")
    iv_hex: str = Field(alias="iv")
    salt_hex: str = Field(alias="salt")
    timestamp: str

    def serialize(self) -> str:
        return json.dumps(self.model_dump(by_alias=True))

    @classmethod
    def parse(cls, raw: str) -> "EncryptedSecret":
        """Inverse of :meth:`serialize`. Raises ``ValueError`` on malformed input."""
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("Encrypted secret must be a JSON object")
        return cls.model_validate(data)


class DecryptedToken(BaseModel):
    token: str
    timestamp: str


# ── Routing ────────────────────────────────────────────────────────────

class RouteDecision(BaseModel):
    """Which physical store holds a tenant's credentials."""
    model_config = ConfigDict(frozen=True)

    remote_account_id: Optional[str] = None
    cloud_class: CloudClass = CloudClass.PUBLIC

    @property
    def has_dedicated_store(self) -> bool:
        return bool(self.remote_account_id)


class TableRef(BaseModel):
    """A table plus the remote account that owns it (None = local account)."""
    model_config = ConfigDict(frozen=True)

    name: str
    remote_account_id: Optional[str] = None
    account_id: Optional[str] = None


class AccountEntry(BaseModel):
    """What the account directory knows about one account."""
    account_id: str
    remote_account_id: Optional[str] = None
    cloud_type: Optional[str] = None           # free text, e.g. "Private Cloud"
    subscription_tier: Optional[str] = None


# ── Credentials ────────────────────────────────────────────────────────

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value) -> Optional[datetime]:
    """Best-effort parse of a stored timestamp. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CredentialRecord(BaseModel):
    """One stored secret for one tenant context.

    ``encrypted_secret`` is always ``""`` on records handed back to callers.
    ``expires_at`` is informational; the vault never enforces it.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    context: TenantContext = Field(default_factory=TenantContext)
    user_id: Optional[str] = None
    credential_name: Optional[str] = None
    connector_name: Optional[str] = None
    encrypted_secret: str = ""
    token_type: str = "bearer"
    scope: Optional[str] = None
    cloud_class: CloudClass = CloudClass.PUBLIC
    remote_account_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    expires_at: Optional[datetime] = None


class TokenLookup(BaseModel):
    """Response of a lookup by credential or connector name."""
    access_token: str
    token_type: str = "bearer"
    scope: Optional[str] = None
    expires_at: Optional[str] = None

"""ORM model for the relational credential store.

One table, ``oauth_credentials``. ``partition_key`` / ``sort_key`` mirror the
key/value item keys so both backends serve the same item contract.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, String, Text, and_
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class CredentialModel(Base):
    __tablename__ = "oauth_credentials"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    partition_key = Column(String(1024), nullable=True)
    sort_key = Column(String(255), nullable=True)
    user_id = Column(String(255), nullable=True)
    account_id = Column(String(255), nullable=True)
    account_name = Column(String(255), nullable=True)
    enterprise_id = Column(String(255), nullable=True)
    enterprise_name = Column(String(255), nullable=True)
    workstream = Column(String(255), nullable=True)
    product = Column(String(255), nullable=True)
    service = Column(String(255), nullable=True)
    credential_name = Column(String(255), nullable=True)
    connector_name = Column(String(255), nullable=True)
    encrypted_secret = Column("access_token", Text, nullable=False)  # serialized EncryptedSecret JSON
    token_type = Column(String(50), default="bearer")
    scope = Column(Text, nullable=True)
    cloud_class = Column(String(20), nullable=True)
    remote_account_id = Column(String(64), nullable=True)
    entity_type = Column(String(50), default="CREDENTIAL")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    expires_at = Column(DateTime(timezone=True), nullable=True)


OWNER_COLUMNS = (CredentialModel.user_id, CredentialModel.account_id, CredentialModel.enterprise_id)

# Uniqueness only applies when the whole owner triple is known
OWNER_COMPLETE = and_(*(c.is_not(None) for c in OWNER_COLUMNS))

Index(
    "uq_oauth_credentials_owner",
    *OWNER_COLUMNS,
    unique=True,
    postgresql_where=OWNER_COMPLETE,
    sqlite_where=OWNER_COMPLETE,
)
Index("ix_oauth_credentials_owner", *OWNER_COLUMNS)
Index("ix_oauth_credentials_partition", CredentialModel.partition_key, CredentialModel.sort_key)
Index(
    "ix_oauth_credentials_credential",
    CredentialModel.credential_name, CredentialModel.account_id, CredentialModel.enterprise_id,
)
Index(
    "ix_oauth_credentials_connector",
    CredentialModel.connector_name, CredentialModel.account_id, CredentialModel.enterprise_id,
)

# Columns added after the first release; pre-existing tables get them on open
ADDITIVE_COLUMNS: tuple[str, ...] = (
    "product",
    "service",
    "credential_name",
    "connector_name",
    "partition_key",
    "sort_key",
    "cloud_class",
    "remote_account_id",
    "entity_type",
)

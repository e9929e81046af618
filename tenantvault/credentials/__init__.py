"""Credential vault — encrypted, tenant-routed access token storage."""

from tenantvault.credentials.encryption import TokenCipher
from tenantvault.credentials.routing import (
    AccountDirectory,
    BackendAccountDirectory,
    TableNaming,
    TenantRouter,
    normalize_cloud_class,
)
from tenantvault.credentials.vault import CredentialVault

__all__ = [
    "TokenCipher",
    "AccountDirectory",
    "BackendAccountDirectory",
    "TableNaming",
    "TenantRouter",
    "normalize_cloud_class",
    "CredentialVault",
]

"""tenantvault — multi-tenant encrypted credential vault.

Usage:
    from tenantvault import CredentialVault, TenantContext

    async with CredentialVault.from_config() as vault:
        ctx = TenantContext(enterprise_id="E1", account_id="A1")
        await vault.store_access_token("ghp_abc123", ctx, user_id="u-1")
        token = await vault.get_access_token(ctx)
"""

from tenantvault.types import (
    TenantContext, EncryptedSecret, DecryptedToken, CredentialRecord,
    RouteDecision, TableRef, TokenLookup, AccountEntry, CloudClass, StorageMode,
)
from tenantvault.exceptions import (
    VaultError, ConfigurationError, CredentialError, DecryptionError,
    BackendError, ConstraintViolation,
)
from tenantvault.credentials import CredentialVault, TokenCipher
from tenantvault.version import __version__

__all__ = [
    "TenantContext", "EncryptedSecret", "DecryptedToken", "CredentialRecord",
    "RouteDecision", "TableRef", "TokenLookup", "AccountEntry", "CloudClass", "StorageMode",
    "VaultError", "ConfigurationError", "CredentialError", "DecryptionError",
    "BackendError", "ConstraintViolation",
    "CredentialVault", "TokenCipher",
    "__version__",
]

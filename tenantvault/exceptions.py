"""Typed exception hierarchy. Every error the vault can raise."""


class VaultError(Exception):
    """Base exception for all vault errors."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(VaultError):
    """Vault is misconfigured (missing master key, unsupported backend).

    Raised before any I/O is attempted.
    """
    pass


class CredentialError(VaultError):
    """Credential input was rejected or a credential could not be used."""
    def __init__(self, message: str, credential_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.credential_id = credential_id


class DecryptionError(CredentialError):
    """Stored secret is malformed or was encrypted under a different master key."""
    pass


class BackendError(VaultError):
    """The active storage backend failed (network, throttling, driver error)."""
    def __init__(self, message: str, table: str = "", operation: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.table = table
        self.operation = operation


class ConstraintViolation(BackendError):
    """A relational uniqueness constraint rejected a write."""
    pass

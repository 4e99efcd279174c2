"""Exception hierarchy for the vault engine.

Cryptographic and persistence errors always propagate to the caller.
Categorization errors (``ProviderError``, ``ClassificationValidationError``)
are caught inside the pipeline and degraded to an error string.
"""
from typing import Any, Optional


class VaultError(Exception):
    """Base exception for all vault errors.

    Attributes:
        message: Short, user-facing description.
        details: Additional context for logging (never key material).
    """

    message = "vault error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        if message is not None:
            self.message = message
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(VaultError):
    """Wrong secret at unlock. No key material is produced.

    The message is intentionally generic: it never says whether the
    identity or the secret was wrong.
    """

    message = "could not unlock"

    def __init__(self, details: Optional[dict[str, Any]] = None):
        super().__init__(None, details)


class CorruptionError(VaultError):
    """Decrypted bytes are not valid structured data."""

    message = "vault data is corrupted"


class VaultNotFoundError(VaultError):
    """Neither the remote backup nor the local cache holds a vault."""

    message = "no vault found"


class VaultLockedError(VaultError):
    """Operation attempted with a destroyed data key or a locked session."""

    message = "vault is locked"


class StorageError(VaultError):
    """Local durable storage could not be read or written."""

    message = "local vault storage failed"


class RemoteSyncError(VaultError):
    """Push or pull against the remote backup store failed."""

    message = "remote sync failed"


class ProviderError(VaultError):
    """Network, HTTP or configuration failure calling an AI provider."""

    message = "AI provider call failed"


class ClassificationValidationError(VaultError):
    """A single AI classification entry is malformed or out of domain."""

    message = "invalid classification entry"


class BankLinkError(VaultError):
    """The bank-link collaborator failed or returned malformed data."""

    message = "bank link request failed"

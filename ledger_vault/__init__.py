"""Ledger Vault.

Client-side encrypted personal-finance vault: a password- or identity-
derived key envelope, month-sharded AES-GCM transaction storage, an
encrypted metadata blob, local and remote persistence, and a two-tier
(rules, then AI) transaction categorizer.
"""
from .version import (
    __title__,
    __description__,
    __version__,
    __author__,
    __author_email__,
    __license__,
)
from .exceptions import (
    AuthenticationError,
    CorruptionError,
    VaultError,
    VaultLockedError,
    VaultNotFoundError,
)
from .session import VaultSession
from .vault import VaultConfig, VaultStore, identity_secret

__all__ = [
    "AuthenticationError",
    "CorruptionError",
    "VaultError",
    "VaultLockedError",
    "VaultNotFoundError",
    "VaultSession",
    "VaultConfig",
    "VaultStore",
    "identity_secret",
]

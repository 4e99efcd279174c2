"""Vault — Client-side encryption and persistence of the finance record.

Security Note (Threat Model):
    The data key and all plaintext live in process memory only while a
    session is unlocked. A memory dump of the process during that window
    exposes them. The durable record (local file and remote backup) holds
    nothing but the wrapped key, KDF parameters and AES-GCM ciphertext, so
    the backup operator cannot read vault contents. Losing the secret means
    losing the vault: there is no recovery path.
"""

from .config import VaultConfig
from .crypto import DataKey, KDF_ITERATIONS
from .envelope import create_envelope, identity_secret, unlock_envelope
from .codec import (
    decrypt_all_transactions,
    decrypt_metadata,
    encrypt_metadata,
    rebuild_shards,
)
from .remote import InMemoryBackupStore, RemoteBackupStore, SupabaseBackupStore
from .storage import LocalVaultStorage
from .store import VaultStore

__all__ = [
    "VaultConfig",
    "DataKey",
    "KDF_ITERATIONS",
    "create_envelope",
    "identity_secret",
    "unlock_envelope",
    "decrypt_all_transactions",
    "decrypt_metadata",
    "encrypt_metadata",
    "rebuild_shards",
    "InMemoryBackupStore",
    "RemoteBackupStore",
    "SupabaseBackupStore",
    "LocalVaultStorage",
    "VaultStore",
]

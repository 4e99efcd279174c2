"""
VaultStore — Local persistence and remote reconciliation of the encrypted record.

Provides:
- ``persist_local(vault, metadata, data_key)``: encrypt metadata and write
  only ``{envelope, shards, encryptedMetadata}`` to disk
- ``hydrate(vault, data_key)``: decrypt metadata (or pass legacy plaintext through)
- ``push_remote(vault)`` / ``pull_remote(owner_id)``: opaque backup sync
- ``load(owner_id)``: unlock ordering: remote, then local, else ``VaultNotFoundError``

Security Note:
    ``persist_local`` is the enforcement point of the never-plaintext-on-disk
    invariant: the record is built from ciphertext fields only, whatever the
    in-memory vault carries.
"""
import logging
from typing import Optional

from ..exceptions import RemoteSyncError, VaultNotFoundError
from ..models import EncryptedVault, VaultMetadata
from .codec import decrypt_metadata, encrypt_metadata
from .config import VaultConfig
from .crypto import DataKey
from .migration import normalize_record
from .remote import RemoteBackupStore, SupabaseBackupStore
from .storage import LocalVaultStorage

logger = logging.getLogger("ledger_vault.vault")


class VaultStore:
    """Owns the on-disk format and the remote backup of one device's vault."""

    def __init__(
        self,
        local: LocalVaultStorage,
        remote: Optional[RemoteBackupStore] = None,
    ):
        self.local = local
        self.remote = remote

    @classmethod
    def from_config(
        cls,
        config: VaultConfig,
        access_token: Optional[str] = None,
    ) -> "VaultStore":
        remote = None
        if config.remote_enabled:
            remote = SupabaseBackupStore(
                config.remote_url,
                config.remote_api_key,
                access_token=access_token,
                timeout=config.http_timeout,
            )
        return cls(LocalVaultStorage(config.storage_dir), remote)

    # ------------------------------------------------------------------
    # Local
    # ------------------------------------------------------------------

    def seal(
        self,
        vault: EncryptedVault,
        metadata: VaultMetadata,
        data_key: DataKey,
    ) -> EncryptedVault:
        """Return a current-shape vault with freshly encrypted metadata."""
        return EncryptedVault(
            envelope=vault.envelope,
            shards=list(vault.shards),
            encrypted_metadata=encrypt_metadata(data_key, metadata),
        )

    def persist_local(
        self,
        vault: EncryptedVault,
        metadata: VaultMetadata,
        data_key: DataKey,
    ) -> EncryptedVault:
        """Encrypt ``metadata`` and durably write the sealed record.

        Returns:
            The sealed vault that was written.
        """
        sealed = self.seal(vault, metadata, data_key)
        self.local.write_record(sealed.to_record())
        if vault.is_legacy:
            logger.info("Upgraded legacy vault for owner=%s", vault.owner_id)
        return sealed

    def load_local(self, owner_id: Optional[str] = None) -> Optional[EncryptedVault]:
        raw = self.local.load_record()
        if raw is None:
            return None
        vault = normalize_record(raw)
        if owner_id is not None and vault.owner_id != owner_id:
            logger.warning(
                "Local vault belongs to another owner; ignoring it for owner=%s",
                owner_id,
            )
            return None
        return vault

    def hydrate(self, vault: EncryptedVault, data_key: DataKey) -> VaultMetadata:
        """Return plaintext metadata for an unlocked vault.

        Raises:
            CorruptionError: If the metadata blob does not decrypt.
        """
        if vault.encrypted_metadata is not None:
            return decrypt_metadata(data_key, vault.encrypted_metadata)
        return vault.legacy_metadata or VaultMetadata()

    # ------------------------------------------------------------------
    # Remote
    # ------------------------------------------------------------------

    async def push_remote(self, vault: EncryptedVault) -> bool:
        """Push the sealed record to the backup store.

        Returns:
            False if no backup store is configured.

        Raises:
            RemoteSyncError: On transport failure.
        """
        if self.remote is None:
            return False
        if vault.is_legacy:
            raise ValueError("Refusing to push a record without encrypted metadata")
        await self.remote.push(vault.owner_id, vault.to_record())
        return True

    async def pull_remote(self, owner_id: str) -> Optional[EncryptedVault]:
        if self.remote is None:
            return None
        raw = await self.remote.pull(owner_id)
        if raw is None:
            return None
        return normalize_record(raw)

    async def delete_remote(self, owner_id: str) -> None:
        if self.remote is not None:
            await self.remote.delete(owner_id)

    async def load(self, owner_id: str) -> EncryptedVault:
        """Find the vault for a returning session.

        The remote backup is the source of truth when reachable; the local
        cache is the offline fallback.

        Raises:
            VaultNotFoundError: If neither copy exists.
        """
        try:
            vault = await self.pull_remote(owner_id)
        except RemoteSyncError as err:
            logger.warning(
                "Remote pull failed for owner=%s, using local cache: %s",
                owner_id, err.details,
            )
            vault = None
        if vault is None:
            vault = self.load_local(owner_id)
        if vault is None:
            raise VaultNotFoundError(details={"owner_id": owner_id})
        return vault

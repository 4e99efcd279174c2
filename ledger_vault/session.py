"""
VaultSession — The unlocked, in-memory state of one vault.

A session owns the live ``DataKey``, the sealed ``EncryptedVault`` last
written to disk, the plaintext metadata and the decrypted transactions.
Nothing here is ever serialized; ``lock()`` destroys the key and drops all
plaintext.

All changes go through ``mutate()``::

    async with session.mutate() as draft:
        draft.metadata.family_members.append(member)
        draft.transactions.append(tx)

The draft is a deep copy. On a clean exit it is validated, shards and
metadata are re-encrypted in full, the sealed record is written locally and
only then swapped in; finally it is pushed to the remote backup. An exception
inside the block discards the draft and leaves the session untouched.
"""
import uuid
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from pydantic import ValidationError

from .defaults import default_metadata
from .exceptions import CorruptionError, RemoteSyncError, VaultError, VaultLockedError
from .models import EncryptedVault, Transaction, UserProfile, VaultMetadata
from .vault.codec import decrypt_all_transactions, rebuild_shards
from .vault.crypto import DataKey
from .vault.envelope import create_envelope, unlock_envelope
from .vault.store import VaultStore

logger = logging.getLogger("ledger_vault.vault")


class VaultDraft:
    """Mutable working copy handed out by ``VaultSession.mutate()``."""

    __slots__ = ("metadata", "transactions")

    def __init__(self, metadata: VaultMetadata, transactions: list[Transaction]):
        self.metadata = metadata
        self.transactions = transactions

    def validate(self) -> None:
        """Re-validate the draft before it is sealed.

        Raises:
            ValueError: If transaction ids repeat, a transaction points at an
                unknown category, or a model was given bad values.
        """
        try:
            self.metadata = VaultMetadata.model_validate(
                self.metadata.model_dump(),
            )
        except ValidationError as err:
            raise ValueError(f"Invalid vault metadata: {err}") from err
        category_ids = self.metadata.category_ids()
        seen: set[str] = set()
        for tx in self.transactions:
            if tx.id in seen:
                raise ValueError(f"Duplicate transaction id in draft: {tx.id}")
            if tx.category_id not in category_ids:
                raise ValueError(
                    f"Transaction {tx.id} has unknown category: {tx.category_id}"
                )
            seen.add(tx.id)


class VaultSession:
    """Unlocked vault bound to one owner for the lifetime of a sign-in."""

    def __init__(
        self,
        store: VaultStore,
        vault: EncryptedVault,
        metadata: VaultMetadata,
        transactions: list[Transaction],
        data_key: DataKey,
        profile: Optional[UserProfile] = None,
    ):
        self._id_ = uuid.uuid4().hex
        self._store = store
        self._vault = vault
        self._metadata = metadata
        self._transactions = transactions
        self._key: Optional[DataKey] = data_key
        self._profile = profile
        self._mutating = False
        self._created = int(datetime.now(timezone.utc).timestamp())
        self.sync_error: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f'<Vault-Session [owner:{self.owner_id}, locked:{self.locked}, '
            f'created:{self.created}] transactions={len(self._transactions)}>'
        )

    # --- Factories ---

    @classmethod
    async def create(
        cls,
        store: VaultStore,
        profile: UserProfile,
        secret: str,
        iterations: Optional[int] = None,
    ) -> "VaultSession":
        """Create a brand-new vault for ``profile`` protected by ``secret``.

        Args:
            store: Where the sealed record is persisted and pushed.
            profile: Identity data; ``user_id`` becomes the vault owner id.
            secret: Password, or ``identity_secret(subject, pin)``.
            iterations: PBKDF2 iterations for the new envelope.

        Returns:
            The unlocked session for the new vault.
        """
        envelope, data_key = create_envelope(profile.user_id, secret, iterations)
        month_key = datetime.now(timezone.utc).strftime("%Y-%m")
        session = cls(
            store=store,
            vault=EncryptedVault(envelope=envelope),
            metadata=VaultMetadata(),
            transactions=[],
            data_key=data_key,
            profile=profile,
        )
        store.local.save_profile(profile)
        await session._commit(VaultDraft(default_metadata(month_key), []))
        logger.info("Created vault for owner=%s", profile.user_id)
        return session

    @classmethod
    async def unlock(
        cls,
        store: VaultStore,
        owner_id: str,
        secret: str,
        profile: Optional[UserProfile] = None,
    ) -> "VaultSession":
        """Unlock the owner's vault: remote copy first, local cache as fallback.

        The hydrated vault is re-sealed into the local cache, which also
        upgrades legacy plaintext-metadata records.

        Raises:
            VaultNotFoundError: If neither copy exists.
            AuthenticationError: If ``secret`` is wrong.
            CorruptionError: If any shard or the metadata blob fails to decrypt.
        """
        vault = await store.load(owner_id)
        data_key = unlock_envelope(vault.envelope, secret)
        try:
            metadata = store.hydrate(vault, data_key)
            transactions = decrypt_all_transactions(vault, data_key)
            sealed = store.persist_local(vault, metadata, data_key)
        except VaultError:
            data_key.destroy()
            raise
        session = cls(
            store=store,
            vault=sealed,
            metadata=metadata,
            transactions=transactions,
            data_key=data_key,
            profile=profile or store.local.load_profile(),
        )
        logger.info(
            "Unlocked vault for owner=%s (%d shard(s))",
            owner_id, len(sealed.shards),
        )
        return session

    # --- Properties ---

    @property
    def session_id(self) -> str:
        return self._id_

    @property
    def owner_id(self) -> str:
        return self._vault.owner_id

    @property
    def profile(self) -> Optional[UserProfile]:
        return self._profile

    @property
    def created(self) -> int:
        return self._created

    @property
    def locked(self) -> bool:
        return self._key is None or self._key.destroyed

    @property
    def store(self) -> VaultStore:
        return self._store

    @property
    def vault(self) -> EncryptedVault:
        """The sealed record as last persisted (ciphertext only)."""
        return self._vault

    @property
    def metadata(self) -> VaultMetadata:
        """A copy of the plaintext metadata; change it through ``mutate()``."""
        self._ensure_unlocked()
        return self._metadata.model_copy(deep=True)

    @property
    def transactions(self) -> tuple[Transaction, ...]:
        """Decrypted transactions, newest first."""
        self._ensure_unlocked()
        return tuple(self._transactions)

    def _ensure_unlocked(self) -> DataKey:
        if self._key is None or self._key.destroyed:
            raise VaultLockedError()
        return self._key

    # --- Mutation boundary ---

    @asynccontextmanager
    async def mutate(self) -> AsyncIterator[VaultDraft]:
        """Yield a draft; seal, persist and swap it in when the block exits cleanly."""
        self._ensure_unlocked()
        if self._mutating:
            raise RuntimeError("Another vault mutation is still in progress")
        self._mutating = True
        try:
            draft = VaultDraft(
                self._metadata.model_copy(deep=True),
                list(self._transactions),
            )
            yield draft
            await self._commit(draft)
        finally:
            self._mutating = False

    async def _commit(self, draft: VaultDraft) -> None:
        data_key = self._ensure_unlocked()
        draft.validate()
        staged = EncryptedVault(
            envelope=self._vault.envelope,
            shards=rebuild_shards(data_key, draft.transactions),
        )
        sealed = self._store.persist_local(staged, draft.metadata, data_key)
        self._vault = sealed
        self._metadata = draft.metadata
        self._transactions = sorted(
            draft.transactions, key=lambda tx: tx.date, reverse=True,
        )
        try:
            await self._store.push_remote(sealed)
            self.sync_error = None
        except RemoteSyncError as err:
            logger.warning(
                "Remote push failed for owner=%s; staying on local cache: %s",
                self.owner_id, err.details,
            )
            self.sync_error = err.message

    async def reload(self) -> None:
        """Re-read the remote copy (last writer wins) and replace local state.

        Raises:
            CorruptionError: If the remote record does not decrypt under this key.
        """
        data_key = self._ensure_unlocked()
        vault = await self._store.pull_remote(self.owner_id)
        if vault is None:
            return
        if vault.envelope != self._vault.envelope:
            raise CorruptionError(
                "remote vault was created with a different envelope",
                details={"owner_id": self.owner_id},
            )
        metadata = self._store.hydrate(vault, data_key)
        transactions = decrypt_all_transactions(vault, data_key)
        self._vault = self._store.persist_local(vault, metadata, data_key)
        self._metadata = metadata
        self._transactions = transactions

    # --- Lifecycle ---

    def lock(self) -> None:
        """Destroy the data key and drop every plaintext reference."""
        if self._key is not None:
            self._key.destroy()
        self._key = None
        self._metadata = VaultMetadata()
        self._transactions = []
        logger.info("Locked vault session for owner=%s", self.owner_id)

    def __enter__(self) -> "VaultSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.lock()

"""
Tests for VaultSession: create, unlock, the mutation boundary and lock.
"""
from datetime import datetime, timezone

import pytest

from ledger_vault.defaults import DEFAULT_CATEGORIES
from ledger_vault.exceptions import (
    AuthenticationError,
    CorruptionError,
    VaultLockedError,
    VaultNotFoundError,
)
from ledger_vault.models import FamilyMember
from ledger_vault.session import VaultSession
from ledger_vault.vault.storage import LocalVaultStorage
from ledger_vault.vault.store import VaultStore

LOW_ITERATIONS = 1000


@pytest.fixture
def second_device(tmp_path, backup):
    """A store with an empty local cache sharing the same remote backup."""
    return VaultStore(LocalVaultStorage(tmp_path / "device-b"), backup)


class TestCreate:
    """Tests for creating a new vault."""

    async def test_defaults(self, session):
        metadata = session.metadata
        assert [c.id for c in metadata.categories] == [c.id for c in DEFAULT_CATEGORIES]
        month = datetime.now(timezone.utc).strftime("%Y-%m")
        assert {b.month_key for b in metadata.budgets} == {month}
        assert len(metadata.budgets) == len(DEFAULT_CATEGORIES) - 1
        assert session.transactions == ()
        assert session.owner_id == "user-1"

    async def test_persisted_locally_and_remotely(self, session, storage, backup):
        record = storage.load_record()
        assert set(record) == {"envelope", "shards", "encryptedMetadata"}
        assert "user-1" in backup.rows
        assert storage.load_profile().email == "ada@example.com"
        assert session.sync_error is None

    async def test_offline_create_records_sync_error(self, storage, failing_backup, profile, secret):
        store = VaultStore(storage, failing_backup)
        session = await VaultSession.create(store, profile, secret, iterations=LOW_ITERATIONS)
        assert session.sync_error == "remote sync failed"
        assert storage.load_record() is not None


class TestUnlock:
    """Tests for unlocking an existing vault."""

    async def test_unlock_roundtrip(self, session, storage, secret, make_tx):
        async with session.mutate() as draft:
            draft.transactions.append(make_tx("t-1", date="2026-08-01"))
            draft.transactions.append(make_tx("t-2", date="2026-09-01"))
        reopened = await VaultSession.unlock(VaultStore(storage), "user-1", secret)
        assert [tx.id for tx in reopened.transactions] == ["t-2", "t-1"]
        assert reopened.metadata == session.metadata
        assert reopened.profile.user_id == "user-1"

    async def test_wrong_secret(self, session, store):
        with pytest.raises(AuthenticationError):
            await VaultSession.unlock(store, "user-1", "not the secret")

    async def test_no_vault(self, store, secret):
        with pytest.raises(VaultNotFoundError):
            await VaultSession.unlock(store, "user-1", secret)

    async def test_new_device_pulls_remote(self, session, second_device, secret, make_tx):
        async with session.mutate() as draft:
            draft.transactions.append(make_tx("t-1"))
        reopened = await VaultSession.unlock(second_device, "user-1", secret)
        assert [tx.id for tx in reopened.transactions] == ["t-1"]
        # the pulled record is now cached on the new device
        assert second_device.local.load_record() is not None

    async def test_offline_unlock_uses_local_cache(self, session, storage, failing_backup, secret):
        reopened = await VaultSession.unlock(VaultStore(storage, failing_backup), "user-1", secret)
        assert reopened.metadata.categories

    async def test_legacy_vault_upgraded_on_unlock(self, legacy_record, storage, secret):
        storage.write_record(legacy_record)
        session = await VaultSession.unlock(VaultStore(storage), "user-1", secret)
        assert [c.id for c in session.metadata.categories] == ["groceries", "uncategorized"]
        assert [tx.id for tx in session.transactions] == ["t-2", "t-1"]
        record = storage.load_record()
        assert set(record) == {"envelope", "shards", "encryptedMetadata"}
        assert b"kid@example.com" not in storage.vault_path.read_bytes()

    async def test_corrupt_shard_fails_unlock(self, session, storage, secret, make_tx):
        async with session.mutate() as draft:
            draft.transactions.append(make_tx("t-1"))
        record = storage.load_record()
        record["shards"][0]["ciphertext"] = record["encryptedMetadata"]["ciphertext"]
        storage.write_record(record)
        with pytest.raises(CorruptionError):
            await VaultSession.unlock(VaultStore(storage), "user-1", secret)


class TestMutate:
    """Tests for the mutation boundary."""

    async def test_commit_persists_and_pushes(self, session, storage, backup):
        member = FamilyMember(id="m-1", email="kid@example.com", display_name="kid")
        async with session.mutate() as draft:
            draft.metadata.family_members.append(member)
        assert session.metadata.family_members == [member]
        reopened = VaultStore(storage).hydrate(
            VaultStore(storage).load_local("user-1"), session._key,
        )
        assert reopened.family_members == [member]
        assert backup.rows["user-1"]["encrypted_metadata"] == storage.load_record()["encryptedMetadata"]

    async def test_exception_discards_draft(self, session, storage):
        before = storage.vault_path.read_bytes()
        with pytest.raises(RuntimeError):
            async with session.mutate() as draft:
                draft.metadata.categories.clear()
                raise RuntimeError("abort")
        assert session.metadata.categories
        assert storage.vault_path.read_bytes() == before

    async def test_duplicate_ids_rejected(self, session, make_tx):
        with pytest.raises(ValueError):
            async with session.mutate() as draft:
                draft.transactions += [make_tx("t-1"), make_tx("t-1")]
        assert session.transactions == ()

    async def test_unknown_category_rejected(self, session, storage, make_tx):
        before = storage.vault_path.read_bytes()
        with pytest.raises(ValueError):
            async with session.mutate() as draft:
                draft.transactions.append(make_tx("t-x", category_id="no-such-category"))
        assert session.transactions == ()
        assert storage.vault_path.read_bytes() == before

    async def test_invalid_metadata_rejected(self, session):
        with pytest.raises(ValueError):
            async with session.mutate() as draft:
                draft.metadata.budgets[0].amount = -1
        assert all(b.amount >= 0 for b in session.metadata.budgets)

    async def test_nested_mutation_refused(self, session):
        async with session.mutate():
            with pytest.raises(RuntimeError):
                async with session.mutate():
                    pass

    async def test_can_mutate_again_after_failure(self, session, make_tx):
        with pytest.raises(ValueError):
            async with session.mutate() as draft:
                draft.transactions += [make_tx("t-1"), make_tx("t-1")]
        async with session.mutate() as draft:
            draft.transactions.append(make_tx("t-1"))
        assert len(session.transactions) == 1

    async def test_push_failure_keeps_local_commit(self, storage, failing_backup, profile, secret, make_tx):
        store = VaultStore(storage, failing_backup)
        session = await VaultSession.create(store, profile, secret, iterations=LOW_ITERATIONS)
        async with session.mutate() as draft:
            draft.transactions.append(make_tx("t-1"))
        assert session.sync_error == "remote sync failed"
        assert [tx.id for tx in session.transactions] == ["t-1"]
        reopened = await VaultSession.unlock(VaultStore(storage), "user-1", secret)
        assert [tx.id for tx in reopened.transactions] == ["t-1"]

    async def test_metadata_property_is_a_copy(self, session):
        metadata = session.metadata
        metadata.categories.clear()
        assert session.metadata.categories

    async def test_reload_sees_other_device(self, session, second_device, secret, make_tx):
        other = await VaultSession.unlock(second_device, "user-1", secret)
        async with other.mutate() as draft:
            draft.transactions.append(make_tx("t-from-b"))
        await session.reload()
        assert [tx.id for tx in session.transactions] == ["t-from-b"]


class TestLock:
    """Tests for locking and key lifetime."""

    async def test_lock_destroys_key(self, session):
        key = session._key
        session.lock()
        assert session.locked is True
        assert key.destroyed is True
        with pytest.raises(VaultLockedError):
            session.metadata
        with pytest.raises(VaultLockedError):
            session.transactions

    async def test_mutate_after_lock(self, session):
        session.lock()
        with pytest.raises(VaultLockedError):
            async with session.mutate():
                pass

    async def test_context_manager_locks(self, session):
        with session as opened:
            assert opened.locked is False
        assert session.locked is True

    async def test_repr_has_no_secrets(self, session):
        text = repr(session)
        assert "user-1" in text
        assert "locked:False" in text
        assert session._key.export_raw().hex() not in text

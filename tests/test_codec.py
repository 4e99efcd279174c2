"""
Tests for the shard and metadata codecs.
"""
import pytest

from ledger_vault.exceptions import CorruptionError
from ledger_vault.models import (
    AiProvider,
    AiProviderSettings,
    BudgetTarget,
    Category,
    EncryptedVault,
    TransactionSource,
    VaultMetadata,
    VaultShard,
)
from ledger_vault.vault.codec import (
    decrypt_all_transactions,
    decrypt_metadata,
    decrypt_shard,
    encrypt_metadata,
    encrypt_payload,
    group_by_month,
    rebuild_shards,
)
from ledger_vault.vault.crypto import DataKey
from ledger_vault.vault.envelope import create_envelope


@pytest.fixture
def envelope(secret):
    envelope, key = create_envelope("user-1", secret, iterations=1000)
    key.destroy()
    return envelope


@pytest.fixture
def three_months(make_tx):
    return [
        make_tx("a", date="2026-07-30"),
        make_tx("b", date="2026-08-01"),
        make_tx("c", date="2026-09-15"),
        make_tx("d", date="2026-08-20"),
    ]


class TestShardCodec:
    """Tests for monthly transaction shards."""

    def test_group_by_month(self, three_months):
        grouped = group_by_month(three_months)
        assert list(grouped) == ["2026-07", "2026-08", "2026-09"]
        assert [tx.id for tx in grouped["2026-08"]] == ["b", "d"]

    def test_one_shard_per_month(self, data_key, three_months):
        shards = rebuild_shards(data_key, three_months)
        assert sorted(s.month_key for s in shards) == ["2026-07", "2026-08", "2026-09"]
        assert len({s.id for s in shards}) == 3

    def test_no_transactions_no_shards(self, data_key):
        assert rebuild_shards(data_key, []) == []

    def test_roundtrip_newest_first(self, data_key, envelope, three_months):
        vault = EncryptedVault(envelope=envelope, shards=rebuild_shards(data_key, three_months))
        loaded = decrypt_all_transactions(vault, data_key)
        assert [tx.id for tx in loaded] == ["c", "d", "b", "a"]
        assert loaded[0] == three_months[2]

    def test_rebuild_drops_emptied_month(self, data_key, three_months):
        shards = rebuild_shards(data_key, [tx for tx in three_months if tx.id != "a"])
        assert "2026-07" not in {s.month_key for s in shards}

    def test_rebuild_uses_fresh_ivs(self, data_key, three_months):
        first = rebuild_shards(data_key, three_months)
        second = rebuild_shards(data_key, three_months)
        assert {s.iv for s in first}.isdisjoint({s.iv for s in second})

    def test_ties_keep_encounter_order(self, data_key, envelope, make_tx):
        txs = [make_tx("x", date="2026-09-01"), make_tx("y", date="2026-09-01")]
        vault = EncryptedVault(envelope=envelope, shards=rebuild_shards(data_key, txs))
        assert [tx.id for tx in decrypt_all_transactions(vault, data_key)] == ["x", "y"]

    def test_one_bad_shard_fails_whole_load(self, data_key, envelope, three_months):
        shards = rebuild_shards(data_key, three_months)
        other = DataKey.generate()
        shards[1] = rebuild_shards(other, [three_months[1]])[0]
        vault = EncryptedVault(envelope=envelope, shards=shards)
        with pytest.raises(CorruptionError):
            decrypt_all_transactions(vault, data_key)

    def test_non_list_payload_is_corruption(self, data_key):
        blob = encrypt_payload(data_key, {"not": "a list"})
        shard = VaultShard(
            id="s-1", month_key="2026-09", ciphertext=blob.ciphertext,
            iv=blob.iv, updated_at="2026-09-01T00:00:00+00:00",
        )
        with pytest.raises(CorruptionError):
            decrypt_shard(data_key, shard)

    def test_malformed_transaction_is_corruption(self, data_key):
        blob = encrypt_payload(data_key, [{"id": "t-1", "date": "yesterday"}])
        shard = VaultShard(
            id="s-1", month_key="2026-09", ciphertext=blob.ciphertext,
            iv=blob.iv, updated_at="2026-09-01T00:00:00+00:00",
        )
        with pytest.raises(CorruptionError):
            decrypt_shard(data_key, shard)

    def test_legacy_source_tag_is_read_as_provider(self, data_key):
        blob = encrypt_payload(data_key, [{
            "id": "t-1", "bankAccountId": "acct-1", "date": "2026-09-02",
            "merchant": "Shell", "amount": -40, "categoryId": "transport",
            "source": "plaid",
        }])
        shard = VaultShard(
            id="s-1", month_key="2026-09", ciphertext=blob.ciphertext,
            iv=blob.iv, updated_at="2026-09-01T00:00:00+00:00",
        )
        (tx,) = decrypt_shard(data_key, shard)
        assert tx.source is TransactionSource.PROVIDER


class TestMetadataCodec:
    """Tests for the encrypted metadata blob."""

    @pytest.fixture
    def metadata(self):
        return VaultMetadata(
            categories=[Category(id="groceries", name="Groceries")],
            budgets=[BudgetTarget(category_id="groceries", month_key="2026-09", amount=250)],
            ai_settings=AiProviderSettings(
                provider=AiProvider.GOOGLE, api_key="key-123", model="gemini-2.0-flash",
            ),
        )

    def test_roundtrip(self, data_key, metadata):
        blob = encrypt_metadata(data_key, metadata)
        assert decrypt_metadata(data_key, blob) == metadata

    def test_wrong_key_is_corruption(self, data_key, metadata):
        blob = encrypt_metadata(data_key, metadata)
        with pytest.raises(CorruptionError):
            decrypt_metadata(DataKey.generate(), blob)

    def test_non_object_payload_is_corruption(self, data_key):
        blob = encrypt_payload(data_key, [1, 2, 3])
        with pytest.raises(CorruptionError):
            decrypt_metadata(data_key, blob)

    def test_malformed_aggregate_is_corruption(self, data_key):
        blob = encrypt_payload(data_key, {"budgets": [{"categoryId": "x", "amount": -5}]})
        with pytest.raises(CorruptionError):
            decrypt_metadata(data_key, blob)

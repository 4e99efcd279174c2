"""
Vault Codecs — Monthly transaction shards and the metadata blob.

ShardCodec: transactions are grouped by calendar month (``date[:7]``) and each
month is encrypted as one independent AES-GCM payload. Every rebuild is a full
rebuild; months with no transactions simply produce no shard.

MetadataCodec: categories, budgets, rules, linked accounts, family members
and AI settings are encrypted together as a single blob, re-encrypted in full
on every change.

Security Note:
    Never log plaintext or ciphertext values; month keys and counts only.
"""
import uuid
import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from pydantic import ValidationError

from ..exceptions import CorruptionError
from ..models import (
    EncryptedBlob,
    EncryptedVault,
    Transaction,
    VaultMetadata,
    VaultShard,
)
from .crypto import (
    DataKey,
    b64decode,
    b64encode,
    decrypt_bytes,
    deserialize_value,
    encrypt_bytes,
    serialize_value,
)

logger = logging.getLogger("ledger_vault.vault")


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Generic payloads
# ---------------------------------------------------------------------------

def encrypt_payload(data_key: DataKey, value: Any) -> EncryptedBlob:
    """Serialize and encrypt a JSON-compatible value under a fresh IV.

    Args:
        data_key: The session's data key.
        value: JSON-compatible value.

    Returns:
        EncryptedBlob with base64 ciphertext and IV.
    """
    ciphertext, iv = encrypt_bytes(data_key, serialize_value(value))
    return EncryptedBlob(ciphertext=b64encode(ciphertext), iv=b64encode(iv))


def decrypt_payload(data_key: DataKey, ciphertext: str, iv: str) -> Any:
    """Decrypt and deserialize a payload produced by ``encrypt_payload``.

    Raises:
        CorruptionError: On authentication failure or non-JSON plaintext.
    """
    plaintext = decrypt_bytes(data_key, b64decode(ciphertext), b64decode(iv))
    return deserialize_value(plaintext)


# ---------------------------------------------------------------------------
# Shard codec
# ---------------------------------------------------------------------------

def group_by_month(transactions: Iterable[Transaction]) -> dict[str, list[Transaction]]:
    """Group transactions by ``YYYY-MM``, keeping first-seen month order."""
    grouped: dict[str, list[Transaction]] = {}
    for tx in transactions:
        grouped.setdefault(tx.month_key, []).append(tx)
    return grouped


def encrypt_shard(
    data_key: DataKey,
    month_key: str,
    transactions: list[Transaction],
) -> VaultShard:
    blob = encrypt_payload(data_key, [tx.to_wire() for tx in transactions])
    return VaultShard(
        id=str(uuid.uuid4()),
        month_key=month_key,
        ciphertext=blob.ciphertext,
        iv=blob.iv,
        updated_at=_utcnow(),
    )


def rebuild_shards(
    data_key: DataKey,
    transactions: Iterable[Transaction],
) -> list[VaultShard]:
    """Encrypt the complete transaction set into one shard per non-empty month.

    Callers must pass every transaction in the vault: shards for months that
    are absent from ``transactions`` are dropped.
    """
    grouped = group_by_month(transactions)
    shards = [
        encrypt_shard(data_key, month_key, txs)
        for month_key, txs in grouped.items()
    ]
    logger.debug("Rebuilt %d shard(s)", len(shards))
    return shards


def decrypt_shard(data_key: DataKey, shard: VaultShard) -> list[Transaction]:
    payload = decrypt_payload(data_key, shard.ciphertext, shard.iv)
    if not isinstance(payload, list):
        raise CorruptionError(
            "shard payload is not a transaction list",
            details={"month_key": shard.month_key},
        )
    try:
        return [Transaction.model_validate(item) for item in payload]
    except ValidationError as err:
        raise CorruptionError(
            "shard contains malformed transactions",
            details={"month_key": shard.month_key},
        ) from err


def decrypt_all_transactions(
    vault: EncryptedVault,
    data_key: DataKey,
) -> list[Transaction]:
    """Decrypt every shard and return transactions newest first.

    Ties on date keep their encounter order. A single undecryptable shard
    fails the whole call.

    Raises:
        CorruptionError: If any shard fails to decrypt or parse.
    """
    output: list[Transaction] = []
    for shard in vault.shards:
        try:
            output.extend(decrypt_shard(data_key, shard))
        except CorruptionError:
            logger.error(
                "Shard %s failed to decrypt for owner=%s",
                shard.month_key, vault.owner_id,
            )
            raise
    return sorted(output, key=lambda tx: tx.date, reverse=True)


# ---------------------------------------------------------------------------
# Metadata codec
# ---------------------------------------------------------------------------

def encrypt_metadata(data_key: DataKey, metadata: VaultMetadata) -> EncryptedBlob:
    return encrypt_payload(data_key, metadata.to_wire())


def decrypt_metadata(data_key: DataKey, blob: EncryptedBlob) -> VaultMetadata:
    """Decrypt the metadata blob.

    Raises:
        CorruptionError: On authentication failure or a malformed aggregate.
    """
    payload = decrypt_payload(data_key, blob.ciphertext, blob.iv)
    if not isinstance(payload, dict):
        raise CorruptionError("metadata payload is not an object")
    try:
        return VaultMetadata.model_validate(payload)
    except ValidationError as err:
        raise CorruptionError("metadata payload is malformed") from err

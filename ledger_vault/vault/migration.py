"""
Record Migration — Versioned load path for persisted vault records.

Every record read from local storage or the remote backup goes through
``normalize_record`` before anything else touches it. Two generations exist:

- **v1 (legacy)**: metadata stored as plaintext top-level fields
  (``categories``, ``budgets``, ...) and older key names
  (``userId``, ``encryptedDataKey``, ``iterations``, ``encryptedPayload``).
- **v2 (current)**: ``{envelope, shards, encryptedMetadata}`` only.

Legacy plaintext metadata is lifted into ``EncryptedVault.legacy_metadata``
(memory only) and is encrypted on the next persist.
"""
import logging
from typing import Any

from pydantic import ValidationError

from ..exceptions import CorruptionError
from ..models import PLAINTEXT_METADATA_FIELDS, EncryptedVault, VaultMetadata

logger = logging.getLogger("ledger_vault.vault")

RECORD_VERSION = 2

_ENVELOPE_RENAMES = {
    "userId": "ownerId",
    "encryptedDataKey": "wrappedDataKey",
    "iterations": "kdfIterations",
}
_SHARD_RENAMES = {
    "encryptedPayload": "ciphertext",
}
_BLOB_RENAMES = {
    "encrypted": "ciphertext",
}


def _rename(data: dict[str, Any], renames: dict[str, str]) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise TypeError(f"expected an object, got {type(data).__name__}")
    out = dict(data)
    for old, new in renames.items():
        if old in out and new not in out:
            out[new] = out.pop(old)
    return out


def record_version(raw: dict[str, Any]) -> int:
    """Detect the record generation by the presence of encrypted metadata."""
    return RECORD_VERSION if raw.get("encryptedMetadata") else 1


def normalize_record(raw: dict[str, Any]) -> EncryptedVault:
    """Normalize a raw persisted record into the current ``EncryptedVault`` shape.

    Args:
        raw: Decoded JSON record (local file or remote row).

    Returns:
        EncryptedVault; ``legacy_metadata`` is set for v1 records.

    Raises:
        CorruptionError: If the record cannot be interpreted.
    """
    if not isinstance(raw, dict) or "envelope" not in raw:
        raise CorruptionError("vault record has no envelope")
    version = record_version(raw)
    try:
        envelope = _rename(raw["envelope"], _ENVELOPE_RENAMES)
        shards = [_rename(s, _SHARD_RENAMES) for s in raw.get("shards") or []]
        data: dict[str, Any] = {"envelope": envelope, "shards": shards}
        if version == RECORD_VERSION:
            data["encryptedMetadata"] = _rename(
                raw["encryptedMetadata"], _BLOB_RENAMES,
            )
            return EncryptedVault.model_validate(data)
        legacy = {
            name: raw[name]
            for name in PLAINTEXT_METADATA_FIELDS
            if raw.get(name) is not None
        }
        vault = EncryptedVault.model_validate(data)
    except (ValidationError, AttributeError, TypeError, ValueError) as err:
        raise CorruptionError("vault record is malformed") from err
    try:
        vault.legacy_metadata = VaultMetadata.model_validate(legacy)
    except ValidationError as err:
        raise CorruptionError("legacy vault metadata is malformed") from err
    logger.info(
        "Loaded legacy v1 record for owner=%s; it will be upgraded on next write",
        vault.owner_id,
    )
    return vault

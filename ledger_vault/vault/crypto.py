"""
Vault Crypto Core — Key handles, key derivation, AEAD primitives and serialization.

Two layers of AES-256-GCM:
- Wrapping layer: PBKDF2-HMAC-SHA256(secret, salt, N) → AES-GCM → wrapped data key
- Data layer: random 256-bit data key → AES-GCM → shard / metadata ciphertext

Security Note:
    Never log plaintext, ciphertext, secrets or key bytes.
    Nonces are random 96-bit and generated per call; collision probability
    under one data key is negligible at personal-finance volumes.
    ``DataKey.destroy()`` zeroes the handle's copy of the key. The copy held
    inside the OpenSSL cipher context cannot be wiped from Python; this is
    an accepted limitation.
"""
import os
import base64
import logging
from typing import Any

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..exceptions import CorruptionError, VaultLockedError

logger = logging.getLogger("ledger_vault.vault")

NONCE_SIZE = 12  # 96-bit nonce
SALT_SIZE = 16
KEY_LENGTH = 32  # AES-256
KDF_ITERATIONS = 310_000
ALGORITHM = "AES-GCM"


# ---------------------------------------------------------------------------
# Transport encoding
# ---------------------------------------------------------------------------

def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(value: str) -> bytes:
    """Decode a base64 field from a persisted record.

    Raises:
        CorruptionError: If the value is not valid base64.
    """
    try:
        return base64.b64decode(value, validate=True)
    except (ValueError, TypeError) as err:
        raise CorruptionError(
            "stored field is not valid base64",
        ) from err


# ---------------------------------------------------------------------------
# Data key handle
# ---------------------------------------------------------------------------

class DataKey:
    """Owned, non-copyable handle to the session's symmetric data key.

    The handle refuses copying, pickling and serialization; its repr never
    shows key material. Once ``destroy()`` is called every operation raises
    ``VaultLockedError``.
    """

    __slots__ = ("_material", "_cipher")

    def __init__(self, material: bytes):
        if len(material) != KEY_LENGTH:
            raise ValueError(
                f"Data key must be exactly {KEY_LENGTH} bytes, "
                f"got {len(material)}"
            )
        self._material = bytearray(material)
        self._cipher = AESGCM(bytes(material))

    @classmethod
    def generate(cls) -> "DataKey":
        """Create a fresh random 256-bit AES-GCM data key."""
        return cls(AESGCM.generate_key(bit_length=KEY_LENGTH * 8))

    @property
    def destroyed(self) -> bool:
        return self._cipher is None

    def _active_cipher(self) -> AESGCM:
        if self._cipher is None:
            raise VaultLockedError("data key has been destroyed")
        return self._cipher

    def encrypt(self, nonce: bytes, plaintext: bytes) -> bytes:
        return self._active_cipher().encrypt(nonce, plaintext, None)

    def decrypt(self, nonce: bytes, ciphertext: bytes) -> bytes:
        return self._active_cipher().decrypt(nonce, ciphertext, None)

    def export_raw(self) -> bytes:
        """Return the raw key bytes. Only used to wrap the key into an envelope."""
        self._active_cipher()
        return bytes(self._material)

    def destroy(self) -> None:
        """Zero the key material and drop the cipher context."""
        for i in range(len(self._material)):
            self._material[i] = 0
        self._cipher = None

    def __repr__(self) -> str:
        return f"<DataKey destroyed={self.destroyed}>"

    __str__ = __repr__

    def __copy__(self):
        raise TypeError("DataKey cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("DataKey cannot be copied")

    def __reduce_ex__(self, protocol):
        raise TypeError("DataKey cannot be serialized")


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_wrapping_key(secret: str, salt: bytes, iterations: int) -> AESGCM:
    """Derive the AES-GCM wrapping key from a user secret with PBKDF2-HMAC-SHA256.

    Args:
        secret: Password, or the composite identity secret.
        salt: Random 16-byte salt stored in the envelope.
        iterations: PBKDF2 iteration count stored in the envelope.

    Returns:
        AESGCM cipher bound to the derived 32-byte key.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return AESGCM(kdf.derive(secret.encode("utf-8")))


# ---------------------------------------------------------------------------
# Data-layer encryption
# ---------------------------------------------------------------------------

def encrypt_bytes(data_key: DataKey, plaintext: bytes) -> tuple[bytes, bytes]:
    """Encrypt plaintext under the data key with a fresh random nonce.

    Returns:
        Tuple of (ciphertext_with_tag, nonce).
    """
    nonce = os.urandom(NONCE_SIZE)
    return data_key.encrypt(nonce, plaintext), nonce


def decrypt_bytes(data_key: DataKey, ciphertext: bytes, nonce: bytes) -> bytes:
    """Decrypt data-layer ciphertext.

    Raises:
        CorruptionError: If the GCM tag does not verify or the input is truncated.
    """
    if len(nonce) != NONCE_SIZE:
        raise CorruptionError(
            f"nonce must be {NONCE_SIZE} bytes, got {len(nonce)}",
        )
    try:
        return data_key.decrypt(nonce, ciphertext)
    except (InvalidTag, ValueError) as err:
        raise CorruptionError(
            "ciphertext failed authentication",
        ) from err


# ---------------------------------------------------------------------------
# Value serialization
# ---------------------------------------------------------------------------

def serialize_value(value: Any) -> bytes:
    """Serialize a JSON-compatible Python value to bytes for encryption.

    Args:
        value: dict, list, str, int, float, bool or None.

    Returns:
        orjson-encoded bytes.
    """
    return orjson.dumps(value)


def deserialize_value(data: bytes) -> Any:
    """Deserialize decrypted bytes back into a Python value.

    Raises:
        CorruptionError: If the bytes are not valid JSON.
    """
    try:
        return orjson.loads(data)
    except orjson.JSONDecodeError as err:
        raise CorruptionError(
            "decrypted payload is not valid structured data",
        ) from err

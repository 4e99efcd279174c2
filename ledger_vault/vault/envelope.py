"""
Key Envelope — Creation and unlocking of the wrapped data key.

The envelope is the vault's trust root. It stores the salt, the wrapping IV,
the AES-GCM-wrapped data key and the KDF parameters; the data key itself is
never persisted in plaintext.

Security Note:
    The AES-GCM tag on the wrapped key is the only gate against
    unauthorized decryption. A failed tag check produces no key material.
    Never log secrets, PINs or key bytes.
"""
import os
import logging
from typing import Optional

from cryptography.exceptions import InvalidTag

from ..exceptions import AuthenticationError, CorruptionError
from ..models import KeyEnvelope
from .crypto import (
    ALGORITHM,
    KDF_ITERATIONS,
    NONCE_SIZE,
    SALT_SIZE,
    DataKey,
    b64decode,
    b64encode,
    derive_wrapping_key,
)

logger = logging.getLogger("ledger_vault.vault")


def identity_secret(subject: str, pin: str, scheme: str = "google") -> str:
    """Build the composite unlocking secret for identity-provider accounts.

    The same subject and PIN always yield the same secret, so no key needs
    to be stored with the identity provider.

    Args:
        subject: The provider's stable subject identifier.
        pin: The user's short PIN.
        scheme: Identity provider tag.

    Returns:
        ``"<scheme>:<subject>:<pin>"``
    """
    if not subject:
        raise ValueError("Identity subject cannot be empty")
    if not pin:
        raise ValueError("PIN cannot be empty")
    return f"{scheme}:{subject}:{pin}"


def create_envelope(
    owner_id: str,
    secret: str,
    iterations: Optional[int] = None,
) -> tuple[KeyEnvelope, DataKey]:
    """Generate a fresh data key and wrap it under a key derived from ``secret``.

    Args:
        owner_id: Identity the vault belongs to.
        secret: Password or composite identity secret.
        iterations: PBKDF2 iteration count (defaults to ``KDF_ITERATIONS``).

    Returns:
        Tuple of (envelope, data_key).
    """
    if not secret:
        raise ValueError("Vault secret cannot be empty")
    iterations = iterations or KDF_ITERATIONS
    salt = os.urandom(SALT_SIZE)
    iv = os.urandom(NONCE_SIZE)
    wrapping = derive_wrapping_key(secret, salt, iterations)
    data_key = DataKey.generate()
    wrapped = wrapping.encrypt(iv, data_key.export_raw(), None)
    envelope = KeyEnvelope(
        owner_id=owner_id,
        salt=b64encode(salt),
        iv=b64encode(iv),
        wrapped_data_key=b64encode(wrapped),
        algorithm=ALGORITHM,
        kdf_iterations=iterations,
    )
    logger.info(
        "Created key envelope for owner=%s (kdf_iterations=%d)",
        owner_id, iterations,
    )
    return envelope, data_key


def unlock_envelope(envelope: KeyEnvelope, secret: str) -> DataKey:
    """Unwrap the data key using the KDF parameters stored in the envelope.

    Args:
        envelope: The vault's key envelope.
        secret: Password or composite identity secret.

    Returns:
        The live data key handle.

    Raises:
        AuthenticationError: If the secret is wrong (tag does not verify).
        CorruptionError: If the envelope fields are not decodable.
    """
    salt = b64decode(envelope.salt)
    iv = b64decode(envelope.iv)
    wrapped = b64decode(envelope.wrapped_data_key)
    if len(iv) != NONCE_SIZE:
        raise CorruptionError("envelope IV has the wrong length")
    wrapping = derive_wrapping_key(secret, salt, envelope.kdf_iterations)
    try:
        raw = wrapping.decrypt(iv, wrapped, None)
    except InvalidTag as err:
        logger.warning("Unlock failed for owner=%s", envelope.owner_id)
        raise AuthenticationError(
            details={"owner_id": envelope.owner_id},
        ) from err
    try:
        return DataKey(raw)
    except ValueError as err:
        raise CorruptionError("unwrapped data key has the wrong length") from err

"""
Local Vault Storage — Durable on-disk cache of the encrypted record.

Layout of the storage directory:
    vault.json    {envelope, shards, encryptedMetadata}  (ciphertext only)
    profile.json  {userId, email, displayName, authMethod} (no secrets)

Writes go to a temporary file in the same directory followed by
``os.replace`` so a reader never observes a half-written record.
"""
import os
import logging
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

import orjson
from pydantic import ValidationError

from ..exceptions import CorruptionError, StorageError
from ..models import UserProfile

logger = logging.getLogger("ledger_vault.vault")

VAULT_FILE = "vault.json"
PROFILE_FILE = "profile.json"


class LocalVaultStorage:
    """File-backed storage for one device's vault cache."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    @property
    def vault_path(self) -> Path:
        return self.directory / VAULT_FILE

    @property
    def profile_path(self) -> Path:
        return self.directory / PROFILE_FILE

    def _write_atomic(self, path: Path, data: bytes) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp, path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as err:
            raise StorageError(
                details={"path": str(path), "error": str(err)},
            ) from err

    def _read(self, path: Path) -> Optional[Any]:
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as err:
            raise StorageError(
                details={"path": str(path), "error": str(err)},
            ) from err
        try:
            return orjson.loads(data)
        except orjson.JSONDecodeError as err:
            raise CorruptionError(
                "local vault file is not valid JSON",
                details={"path": str(path)},
            ) from err

    # ------------------------------------------------------------------
    # Vault record
    # ------------------------------------------------------------------

    def write_record(self, record: dict[str, Any]) -> None:
        """Atomically replace the stored vault record."""
        self._write_atomic(self.vault_path, orjson.dumps(record))
        logger.debug("Wrote local vault record to %s", self.vault_path)

    def load_record(self) -> Optional[dict[str, Any]]:
        """Return the raw stored record, or None when no vault is cached."""
        return self._read(self.vault_path)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def save_profile(self, profile: UserProfile) -> None:
        self._write_atomic(self.profile_path, orjson.dumps(profile.to_wire()))

    def load_profile(self) -> Optional[UserProfile]:
        raw = self._read(self.profile_path)
        if raw is None:
            return None
        try:
            return UserProfile.model_validate(raw)
        except ValidationError:
            logger.warning("Ignoring malformed profile at %s", self.profile_path)
            return None

    def clear(self) -> None:
        """Remove the cached vault record and profile."""
        for path in (self.vault_path, self.profile_path):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as err:
                raise StorageError(
                    details={"path": str(path), "error": str(err)},
                ) from err
        logger.info("Cleared local vault storage at %s", self.directory)

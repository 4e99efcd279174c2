"""
Vault Configuration — Validated settings loaded from the environment.

Reads:
    LEDGER_VAULT_STORAGE_DIR      = <directory for the local encrypted cache>
    LEDGER_VAULT_KDF_ITERATIONS   = <PBKDF2 iterations for new envelopes>
    LEDGER_VAULT_REMOTE_URL       = <backup store base URL>
    LEDGER_VAULT_REMOTE_API_KEY   = <backup store anon/service key>
    LEDGER_VAULT_API_BASE_URL     = <bank-link endpoints and AI relay>
    LEDGER_VAULT_HTTP_TIMEOUT     = <seconds>

Security Note:
    Never log API keys. Only log which optional services are configured.
"""
import os
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .crypto import KDF_ITERATIONS

logger = logging.getLogger("ledger_vault.vault")

_ENV_PREFIX = "LEDGER_VAULT_"


def _env(name: str) -> Optional[str]:
    value = os.environ.get(f"{_ENV_PREFIX}{name}")
    if value is None or not value.strip():
        return None
    return value.strip()


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    storage_dir: Path = Field(default_factory=lambda: Path.home() / ".ledger_vault")
    kdf_iterations: int = Field(default=KDF_ITERATIONS, ge=1000)
    remote_url: Optional[str] = None
    remote_api_key: Optional[str] = Field(default=None, repr=False)
    api_base_url: Optional[str] = None
    http_timeout: float = Field(default=30.0, gt=0, le=600)

    @field_validator("remote_url", "api_base_url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        """Require an http(s) scheme and strip trailing slashes."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https://: {v}")
        return v.rstrip("/")

    @property
    def remote_enabled(self) -> bool:
        return bool(self.remote_url and self.remote_api_key)

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        values: dict = {}
        storage_dir = _env("STORAGE_DIR")
        if storage_dir:
            values["storage_dir"] = Path(storage_dir).expanduser()
        iterations = _env("KDF_ITERATIONS")
        if iterations:
            values["kdf_iterations"] = int(iterations)
        timeout = _env("HTTP_TIMEOUT")
        if timeout:
            values["http_timeout"] = float(timeout)
        values["remote_url"] = _env("REMOTE_URL")
        values["remote_api_key"] = _env("REMOTE_API_KEY")
        values["api_base_url"] = _env("API_BASE_URL")
        config = cls(**values)
        logger.debug(
            "Vault config loaded: storage=%s remote=%s api=%s",
            config.storage_dir,
            "on" if config.remote_enabled else "off",
            "on" if config.api_base_url else "off",
        )
        return config

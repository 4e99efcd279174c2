"""
Remote Backup — Opaque storage of the encrypted record, keyed by owner id.

The backup store only ever sees the envelope, shard ciphertexts and the
metadata ciphertext. It never receives a data key or plaintext. Conflicts are
resolved by last writer wins: every push replaces the stored row wholesale.

Row layout (``vault_data`` table):
    user_id, envelope, shards, encrypted_metadata, shard_count, last_sync_at
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

import aiohttp
import orjson

from ..exceptions import RemoteSyncError
from ..transport import client_session, read_json

logger = logging.getLogger("ledger_vault.vault")

REMOTE_TABLE = "vault_data"


def to_remote_row(owner_id: str, record: dict[str, Any]) -> dict[str, Any]:
    """Wrap a durable record into a backup row with sync bookkeeping."""
    return {
        "user_id": owner_id,
        "envelope": record["envelope"],
        "shards": record.get("shards", []),
        "encrypted_metadata": record.get("encryptedMetadata"),
        "shard_count": len(record.get("shards", [])),
        "last_sync_at": datetime.now(timezone.utc).isoformat(),
    }


def from_remote_row(row: dict[str, Any]) -> dict[str, Any]:
    """Unwrap a backup row into the durable record shape."""
    record: dict[str, Any] = {
        "envelope": row["envelope"],
        "shards": row.get("shards") or [],
    }
    if row.get("encrypted_metadata"):
        record["encryptedMetadata"] = row["encrypted_metadata"]
    return record


class RemoteBackupStore(ABC):
    """Abstract interface for the remote backup of encrypted records."""

    @abstractmethod
    async def push(self, owner_id: str, record: dict[str, Any]) -> None:
        """Replace the owner's stored record.

        Raises:
            RemoteSyncError: If the store cannot be reached or rejects the write.
        """

    @abstractmethod
    async def pull(self, owner_id: str) -> Optional[dict[str, Any]]:
        """Return the owner's stored record, or None if there is none.

        Raises:
            RemoteSyncError: If the store cannot be reached.
        """

    @abstractmethod
    async def delete(self, owner_id: str) -> None:
        """Delete the owner's stored record."""


class InMemoryBackupStore(RemoteBackupStore):
    """Process-local backup store, for offline use and tests."""

    def __init__(self):
        self.rows: dict[str, dict[str, Any]] = {}

    async def push(self, owner_id: str, record: dict[str, Any]) -> None:
        # round-trip through JSON so callers can't share mutable state with the store
        row = to_remote_row(owner_id, record)
        self.rows[owner_id] = orjson.loads(orjson.dumps(row))

    async def pull(self, owner_id: str) -> Optional[dict[str, Any]]:
        row = self.rows.get(owner_id)
        if row is None:
            return None
        return from_remote_row(orjson.loads(orjson.dumps(row)))

    async def delete(self, owner_id: str) -> None:
        self.rows.pop(owner_id, None)


class SupabaseBackupStore(RemoteBackupStore):
    """Backup store backed by a Supabase (PostgREST) table over aiohttp.

    Args:
        url: Project base URL.
        api_key: Project anon key.
        access_token: The signed-in user's JWT; row-level security keys rows
            to the authenticated user. Falls back to ``api_key``.
        timeout: Total request timeout in seconds.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        access_token: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self._endpoint = f"{url.rstrip('/')}/rest/v1/{REMOTE_TABLE}"
        self._api_key = api_key
        self._access_token = access_token
        self._timeout = timeout

    def _headers(self, prefer: Optional[str] = None) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        params: dict[str, str],
        payload: Optional[dict[str, Any]] = None,
        prefer: Optional[str] = None,
    ) -> Any:
        try:
            async with client_session(self._timeout) as session:
                async with session.request(
                    method,
                    self._endpoint,
                    params=params,
                    json=payload,
                    headers=self._headers(prefer),
                ) as resp:
                    if resp.status >= 300:
                        raise RemoteSyncError(
                            details={"method": method, "status": resp.status},
                        )
                    if method == "GET":
                        return await read_json(resp)
                    return None
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise RemoteSyncError(
                details={"method": method, "error": type(err).__name__},
            ) from err
        except orjson.JSONDecodeError as err:
            raise RemoteSyncError(
                "remote store returned an unreadable body",
                details={"method": method, "error": "JSONDecodeError"},
            ) from err

    async def push(self, owner_id: str, record: dict[str, Any]) -> None:
        await self._request(
            "POST",
            params={"on_conflict": "user_id"},
            payload=to_remote_row(owner_id, record),
            prefer="resolution=merge-duplicates,return=minimal",
        )
        logger.info(
            "Pushed vault for owner=%s (%d shard(s))",
            owner_id, len(record.get("shards", [])),
        )

    async def pull(self, owner_id: str) -> Optional[dict[str, Any]]:
        rows = await self._request(
            "GET",
            params={"user_id": f"eq.{owner_id}", "select": "*"},
        )
        if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
            raise RemoteSyncError(
                "remote store returned an unexpected body",
                details={"method": "GET", "error": type(rows).__name__},
            )
        if not rows:
            return None
        if "envelope" not in rows[0]:
            raise RemoteSyncError(
                "remote row has no envelope",
                details={"method": "GET"},
            )
        return from_remote_row(rows[0])

    async def delete(self, owner_id: str) -> None:
        await self._request("DELETE", params={"user_id": f"eq.{owner_id}"})
        logger.info("Deleted remote vault for owner=%s", owner_id)

"""
Bank Link — Interface to the bank-account linking provider.

The provider returns raw transaction records for a linked account. Known
transaction ids are passed along so the provider can skip them; the client
also filters them, so duplicates never reach a shard either way.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import aiohttp
import orjson
from pydantic import ValidationError

from .exceptions import BankLinkError
from .models import BankAccount, Transaction
from .transport import client_session, read_json

logger = logging.getLogger("ledger_vault.banklink")


class BankLinkProvider(ABC):
    """Abstract bank-link collaborator."""

    @abstractmethod
    async def exchange_public_token(self, public_token: str) -> BankAccount:
        """Exchange a link token for a linked account.

        Raises:
            BankLinkError: If the exchange fails.
        """

    @abstractmethod
    async def sync_transactions(
        self,
        account_id: str,
        known_ids: set[str],
    ) -> list[Transaction]:
        """Return transactions for ``account_id`` whose ids are not in ``known_ids``.

        Raises:
            BankLinkError: If the provider cannot be reached or answers badly.
        """


class HttpBankLink(BankLinkProvider):
    """Bank-link client for the backend's ``/plaid/*`` endpoints."""

    def __init__(self, base_url: str, timeout: float = 30.0):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        try:
            async with client_session(self._timeout) as session:
                async with session.post(
                    f"{self._base_url}{path}", json=payload,
                ) as resp:
                    if resp.status >= 300:
                        raise BankLinkError(
                            details={"path": path, "status": resp.status},
                        )
                    return await read_json(resp)
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise BankLinkError(
                details={"path": path, "error": type(err).__name__},
            ) from err
        except orjson.JSONDecodeError as err:
            raise BankLinkError(
                "bank link returned a non-JSON body", details={"path": path},
            ) from err

    async def exchange_public_token(self, public_token: str) -> BankAccount:
        data = await self._post(
            "/plaid/exchange-token", {"publicToken": public_token},
        )
        try:
            return BankAccount(
                id=data["accountId"],
                provider_account_id=data["accountId"],
                institution_name=data["institutionName"],
                account_name=data["accountName"],
                mask=data["mask"],
                added_at=datetime.now(timezone.utc).isoformat(),
            )
        except (KeyError, TypeError, ValidationError) as err:
            raise BankLinkError("malformed token exchange response") from err

    async def sync_transactions(
        self,
        account_id: str,
        known_ids: set[str],
    ) -> list[Transaction]:
        data = await self._post(
            "/plaid/sync-transactions",
            {"accountId": account_id, "knownIds": sorted(known_ids)},
        )
        if not isinstance(data, list):
            raise BankLinkError(
                "malformed transaction list", details={"account_id": account_id},
            )
        fresh: list[Transaction] = []
        seen: set[str] = set(known_ids)
        for item in data:
            try:
                tx = Transaction.model_validate(item)
            except ValidationError as err:
                raise BankLinkError(
                    "malformed transaction record",
                    details={"account_id": account_id},
                ) from err
            if tx.id in seen:
                continue
            seen.add(tx.id)
            fresh.append(tx)
        logger.info(
            "Fetched %d new transaction(s) for account=%s", len(fresh), account_id,
        )
        return fresh

"""Shared fixtures for the vault test suite.

KDF iterations are lowered for speed; unlocking always reads the iteration
count back from the envelope, so nothing else changes.
"""
from typing import Any, Optional

import pytest

from ledger_vault.banklink import BankLinkProvider
from ledger_vault.categorization.providers import ProviderClient
from ledger_vault.exceptions import BankLinkError, ProviderError, RemoteSyncError
from ledger_vault.models import (
    AiProvider,
    AiProviderSettings,
    BankAccount,
    Category,
    Transaction,
    UserProfile,
)
from ledger_vault.session import VaultSession
from ledger_vault.vault.codec import rebuild_shards
from ledger_vault.vault.crypto import DataKey
from ledger_vault.vault.envelope import create_envelope
from ledger_vault.vault.remote import InMemoryBackupStore, RemoteBackupStore
from ledger_vault.vault.storage import LocalVaultStorage
from ledger_vault.vault.store import VaultStore

LOW_ITERATIONS = 1000
SECRET = "correct horse battery staple"


# --- Collaborator fakes ---

class FakeProviderClient(ProviderClient):
    """Provider client returning a canned response and recording prompts."""

    provider = AiProvider.OPENAI
    label = "Fake AI"

    def __init__(self, response: str = "[]", error: Optional[str] = None):
        super().__init__(timeout=1.0)
        self.response = response
        self.error = error
        self.prompts: list[str] = []
        self.keys: list[str] = []

    async def complete(self, prompt: str, api_key: str, model: str) -> str:
        self.prompts.append(prompt)
        self.keys.append(api_key)
        if self.error:
            raise ProviderError(self.error)
        return self.response


class FailingBackupStore(RemoteBackupStore):
    """Backup store that is always unreachable."""

    def __init__(self):
        self.attempts = 0

    async def push(self, owner_id: str, record: dict[str, Any]) -> None:
        self.attempts += 1
        raise RemoteSyncError(details={"method": "POST", "error": "offline"})

    async def pull(self, owner_id: str) -> Optional[dict[str, Any]]:
        self.attempts += 1
        raise RemoteSyncError(details={"method": "GET", "error": "offline"})

    async def delete(self, owner_id: str) -> None:
        self.attempts += 1
        raise RemoteSyncError(details={"method": "DELETE", "error": "offline"})


class FakeBankLink(BankLinkProvider):
    """Bank link serving transactions from a dict keyed by account id."""

    def __init__(self):
        self.accounts: dict[str, list[Transaction]] = {}
        self.failing: set[str] = set()
        self.known_ids_seen: list[set[str]] = []

    async def exchange_public_token(self, public_token: str) -> BankAccount:
        if public_token == "bad-token":
            raise BankLinkError("token exchange failed")
        account_id = f"acct-{public_token}"
        self.accounts.setdefault(account_id, [])
        return BankAccount(
            id=account_id,
            provider_account_id=account_id,
            institution_name="First Test Bank",
            account_name="Checking",
            mask="0042",
            added_at="2026-09-01T00:00:00+00:00",
        )

    async def sync_transactions(
        self,
        account_id: str,
        known_ids: set[str],
    ) -> list[Transaction]:
        self.known_ids_seen.append(set(known_ids))
        if account_id in self.failing:
            raise BankLinkError(details={"account_id": account_id})
        return [tx for tx in self.accounts.get(account_id, []) if tx.id not in known_ids]


# --- Fixtures ---

@pytest.fixture
def secret():
    return SECRET


@pytest.fixture
def make_tx():
    """Factory for transactions with sensible defaults."""
    def _make(
        tx_id: str,
        date: str = "2026-09-14",
        merchant: str = "Corner Shop",
        amount: float = -12.5,
        category_id: str = "uncategorized",
        account_id: str = "acct-1",
    ) -> Transaction:
        return Transaction(
            id=tx_id,
            bank_account_id=account_id,
            date=date,
            merchant=merchant,
            amount=amount,
            category_id=category_id,
        )
    return _make


@pytest.fixture
def categories():
    return [
        Category(id="groceries", name="Groceries"),
        Category(id="dining", name="Dining"),
        Category(id="transport", name="Transport"),
        Category(id="uncategorized", name="Uncategorized"),
    ]


@pytest.fixture
def data_key():
    key = DataKey.generate()
    yield key
    key.destroy()


@pytest.fixture
def storage(tmp_path):
    return LocalVaultStorage(tmp_path / "device-a")


@pytest.fixture
def backup():
    return InMemoryBackupStore()


@pytest.fixture
def store(storage, backup):
    return VaultStore(storage, backup)


@pytest.fixture
def profile():
    return UserProfile(
        user_id="user-1",
        email="ada@example.com",
        display_name="Ada",
    )


@pytest.fixture
def ai_settings():
    return AiProviderSettings(
        provider=AiProvider.OPENAI,
        api_key="sk-test-secret",
        model="gpt-4o-mini",
    )


@pytest.fixture
def fake_ai():
    return FakeProviderClient()


@pytest.fixture
def failing_backup():
    return FailingBackupStore()


@pytest.fixture
def bank_link():
    return FakeBankLink()


@pytest.fixture
async def session(store, profile, secret):
    """A freshly created, unlocked vault session."""
    vault_session = await VaultSession.create(
        store, profile, secret, iterations=LOW_ITERATIONS,
    )
    yield vault_session
    vault_session.lock()


@pytest.fixture
def legacy_record(make_tx, secret):
    """A v1 record: old key names and plaintext metadata at the top level."""
    envelope, key = create_envelope("user-1", secret, iterations=LOW_ITERATIONS)
    shards = rebuild_shards(key, [
        make_tx("t-1", date="2026-08-02", merchant="Trader Joes", category_id="groceries"),
        make_tx("t-2", date="2026-09-03", merchant="Mystery Vendor"),
    ])
    key.destroy()
    return {
        "envelope": {
            "userId": envelope.owner_id,
            "salt": envelope.salt,
            "iv": envelope.iv,
            "encryptedDataKey": envelope.wrapped_data_key,
            "algorithm": "AES-GCM",
            "iterations": envelope.kdf_iterations,
        },
        "shards": [
            {
                "id": shard.id,
                "monthKey": shard.month_key,
                "encryptedPayload": shard.ciphertext,
                "iv": shard.iv,
                "updatedAt": shard.updated_at,
            }
            for shard in shards
        ],
        "categories": [
            {"id": "groceries", "name": "Groceries", "color": "#A8D8EA", "isDefault": True},
            {"id": "uncategorized", "name": "Uncategorized", "color": "#E6E6EA", "isDefault": True},
        ],
        "budgets": [{"categoryId": "groceries", "monthKey": "2026-09", "amount": 300}],
        "rules": [],
        "linkedAccounts": [],
        "familyMembers": [
            {"id": "m-1", "email": "kid@example.com", "displayName": "kid", "role": "member"},
        ],
    }

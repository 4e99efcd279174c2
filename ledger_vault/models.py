"""
Vault Data Models — Plaintext domain types and the persisted encrypted record.

All models serialize with camelCase keys (the wire and on-disk format) and
accept either camelCase or snake_case names on input.

Plaintext models (``Transaction``, ``VaultMetadata`` and its members) only
ever exist in memory or inside an AES-GCM ciphertext. The persisted models
(``KeyEnvelope``, ``VaultShard``, ``EncryptedBlob``, ``EncryptedVault``)
carry nothing but base64 ciphertext and KDF parameters.
"""
import re
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

UNCATEGORIZED = "uncategorized"

_ISO_MONTH_PREFIX = re.compile(r"^\d{4}-\d{2}")


class VaultModel(BaseModel):
    """Base model: camelCase aliases on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """Return a JSON-ready dict using camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Plaintext domain types
# ---------------------------------------------------------------------------

class TransactionSource(str, Enum):
    PROVIDER = "provider"
    MANUAL = "manual"


class Transaction(VaultModel):
    """A single bank or manual transaction.

    ``id`` is stable across re-syncs and is used for de-duplication.
    Instances are immutable; use ``model_copy(update=...)`` to change one.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    bank_account_id: str
    date: str
    merchant: str
    amount: float
    category_id: str = UNCATEGORIZED
    source: TransactionSource = TransactionSource.PROVIDER

    @field_validator("source", mode="before")
    @classmethod
    def legacy_source(cls, v: Any) -> Any:
        """Older vaults tag bank transactions with the link vendor's name."""
        if v == "plaid":
            return TransactionSource.PROVIDER
        return v

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: str) -> str:
        if not _ISO_MONTH_PREFIX.match(v):
            raise ValueError(f"Transaction date must be ISO-8601, got {v!r}")
        return v

    @property
    def month_key(self) -> str:
        return self.date[:7]

    @property
    def is_categorized(self) -> bool:
        return self.category_id != UNCATEGORIZED


class Category(VaultModel):
    id: str
    name: str
    color: str = "#E6E6EA"
    is_default: bool = False


class BudgetTarget(VaultModel):
    category_id: str
    month_key: str
    amount: float = Field(ge=0)


class CategorizationRule(VaultModel):
    """Learned merchant pattern → category mapping.

    ``pattern`` is stored already normalized (lowercase, single spaces).
    """

    id: str
    category_id: str
    pattern: str
    created_at: str
    hit_count: int = Field(default=1, ge=1)


class BankAccount(VaultModel):
    id: str
    provider_account_id: Optional[str] = None
    institution_name: str
    account_name: str
    mask: str
    added_at: str


class FamilyMember(VaultModel):
    id: str
    email: str
    display_name: str
    role: Literal["owner", "member"] = "member"


class AiProvider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


class AiProviderSettings(VaultModel):
    provider: AiProvider
    api_key: str = Field(default="", repr=False)
    model: str
    enabled: bool = True

    @property
    def usable(self) -> bool:
        return self.enabled and bool(self.api_key)


class VaultMetadata(VaultModel):
    """Everything in the vault except raw transactions."""

    categories: list[Category] = Field(default_factory=list)
    budgets: list[BudgetTarget] = Field(default_factory=list)
    rules: list[CategorizationRule] = Field(default_factory=list)
    linked_accounts: list[BankAccount] = Field(default_factory=list)
    family_members: list[FamilyMember] = Field(default_factory=list)
    ai_settings: Optional[AiProviderSettings] = None

    def category_ids(self) -> set[str]:
        return {c.id for c in self.categories}


class UserProfile(VaultModel):
    """Non-secret identity data returned by the identity provider."""

    user_id: str
    email: str
    display_name: str
    auth_method: Literal["password", "google"] = "password"


class RuleSuggestion(VaultModel):
    pattern: str
    category_id: str
    category_name: str
    count: int


# ---------------------------------------------------------------------------
# Persisted (encrypted) types
# ---------------------------------------------------------------------------

class KeyEnvelope(VaultModel):
    """Wrapped data key plus the parameters needed to re-derive the wrapping key.

    All byte fields are base64 strings. Immutable once created.
    """

    model_config = ConfigDict(frozen=True)

    owner_id: str
    salt: str
    iv: str
    wrapped_data_key: str
    algorithm: Literal["AES-GCM"] = "AES-GCM"
    kdf_iterations: int = Field(ge=1)


class EncryptedBlob(VaultModel):
    ciphertext: str
    iv: str


class VaultShard(VaultModel):
    """Encrypted batch of transactions for one calendar month."""

    id: str
    month_key: str
    ciphertext: str
    iv: str
    updated_at: str


# Top-level fields a legacy record may carry in plaintext.
PLAINTEXT_METADATA_FIELDS = (
    "categories",
    "budgets",
    "rules",
    "linkedAccounts",
    "familyMembers",
    "aiSettings",
)


class EncryptedVault(VaultModel):
    """The persisted aggregate: envelope, shard ciphertexts, metadata ciphertext.

    ``legacy_metadata`` is populated only when a legacy plaintext record was
    loaded. It is excluded from serialization and disappears on the next
    persist, which writes ``encrypted_metadata`` instead.
    """

    envelope: KeyEnvelope
    shards: list[VaultShard] = Field(default_factory=list)
    encrypted_metadata: Optional[EncryptedBlob] = None
    legacy_metadata: Optional[VaultMetadata] = Field(default=None, exclude=True)

    @property
    def owner_id(self) -> str:
        return self.envelope.owner_id

    @property
    def is_legacy(self) -> bool:
        return self.encrypted_metadata is None

    def to_record(self) -> dict[str, Any]:
        """Return the durable record: only envelope, shards and metadata ciphertext."""
        record: dict[str, Any] = {
            "envelope": self.envelope.to_wire(),
            "shards": [shard.to_wire() for shard in self.shards],
        }
        if self.encrypted_metadata is not None:
            record["encryptedMetadata"] = self.encrypted_metadata.to_wire()
        return record

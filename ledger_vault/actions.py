"""
Vault Actions — User-level operations on an unlocked ``VaultSession``.

Every action that changes state runs inside exactly one ``session.mutate()``
block, so it either lands completely (re-encrypted, persisted locally and
pushed) or not at all. Input problems raise ``ValueError`` (bad value) or
``KeyError`` (unknown id) before anything is touched.
"""
import re
import math
import asyncio
import logging
import uuid
from typing import Optional

from pydantic import BaseModel, Field

from .banklink import BankLinkProvider
from .categorization import (
    ProviderClient,
    auto_categorize,
    boost_or_create_rule,
    categorize_batch,
    merchant_prefix,
    suggest_rules,
)
from .defaults import PALETTE
from .exceptions import BankLinkError
from .models import (
    UNCATEGORIZED,
    AiProviderSettings,
    BankAccount,
    BudgetTarget,
    Category,
    FamilyMember,
    RuleSuggestion,
    Transaction,
)
from .session import VaultSession
from .vault.config import VaultConfig

logger = logging.getLogger("ledger_vault.vault")

_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_MONTH_KEY = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


class SyncReport(BaseModel):
    """Outcome of a sync or an on-demand AI pass."""

    new_transactions: int = 0
    categorized_count: int = 0
    error: Optional[str] = None
    sync_error: Optional[str] = None
    failed_accounts: list[str] = Field(default_factory=list)
    message: str = ""


# ---------------------------------------------------------------------------
# Bank link and sync
# ---------------------------------------------------------------------------

async def link_account(
    session: VaultSession,
    bank_link: BankLinkProvider,
    public_token: str,
) -> BankAccount:
    """Exchange a link token and add the resulting account to the vault.

    Linking an account that is already present returns the stored one.

    Raises:
        BankLinkError: If the token exchange fails.
    """
    account = await bank_link.exchange_public_token(public_token)
    if account is None:
        raise BankLinkError("bank link returned no account")
    for existing in session.metadata.linked_accounts:
        if existing.id == account.id:
            return existing
    async with session.mutate() as draft:
        draft.metadata.linked_accounts.append(account)
    logger.info(
        "Linked account %s (%s) for owner=%s",
        account.mask, account.institution_name, session.owner_id,
    )
    return account


async def _fetch_account(
    bank_link: BankLinkProvider,
    account: BankAccount,
    known_ids: set[str],
) -> Optional[list[Transaction]]:
    try:
        return await bank_link.sync_transactions(account.id, known_ids)
    except BankLinkError as err:
        logger.warning(
            "Bank sync failed for account=%s: %s", account.id, err.message,
        )
        return None


def _report_message(report: SyncReport, default: str) -> str:
    if report.error:
        return f"AI error: {report.error}"
    if report.categorized_count > 0:
        return f"AI categorized {report.categorized_count} transaction(s)"
    return default


async def sync_now(
    session: VaultSession,
    bank_link: BankLinkProvider,
    ai_client: Optional[ProviderClient] = None,
    config: Optional[VaultConfig] = None,
) -> SyncReport:
    """Pull new transactions for every linked account, categorize and persist.

    A failing account is reported in ``failed_accounts``; the other accounts
    still sync.
    """
    metadata = session.metadata
    known = list(session.transactions)
    known_ids = {tx.id for tx in known}
    results = await asyncio.gather(*[
        _fetch_account(bank_link, account, known_ids)
        for account in metadata.linked_accounts
    ])

    report = SyncReport()
    incoming: list[Transaction] = []
    for account, fetched in zip(metadata.linked_accounts, results):
        if fetched is None:
            report.failed_accounts.append(account.id)
            continue
        for tx in fetched:
            if tx.id in known_ids:
                continue
            known_ids.add(tx.id)
            incoming.append(tx)
    report.new_transactions = len(incoming)

    result = await categorize_batch(
        known + incoming,
        metadata.rules,
        metadata.categories,
        metadata.ai_settings,
        client=ai_client,
        config=config,
    )
    async with session.mutate() as draft:
        draft.transactions = result.transactions
        draft.metadata.rules = result.rules

    report.categorized_count = result.categorized_count
    report.error = result.error
    report.sync_error = session.sync_error
    report.message = _report_message(
        report, f"Synced {report.new_transactions} new transaction(s)",
    )
    return report


async def ai_categorize(
    session: VaultSession,
    ai_client: Optional[ProviderClient] = None,
    config: Optional[VaultConfig] = None,
) -> SyncReport:
    """Run the categorization pipeline over the vault's current transactions."""
    metadata = session.metadata
    if metadata.ai_settings is None or not metadata.ai_settings.enabled:
        return SyncReport(message="AI categorization is not enabled")
    result = await categorize_batch(
        list(session.transactions),
        metadata.rules,
        metadata.categories,
        metadata.ai_settings,
        client=ai_client,
        config=config,
    )
    async with session.mutate() as draft:
        draft.transactions = result.transactions
        draft.metadata.rules = result.rules
    report = SyncReport(
        categorized_count=result.categorized_count,
        error=result.error,
        sync_error=session.sync_error,
    )
    if report.error:
        report.message = f"Error: {report.error}"
    elif report.categorized_count > 0:
        report.message = f"Categorized {report.categorized_count} transaction(s)"
    else:
        report.message = "No new transactions to categorize"
    return report


# ---------------------------------------------------------------------------
# Categories and rules
# ---------------------------------------------------------------------------

async def update_transaction_category(
    session: VaultSession,
    tx_id: str,
    category_id: str,
) -> Transaction:
    """Manually recategorize one transaction and learn a rule from it.

    The learned rule (2-word merchant prefix) is applied right away to the
    other uncategorized transactions.

    Raises:
        KeyError: If the transaction or the category does not exist.
    """
    if category_id not in session.metadata.category_ids():
        raise KeyError(f"Unknown category: {category_id}")
    async with session.mutate() as draft:
        for index, tx in enumerate(draft.transactions):
            if tx.id == tx_id:
                break
        else:
            raise KeyError(f"Unknown transaction: {tx_id}")
        updated = tx.model_copy(update={"category_id": category_id})
        draft.transactions[index] = updated
        if category_id != UNCATEGORIZED:
            draft.metadata.rules = boost_or_create_rule(
                draft.metadata.rules, merchant_prefix(tx.merchant), category_id,
            )
            draft.transactions = auto_categorize(
                draft.transactions, draft.metadata.rules,
            )
    return updated


def suggested_rules(session: VaultSession) -> list[RuleSuggestion]:
    metadata = session.metadata
    return suggest_rules(session.transactions, metadata.rules, metadata.categories)


async def accept_suggestion(
    session: VaultSession,
    suggestion: RuleSuggestion,
) -> None:
    """Turn a rule suggestion into a rule and apply it to uncategorized transactions.

    Raises:
        KeyError: If the suggested category no longer exists.
    """
    if suggestion.category_id not in session.metadata.category_ids():
        raise KeyError(f"Unknown category: {suggestion.category_id}")
    async with session.mutate() as draft:
        draft.metadata.rules = boost_or_create_rule(
            draft.metadata.rules, suggestion.pattern, suggestion.category_id,
        )
        draft.transactions = auto_categorize(
            draft.transactions, draft.metadata.rules,
        )


async def add_category(session: VaultSession, name: str) -> Category:
    """Add a user category; the id is the hyphenated 2-word normalized name.

    Raises:
        ValueError: If the name is blank or its id is already taken.
    """
    display = name.strip()
    if not display:
        raise ValueError("Category name must not be empty")
    category_id = merchant_prefix(display).replace(" ", "-")
    async with session.mutate() as draft:
        if category_id in draft.metadata.category_ids():
            raise ValueError(f"Category already exists: {category_id}")
        category = Category(
            id=category_id,
            name=display,
            color=PALETTE[len(draft.metadata.categories) % len(PALETTE)],
            is_default=False,
        )
        draft.metadata.categories.append(category)
    return category


async def save_budget(
    session: VaultSession,
    category_id: str,
    amount: float,
    month: str,
) -> BudgetTarget:
    """Set the budget for one category in one month, replacing any previous one.

    Raises:
        ValueError: If ``amount`` is negative or not finite, or ``month`` is not ``YYYY-MM``.
        KeyError: If the category does not exist.
    """
    if not math.isfinite(amount) or amount < 0:
        raise ValueError(f"Budget amount must be a finite non-negative number, got {amount!r}")
    if not _MONTH_KEY.match(month):
        raise ValueError(f"Budget month must be YYYY-MM, got {month!r}")
    if category_id not in session.metadata.category_ids():
        raise KeyError(f"Unknown category: {category_id}")
    target = BudgetTarget(category_id=category_id, month_key=month, amount=amount)
    async with session.mutate() as draft:
        draft.metadata.budgets = [
            b for b in draft.metadata.budgets
            if not (b.category_id == category_id and b.month_key == month)
        ]
        draft.metadata.budgets.append(target)
    return target


# ---------------------------------------------------------------------------
# Family, AI settings, account
# ---------------------------------------------------------------------------

async def add_family_member(session: VaultSession, email: str) -> FamilyMember:
    """Invite a family member by email; an address already present is returned as-is.

    Raises:
        ValueError: If ``email`` is not a valid address.
    """
    normalized = email.strip().lower()
    if not _EMAIL.match(normalized):
        raise ValueError(f"Invalid email address: {email!r}")
    for member in session.metadata.family_members:
        if member.email == normalized:
            return member
    member = FamilyMember(
        id=str(uuid.uuid4()),
        email=normalized,
        display_name=normalized.split("@")[0],
        role="member",
    )
    async with session.mutate() as draft:
        draft.metadata.family_members.append(member)
    return member


async def remove_family_member(session: VaultSession, member_id: str) -> None:
    """Raises ``KeyError`` if no member has ``member_id``."""
    async with session.mutate() as draft:
        remaining = [m for m in draft.metadata.family_members if m.id != member_id]
        if len(remaining) == len(draft.metadata.family_members):
            raise KeyError(f"Unknown family member: {member_id}")
        draft.metadata.family_members = remaining


async def update_ai_settings(
    session: VaultSession,
    settings: Optional[AiProviderSettings],
) -> None:
    """Store (or with None, clear) the AI provider settings inside the encrypted metadata."""
    async with session.mutate() as draft:
        draft.metadata.ai_settings = settings
    logger.info(
        "AI settings %s for owner=%s",
        "cleared" if settings is None else f"set to {settings.provider.value}",
        session.owner_id,
    )


async def delete_account(session: VaultSession) -> None:
    """Delete the remote backup, wipe local storage and lock the session.

    Raises:
        RemoteSyncError: If the remote record could not be deleted; local
            data is left in place in that case.
    """
    owner_id = session.owner_id
    await session.store.delete_remote(owner_id)
    session.store.local.clear()
    session.lock()
    logger.info("Deleted vault for owner=%s", owner_id)

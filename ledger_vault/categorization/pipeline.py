"""
Categorization Pipeline — Tier 1 rules/heuristics followed by the AI tier.

    1. rules + heuristic dictionary (synchronous, deterministic)
    2. one AI call for whatever tier 1 left uncategorized (only when AI
       settings are present, enabled and keyed)
    3. accepted AI answers (confidence >= ACCEPT_THRESHOLD) are applied;
       answers >= AUTO_RULE_THRESHOLD also teach a rule

A failed AI call never rolls back tier-1 output: the tier-1 result is
returned with ``error`` set.
"""
import logging
from typing import Optional

from pydantic import BaseModel, Field

from ..models import (
    UNCATEGORIZED,
    AiProviderSettings,
    CategorizationRule,
    Category,
    Transaction,
)
from ..vault.config import VaultConfig
from .ai import ACCEPT_THRESHOLD, AUTO_RULE_THRESHOLD, classify_transactions
from .providers import ProviderClient
from .rules import auto_categorize, auto_rule_pattern, boost_or_create_rule

logger = logging.getLogger("ledger_vault.categorization")


class CategorizationResult(BaseModel):
    """Pipeline output. ``categorized_count`` counts AI acceptances only."""

    transactions: list[Transaction] = Field(default_factory=list)
    rules: list[CategorizationRule] = Field(default_factory=list)
    categorized_count: int = 0
    error: Optional[str] = None


async def categorize_batch(
    transactions: list[Transaction],
    rules: list[CategorizationRule],
    categories: list[Category],
    ai_settings: Optional[AiProviderSettings] = None,
    client: Optional[ProviderClient] = None,
    config: Optional[VaultConfig] = None,
) -> CategorizationResult:
    """Run the full two-tier pipeline over ``transactions``.

    Args:
        transactions: Every transaction to consider (categorized ones are kept as-is).
        rules: Learned rules, in insertion order.
        categories: Available categories.
        ai_settings: Optional AI provider settings from the vault metadata.
        client: Provider client override (defaults to the settings' provider).
        config: Vault configuration (timeouts, relay URL).

    Returns:
        CategorizationResult with updated transactions and rules.
    """
    updated = auto_categorize(transactions, rules)
    current_rules = list(rules)
    pending = [tx for tx in updated if not tx.is_categorized]

    if ai_settings is None or not ai_settings.usable or not pending:
        return CategorizationResult(transactions=updated, rules=current_rules)

    batch = await classify_transactions(
        pending, categories, current_rules, ai_settings,
        client=client, config=config,
    )
    if batch.error:
        return CategorizationResult(
            transactions=updated, rules=current_rules, error=batch.error,
        )

    pending_ids = {tx.id for tx in pending}
    categorized = 0
    output = []
    for tx in updated:
        classification = batch.classifications.get(tx.id)
        if (
            tx.id not in pending_ids
            or classification is None
            or classification.confidence < ACCEPT_THRESHOLD
            or classification.category_id == UNCATEGORIZED
        ):
            output.append(tx)
            continue
        categorized += 1
        if classification.confidence >= AUTO_RULE_THRESHOLD:
            pattern = auto_rule_pattern(tx.merchant)
            if pattern:
                current_rules = boost_or_create_rule(
                    current_rules, pattern, classification.category_id,
                )
        output.append(
            tx.model_copy(update={"category_id": classification.category_id})
        )

    logger.info(
        "AI categorized %d of %d pending transaction(s)",
        categorized, len(pending),
    )
    return CategorizationResult(
        transactions=output,
        rules=current_rules,
        categorized_count=categorized,
    )

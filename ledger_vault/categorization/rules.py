"""Deterministic transaction categorization (tier 1) and rule learning.

Tier 1 runs synchronously on every batch entering the vault:

1. learned rules: first rule whose pattern is contained in the normalized
   merchant wins (rules are checked in insertion order)
2. heuristic dictionary: first keyword contained in the merchant wins
3. otherwise the transaction stays ``uncategorized``

Transactions that already carry a category are never touched.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from ..models import (
    UNCATEGORIZED,
    CategorizationRule,
    Category,
    RuleSuggestion,
    Transaction,
)

# Ordering matters: earlier keywords win.
HEURISTIC_KEYWORDS: dict[str, str] = {
    "trader": "groceries",
    "market": "groceries",
    "uber": "transport",
    "lyft": "transport",
    "shell": "transport",
    "rent": "housing",
    "electric": "utilities",
    "water": "utilities",
    "coffee": "dining",
    "restaurant": "dining",
    "pharmacy": "health",
    "doctor": "health",
    "cinema": "entertainment",
    "store": "shopping",
}

SUGGESTION_MIN_COUNT = 3
SUGGESTION_LIMIT = 3

_WHITESPACE = re.compile(r"\s+")


def normalize_merchant(merchant: str | None) -> str:
    """Lowercase, collapse whitespace and trim a merchant string."""
    return _WHITESPACE.sub(" ", (merchant or "").lower()).strip()


def merchant_prefix(merchant: str, words: int = 2) -> str:
    """The first ``words`` words of the normalized merchant (manual-rule pattern)."""
    return " ".join(normalize_merchant(merchant).split(" ")[:words])


def auto_rule_pattern(merchant: str) -> str:
    """Pattern learned from a high-confidence AI hit: first 3 words longer than 2 chars."""
    words = [w for w in normalize_merchant(merchant).split(" ") if len(w) > 2]
    return " ".join(words[:3])


def match_rule(
    tx: Transaction,
    rules: Iterable[CategorizationRule],
) -> Optional[CategorizationRule]:
    merchant = normalize_merchant(tx.merchant)
    for rule in rules:
        if rule.pattern and rule.pattern in merchant:
            return rule
    return None


def match_heuristic(merchant: str) -> Optional[str]:
    text = normalize_merchant(merchant)
    for keyword, category_id in HEURISTIC_KEYWORDS.items():
        if keyword in text:
            return category_id
    return None


def categorize_transaction(
    tx: Transaction,
    rules: Iterable[CategorizationRule],
) -> str:
    """Return the tier-1 category for a transaction, ignoring its current one."""
    rule = match_rule(tx, rules)
    if rule is not None:
        return rule.category_id
    return match_heuristic(tx.merchant) or UNCATEGORIZED


def auto_categorize(
    transactions: Iterable[Transaction],
    rules: list[CategorizationRule],
) -> list[Transaction]:
    """Apply tier 1 to every uncategorized transaction.

    Returns new Transaction objects; inputs are not mutated.
    """
    output = []
    for tx in transactions:
        if tx.is_categorized:
            output.append(tx)
            continue
        category_id = categorize_transaction(tx, rules)
        if category_id == UNCATEGORIZED:
            output.append(tx)
        else:
            output.append(tx.model_copy(update={"category_id": category_id}))
    return output


def boost_or_create_rule(
    rules: list[CategorizationRule],
    pattern: str,
    category_id: str,
) -> list[CategorizationRule]:
    """Increment the hit count of a matching rule, or append a new one.

    A rule matches when both its normalized pattern and its category are
    equal. Returns a new list; the input is left unchanged.
    """
    normalized = normalize_merchant(pattern)
    if not normalized:
        return list(rules)
    for index, rule in enumerate(rules):
        if rule.pattern == normalized and rule.category_id == category_id:
            boosted = rule.model_copy(update={"hit_count": rule.hit_count + 1})
            return [*rules[:index], boosted, *rules[index + 1:]]
    created = CategorizationRule(
        id=str(uuid.uuid4()),
        category_id=category_id,
        pattern=normalized,
        created_at=datetime.now(timezone.utc).isoformat(),
        hit_count=1,
    )
    return [*rules, created]


def suggest_rules(
    transactions: Iterable[Transaction],
    rules: list[CategorizationRule],
    categories: list[Category],
) -> list[RuleSuggestion]:
    """Surface merchant prefixes worth turning into rules.

    Categorized transactions are counted per (2-word merchant prefix,
    category) pair. Up to ``SUGGESTION_LIMIT`` pairs seen at least
    ``SUGGESTION_MIN_COUNT`` times without an existing rule are returned in
    discovery order.
    """
    counts: dict[tuple[str, str], int] = {}
    for tx in transactions:
        if not tx.is_categorized:
            continue
        key = (merchant_prefix(tx.merchant), tx.category_id)
        counts[key] = counts.get(key, 0) + 1

    existing = {(rule.pattern, rule.category_id) for rule in rules}
    names = {category.id: category.name for category in categories}
    suggestions = []
    for (pattern, category_id), count in counts.items():
        if count < SUGGESTION_MIN_COUNT or (pattern, category_id) in existing:
            continue
        suggestions.append(
            RuleSuggestion(
                pattern=pattern,
                category_id=category_id,
                category_name=names.get(category_id, "Unknown"),
                count=count,
            )
        )
        if len(suggestions) == SUGGESTION_LIMIT:
            break
    return suggestions

"""Transaction categorization.

Tier 1 is deterministic and local (learned rules, then a keyword
dictionary). Tier 2 asks the configured AI provider about whatever tier 1
could not place, and only applies confident answers.
"""
from .rules import (
    auto_categorize,
    auto_rule_pattern,
    boost_or_create_rule,
    merchant_prefix,
    normalize_merchant,
    suggest_rules,
)
from .ai import (
    ACCEPT_THRESHOLD,
    AUTO_RULE_THRESHOLD,
    MAX_BATCH,
    MAX_RULE_CONTEXT,
    classify_transactions,
    parse_ai_response,
)
from .providers import ProviderClient, client_for
from .pipeline import CategorizationResult, categorize_batch

__all__ = [
    "auto_categorize",
    "auto_rule_pattern",
    "boost_or_create_rule",
    "merchant_prefix",
    "normalize_merchant",
    "suggest_rules",
    "ACCEPT_THRESHOLD",
    "AUTO_RULE_THRESHOLD",
    "MAX_BATCH",
    "MAX_RULE_CONTEXT",
    "classify_transactions",
    "parse_ai_response",
    "ProviderClient",
    "client_for",
    "CategorizationResult",
    "categorize_batch",
]

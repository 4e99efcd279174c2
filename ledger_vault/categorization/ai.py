"""
AI Classification (tier 2) — Prompt construction, response parsing and the
single provider call per batch.

The model is a classifier, not an oracle: it may only choose among the
caller's category ids, and every answer carries a confidence that gates
whether it is applied at all.

- ``build_prompt`` lists the categories, up to ``MAX_RULE_CONTEXT`` learned
  rules and up to ``MAX_BATCH`` transactions.
- ``parse_ai_response`` extracts the first top-level JSON array from the
  raw text (prose and code fences are tolerated) and validates each entry on
  its own; bad entries are dropped, the rest of the batch still applies.
- ``classify_transactions`` never raises for provider failures; it returns
  the error as a string next to an empty result.
"""
import math
import logging
from typing import Any, Iterable, Optional

import orjson
from pydantic import BaseModel, Field

from ..exceptions import ClassificationValidationError, ProviderError
from ..models import (
    UNCATEGORIZED,
    AiProviderSettings,
    CategorizationRule,
    Category,
    Transaction,
)
from ..vault.config import VaultConfig
from .providers import ProviderClient, client_for

logger = logging.getLogger("ledger_vault.categorization")

ACCEPT_THRESHOLD = 0.7
AUTO_RULE_THRESHOLD = 0.9
MAX_BATCH = 50
MAX_RULE_CONTEXT = 30


class AiClassification(BaseModel):
    category_id: str
    confidence: float = Field(ge=0.0, le=1.0)


class ClassificationBatch(BaseModel):
    classifications: dict[str, AiClassification] = Field(default_factory=dict)
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Prompt construction
# ---------------------------------------------------------------------------

def build_prompt(
    transactions: list[Transaction],
    categories: list[Category],
    rules: list[CategorizationRule],
) -> str:
    """Build the single classification prompt for one batch."""
    category_list = "\n".join(
        f"- {c.id}: {c.name}" for c in categories if c.id != UNCATEGORIZED
    )
    if rules:
        rule_list = "\n".join(
            f'- "{r.pattern}" -> {r.category_id}' for r in rules[:MAX_RULE_CONTEXT]
        )
    else:
        rule_list = "(none yet)"
    tx_list = "\n".join(
        f'{i}. id:"{tx.id}" description:"{tx.merchant}" amount:{tx.amount}'
        for i, tx in enumerate(transactions[:MAX_BATCH], start=1)
    )
    return f"""You are a financial transaction categorizer. Classify each transaction into exactly one of the available categories. Consider the merchant/description text, amount, and any known patterns.

Available categories:
{category_list}

Known patterns from user rules:
{rule_list}

Transactions to classify:
{tx_list}

Respond with ONLY a JSON array, no other text. Each element must have exactly these fields:
[{{"id":"<transaction id>","categoryId":"<category id>","confidence":<0.0-1.0>}}]

Rules:
- categoryId MUST be one of the available category ids listed above.
- confidence should reflect how certain you are (1.0 = certain, 0.5 = guessing).
- For e-transfers to individuals, use the most likely category based on context, or assign low confidence if unclear.
- For payroll/salary deposits, use "{UNCATEGORIZED}" with low confidence (the user may want a custom category).
- Return one entry per transaction, in the same order."""


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def extract_json_array(raw: str) -> Optional[str]:
    """Return the first top-level ``[...]`` span in ``raw``, or None.

    Brackets inside JSON string literals are ignored.
    """
    start = raw.find("[")
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(raw)):
        char = raw[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                return raw[start:index + 1]
    return None


def validate_entry(
    item: Any,
    valid_category_ids: set[str],
) -> tuple[str, AiClassification]:
    """Validate one classification entry and clamp its confidence.

    Raises:
        ClassificationValidationError: If a field is missing, has the wrong
            type, or names a category outside ``valid_category_ids``.
    """
    if not isinstance(item, dict):
        raise ClassificationValidationError("entry is not an object")
    tx_id = item.get("id")
    category_id = item.get("categoryId")
    confidence = item.get("confidence")
    if not isinstance(tx_id, str) or not tx_id:
        raise ClassificationValidationError("entry id must be a string")
    if not isinstance(category_id, str):
        raise ClassificationValidationError("entry categoryId must be a string")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise ClassificationValidationError("entry confidence must be a number")
    if not math.isfinite(confidence):
        raise ClassificationValidationError("entry confidence must be finite")
    if category_id not in valid_category_ids:
        raise ClassificationValidationError(
            "entry categoryId is not a known category",
            details={"category_id": category_id},
        )
    clamped = max(0.0, min(1.0, float(confidence)))
    return tx_id, AiClassification(category_id=category_id, confidence=clamped)


def parse_ai_response(
    raw: str,
    valid_category_ids: set[str],
) -> dict[str, AiClassification]:
    """Parse provider text into classifications keyed by transaction id.

    Malformed JSON or a non-array payload yields an empty mapping.
    """
    span = extract_json_array(raw or "")
    if span is None:
        return {}
    try:
        parsed = orjson.loads(span)
    except orjson.JSONDecodeError:
        logger.info("AI response array is not valid JSON; ignoring it")
        return {}
    if not isinstance(parsed, list):
        return {}

    result: dict[str, AiClassification] = {}
    dropped = 0
    for item in parsed:
        try:
            tx_id, classification = validate_entry(item, valid_category_ids)
        except ClassificationValidationError:
            dropped += 1
            continue
        result[tx_id] = classification
    if dropped:
        logger.info("Dropped %d invalid AI classification entr(ies)", dropped)
    return result


def valid_category_ids(categories: Iterable[Category]) -> set[str]:
    """Category ids the AI may answer with; ``uncategorized`` is always allowed."""
    ids = {c.id for c in categories}
    ids.add(UNCATEGORIZED)
    return ids


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

async def classify_transactions(
    transactions: list[Transaction],
    categories: list[Category],
    rules: list[CategorizationRule],
    settings: AiProviderSettings,
    client: Optional[ProviderClient] = None,
    config: Optional[VaultConfig] = None,
) -> ClassificationBatch:
    """Classify up to ``MAX_BATCH`` transactions with one provider call.

    Returns:
        ClassificationBatch; ``error`` is set when the provider call failed.
    """
    if not settings.usable or not transactions:
        return ClassificationBatch()
    batch = transactions[:MAX_BATCH]
    if len(transactions) > MAX_BATCH:
        logger.info(
            "Classifying %d of %d transactions; the rest wait for the next cycle",
            MAX_BATCH, len(transactions),
        )
    prompt = build_prompt(batch, categories, rules)
    client = client or client_for(settings, config)
    try:
        raw = await client.complete(prompt, settings.api_key, settings.model)
    except ProviderError as err:
        logger.warning(
            "AI classification via %s failed: %s",
            settings.provider.value, err.message,
        )
        return ClassificationBatch(error=err.message)
    classifications = parse_ai_response(raw, valid_category_ids(categories))
    logger.debug(
        "AI returned %d usable classification(s) for %d transaction(s)",
        len(classifications), len(batch),
    )
    return ClassificationBatch(classifications=classifications)

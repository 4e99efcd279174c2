"""Defaults for freshly created vaults."""
from .models import UNCATEGORIZED, BudgetTarget, Category, VaultMetadata

DEFAULT_BUDGET_AMOUNT = 400.0

DEFAULT_CATEGORIES: list[Category] = [
    Category(id="groceries", name="Groceries", color="#A8D8EA", is_default=True),
    Category(id="housing", name="Housing", color="#AA96DA", is_default=True),
    Category(id="utilities", name="Utilities", color="#FCBAD3", is_default=True),
    Category(id="transport", name="Transport", color="#FBC687", is_default=True),
    Category(id="dining", name="Dining", color="#B5EAD7", is_default=True),
    Category(id="health", name="Health", color="#C7CEEA", is_default=True),
    Category(id="shopping", name="Shopping", color="#FFDAC1", is_default=True),
    Category(id="entertainment", name="Fun", color="#E2F0CB", is_default=True),
    Category(id=UNCATEGORIZED, name="Uncategorized", color="#E6E6EA", is_default=True),
]

# colours cycled through for user-created categories
PALETTE = ["#A8D8EA", "#AA96DA", "#FCBAD3", "#B5EAD7", "#FBC687"]


def default_metadata(month_key: str) -> VaultMetadata:
    """Metadata for a new vault: default categories and a budget for each."""
    return VaultMetadata(
        categories=[c.model_copy() for c in DEFAULT_CATEGORIES],
        budgets=[
            BudgetTarget(
                category_id=c.id,
                month_key=month_key,
                amount=DEFAULT_BUDGET_AMOUNT,
            )
            for c in DEFAULT_CATEGORIES
            if c.id != UNCATEGORIZED
        ],
    )

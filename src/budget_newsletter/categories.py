"""Category classification into Conscious Spending Plan buckets.

A strict priority cascade decides the bucket of every category; the first
step that produces an answer wins:

1. **Explicit mapping by id** from ``CspSettings.category_mappings``.
2. **Explicit mapping by name** from the same table.
3. **Group name** lookup (case-folded, trimmed).
4. **Keyword scan** over the category name, only when
   ``use_keyword_fallback`` is enabled. Lists are scanned in the order
   investments, savings, fixed costs.
5. **Default** ``guiltFree``: anything not explicitly an obligation,
   investment, or savings goal is discretionary.

Depends on ``models.py`` only.
"""

from __future__ import annotations

from budget_newsletter.models import (
    BUCKETS,
    FIXED_COSTS,
    GUILT_FREE,
    INVESTMENTS,
    SAVINGS,
    TRUE_EXPENSE_BUCKETS,
    CspSettings,
)

GROUP_NAME_TO_BUCKET = {
    "fixed costs": FIXED_COSTS,
    "fixed": FIXED_COSTS,
    "bills": FIXED_COSTS,
    "monthly bills": FIXED_COSTS,
    "investments": INVESTMENTS,
    "investing": INVESTMENTS,
    "post tax investments": INVESTMENTS,
    "post-tax investments": INVESTMENTS,
    "savings": SAVINGS,
    "saving": SAVINGS,
    "savings goals": SAVINGS,
    "true expenses": GUILT_FREE,
    "guilt free": GUILT_FREE,
    "guilt-free": GUILT_FREE,
    "guilt free spending": GUILT_FREE,
    "guilt-free spending": GUILT_FREE,
    "discretionary": GUILT_FREE,
    "fun money": GUILT_FREE,
    "spending": GUILT_FREE,
    "variable expenses": GUILT_FREE,
}

INVESTMENT_KEYWORDS = (
    "investment",
    "retirement",
    "401k",
    "ira",
    "roth",
    "stock",
    "etf",
    "mutual fund",
    "brokerage",
    "investing",
)

SAVINGS_KEYWORDS = (
    "savings",
    "emergency",
    "vacation",
    "travel",
    "gift",
    "holiday",
    "christmas",
    "birthday",
    "wedding",
    "fund",
    "goal",
    "reserve",
    "house",
    "down payment",
    "sinking",
)

FIXED_COST_KEYWORDS = (
    "rent",
    "mortgage",
    "utilities",
    "electric",
    "gas",
    "water",
    "internet",
    "phone",
    "insurance",
    "car payment",
    "auto",
    "transportation",
    "groceries",
    "subscription",
    "netflix",
    "spotify",
    "gym",
    "membership",
    "loan",
    "debt",
    "payment",
    "cable",
    "trash",
    "sewer",
    "hoa",
)

_KEYWORD_ORDER = (
    (INVESTMENTS, INVESTMENT_KEYWORDS),
    (SAVINGS, SAVINGS_KEYWORDS),
    (FIXED_COSTS, FIXED_COST_KEYWORDS),
)


def bucket_for_group(group_name: str | None) -> str | None:
    """Look up a bucket from a category group name, or ``None``."""
    if not group_name:
        return None
    return GROUP_NAME_TO_BUCKET.get(group_name.strip().casefold())


def bucket_for_keywords(category_name: str | None) -> str | None:
    """Scan *category_name* for bucket keywords, or return ``None``."""
    if not category_name:
        return None
    lowered = category_name.casefold()
    for bucket, keywords in _KEYWORD_ORDER:
        if any(keyword in lowered for keyword in keywords):
            return bucket
    return None


def classify_category(
    category_id: str | None,
    category_name: str | None,
    group_name: str | None,
    settings: CspSettings,
) -> str:
    """Resolve the CSP bucket for a category.

    Args:
        category_id: Provider category id, if known.
        category_name: Category display name, if known.
        group_name: Name of the category's group, if known.
        settings: Per-user CSP settings carrying explicit mappings and the
            keyword fallback switch.

    Returns:
        One of the four bucket names.
    """
    mappings = settings.category_mappings
    if category_id and mappings.get(category_id) in BUCKETS:
        return mappings[category_id]
    if category_name and mappings.get(category_name) in BUCKETS:
        return mappings[category_name]

    bucket = bucket_for_group(group_name)
    if bucket is not None:
        return bucket

    if settings.use_keyword_fallback:
        bucket = bucket_for_keywords(category_name)
        if bucket is not None:
            return bucket

    return GUILT_FREE


def is_true_expense(bucket: str | None) -> bool:
    """True if *bucket* is a consumption bucket (fixed costs or guilt-free)."""
    return bucket in TRUE_EXPENSE_BUCKETS

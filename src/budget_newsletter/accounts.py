"""Account classification into net-worth groups.

Rules are evaluated in order and the first match wins:

1. Closed accounts are dropped.
2. Liability types or loan-like names are ``debt``.
3. Home-value tracking names are ``property``.
4. ``otherAsset`` or retirement/brokerage names are ``investment``.
5. Savings types or names are ``savings``.
6. Checking types or names are ``cash``.
7. Remaining on-budget accounts are ``cash``; off-budget ones ``property``.
"""

from __future__ import annotations

import logging

from budget_newsletter.models import (
    ACCOUNT_CASH,
    ACCOUNT_DEBT,
    ACCOUNT_INVESTMENT,
    ACCOUNT_PROPERTY,
    ACCOUNT_SAVINGS,
    Account,
    AccountPartition,
    ClassifiedAccount,
)

logger = logging.getLogger(__name__)

DEBT_TYPES = frozenset(
    {"creditcard", "loan", "mortgage", "otherliability", "lineofcredit"}
)
DEBT_NAME_TERMS = ("mortgage", "loan", "credit card")
PROPERTY_NAME_TERMS = (
    "home value",
    "redfin",
    "zillow",
    "property value",
    "real estate",
)
INVESTMENT_NAME_TERMS = (
    "401k",
    "401(k)",
    "ira",
    "roth",
    "hsa",
    "brokerage",
    "investment",
    "stock",
    "rsu",
    "espp",
    "fidelity",
    "vanguard",
    "schwab",
    "retirement",
)
SAVINGS_NAME_TERMS = ("savings", "emergency", "hysa", "high yield")


def classify_account(account: Account) -> str | None:
    """Return the kind of *account*, or ``None`` if it is closed."""
    if account.closed:
        return None

    name = account.name.lower()
    account_type = account.type.lower()

    # Provider subtypes such as autoLoan / studentLoan / medicalDebt.
    if (
        account_type in DEBT_TYPES
        or account_type.endswith(("loan", "debt"))
        or _contains_any(name, DEBT_NAME_TERMS)
    ):
        return ACCOUNT_DEBT
    if _contains_any(name, PROPERTY_NAME_TERMS):
        return ACCOUNT_PROPERTY
    if account_type == "otherasset" or _contains_any(name, INVESTMENT_NAME_TERMS):
        return ACCOUNT_INVESTMENT
    if account_type == "savings" or _contains_any(name, SAVINGS_NAME_TERMS):
        return ACCOUNT_SAVINGS
    if account_type == "checking" or "checking" in name:
        return ACCOUNT_CASH
    return ACCOUNT_CASH if account.on_budget else ACCOUNT_PROPERTY


def classify_accounts(accounts: list[Account]) -> AccountPartition:
    """Partition *accounts* and collect the investment account ids."""
    classified: list[ClassifiedAccount] = []
    closed: list[Account] = []

    for account in accounts:
        kind = classify_account(account)
        if kind is None:
            closed.append(account)
            continue
        classified.append(ClassifiedAccount(account=account, kind=kind))

    investment_ids = frozenset(
        c.account.id for c in classified if c.kind == ACCOUNT_INVESTMENT
    )
    logger.debug(
        "Classified %d accounts (%d investment, %d closed)",
        len(classified),
        len(investment_ids),
        len(closed),
    )
    return AccountPartition(
        accounts=classified,
        investment_account_ids=investment_ids,
        closed=closed,
    )


def _contains_any(text: str, terms: tuple[str, ...]) -> bool:
    return any(term in text for term in terms)

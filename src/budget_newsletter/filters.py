"""Transaction filter: exclusion rules and per-transaction classification.

Every flattened transaction leaves this stage with exactly one class:
``excluded``, ``income``, ``expense``, ``refund`` or
``transferToInvestment``. Rules are applied in this order:

1. System payees (reconciliation adjustments, starting balances) are
   excluded.
2. Activity on investment accounts is excluded unless tracking accounts are
   included.
3. Transfers:

   - an outflow into an investment account is kept as
     ``transferToInvestment`` under the synthetic category
     ``Transfer: <account name>`` in the ``investments`` bucket;
   - a transfer with a category (e.g. a mortgage payment) is kept and
     classified like any other transaction;
   - any other transfer is an internal move and is excluded;
   - an uncategorized payee starting with ``transfer :`` is excluded.

Per-user exclusions (payees, income categories, expense categories) do not
change the class. They set ``settings_excluded`` so that CSP and trend
figures can leave the transaction out while the amounts are tallied for
diagnostics.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal

from budget_newsletter.categories import classify_category
from budget_newsletter.models import (
    INCOME_CATEGORY_NAMES,
    INVESTMENTS,
    KIND_EXCLUDED,
    KIND_EXPENSE,
    KIND_INCOME,
    KIND_REFUND,
    KIND_TRANSFER_TO_INVESTMENT,
    SYSTEM_PAYEES,
    UNCATEGORIZED,
    AccountPartition,
    BudgetSnapshot,
    CategoryInfo,
    ClassifiedTransaction,
    CspSettings,
    ExclusionTally,
    FilterResult,
    Transaction,
)

logger = logging.getLogger(__name__)

REASON_SYSTEM_PAYEE = "system_payee"
REASON_INVESTMENT_ACCOUNT = "investment_account"
REASON_INTERNAL_TRANSFER = "internal_transfer"
REASON_TRANSFER_PAYEE = "transfer_payee"

EXCLUDED_PAYEES = "payees"
EXCLUDED_INCOME_CATEGORIES = "incomeCategories"
EXCLUDED_EXPENSE_CATEGORIES = "expenseCategories"

TRANSFER_PAYEE_PREFIX = "transfer :"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def filter_transactions(
    snapshot: BudgetSnapshot,
    partition: AccountPartition,
    settings: CspSettings,
) -> FilterResult:
    """Classify every transaction in *snapshot*.

    Args:
        snapshot: Normalized budget data.
        partition: Account classification carrying investment account ids.
        settings: Per-user CSP settings.

    Returns:
        A :class:`FilterResult` with one classified record per input
        transaction, in input order, plus exclusion tallies.
    """
    result = FilterResult()
    excluded_payees = {p.strip().casefold() for p in settings.excluded_payees}

    for txn in snapshot.transactions:
        classified = _classify(txn, snapshot.category_index, partition, settings)

        if classified.kind == KIND_EXCLUDED:
            result.excluded.setdefault(classified.reason, ExclusionTally()).add(
                txn.amount
            )
        else:
            hidden_by = _settings_exclusion(classified, excluded_payees, settings)
            if hidden_by:
                result.settings_excluded.setdefault(hidden_by, ExclusionTally()).add(
                    txn.amount
                )
                classified = replace(classified, settings_excluded=True)

        result.transactions.append(classified)

    logger.debug(
        "Filtered %d transactions: %d kept, %d excluded, %d hidden by settings",
        len(result.transactions),
        len(result.kept()),
        sum(t.count for t in result.excluded.values()),
        sum(t.count for t in result.settings_excluded.values()),
    )
    return result


def is_income_category(category_name: str | None) -> bool:
    return category_name in INCOME_CATEGORY_NAMES


def excluded_total(result: FilterResult) -> Decimal:
    """Total absolute amount hidden by per-user exclusions."""
    return sum(
        (tally.amount for tally in result.settings_excluded.values()), Decimal("0")
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _excluded(txn: Transaction, reason: str) -> ClassifiedTransaction:
    return ClassifiedTransaction(txn=txn, kind=KIND_EXCLUDED, reason=reason)


def _classify(
    txn: Transaction,
    category_index: dict[str, CategoryInfo],
    partition: AccountPartition,
    settings: CspSettings,
) -> ClassifiedTransaction:
    investment_ids = partition.investment_account_ids

    if txn.payee_name in SYSTEM_PAYEES:
        return _excluded(txn, REASON_SYSTEM_PAYEE)

    if txn.account_id in investment_ids and not settings.include_tracking_accounts:
        return _excluded(txn, REASON_INVESTMENT_ACCOUNT)

    if txn.transfer_account_id:
        if txn.transfer_account_id in investment_ids and txn.amount < 0:
            target = partition.name_of(txn.transfer_account_id) or "Investment"
            return ClassifiedTransaction(
                txn=txn,
                kind=KIND_TRANSFER_TO_INVESTMENT,
                category_name=f"Transfer: {target}",
                group_name="",
                bucket=INVESTMENTS,
            )
        if not txn.category_id:
            return _excluded(txn, REASON_INTERNAL_TRANSFER)
    elif not txn.category_id and txn.payee_name.casefold().startswith(
        TRANSFER_PAYEE_PREFIX
    ):
        return _excluded(txn, REASON_TRANSFER_PAYEE)

    info = category_index.get(txn.category_id or "")
    category_name = txn.category_name or (info.name if info else "") or UNCATEGORIZED
    group_name = info.group_name if info else (txn.category_group_name or "")

    if is_income_category(category_name):
        return ClassifiedTransaction(
            txn=txn,
            kind=KIND_INCOME,
            category_name=category_name,
            group_name=group_name,
        )

    bucket = classify_category(txn.category_id, category_name, group_name, settings)
    kind = KIND_REFUND if txn.amount > 0 else KIND_EXPENSE
    return ClassifiedTransaction(
        txn=txn,
        kind=kind,
        category_name=category_name,
        group_name=group_name,
        bucket=bucket,
    )


def _matches_category(classified: ClassifiedTransaction, names: frozenset[str]) -> bool:
    return bool(
        (classified.txn.category_id and classified.txn.category_id in names)
        or classified.category_name in names
    )


def _settings_exclusion(
    classified: ClassifiedTransaction,
    excluded_payees: set[str],
    settings: CspSettings,
) -> str:
    if classified.txn.payee_name.strip().casefold() in excluded_payees:
        return EXCLUDED_PAYEES
    if classified.kind == KIND_INCOME:
        if _matches_category(classified, settings.excluded_income_categories):
            return EXCLUDED_INCOME_CATEGORIES
    elif _matches_category(classified, settings.excluded_expense_categories):
        return EXCLUDED_EXPENSE_CATEGORIES
    return ""


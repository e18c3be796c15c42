"""Monthly and windowed aggregation of classified transactions.

Income adds the signed amount. Spending adds ``-amount`` to the matching
total, so an outflow increases it and a refund reduces it. True expenses
(fixed costs and guilt-free) land in ``expenses``; investment and savings
outflows land in ``wealth_building``. ``net`` is derived last as
``income - expenses``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from budget_newsletter.models import (
    BUCKETS,
    KIND_EXCLUDED,
    KIND_INCOME,
    ZERO,
    ClassifiedTransaction,
    MonthlyTotals,
    month_key,
)


@dataclass
class CategoryTotal:
    """Netted spending of one category over a window."""

    name: str
    group_name: str
    bucket: str
    amount: Decimal = ZERO


def add_transaction(totals: MonthlyTotals, txn: ClassifiedTransaction) -> None:
    """Fold one kept transaction into *totals*."""
    if txn.kind == KIND_EXCLUDED:
        return
    totals.transaction_count += 1
    if txn.kind == KIND_INCOME:
        totals.income += txn.amount
    elif txn.is_true_expense:
        totals.expenses -= txn.amount
    elif txn.is_spending:
        totals.wealth_building -= txn.amount


def aggregate_monthly(
    transactions: Iterable[ClassifiedTransaction],
) -> dict[str, MonthlyTotals]:
    """Group transactions into :class:`MonthlyTotals` keyed by ``YYYY-MM``."""
    months: dict[str, MonthlyTotals] = {}
    for txn in transactions:
        if txn.kind == KIND_EXCLUDED:
            continue
        key = month_key(txn.date)
        totals = months.get(key)
        if totals is None:
            totals = months[key] = MonthlyTotals(month=key)
        add_transaction(totals, txn)
    return dict(sorted(months.items()))


def monthly_series(
    transactions: Iterable[ClassifiedTransaction],
    keys: list[str],
) -> list[MonthlyTotals]:
    """Return totals for each of *keys* in order, zero-filled when absent."""
    months = aggregate_monthly(transactions)
    return [months.get(key, MonthlyTotals(month=key)) for key in keys]


def in_window(txn: ClassifiedTransaction, start: date, end: date) -> bool:
    return start <= txn.date <= end


def window_totals(
    transactions: Iterable[ClassifiedTransaction],
    start: date,
    end: date,
) -> MonthlyTotals:
    """Totals for the inclusive window *start*..*end*."""
    totals = MonthlyTotals(month=f"{start.isoformat()}..{end.isoformat()}")
    for txn in transactions:
        if in_window(txn, start, end):
            add_transaction(totals, txn)
    return totals


def spending_by_category(
    transactions: Iterable[ClassifiedTransaction],
    start: date,
    end: date,
    true_expenses_only: bool = True,
) -> dict[str, CategoryTotal]:
    """Netted spending per category name within the window."""
    categories: dict[str, CategoryTotal] = {}
    for txn in transactions:
        if not txn.is_spending or not in_window(txn, start, end):
            continue
        if true_expenses_only and not txn.is_true_expense:
            continue
        total = categories.get(txn.category_name)
        if total is None:
            total = categories[txn.category_name] = CategoryTotal(
                name=txn.category_name,
                group_name=txn.group_name,
                bucket=txn.bucket or "",
            )
        total.amount -= txn.amount
    return categories


def spending_by_bucket(
    transactions: Iterable[ClassifiedTransaction],
    start: date,
    end: date,
) -> dict[str, Decimal]:
    """Netted spending per CSP bucket within the window, all buckets present."""
    buckets = {bucket: ZERO for bucket in BUCKETS}
    for txn in transactions:
        if txn.is_spending and in_window(txn, start, end):
            buckets[txn.bucket] -= txn.amount
    return buckets

"""Budget normalizer: raw provider payload to a canonical BudgetSnapshot.

This is the only place that knows about provider milli-units. Every amount
is divided by 1000 exactly once, here, and split transactions are flattened
so later stages never see a parent with sub-transactions.

Expected payload shape::

    {
        "budget": {"id": "...", "name": "..."},
        "accounts": [{"id", "name", "type", "balance", "on_budget", "closed"}],
        "transactions": [{"id", "date", "account_id", "amount", ...}],
        "categories": {"category_groups": [{"name", "categories": [...]}]},
    }

Amount fields may be named ``amount`` / ``balance`` (provider wire names)
or ``amount_milliunits`` / ``balance_milliunits``.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from decimal import Decimal

from budget_newsletter.errors import InputMalformedError
from budget_newsletter.models import (
    Account,
    BudgetSnapshot,
    CategoryInfo,
    Transaction,
    ZERO,
)

logger = logging.getLogger(__name__)

STAGE = "normalize"
MILLIUNITS_PER_UNIT = Decimal(1000)

# Sub-transaction fields that fall back to the parent's value when missing.
_INHERITED_FIELDS = ("category_id", "category_name", "transfer_account_id")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize(payload: dict) -> BudgetSnapshot:
    """Convert a raw provider payload into a :class:`BudgetSnapshot`.

    Args:
        payload: Raw budget data as described in the module docstring.

    Returns:
        The canonical snapshot.

    Raises:
        InputMalformedError: If a required field is missing or an amount
            or date cannot be parsed.
    """
    budget = payload.get("budget") or {}
    categories = payload.get("categories") or {}
    groups = categories.get("category_groups", payload.get("category_groups", []))

    category_index = build_category_index(groups)
    accounts = [
        _parse_account(raw)
        for raw in payload.get("accounts", [])
        if not raw.get("deleted", False)
    ]
    transactions = flatten_transactions(payload.get("transactions", []), category_index)

    logger.debug(
        "Normalized %d accounts, %d transactions, %d categories",
        len(accounts),
        len(transactions),
        len(category_index),
    )
    return BudgetSnapshot(
        budget_id=str(budget.get("id", "")),
        budget_name=str(budget.get("name", "")),
        accounts=accounts,
        transactions=transactions,
        category_index=category_index,
    )


def to_units(value: object, field_name: str = "amount") -> Decimal:
    """Convert a milli-unit integer into a base-currency Decimal.

    Raises:
        InputMalformedError: If *value* is not an integer (or an integer
            string).
    """
    if isinstance(value, bool) or value is None:
        raise InputMalformedError(STAGE, f"Invalid {field_name}: {value!r}")
    if isinstance(value, int):
        return Decimal(value) / MILLIUNITS_PER_UNIT
    if isinstance(value, str) and re.fullmatch(r"-?\d+", value.strip()):
        return Decimal(int(value.strip())) / MILLIUNITS_PER_UNIT
    raise InputMalformedError(STAGE, f"Invalid {field_name}: {value!r}")


def build_category_index(groups: list[dict]) -> dict[str, CategoryInfo]:
    """Map category id to :class:`CategoryInfo` across all groups."""
    index: dict[str, CategoryInfo] = {}
    for group in groups:
        if group.get("deleted", False):
            continue
        group_name = _require(group, "name", "category group")
        for raw in group.get("categories", []):
            if raw.get("deleted", False):
                continue
            category_id = str(_require(raw, "id", "category"))
            index[category_id] = CategoryInfo(
                id=category_id,
                name=str(_require(raw, "name", "category")),
                group_name=str(group_name),
                hidden=bool(raw.get("hidden", False)),
                budgeted=_optional_units(raw, "budgeted"),
                balance=_optional_units(raw, "balance"),
            )
    return index


def flatten_transactions(
    raw_transactions: list[dict],
    category_index: dict[str, CategoryInfo] | None = None,
) -> list[Transaction]:
    """Parse transactions, replacing each split parent by its children.

    Each sub-transaction inherits the parent's date, account and payee, and
    the parent's category and transfer target when its own are missing.
    """
    category_index = category_index or {}
    flattened: list[Transaction] = []

    for raw in raw_transactions:
        if raw.get("deleted", False):
            continue
        parent = _parse_transaction(raw, category_index)
        subs = [s for s in raw.get("subtransactions") or [] if not s.get("deleted", False)]
        if not subs:
            flattened.append(parent)
            continue

        for position, sub in enumerate(subs):
            inherited = {
                name: sub.get(name) or getattr(parent, name) for name in _INHERITED_FIELDS
            }
            category_name = inherited["category_name"]
            group_name = sub.get("category_group_name") or None
            if sub.get("category_id") and not sub.get("category_name"):
                category_name = _category_name(sub["category_id"], None, category_index)
            if not sub.get("category_id") and group_name is None:
                group_name = parent.category_group_name
            flattened.append(
                Transaction(
                    id=str(sub.get("id") or f"{parent.id}-{position}"),
                    date=parent.date,
                    account_id=parent.account_id,
                    amount=to_units(_milliunits(sub, "amount"), "sub-transaction amount"),
                    payee_name=sub.get("payee_name") or parent.payee_name,
                    category_id=inherited["category_id"],
                    category_name=category_name,
                    category_group_name=group_name,
                    transfer_account_id=inherited["transfer_account_id"],
                    parent_id=parent.id,
                )
            )

    return flattened


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _require(raw: dict, key: str, what: str) -> object:
    value = raw.get(key)
    if value is None or value == "":
        raise InputMalformedError(STAGE, f"{what} is missing required field '{key}'")
    return value


def _milliunits(raw: dict, name: str) -> object:
    """Return the milli-unit value of *name*, accepting both field spellings."""
    if f"{name}_milliunits" in raw:
        return raw[f"{name}_milliunits"]
    if name in raw:
        return raw[name]
    raise InputMalformedError(STAGE, f"record {raw.get('id', '?')} has no {name}")


def _optional_units(raw: dict, name: str) -> Decimal:
    if f"{name}_milliunits" not in raw and name not in raw:
        return ZERO
    return to_units(_milliunits(raw, name), name)


def _parse_date(value: object) -> date:
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise InputMalformedError(STAGE, f"Invalid date {value!r}") from exc


def _category_name(
    category_id: str | None,
    name: str | None,
    category_index: dict[str, CategoryInfo],
) -> str | None:
    if name:
        return name
    if category_id and category_id in category_index:
        return category_index[category_id].name
    return None


def _parse_account(raw: dict) -> Account:
    return Account(
        id=str(_require(raw, "id", "account")),
        name=str(_require(raw, "name", "account")),
        type=str(raw.get("type", "")),
        on_budget=bool(raw.get("on_budget", True)),
        closed=bool(raw.get("closed", False)),
        balance=to_units(_milliunits(raw, "balance"), "balance"),
    )


def _parse_transaction(raw: dict, category_index: dict[str, CategoryInfo]) -> Transaction:
    category_id = raw.get("category_id") or None
    return Transaction(
        id=str(_require(raw, "id", "transaction")),
        date=_parse_date(_require(raw, "date", "transaction")),
        account_id=str(_require(raw, "account_id", "transaction")),
        amount=to_units(_milliunits(raw, "amount"), "amount"),
        payee_name=raw.get("payee_name") or "",
        category_id=category_id,
        category_name=_category_name(category_id, raw.get("category_name"), category_index),
        category_group_name=raw.get("category_group_name") or None,
        transfer_account_id=raw.get("transfer_account_id") or None,
    )

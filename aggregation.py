"""Read-side rollups for the dashboard and the bills timeline.

Everything here is a pure function over records the caller already
loaded, so it can run against any snapshot without touching the session.
Amounts stay in cents.
"""

from collections import defaultdict
from datetime import date
from typing import Iterable, Optional, Sequence

from models import (
    Account,
    Bill,
    BillBucket,
    BillStatus,
    Category,
    Transaction,
    TransactionType,
)
from periods import trailing_months


def totals(transactions: Iterable[Transaction]) -> dict[str, int]:
    income = 0
    expense = 0
    for txn in transactions:
        if txn.type == TransactionType.income:
            income += txn.amount_cents
        else:
            expense += txn.amount_cents
    return {"income": income, "expense": expense}


def total_balance(accounts: Iterable[Account]) -> int:
    return sum(account.balance_cents for account in accounts)


def by_category(
    transactions: Iterable[Transaction], categories: Iterable[Category]
) -> dict[str, int]:
    """Expense totals keyed by category name.

    Income is ignored and categories without expenses are left out.
    Transactions whose category is not in ``categories`` are skipped.
    """
    names = {category.id: category.name for category in categories}
    out: dict[str, int] = {}
    for txn in transactions:
        if txn.type != TransactionType.expense:
            continue
        name = names.get(txn.category_id)
        if name is None:
            continue
        out[name] = out.get(name, 0) + txn.amount_cents
    return out


def monthly_series(
    transactions: Iterable[Transaction],
    window_months: int = 6,
    *,
    today: date,
) -> list[dict[str, object]]:
    """Income and expense per calendar month over the trailing window.

    Months without transactions are omitted rather than zero-filled.
    """
    window = trailing_months(today, window_months)
    grouped: dict[tuple[int, int], dict[str, int]] = defaultdict(
        lambda: {"income": 0, "expense": 0}
    )
    for txn in transactions:
        if not window.contains(txn.date):
            continue
        bucket = grouped[(txn.date.year, txn.date.month)]
        if txn.type == TransactionType.income:
            bucket["income"] += txn.amount_cents
        else:
            bucket["expense"] += txn.amount_cents
    return [
        {
            "month": f"{year:04d}-{month:02d}",
            "income": grouped[(year, month)]["income"],
            "expense": grouped[(year, month)]["expense"],
        }
        for year, month in sorted(grouped)
    ]


def due_bucket(bill: Bill, today: date) -> Optional[BillBucket]:
    if bill.status != BillStatus.pending:
        return None
    if bill.due_date < today:
        return BillBucket.overdue
    if bill.due_date == today:
        return BillBucket.today
    return BillBucket.upcoming


def filter_bills(
    bills: Iterable[Bill], bucket: Optional[BillBucket], today: date
) -> list[Bill]:
    """Pending bills, optionally narrowed to a single due bucket."""
    out = []
    for bill in bills:
        current = due_bucket(bill, today)
        if current is None:
            continue
        if bucket is None or current == bucket:
            out.append(bill)
    return out


def bucket_counts(bills: Iterable[Bill], today: date) -> dict[str, int]:
    counts = {bucket.value: 0 for bucket in BillBucket}
    for bill in bills:
        current = due_bucket(bill, today)
        if current is not None:
            counts[current.value] += 1
    return counts


def group_by_due_date(bills: Sequence[Bill]) -> dict[str, list[Bill]]:
    grouped: dict[str, list[Bill]] = {}
    for bill in bills:
        grouped.setdefault(bill.due_date.isoformat(), []).append(bill)
    return {key: grouped[key] for key in sorted(grouped)}

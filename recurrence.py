from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import Bill, BillStatus, RecurrenceType


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int) -> date:
    """Move ``base`` by whole months, snapping to the month's last day."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(base.day, days_in_month(year, month)))


def advance(due_date: date, recurrence_type: RecurrenceType) -> date:
    if recurrence_type == RecurrenceType.weekly:
        return due_date + timedelta(weeks=1)
    if recurrence_type == RecurrenceType.monthly:
        return add_months(due_date, 1)
    if recurrence_type == RecurrenceType.yearly:
        return add_months(due_date, 12)
    raise ValueError(f"Unsupported recurrence type: {recurrence_type}")


def next_occurrence(bill: Bill) -> Optional[Bill]:
    """Build the pending bill that follows ``bill`` in its recurrence chain.

    Returns ``None`` when the bill does not recur or when the next due date
    would fall after ``recurrence_end_date``. The successor is not added to
    any session and carries no id link back to ``bill``.
    """
    if not bill.is_recurring or bill.recurrence_type is None:
        return None
    next_due = advance(bill.due_date, bill.recurrence_type)
    if bill.recurrence_end_date and next_due > bill.recurrence_end_date:
        return None
    return Bill(
        user_id=bill.user_id,
        description=bill.description,
        amount_cents=bill.amount_cents,
        due_date=next_due,
        category_id=bill.category_id,
        status=BillStatus.pending,
        is_installment=False,
        total_installments=None,
        current_installment=None,
        parent_bill_id=None,
        is_recurring=True,
        recurrence_type=bill.recurrence_type,
        recurrence_end_date=bill.recurrence_end_date,
    )

from datetime import date

from sqlalchemy.orm import Session

from errors import ValidationError
from models import Bill, BillStatus
from recurrence import add_months
from schemas import BillIn


def installment_due_dates(first_due: date, total: int) -> list[date]:
    """Monthly due dates for an installment chain, anchored on the first one.

    Every date is computed from ``first_due`` (not from the previous
    installment) so a chain starting on the 31st returns to the 31st in
    months that have one.
    """
    if total < 2:
        raise ValidationError("Installment bills need at least 2 installments")
    return [add_months(first_due, k) for k in range(total)]


def build_installments(data: BillIn, user_id: int) -> list[Bill]:
    if not data.is_installment or data.total_installments is None:
        raise ValidationError("Not an installment request")
    total = data.total_installments
    return [
        Bill(
            user_id=user_id,
            description=data.description,
            # each installment carries the amount entered, not a share of a total
            amount_cents=data.amount_cents,
            due_date=due,
            category_id=data.category_id,
            status=BillStatus.pending,
            is_installment=True,
            total_installments=total,
            current_installment=index,
            parent_bill_id=None,
            is_recurring=False,
        )
        for index, due in enumerate(installment_due_dates(data.due_date, total), 1)
    ]


def materialize(session: Session, data: BillIn, user_id: int) -> list[Bill]:
    """Add a full installment chain to ``session``.

    The first sibling is flushed to obtain its id, which every later sibling
    stores as ``parent_bill_id``. Nothing is committed here; the caller owns
    the transaction so the chain lands all at once or not at all.
    """
    bills = build_installments(data, user_id)
    first = bills[0]
    session.add(first)
    session.flush()
    for sibling in bills[1:]:
        sibling.parent_bill_id = first.id
    session.add_all(bills[1:])
    session.flush()
    return bills

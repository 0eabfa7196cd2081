from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from errors import ConflictError, NotFoundError, ValidationError
import installments
from installments import build_installments, installment_due_dates
from models import Account, AccountKind, Bill, BillStatus, Category, TransactionType
from schemas import BillIn
from services import BillService, SettlementService


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _setup(session: Session) -> tuple[Category, Account]:
    category = Category(name="Eletrônicos", type=TransactionType.expense, icon="💻")
    account = Account(name="Banco", kind=AccountKind.bank, balance_cents=200_000)
    session.add_all([category, account])
    session.commit()
    return category, account


def _request(category_id: int, total: int = 3, due: date = date(2024, 1, 5)) -> BillIn:
    return BillIn(
        description="Notebook",
        amount_cents=10_000,
        due_date=due,
        category_id=category_id,
        is_installment=True,
        total_installments=total,
    )


def test_installment_due_dates_are_monthly_from_first():
    assert installment_due_dates(date(2024, 1, 31), 4) == [
        date(2024, 1, 31),
        date(2024, 2, 29),
        date(2024, 3, 31),
        date(2024, 4, 30),
    ]


def test_installment_due_dates_need_two_installments():
    with pytest.raises(ValidationError):
        installment_due_dates(date(2024, 1, 5), 1)


def test_build_installments_keeps_literal_amount_per_sibling():
    bills = build_installments(_request(category_id=1, total=4), user_id=1)
    assert [b.amount_cents for b in bills] == [10_000] * 4
    assert [b.current_installment for b in bills] == [1, 2, 3, 4]
    assert all(b.total_installments == 4 for b in bills)
    assert all(b.is_recurring is False for b in bills)


def test_create_installment_chain_example():
    session = make_session()
    category, _ = _setup(session)

    bills = BillService(session).create(_request(category.id))

    assert len(bills) == 3
    assert [b.due_date for b in bills] == [
        date(2024, 1, 5),
        date(2024, 2, 5),
        date(2024, 3, 5),
    ]
    assert [b.current_installment for b in bills] == [1, 2, 3]
    first = bills[0]
    assert first.parent_bill_id is None
    assert [b.parent_bill_id for b in bills[1:]] == [first.id, first.id]
    assert {b.chain_id for b in bills} == {first.id}
    assert all(b.status == BillStatus.pending for b in bills)
    assert bills[1].label == "Notebook (2/3)"


def test_chain_is_discoverable_from_any_sibling():
    session = make_session()
    category, _ = _setup(session)
    service = BillService(session)
    bills = service.create(_request(category.id, total=5))
    # a second chain must not leak into the first
    service.create(_request(category.id, total=2))

    for sibling in bills:
        chain = service.chain(sibling.id)
        assert [b.id for b in chain] == [b.id for b in bills]
        assert [b.current_installment for b in chain] == [1, 2, 3, 4, 5]


def test_chain_of_plain_bill_is_itself():
    session = make_session()
    category, _ = _setup(session)
    service = BillService(session)
    (bill,) = service.create(
        BillIn(
            description="Conta de luz",
            amount_cents=12_000,
            due_date=date(2024, 1, 20),
            category_id=category.id,
        )
    )
    assert service.chain(bill.id) == [bill]


def test_installment_chain_with_unknown_category_writes_nothing():
    session = make_session()
    _setup(session)
    with pytest.raises(NotFoundError):
        BillService(session).create(_request(category_id=999))
    assert session.scalars(select(Bill)).all() == []


def test_paying_an_installment_spawns_no_successor():
    session = make_session()
    category, account = _setup(session)
    bills = BillService(session).create(_request(category.id))

    outcome = SettlementService(session).pay(
        bills[0].id, account.id, paid_on=date(2024, 1, 5)
    )

    assert outcome.successor is None
    assert len(session.scalars(select(Bill)).all()) == 3


def test_deleting_a_sibling_deletes_the_whole_chain():
    session = make_session()
    category, _ = _setup(session)
    service = BillService(session)
    bills = service.create(_request(category.id))

    deleted = service.delete(bills[1].id)

    assert sorted(deleted) == sorted(b.id for b in bills)
    assert session.scalars(select(Bill)).all() == []


def test_chain_with_paid_installment_cannot_be_deleted():
    session = make_session()
    category, account = _setup(session)
    service = BillService(session)
    bills = service.create(_request(category.id))
    SettlementService(session).pay(bills[0].id, account.id, paid_on=date(2024, 1, 5))

    with pytest.raises(ConflictError):
        service.delete(bills[2].id)
    assert len(session.scalars(select(Bill)).all()) == 3


def test_failed_sibling_insert_leaves_no_partial_chain(monkeypatch):
    session = make_session()
    category, _ = _setup(session)
    build = installments.build_installments

    def build_with_bad_last(data, user_id):
        bills = build(data, user_id)
        bills[-1].amount_cents = 0
        return bills

    monkeypatch.setattr(installments, "build_installments", build_with_bad_last)

    # sibling 1 is flushed first, the rest fail on the second flush
    with pytest.raises(ValidationError):
        BillService(session).create(_request(category.id))
    assert session.scalars(select(Bill)).all() == []

from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

from database import Base
from errors import BillAlreadyPaid, ConflictError, NotFoundError
from events import BILL_CREATED, BILL_PAID, EventBus
from models import (
    Account,
    AccountKind,
    Bill,
    BillStatus,
    Category,
    RecurrenceType,
    Transaction,
    TransactionType,
)
import services
from schemas import BillIn, BillUpdateIn
from services import BillService, SettlementService


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _setup(session: Session, balance_cents: int = 200_000) -> tuple[Category, Account]:
    moradia = Category(name="Moradia", type=TransactionType.expense, icon="🏠")
    account = Account(name="Banco", kind=AccountKind.bank, balance_cents=balance_cents)
    session.add_all([moradia, account])
    session.commit()
    return moradia, account


def _rent(category_id: int) -> BillIn:
    return BillIn(
        description="Aluguel",
        amount_cents=15_000,
        due_date=date(2024, 1, 10),
        category_id=category_id,
        is_recurring=True,
        recurrence_type=RecurrenceType.monthly,
        recurrence_end_date=date(2024, 3, 10),
    )


def test_recurring_rent_example_walks_the_whole_chain():
    session = make_session()
    moradia, account = _setup(session)
    (bill,) = BillService(session).create(_rent(moradia.id))
    settlement = SettlementService(session)

    first = settlement.pay(bill.id, account.id, paid_on=date(2024, 1, 9))
    assert account.balance_cents == 185_000
    assert first.bill.status == BillStatus.paid
    assert first.transaction.amount_cents == 15_000
    assert first.successor.due_date == date(2024, 2, 10)
    assert first.successor.status == BillStatus.pending

    second = settlement.pay(first.successor.id, account.id, paid_on=date(2024, 2, 10))
    assert account.balance_cents == 170_000
    assert second.successor.due_date == date(2024, 3, 10)

    third = settlement.pay(second.successor.id, account.id, paid_on=date(2024, 3, 11))
    assert account.balance_cents == 155_000
    assert third.successor is None

    bills = session.scalars(select(Bill).order_by(Bill.due_date)).all()
    assert [b.due_date for b in bills] == [
        date(2024, 1, 10),
        date(2024, 2, 10),
        date(2024, 3, 10),
    ]
    assert all(b.status == BillStatus.paid for b in bills)
    assert session.scalar(select(func.count(Transaction.id))) == 3


def test_payment_records_expense_transaction():
    session = make_session()
    moradia, account = _setup(session)
    (bill,) = BillService(session).create(_rent(moradia.id))

    outcome = SettlementService(session).pay(
        bill.id, account.id, paid_on=date(2024, 1, 12)
    )

    txn = outcome.transaction
    assert txn.type == TransactionType.expense
    assert txn.amount_cents == bill.amount_cents
    assert txn.category_id == moradia.id
    assert txn.account_id == account.id
    assert txn.description == "Aluguel"
    assert txn.date == date(2024, 1, 12)
    assert txn.bill_id == bill.id
    assert outcome.bill.paid_account_id == account.id
    assert outcome.bill.paid_at is not None


def test_paying_twice_is_rejected_and_debits_once():
    session = make_session()
    moradia, account = _setup(session)
    (bill,) = BillService(session).create(_rent(moradia.id))
    settlement = SettlementService(session)
    settlement.pay(bill.id, account.id, paid_on=date(2024, 1, 10))

    with pytest.raises(BillAlreadyPaid) as excinfo:
        settlement.pay(bill.id, account.id, paid_on=date(2024, 1, 10))

    assert isinstance(excinfo.value, ConflictError)
    assert account.balance_cents == 185_000
    assert session.scalar(select(func.count(Transaction.id))) == 1
    assert session.scalar(select(func.count(Bill.id))) == 2


def test_unknown_bill_or_account_changes_nothing():
    session = make_session()
    moradia, account = _setup(session)
    (bill,) = BillService(session).create(_rent(moradia.id))
    settlement = SettlementService(session)

    with pytest.raises(NotFoundError) as excinfo:
        settlement.pay(999, account.id)
    assert excinfo.value.entity == "Bill"

    with pytest.raises(NotFoundError) as excinfo:
        settlement.pay(bill.id, 999)
    assert excinfo.value.entity == "Account"

    session.refresh(bill)
    session.refresh(account)
    assert bill.status == BillStatus.pending
    assert account.balance_cents == 200_000
    assert session.scalar(select(func.count(Transaction.id))) == 0
    assert session.scalar(select(func.count(Bill.id))) == 1


def test_overdraft_is_permitted():
    session = make_session()
    moradia, account = _setup(session, balance_cents=5_000)
    (bill,) = BillService(session).create(_rent(moradia.id))

    SettlementService(session).pay(bill.id, account.id, paid_on=date(2024, 1, 10))

    assert account.balance_cents == -10_000


def test_concurrent_payments_only_one_wins(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    with SessionLocal() as setup:
        moradia, account = _setup(setup)
        (bill,) = BillService(setup).create(_rent(moradia.id))
        bill_id, account_id = bill.id, account.id

    winner = SessionLocal()
    loser = SessionLocal()
    # the loser has already seen the bill as pending
    assert loser.get(Bill, bill_id).status == BillStatus.pending

    SettlementService(winner).pay(bill_id, account_id, paid_on=date(2024, 1, 10))
    with pytest.raises(BillAlreadyPaid):
        SettlementService(loser).pay(bill_id, account_id, paid_on=date(2024, 1, 10))
    winner.close()
    loser.close()

    with SessionLocal() as check:
        assert check.get(Account, account_id).balance_cents == 185_000
        assert check.scalar(select(func.count(Transaction.id))) == 1
        # exactly one successor came out of the single successful payment
        assert check.scalar(select(func.count(Bill.id))) == 2


def test_payment_publishes_events():
    session = make_session()
    moradia, account = _setup(session)
    (bill,) = BillService(session).create(_rent(moradia.id))
    bus = EventBus()
    seen = []
    bus.subscribe(BILL_PAID, lambda event: seen.append(event))
    bus.subscribe(BILL_CREATED, lambda event: seen.append(event))

    outcome = SettlementService(session, bus=bus).pay(
        bill.id, account.id, paid_on=date(2024, 1, 10)
    )

    assert [event.name for event in seen] == [BILL_PAID, BILL_CREATED]
    assert seen[0].payload["bill_id"] == bill.id
    assert seen[0].payload["account_id"] == account.id
    assert seen[1].payload["bill_id"] == outcome.successor.id


def test_failing_subscriber_does_not_undo_payment():
    session = make_session()
    moradia, account = _setup(session)
    (bill,) = BillService(session).create(_rent(moradia.id))
    bus = EventBus()

    def explode(event):
        raise RuntimeError("notifier offline")

    bus.subscribe(BILL_PAID, explode)

    outcome = SettlementService(session, bus=bus).pay(
        bill.id, account.id, paid_on=date(2024, 1, 10)
    )

    assert outcome.bill.status == BillStatus.paid
    assert account.balance_cents == 185_000


def test_last_recurrence_on_end_date_can_be_edited_and_paid():
    session = make_session()
    moradia, account = _setup(session)
    (bill,) = BillService(session).create(_rent(moradia.id))
    settlement = SettlementService(session)
    first = settlement.pay(bill.id, account.id, paid_on=date(2024, 1, 10))
    second = settlement.pay(first.successor.id, account.id, paid_on=date(2024, 2, 10))
    last = second.successor
    assert last.due_date == last.recurrence_end_date == date(2024, 3, 10)

    edited = BillService(session).update(
        last.id,
        BillUpdateIn(
            description="Aluguel",
            amount_cents=16_000,
            due_date=date(2024, 3, 10),
            category_id=moradia.id,
            is_recurring=True,
            recurrence_type=RecurrenceType.monthly,
            recurrence_end_date=date(2024, 3, 10),
        ),
    )
    outcome = settlement.pay(edited.id, account.id, paid_on=date(2024, 3, 10))

    assert outcome.successor is None
    assert account.balance_cents == 154_000


def test_failure_after_debit_rolls_back_the_whole_payment(monkeypatch):
    session = make_session()
    moradia, account = _setup(session)
    (bill,) = BillService(session).create(_rent(moradia.id))

    def broken_successor(paid_bill):
        # amount_cents=0 violates the table's CHECK at flush time
        return Bill(
            description=paid_bill.description,
            amount_cents=0,
            due_date=date(2024, 2, 10),
            category_id=paid_bill.category_id,
        )

    monkeypatch.setattr(services, "next_occurrence", broken_successor)

    with pytest.raises(ConflictError):
        SettlementService(session).pay(bill.id, account.id, paid_on=date(2024, 1, 10))

    session.refresh(bill)
    session.refresh(account)
    assert bill.status == BillStatus.pending
    assert bill.paid_account_id is None
    assert account.balance_cents == 200_000
    assert session.scalar(select(func.count(Transaction.id))) == 0
    assert session.scalar(select(func.count(Bill.id))) == 1

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aggregation import (
    bucket_counts,
    by_category,
    filter_bills,
    group_by_due_date,
    monthly_series,
    total_balance,
    totals,
)
from config import get_settings
from errors import (
    BillAlreadyPaid,
    ConflictError,
    IntegrityViolation,
    NotFoundError,
    ValidationError,
)
from events import (
    ACCOUNT_DELETED,
    BILL_CREATED,
    BILL_DELETED,
    BILL_DUE,
    BILL_PAID,
    CATEGORY_DELETED,
    EventBus,
    event_bus,
)
from installments import materialize
from models import (
    Account,
    AccountKind,
    Bill,
    BillBucket,
    BillStatus,
    Category,
    Transaction,
    TransactionType,
)
from periods import Period, trailing_months
from recurrence import local_today, next_occurrence
from schemas import (
    AccountIn,
    AccountUpdateIn,
    BillIn,
    BillUpdateIn,
    CategoryIn,
    TransactionIn,
)
from store import LedgerStore

logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return 1


DEFAULT_CATEGORIES: list[tuple[str, TransactionType, str]] = [
    ("Alimentação", TransactionType.expense, "🍔"),
    ("Transporte", TransactionType.expense, "🚗"),
    ("Lazer", TransactionType.expense, "🎬"),
    ("Saúde", TransactionType.expense, "🏥"),
    ("Educação", TransactionType.expense, "📚"),
    ("Moradia", TransactionType.expense, "🏠"),
    ("Salário", TransactionType.income, "💰"),
    ("Freelancer", TransactionType.income, "💻"),
    ("Investimentos", TransactionType.income, "📈"),
]

DEFAULT_ACCOUNTS: list[tuple[str, AccountKind, int]] = [
    ("Carteira", AccountKind.cash, 50_000),
    ("Banco", AccountKind.bank, 200_000),
]


def seed_defaults(session: Session, user_id: Optional[int] = None) -> bool:
    """Insert the starter categories and accounts into an empty ledger."""
    user_id = user_id or get_current_user_id()
    store = LedgerStore(session, user_id)
    if store.list(Category) or store.list(Account):
        return False
    with store.atomic():
        for name, type_, icon in DEFAULT_CATEGORIES:
            session.add(Category(user_id=user_id, name=name, type=type_, icon=icon))
        for name, kind, balance_cents in DEFAULT_ACCOUNTS:
            session.add(
                Account(
                    user_id=user_id, name=name, kind=kind, balance_cents=balance_cents
                )
            )
    logger.info(f"seed_defaults: user_id={user_id}")
    return True


class EntityKind(str, Enum):
    account = "account"
    category = "category"


_REFERENCES = {
    EntityKind.account: (
        (Transaction, Transaction.account_id),
        (Bill, Bill.paid_account_id),
    ),
    EntityKind.category: (
        (Transaction, Transaction.category_id),
        (Bill, Bill.category_id),
    ),
}

_ENTITY_MODELS = {EntityKind.account: Account, EntityKind.category: Category}

_DELETE_EVENTS = {
    EntityKind.account: ACCOUNT_DELETED,
    EntityKind.category: CATEGORY_DELETED,
}


class ReferenceGuard:
    """Refuses to delete accounts and categories that ledger rows point at."""

    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.store = LedgerStore(session, self.user_id)
        self.bus = bus or event_bus

    def _get(self, kind: EntityKind, entity_id: int):
        entity = self.store.get(_ENTITY_MODELS[kind], entity_id)
        if entity is None:
            raise NotFoundError(kind.value.capitalize(), entity_id)
        return entity

    def references(
        self, kind: EntityKind, entity_id: int, limit: int = 5
    ) -> list[tuple[str, int]]:
        found: list[tuple[str, int]] = []
        for model, column in _REFERENCES[kind]:
            stmt = (
                select(model.id)
                .where(model.user_id == self.user_id, column == entity_id)
                .order_by(model.id)
                .limit(limit)
            )
            found.extend(
                (model.__tablename__, ref_id)
                for ref_id in self.store.execute(stmt).scalars()
            )
        return found

    def can_delete(self, kind: EntityKind, entity_id: int) -> bool:
        self._get(kind, entity_id)
        return not self.references(kind, entity_id, limit=1)

    def delete(self, kind: EntityKind, entity_id: int) -> None:
        kind = EntityKind(kind)
        try:
            with self.store.atomic() as session:
                entity = self._get(kind, entity_id)
                refs = self.references(kind, entity_id)
                if refs:
                    raise IntegrityViolation(kind.value, entity_id, refs)
                name = entity.name
                session.delete(entity)
                session.flush()
        except IntegrityError as exc:
            # a reference was inserted between the check and the delete
            raise IntegrityViolation(kind.value, entity_id) from exc
        logger.info(f"entity_deleted: kind={kind.value} id={entity_id}")
        self.bus.publish(_DELETE_EVENTS[kind], {"id": entity_id, "name": name})


class AccountService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.store = LedgerStore(session, self.user_id)
        self.bus = bus or event_bus

    def list_all(self) -> list[Account]:
        return self.store.list(Account, order_by=(Account.name, Account.id))

    def get(self, account_id: int) -> Account:
        account = self.store.get(Account, account_id)
        if not account:
            raise NotFoundError("Account", account_id)
        return account

    def create(self, data: AccountIn) -> Account:
        with self.store.atomic() as session:
            account = Account(
                user_id=self.user_id,
                name=data.name.strip(),
                kind=data.kind,
                balance_cents=data.balance_cents,
            )
            session.add(account)
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountUpdateIn) -> Account:
        with self.store.atomic():
            account = self.get(account_id)
            account.name = data.name.strip()
            account.kind = data.kind
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> None:
        ReferenceGuard(self.session, self.user_id, self.bus).delete(
            EntityKind.account, account_id
        )


class CategoryService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.store = LedgerStore(session, self.user_id)
        self.bus = bus or event_bus

    def list_all(self, type: Optional[TransactionType] = None) -> list[Category]:
        criteria = [] if type is None else [Category.type == type]
        return self.store.list(
            Category, *criteria, order_by=(Category.type, Category.name)
        )

    def get(self, category_id: int) -> Category:
        category = self.store.get(Category, category_id)
        if not category:
            raise NotFoundError("Category", category_id)
        return category

    def _check_unique(
        self, name: str, type: TransactionType, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            Category.type == type,
            func.lower(Category.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.store.execute(stmt).first():
            raise ValidationError("Category with this name already exists")

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        with self.store.atomic() as session:
            self._check_unique(name, data.type)
            category = Category(
                user_id=self.user_id,
                name=name,
                type=data.type,
                icon=data.icon,
                color=data.color,
            )
            session.add(category)
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        name = data.name.strip()
        with self.store.atomic():
            category = self.get(category_id)
            self._check_unique(name, data.type, exclude_id=category.id)
            if data.type != category.type:
                guard = ReferenceGuard(self.session, self.user_id, self.bus)
                refs = guard.references(EntityKind.category, category.id)
                if refs:
                    raise IntegrityViolation(
                        EntityKind.category.value, category.id, refs
                    )
            category.name = name
            category.type = data.type
            category.icon = data.icon
            category.color = data.color
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        ReferenceGuard(self.session, self.user_id, self.bus).delete(
            EntityKind.category, category_id
        )


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.store = LedgerStore(session, self.user_id)

    def get(self, transaction_id: int) -> Transaction:
        txn = self.store.get(Transaction, transaction_id)
        if not txn:
            raise NotFoundError("Transaction", transaction_id)
        return txn

    def list(
        self,
        period: Optional[Period] = None,
        *,
        type: Optional[TransactionType] = None,
        category_id: Optional[int] = None,
        account_id: Optional[int] = None,
    ) -> list[Transaction]:
        criteria = []
        if period is not None:
            criteria.append(Transaction.date.between(period.start, period.end))
        if type is not None:
            criteria.append(Transaction.type == type)
        if category_id is not None:
            criteria.append(Transaction.category_id == category_id)
        if account_id is not None:
            criteria.append(Transaction.account_id == account_id)
        return self.store.list(
            Transaction,
            *criteria,
            order_by=(Transaction.date.desc(), Transaction.id.desc()),
        )

    def _validate_refs(self, data: TransactionIn) -> None:
        category = self.store.get(Category, data.category_id)
        if not category:
            raise NotFoundError("Category", data.category_id)
        if category.type != data.type:
            raise ValidationError("Category type mismatch")
        if not self.store.get(Account, data.account_id):
            raise NotFoundError("Account", data.account_id)

    def create(self, data: TransactionIn) -> Transaction:
        with self.store.atomic() as session:
            self._validate_refs(data)
            txn = Transaction(
                user_id=self.user_id,
                type=data.type,
                amount_cents=data.amount_cents,
                date=data.date,
                category_id=data.category_id,
                account_id=data.account_id,
                description=data.description.strip(),
            )
            session.add(txn)
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        with self.store.atomic():
            txn = self.get(transaction_id)
            if txn.bill_id is not None:
                raise ConflictError("Bill payments cannot be edited")
            self._validate_refs(data)
            for field, value in data.model_dump().items():
                setattr(txn, field, value)
            txn.description = data.description.strip()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        with self.store.atomic() as session:
            txn = self.get(transaction_id)
            if txn.bill_id is not None:
                raise ConflictError("Bill payments cannot be deleted")
            session.delete(txn)


class BillService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.store = LedgerStore(session, self.user_id)
        self.bus = bus or event_bus

    def get(self, bill_id: int) -> Bill:
        bill = self.store.get(Bill, bill_id)
        if not bill:
            raise NotFoundError("Bill", bill_id)
        return bill

    def list_all(self, status: Optional[BillStatus] = None) -> list[Bill]:
        criteria = [] if status is None else [Bill.status == status]
        return self.store.list(Bill, *criteria, order_by=(Bill.due_date, Bill.id))

    def pending(
        self, bucket: Optional[BillBucket] = None, today: Optional[date] = None
    ) -> list[Bill]:
        today = today or local_today()
        return filter_bills(self.list_all(BillStatus.pending), bucket, today)

    def timeline(
        self, bucket: Optional[BillBucket] = None, today: Optional[date] = None
    ) -> dict[str, list[Bill]]:
        return group_by_due_date(self.pending(bucket, today))

    def chain(self, bill_id: int) -> list[Bill]:
        """All siblings of an installment bill, ordered by installment number."""
        bill = self.get(bill_id)
        if not bill.is_installment:
            return [bill]
        root_id = bill.parent_bill_id or bill.id
        return self.store.list(
            Bill,
            or_(Bill.id == root_id, Bill.parent_bill_id == root_id),
            order_by=(Bill.current_installment,),
        )

    def _expense_category(self, category_id: int) -> Category:
        category = self.store.get(Category, category_id)
        if not category:
            raise NotFoundError("Category", category_id)
        if category.type != TransactionType.expense:
            raise ValidationError("Bills must use an expense category")
        return category

    def create(self, data: BillIn) -> list[Bill]:
        try:
            with self.store.atomic() as session:
                self._expense_category(data.category_id)
                if data.is_installment:
                    bills = materialize(session, data, self.user_id)
                else:
                    bill = Bill(
                        user_id=self.user_id,
                        description=data.description.strip(),
                        amount_cents=data.amount_cents,
                        due_date=data.due_date,
                        category_id=data.category_id,
                        status=BillStatus.pending,
                        is_installment=False,
                        is_recurring=data.is_recurring,
                        recurrence_type=data.recurrence_type,
                        recurrence_end_date=data.recurrence_end_date,
                    )
                    session.add(bill)
                    session.flush()
                    bills = [bill]
        except IntegrityError as exc:
            raise ValidationError("Bill violates ledger constraints") from exc
        logger.info(
            f"bill_created: bill_id={bills[0].id} count={len(bills)} "
            f"amount_cents={data.amount_cents}"
        )
        for bill in bills:
            self.bus.publish(BILL_CREATED, _bill_payload(bill))
        return bills

    def update(self, bill_id: int, data: BillUpdateIn) -> Bill:
        try:
            with self.store.atomic():
                bill = self.get(bill_id)
                if bill.status != BillStatus.pending:
                    raise ConflictError("Paid bills cannot be edited")
                if data.is_installment != bill.is_installment:
                    raise ValidationError("Installment structure cannot be changed")
                if bill.is_installment:
                    if data.is_recurring:
                        raise ValidationError(
                            "A bill cannot be both an installment and recurring"
                        )
                    if data.due_date != bill.due_date:
                        raise ValidationError("Installment due dates are fixed")
                self._expense_category(data.category_id)
                bill.description = data.description.strip()
                bill.amount_cents = data.amount_cents
                bill.due_date = data.due_date
                bill.category_id = data.category_id
                bill.is_recurring = data.is_recurring
                bill.recurrence_type = data.recurrence_type
                bill.recurrence_end_date = data.recurrence_end_date
        except IntegrityError as exc:
            raise ValidationError("Bill violates ledger constraints") from exc
        self.session.refresh(bill)
        return bill

    def delete(self, bill_id: int) -> list[int]:
        """Delete a pending bill, or a whole installment chain.

        Returns the ids removed. Paid bills stay as history, so a chain
        with any paid installment cannot be deleted.
        """
        with self.store.atomic():
            bill = self.get(bill_id)
            if bill.status != BillStatus.pending:
                raise ConflictError("Paid bills are kept as history")
            targets = self.chain(bill.id)
            if any(b.status != BillStatus.pending for b in targets):
                raise ConflictError("Installment chain has paid installments")
            ids = [b.id for b in targets]
            self.store.execute(
                delete(Bill)
                .where(
                    Bill.user_id == self.user_id,
                    Bill.id.in_(ids),
                    Bill.status == BillStatus.pending,
                )
                .execution_options(synchronize_session="fetch")
            )
        logger.info(f"bill_deleted: bill_ids={ids}")
        self.bus.publish(BILL_DELETED, {"ids": ids})
        return ids


@dataclass
class PaymentOutcome:
    bill: Bill
    transaction: Transaction
    successor: Optional[Bill] = None


class SettlementService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.store = LedgerStore(session, self.user_id)
        self.bus = bus or event_bus

    def pay(
        self, bill_id: int, account_id: int, *, paid_on: Optional[date] = None
    ) -> PaymentOutcome:
        """Settle a pending bill from an account.

        The status flip, the balance debit, the expense transaction and the
        next recurrence are written in one transaction. The flip is a
        conditional update on ``status``, so of two concurrent payments of
        the same bill only one can commit. Overdraft is allowed.
        """
        paid_on = paid_on or local_today()
        try:
            bill, account, txn, successor = self._settle(bill_id, account_id, paid_on)
        except IntegrityError as exc:
            # nothing was written; the whole payment rolled back
            raise ConflictError("Payment violates ledger constraints") from exc

        self.session.refresh(bill)
        self.session.refresh(account)
        logger.info(
            f"bill_paid: bill_id={bill.id} account_id={account.id} "
            f"amount_cents={bill.amount_cents} "
            f"successor_id={successor.id if successor else None}"
        )
        self.bus.publish(
            BILL_PAID,
            {
                **_bill_payload(bill),
                "account_id": account.id,
                "transaction_id": txn.id,
            },
        )
        if successor is not None:
            self.bus.publish(BILL_CREATED, _bill_payload(successor))
        return PaymentOutcome(bill=bill, transaction=txn, successor=successor)

    def _settle(
        self, bill_id: int, account_id: int, paid_on: date
    ) -> tuple[Bill, Account, Transaction, Optional[Bill]]:
        with self.store.atomic() as session:
            bill = self.store.get(Bill, bill_id)
            if not bill:
                raise NotFoundError("Bill", bill_id)
            if bill.status == BillStatus.paid:
                raise BillAlreadyPaid(bill.id)
            account = self.store.get(Account, account_id)
            if not account:
                raise NotFoundError("Account", account_id)

            claimed = self.store.execute(
                update(Bill)
                .where(
                    Bill.id == bill.id,
                    Bill.user_id == self.user_id,
                    Bill.status == BillStatus.pending,
                )
                .values(
                    status=BillStatus.paid,
                    paid_at=datetime.utcnow(),
                    paid_account_id=account.id,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                raise BillAlreadyPaid(bill.id)

            self.store.execute(
                update(Account)
                .where(Account.id == account.id, Account.user_id == self.user_id)
                .values(balance_cents=Account.balance_cents - bill.amount_cents)
                .execution_options(synchronize_session=False)
            )

            txn = Transaction(
                user_id=self.user_id,
                type=TransactionType.expense,
                amount_cents=bill.amount_cents,
                date=paid_on,
                category_id=bill.category_id,
                account_id=account.id,
                description=bill.description,
                bill_id=bill.id,
            )
            session.add(txn)

            successor = next_occurrence(bill)
            if successor is not None:
                session.add(successor)
            session.flush()
        return bill, account, txn, successor


class DashboardService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.store = LedgerStore(session, self.user_id)

    def snapshot(
        self, window_months: Optional[int] = None, today: Optional[date] = None
    ) -> dict[str, object]:
        today = today or local_today()
        if window_months is None:
            window_months = get_settings().dashboard_window_months
        window = trailing_months(today, window_months)

        accounts = self.store.list(Account)
        categories = self.store.list(Category)
        transactions = self.store.list(Transaction, order_by=(Transaction.date,))
        pending = self.store.list(
            Bill,
            Bill.status == BillStatus.pending,
            order_by=(Bill.due_date, Bill.id),
        )

        return {
            "as_of": today,
            "window_start": window.start,
            "window_months": window_months,
            "totals": totals(transactions),
            "total_balance": total_balance(accounts),
            "by_category": by_category(transactions, categories),
            "monthly_series": monthly_series(
                transactions, window_months, today=today
            ),
            "bill_counts": bucket_counts(pending, today),
            "timeline": group_by_due_date(pending),
        }


class ReminderService:
    """Announces pending bills that are due today or overdue."""

    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.bills = BillService(session, self.user_id, bus)
        self.bus = bus or event_bus

    def scan(
        self, today: Optional[date] = None, skip_ids: frozenset[int] = frozenset()
    ) -> dict[str, list[int]]:
        """Publish one ``BILL_DUE`` per bill; returns the announced ids by bucket."""
        today = today or local_today()
        announced: dict[str, list[int]] = {
            BillBucket.overdue.value: [],
            BillBucket.today.value: [],
        }
        for bucket in (BillBucket.overdue, BillBucket.today):
            for bill in self.bills.pending(bucket, today):
                if bill.id in skip_ids:
                    continue
                self.bus.publish(
                    BILL_DUE, {**_bill_payload(bill), "bucket": bucket.value}
                )
                announced[bucket.value].append(bill.id)
        return announced


def _bill_payload(bill: Bill) -> dict[str, object]:
    return {
        "bill_id": bill.id,
        "description": bill.label,
        "amount_cents": bill.amount_cents,
        "due_date": bill.due_date.isoformat(),
        "status": bill.status.value,
    }

from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class AccountKind(str, Enum):
    cash = "cash"
    bank = "bank"
    credit = "credit"
    investment = "investment"


class BillStatus(str, Enum):
    pending = "pending"
    paid = "paid"


class RecurrenceType(str, Enum):
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class BillBucket(str, Enum):
    overdue = "overdue"
    today = "today"
    upcoming = "upcoming"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[AccountKind] = mapped_column(SAEnum(AccountKind), nullable=False)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account"
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    icon: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    color: Mapped[Optional[str]] = mapped_column(String(7))

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )
    bills: Mapped[list["Bill"]] = relationship("Bill", back_populates="category")


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    bill_id: Mapped[Optional[int]] = mapped_column(ForeignKey("bills.id"))

    category: Mapped["Category"] = relationship(
        "Category", back_populates="transactions"
    )
    account: Mapped["Account"] = relationship("Account", back_populates="transactions")

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category", "user_id", "category_id"),
        Index("ix_transactions_user_account", "user_id", "account_id"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class Bill(Base, TimestampMixin):
    __tablename__ = "bills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    status: Mapped[BillStatus] = mapped_column(
        SAEnum(BillStatus), nullable=False, default=BillStatus.pending
    )

    is_installment: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    total_installments: Mapped[Optional[int]] = mapped_column(Integer)
    current_installment: Mapped[Optional[int]] = mapped_column(Integer)
    parent_bill_id: Mapped[Optional[int]] = mapped_column(ForeignKey("bills.id"))

    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recurrence_type: Mapped[Optional[RecurrenceType]] = mapped_column(
        SAEnum(RecurrenceType)
    )
    recurrence_end_date: Mapped[Optional[date]] = mapped_column(Date)

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    paid_account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))

    category: Mapped["Category"] = relationship("Category", back_populates="bills")

    @property
    def chain_id(self) -> Optional[int]:
        if not self.is_installment:
            return None
        return self.parent_bill_id or self.id

    @property
    def label(self) -> str:
        if self.is_installment and self.current_installment and self.total_installments:
            return (
                f"{self.description} "
                f"({self.current_installment}/{self.total_installments})"
            )
        return self.description

    __table_args__ = (
        Index("ix_bills_user_status_due", "user_id", "status", "due_date"),
        Index("ix_bills_parent", "parent_bill_id"),
        CheckConstraint("amount_cents > 0", name="ck_bills_amount_positive"),
        CheckConstraint(
            "NOT (is_installment AND is_recurring)",
            name="ck_bills_installment_xor_recurring",
        ),
        CheckConstraint(
            "recurrence_end_date IS NULL OR recurrence_end_date >= due_date",
            name="ck_bills_recurrence_end_not_before_due",
        ),
        CheckConstraint(
            "total_installments IS NULL OR total_installments >= 2",
            name="ck_bills_total_installments_min",
        ),
    )

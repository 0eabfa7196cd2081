import datetime as dt
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import AccountKind, BillStatus, RecurrenceType, TransactionType


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    kind: AccountKind
    balance_cents: int = 0


class AccountUpdateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    kind: AccountKind


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    icon: str = Field(default="", max_length=16)
    color: Optional[str] = Field(default=None, max_length=7)


class TransactionIn(BaseModel):
    type: TransactionType
    amount_cents: int = Field(..., gt=0)
    date: dt.date
    category_id: int
    account_id: int
    description: str = Field(default="", max_length=200)


class BillIn(BaseModel):
    """A bill creation request.

    Installment and recurrence settings are only kept when their flag is
    on, so a form that leaves ``total_installments`` filled in with the
    switch off still produces a plain bill.
    """

    description: str = Field(..., min_length=3, max_length=200)
    amount_cents: int = Field(..., gt=0)
    due_date: date
    category_id: int
    is_installment: bool = False
    total_installments: Optional[int] = None
    is_recurring: bool = False
    recurrence_type: Optional[RecurrenceType] = None
    recurrence_end_date: Optional[date] = None

    @model_validator(mode="after")
    def check_modes(self) -> "BillIn":
        if self.is_installment and self.is_recurring:
            raise ValueError("A bill cannot be both an installment and recurring")
        if self.is_installment:
            if self.total_installments is None or self.total_installments < 2:
                raise ValueError("Installment bills need at least 2 installments")
        else:
            self.total_installments = None
        if self.is_recurring:
            if self.recurrence_type is None:
                raise ValueError("Recurring bills need a recurrence type")
            if (
                self.recurrence_end_date is not None
                and self.recurrence_end_date <= self.due_date
            ):
                raise ValueError("Recurrence end date must be after the due date")
        else:
            self.recurrence_type = None
            self.recurrence_end_date = None
        return self


class BillUpdateIn(BaseModel):
    description: str = Field(..., min_length=3, max_length=200)
    amount_cents: int = Field(..., gt=0)
    due_date: date
    category_id: int
    is_recurring: bool = False
    recurrence_type: Optional[RecurrenceType] = None
    recurrence_end_date: Optional[date] = None
    is_installment: bool = False

    @model_validator(mode="after")
    def check_modes(self) -> "BillUpdateIn":
        if self.is_installment and self.is_recurring:
            raise ValueError("A bill cannot be both an installment and recurring")
        if self.is_recurring:
            if self.recurrence_type is None:
                raise ValueError("Recurring bills need a recurrence type")
            # the last bill of a chain may fall on the end date itself
            if (
                self.recurrence_end_date is not None
                and self.recurrence_end_date < self.due_date
            ):
                raise ValueError("Recurrence end date cannot be before the due date")
        else:
            self.recurrence_type = None
            self.recurrence_end_date = None
        return self


class PaymentIn(BaseModel):
    account_id: int


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    kind: AccountKind
    balance_cents: int


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType
    icon: str
    color: Optional[str]


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    amount_cents: int
    date: dt.date
    category_id: int
    account_id: int
    description: str
    bill_id: Optional[int]


class BillOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    label: str
    amount_cents: int
    due_date: date
    category_id: int
    status: BillStatus
    is_installment: bool
    total_installments: Optional[int]
    current_installment: Optional[int]
    parent_bill_id: Optional[int]
    is_recurring: bool
    recurrence_type: Optional[RecurrenceType]
    recurrence_end_date: Optional[date]
    paid_account_id: Optional[int]


class PaymentOutcomeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    bill: BillOut
    transaction: TransactionOut
    successor: Optional[BillOut] = None

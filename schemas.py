import datetime as dt
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from models import AccountType, RecurringInterval, TransactionType
from money import to_decimal, to_number


class UserIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: Optional[str] = Field(default=None, max_length=255)
    name: Optional[str] = Field(default=None, max_length=120)


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    balance: Decimal = Field(default=Decimal("0"), ge=0, allow_inf_nan=False)
    is_default: bool = False

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name is required")
        return value

    @field_validator("balance")
    @classmethod
    def _cents(cls, value: Decimal) -> Decimal:
        return to_decimal(value)


class TransactionIn(BaseModel):
    account_id: int
    type: TransactionType
    amount: Decimal = Field(..., ge=0, allow_inf_nan=False)
    date: dt.date
    category: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=200)
    is_recurring: bool = False
    recurring_interval: Optional[RecurringInterval] = None

    @field_validator("amount")
    @classmethod
    def _cents(cls, value: Decimal) -> Decimal:
        return to_decimal(value)

    @field_validator("category")
    @classmethod
    def _strip_category(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Category is required")
        return value

    @model_validator(mode="after")
    def _recurrence_fields(self) -> "TransactionIn":
        if self.is_recurring and self.recurring_interval is None:
            raise ValueError("Recurring interval is required for recurring transactions")
        if not self.is_recurring:
            self.recurring_interval = None
        return self


class BulkDeleteIn(BaseModel):
    transaction_ids: list[int] = Field(default_factory=list, max_length=500)


class BudgetIn(BaseModel):
    amount: Decimal = Field(..., gt=0, allow_inf_nan=False)

    @field_validator("amount")
    @classmethod
    def _cents(cls, value: Decimal) -> Decimal:
        return to_decimal(value)


class ScannedReceipt(BaseModel):
    """Raw scanner output. Nothing here is trusted."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    amount: Optional[Union[float, str]] = None
    date: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    merchant_name: Optional[str] = Field(default=None, alias="merchantName")


class TransactionPrefill(BaseModel):
    type: TransactionType = TransactionType.expense
    amount: Optional[float] = None
    date: Optional[dt.date] = None
    description: Optional[str] = None
    category: Optional[str] = None


class _MoneyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class AccountOut(_MoneyOut):
    id: int
    name: str
    type: AccountType
    balance: float
    is_default: bool
    created_at: datetime
    transaction_count: Optional[int] = None

    @field_validator("balance", mode="before")
    @classmethod
    def _number(cls, value):
        return to_number(value)


class TransactionOut(_MoneyOut):
    id: int
    account_id: int
    type: TransactionType
    amount: float
    description: Optional[str]
    date: dt.date
    category: str
    is_recurring: bool
    recurring_interval: Optional[RecurringInterval]
    next_recurring_date: Optional[dt.date]
    last_processed: Optional[datetime] = None
    origin_transaction_id: Optional[int] = None
    created_at: datetime

    @field_validator("amount", mode="before")
    @classmethod
    def _number(cls, value):
        return to_number(value)


class AccountDetailOut(AccountOut):
    transactions: list[TransactionOut] = Field(default_factory=list)


class BudgetOut(_MoneyOut):
    id: int
    amount: float
    last_alert_sent: Optional[datetime] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _number(cls, value):
        return to_number(value)


class BudgetProgressOut(BaseModel):
    budget: Optional[BudgetOut]
    account_id: Optional[int]
    current_expenses: float
    percentage_used: Optional[float]


class ChartPointOut(BaseModel):
    date: dt.date
    income: float = 0.0
    expense: float = 0.0


class ChartTotalsOut(BaseModel):
    income: float
    expense: float
    net: float


class AccountChartOut(BaseModel):
    range: str
    start: dt.date
    end: dt.date
    points: list[ChartPointOut]
    totals: ChartTotalsOut


class CategoryTotalOut(BaseModel):
    name: str
    value: float


class DashboardOverviewOut(BaseModel):
    account_id: Optional[int]
    recent_transactions: list[TransactionOut]
    expense_breakdown: list[CategoryTotalOut]

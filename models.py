import datetime as dt
from datetime import date, datetime
from decimal import Decimal
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
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base

MONEY = Numeric(14, 2)


class AccountType(str, Enum):
    chequeing = "CHEQUEING"
    savings = "SAVINGS"


class TransactionType(str, Enum):
    income = "INCOME"
    expense = "EXPENSE"


class RecurringInterval(str, Enum):
    daily = "DAILY"
    weekly = "WEEKLY"
    monthly = "MONTHLY"
    yearly = "YEARLY"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


ACCOUNT_TYPE_ENUM = SAEnum(
    AccountType, name="accounttype", values_callable=_enum_values
)
TRANSACTION_TYPE_ENUM = SAEnum(
    TransactionType, name="transactiontype", values_callable=_enum_values
)
RECURRING_INTERVAL_ENUM = SAEnum(
    RecurringInterval, name="recurringinterval", values_callable=_enum_values
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    name: Mapped[Optional[str]] = mapped_column(String(120))

    accounts: Mapped[list["Account"]] = relationship(
        "Account", back_populates="user"
    )
    budget: Mapped[Optional["Budget"]] = relationship(
        "Budget", back_populates="user", uselist=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[AccountType] = mapped_column(ACCOUNT_TYPE_ENUM, nullable=False)
    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Bumped on every ORM write; a write against a stale version raises StaleDataError.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    user: Mapped["User"] = relationship("User", back_populates="accounts")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account"
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (Index("ix_accounts_user_default", "user_id", "is_default"),)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    type: Mapped[TransactionType] = mapped_column(TRANSACTION_TYPE_ENUM, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurring_interval: Mapped[Optional[RecurringInterval]] = mapped_column(
        RECURRING_INTERVAL_ENUM
    )
    next_recurring_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    last_processed: Mapped[Optional[datetime]] = mapped_column(DateTime)
    origin_transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL")
    )

    account: Mapped["Account"] = relationship("Account", back_populates="transactions")

    __table_args__ = (
        UniqueConstraint(
            "origin_transaction_id", "date", name="uq_txn_origin_occurrence"
        ),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_account_date", "account_id", "date"),
        Index(
            "ix_transactions_recurring_due", "is_recurring", "next_recurring_date"
        ),
        CheckConstraint("amount >= 0", name="ck_transactions_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False, unique=True
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    last_alert_sent: Mapped[Optional[datetime]] = mapped_column(DateTime)

    user: Mapped["User"] = relationship("User", back_populates="budget")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_budgets_amount_positive"),
    )

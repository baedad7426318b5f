from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import case, delete, func, select
from sqlalchemy.orm import Session

from categories import UNCATEGORIZED
from errors import NotFoundError, ValidationFailedError
from models import Account, Budget, Transaction, TransactionType, User
from money import ZERO, signed_amount, to_decimal, to_number
from periods import chart_period, month_period
from recurrence import RecurringEngine, local_today, projected_next_date
from schemas import (
    AccountChartOut,
    AccountIn,
    BudgetIn,
    CategoryTotalOut,
    ChartPointOut,
    ChartTotalsOut,
    DashboardOverviewOut,
    TransactionIn,
    TransactionOut,
    UserIn,
)

logger = logging.getLogger(__name__)

SIGNED_AMOUNT = case(
    (Transaction.type == TransactionType.expense, -Transaction.amount),
    else_=Transaction.amount,
)


def balance_from_transactions(session: Session, account_id: int) -> Decimal:
    total = session.execute(
        select(func.coalesce(func.sum(SIGNED_AMOUNT), 0)).where(
            Transaction.account_id == account_id
        )
    ).scalar_one()
    return to_decimal(total or 0)


def percentage_used(expenses: Decimal, budget_amount: Decimal) -> float:
    return float(to_decimal(expenses) / to_decimal(budget_amount) * 100)


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def ensure(self, external_id: str, data: Optional[UserIn] = None) -> User:
        """Map an auth subject to a user row, creating it on first access."""
        data = data or UserIn()
        user = self.session.scalar(select(User).where(User.external_id == external_id))
        if user:
            if data.email is not None:
                user.email = data.email
            if data.name is not None:
                user.name = data.name
            self.session.commit()
            return user

        user = User(external_id=external_id, email=data.email, name=data.name)
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_created: id={user.id}")
        return user


class AccountService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFoundError("Account not found")
        return account

    def list_all(self) -> list[tuple[Account, int]]:
        counts = (
            select(Transaction.account_id, func.count(Transaction.id).label("n"))
            .group_by(Transaction.account_id)
            .subquery()
        )
        stmt = (
            select(Account, func.coalesce(counts.c.n, 0))
            .outerjoin(counts, counts.c.account_id == Account.id)
            .where(Account.user_id == self.user_id)
            .order_by(Account.created_at.desc(), Account.id.desc())
        )
        return [(account, int(n)) for account, n in self.session.execute(stmt).all()]

    def get_with_transactions(self, account_id: int) -> tuple[Account, list[Transaction]]:
        account = self.get(account_id)
        stmt = (
            select(Transaction)
            .where(Transaction.account_id == account.id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return account, list(self.session.scalars(stmt).all())

    def default_account(self) -> Optional[Account]:
        return self.session.scalar(
            select(Account)
            .where(Account.user_id == self.user_id, Account.is_default.is_(True))
            .order_by(Account.id)
            .limit(1)
        )

    def latest_account(self) -> Optional[Account]:
        return self.session.scalar(
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.created_at.desc(), Account.id.desc())
            .limit(1)
        )

    def _clear_defaults(self, keep_id: Optional[int] = None) -> None:
        stmt = select(Account).where(
            Account.user_id == self.user_id, Account.is_default.is_(True)
        )
        for account in self.session.scalars(stmt).all():
            if account.id != keep_id:
                account.is_default = False

    def create(self, data: AccountIn) -> Account:
        existing = int(
            self.session.execute(
                select(func.count(Account.id)).where(Account.user_id == self.user_id)
            ).scalar_one()
            or 0
        )
        should_be_default = existing == 0 or data.is_default
        if should_be_default:
            self._clear_defaults()

        account = Account(
            user_id=self.user_id,
            name=data.name,
            type=data.type,
            balance=data.balance,
            is_default=should_be_default,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def set_default(self, account_id: int) -> Account:
        account = self.get(account_id)
        self._clear_defaults(keep_id=account.id)
        account.is_default = True
        self.session.commit()
        self.session.refresh(account)
        return account


class TransactionService:
    """Keeps every account balance equal to the signed sum of its transactions.

    Single-row writes (create, update, posted occurrences) apply an
    incremental delta; bulk delete recomputes each affected balance from the
    remaining rows. Each public mutation commits exactly once.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.accounts = AccountService(session, user_id)

    def _apply_delta(self, account: Account, delta: Decimal) -> None:
        # Re-read right before writing; the version column rejects a write
        # based on a balance another request has since committed.
        self.session.refresh(account)
        account.balance = to_decimal(account.balance) + delta
        self.session.flush()

    def _resync_balance(self, account_id: int) -> Decimal:
        account = self.session.get(Account, account_id)
        total = balance_from_transactions(self.session, account_id)
        account.balance = total
        self.session.flush()
        return total

    def create(self, data: TransactionIn) -> Transaction:
        account = self.accounts.get(data.account_id)
        txn = Transaction(
            user_id=self.user_id,
            account_id=account.id,
            type=data.type,
            amount=data.amount,
            description=data.description,
            date=data.date,
            category=data.category,
            is_recurring=data.is_recurring,
            recurring_interval=data.recurring_interval,
            next_recurring_date=projected_next_date(
                data.date, data.is_recurring, data.recurring_interval
            ),
        )
        self.session.add(txn)
        self.session.flush()
        self._apply_delta(account, signed_amount(data.type, data.amount))
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .join(Account, Transaction.account_id == Account.id)
            .where(
                Transaction.id == transaction_id,
                Transaction.user_id == self.user_id,
                Account.user_id == self.user_id,
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def list_for_user(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        source = self.accounts.get(txn.account_id)
        destination = self.accounts.get(data.account_id)

        old_delta = signed_amount(txn.type, txn.amount)
        new_delta = signed_amount(data.type, data.amount)

        txn.account_id = destination.id
        txn.type = data.type
        txn.amount = data.amount
        txn.description = data.description
        txn.date = data.date
        txn.category = data.category
        txn.is_recurring = data.is_recurring
        txn.recurring_interval = data.recurring_interval
        txn.next_recurring_date = projected_next_date(
            data.date, data.is_recurring, data.recurring_interval
        )
        self.session.flush()

        if source.id == destination.id:
            self._apply_delta(source, new_delta - old_delta)
        else:
            self._apply_delta(source, -old_delta)
            self._apply_delta(destination, new_delta)

        self.session.commit()
        self.session.refresh(txn)
        return txn

    def bulk_delete(self, transaction_ids: Iterable[int]) -> int:
        ids = sorted(set(transaction_ids))
        if not ids:
            return 0

        rows = self.session.execute(
            select(Transaction.id, Transaction.account_id)
            .join(Account, Transaction.account_id == Account.id)
            .where(
                Transaction.id.in_(ids),
                Transaction.user_id == self.user_id,
                Account.user_id == self.user_id,
            )
        ).all()
        if len(rows) != len(ids):
            raise NotFoundError("Transaction not found")

        affected = sorted({row.account_id for row in rows})
        self.session.execute(
            delete(Transaction).where(Transaction.id.in_(ids)),
            execution_options={"synchronize_session": "fetch"},
        )
        self.session.flush()

        for account_id in affected:
            balance = self._resync_balance(account_id)
            logger.info(f"balance_resync: account={account_id} balance={balance}")

        self.session.commit()
        return len(rows)

    def record_occurrence(
        self, template: Transaction, occurrence_date: date
    ) -> Transaction:
        """Post one occurrence of a recurring template without committing."""
        account = self.accounts.get(template.account_id)
        txn = Transaction(
            user_id=template.user_id,
            account_id=account.id,
            type=template.type,
            amount=template.amount,
            description=template.description,
            date=occurrence_date,
            category=template.category,
            is_recurring=False,
            origin_transaction_id=template.id,
        )
        self.session.add(txn)
        self.session.flush()
        self._apply_delta(account, signed_amount(template.type, template.amount))
        return txn

    def process_recurring(self, today: Optional[date] = None) -> int:
        count = RecurringEngine(self.session, self.user_id).post_due(today)
        self.session.commit()
        return count


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    @dataclass(frozen=True)
    class Progress:
        budget: Optional[Budget]
        account_id: Optional[int]
        current_expenses: Decimal
        percentage_used: Optional[float]

    def get(self) -> Optional[Budget]:
        return self.session.scalar(select(Budget).where(Budget.user_id == self.user_id))

    def update(self, data: BudgetIn) -> Budget:
        existing = self.get()
        if existing:
            existing.amount = data.amount
            self.session.commit()
            self.session.refresh(existing)
            return existing

        budget = Budget(user_id=self.user_id, amount=data.amount)
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def month_expenses(self, account_id: int, today: date) -> Decimal:
        period = month_period(today)
        total = self.session.execute(
            select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account_id,
                Transaction.type == TransactionType.expense,
                Transaction.date.between(period.start, period.end),
            )
        ).scalar_one()
        return to_decimal(total or 0)

    def get_current(
        self, account_id: Optional[int] = None, today: Optional[date] = None
    ) -> "BudgetService.Progress":
        today = today or local_today()
        accounts = AccountService(self.session, self.user_id)
        if account_id is not None:
            account_id = accounts.get(account_id).id
        else:
            default = accounts.default_account()
            account_id = default.id if default else None

        expenses = self.month_expenses(account_id, today) if account_id else ZERO
        budget = self.get()
        return BudgetService.Progress(
            budget=budget,
            account_id=account_id,
            current_expenses=expenses,
            percentage_used=percentage_used(expenses, budget.amount) if budget else None,
        )


class InsightsService:
    RECENT_LIMIT = 5

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.accounts = AccountService(session, user_id)

    def account_chart(
        self,
        account_id: int,
        range_key: Optional[str] = None,
        today: Optional[date] = None,
    ) -> AccountChartOut:
        account = self.accounts.get(account_id)
        try:
            period = chart_period(range_key, today=today or local_today())
        except ValueError as exc:
            raise ValidationFailedError(str(exc)) from exc

        stmt = (
            select(
                Transaction.date,
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount), 0).label("total"),
            )
            .where(
                Transaction.account_id == account.id,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Transaction.date, Transaction.type)
            .order_by(Transaction.date)
        )
        by_day: dict[date, dict[str, Decimal]] = {}
        income_total = ZERO
        expense_total = ZERO
        for row in self.session.execute(stmt):
            day = by_day.setdefault(row.date, {"income": ZERO, "expense": ZERO})
            amount = to_decimal(row.total or 0)
            if row.type == TransactionType.income:
                day["income"] += amount
                income_total += amount
            else:
                day["expense"] += amount
                expense_total += amount

        points = [
            ChartPointOut(
                date=day,
                income=to_number(values["income"]),
                expense=to_number(values["expense"]),
            )
            for day, values in sorted(by_day.items())
        ]
        return AccountChartOut(
            range=period.slug,
            start=period.start,
            end=period.end,
            points=points,
            totals=ChartTotalsOut(
                income=to_number(income_total),
                expense=to_number(expense_total),
                net=to_number(income_total - expense_total),
            ),
        )

    def dashboard_overview(
        self, account_id: Optional[int] = None, today: Optional[date] = None
    ) -> DashboardOverviewOut:
        if account_id is not None:
            account = self.accounts.get(account_id)
        else:
            account = self.accounts.default_account() or self.accounts.latest_account()
        if account is None:
            return DashboardOverviewOut(
                account_id=None, recent_transactions=[], expense_breakdown=[]
            )

        recent = self.session.scalars(
            select(Transaction)
            .where(Transaction.account_id == account.id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(self.RECENT_LIMIT)
        ).all()

        period = month_period(today or local_today())
        total = func.sum(Transaction.amount).label("total")
        breakdown_rows = self.session.execute(
            select(Transaction.category, total)
            .where(
                Transaction.account_id == account.id,
                Transaction.type == TransactionType.expense,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Transaction.category)
            .order_by(total.desc(), Transaction.category)
        ).all()

        breakdown: dict[str, Decimal] = {}
        for row in breakdown_rows:
            name = (row.category or "").strip() or UNCATEGORIZED
            breakdown[name] = breakdown.get(name, ZERO) + to_decimal(row.total or 0)

        return DashboardOverviewOut(
            account_id=account.id,
            recent_transactions=[TransactionOut.model_validate(t) for t in recent],
            expense_breakdown=[
                CategoryTotalOut(name=name, value=to_number(value))
                for name, value in breakdown.items()
            ],
        )

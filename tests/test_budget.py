from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import AccountType, TransactionType, User
from periods import month_period
from schemas import AccountIn, BudgetIn, TransactionIn
from services import AccountService, BudgetService, TransactionService, percentage_used


def _seed(session: Session):
    user = User(external_id="user-budget")
    session.add(user)
    session.commit()
    account = AccountService(session, user.id).create(
        AccountIn(name="Main", type=AccountType.chequeing, balance=Decimal("1000"))
    )
    return user, account


def _expense(account_id: int, amount: str, on: date) -> TransactionIn:
    return TransactionIn(
        account_id=account_id,
        type=TransactionType.expense,
        amount=Decimal(amount),
        date=on,
        category="groceries",
    )


def test_percentage_used():
    assert percentage_used(Decimal("125"), Decimal("500")) == 25.0
    assert percentage_used(Decimal("0"), Decimal("500")) == 0.0


def test_budget_progress_counts_current_month_expenses_only():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        user, account = _seed(session)
        BudgetService(session, user.id).update(BudgetIn(amount=Decimal("500")))

        txns = TransactionService(session, user.id)
        txns.create(_expense(account.id, "100", date(2024, 5, 1)))
        txns.create(_expense(account.id, "25", date(2024, 5, 31)))
        txns.create(_expense(account.id, "70", date(2024, 4, 30)))
        txns.create(_expense(account.id, "80", date(2024, 6, 1)))
        txns.create(
            TransactionIn(
                account_id=account.id,
                type=TransactionType.income,
                amount=Decimal("900"),
                date=date(2024, 5, 15),
                category="salary",
            )
        )

        progress = BudgetService(session, user.id).get_current(today=date(2024, 5, 20))
        assert progress.account_id == account.id
        assert progress.current_expenses == Decimal("125.00")
        assert progress.percentage_used == 25.0
        assert progress.budget.amount == Decimal("500.00")


def test_budget_progress_without_budget():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        user, _account = _seed(session)
        progress = BudgetService(session, user.id).get_current(today=date(2024, 5, 20))
        assert progress.budget is None
        assert progress.percentage_used is None
        assert progress.current_expenses == Decimal("0.00")


def test_budget_update_is_an_upsert():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        user, _account = _seed(session)
        service = BudgetService(session, user.id)
        first = service.update(BudgetIn(amount=Decimal("500")))
        second = service.update(BudgetIn(amount=Decimal("750.50")))
        assert first.id == second.id
        assert service.get().amount == Decimal("750.50")


def test_budget_amount_must_be_positive():
    with pytest.raises(ValidationError):
        BudgetIn(amount=Decimal("0"))
    with pytest.raises(ValidationError):
        BudgetIn(amount="abc")


def test_month_period_boundaries():
    period = month_period(date(2024, 2, 10))
    assert period.start == date(2024, 2, 1)
    assert period.end == date(2024, 2, 29)
    december = month_period(date(2024, 12, 31))
    assert december.start == date(2024, 12, 1)
    assert december.end == date(2024, 12, 31)

from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import (
    Account,
    AccountType,
    RecurringInterval,
    Transaction,
    TransactionType,
    User,
)
from recurrence import next_recurring_date, projected_next_date
from schemas import TransactionIn
from services import TransactionService


def test_next_recurring_date_daily_and_weekly():
    assert next_recurring_date(date(2024, 12, 31), RecurringInterval.daily) == date(
        2025, 1, 1
    )
    assert next_recurring_date(date(2024, 2, 26), RecurringInterval.weekly) == date(
        2024, 3, 4
    )


def test_monthly_rolls_overflow_into_next_month():
    assert next_recurring_date(date(2024, 1, 31), RecurringInterval.monthly) == date(
        2024, 3, 2
    )
    assert next_recurring_date(date(2023, 1, 31), RecurringInterval.monthly) == date(
        2023, 3, 3
    )
    assert next_recurring_date(date(2024, 3, 31), RecurringInterval.monthly) == date(
        2024, 5, 1
    )
    assert next_recurring_date(date(2024, 12, 15), RecurringInterval.monthly) == date(
        2025, 1, 15
    )


def test_yearly_from_leap_day():
    assert next_recurring_date(date(2024, 2, 29), RecurringInterval.yearly) == date(
        2025, 3, 1
    )
    assert next_recurring_date(date(2024, 6, 1), RecurringInterval.yearly) == date(
        2025, 6, 1
    )


def test_projected_next_date_only_for_recurring():
    assert projected_next_date(date(2024, 5, 1), False, RecurringInterval.daily) is None
    assert projected_next_date(date(2024, 5, 1), True, None) is None
    assert projected_next_date(
        date(2024, 5, 1), True, RecurringInterval.daily
    ) == date(2024, 5, 2)


def _seed(session: Session) -> tuple[User, Account]:
    user = User(external_id="user-recurring")
    session.add(user)
    session.flush()
    account = Account(
        user_id=user.id,
        name="Main",
        type=AccountType.chequeing,
        balance=Decimal("1000.00"),
        is_default=True,
    )
    session.add(account)
    session.commit()
    return user, account


def test_process_recurring_posts_due_occurrences_once():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        user, account = _seed(session)
        service = TransactionService(session, user.id)
        template = service.create(
            TransactionIn(
                account_id=account.id,
                type=TransactionType.expense,
                amount=Decimal("100"),
                date=date(2024, 1, 1),
                category="housing",
                description="Rent",
                is_recurring=True,
                recurring_interval=RecurringInterval.monthly,
            )
        )
        assert template.next_recurring_date == date(2024, 2, 1)

        posted = service.process_recurring(today=date(2024, 3, 15))
        assert posted == 2

    with Session(engine) as session:
        template = session.scalar(
            select(Transaction).where(Transaction.is_recurring.is_(True))
        )
        assert template.next_recurring_date == date(2024, 4, 1)
        assert template.last_processed is not None

        occurrences = session.scalars(
            select(Transaction)
            .where(Transaction.origin_transaction_id == template.id)
            .order_by(Transaction.date)
        ).all()
        assert [o.date for o in occurrences] == [date(2024, 2, 1), date(2024, 3, 1)]
        assert all(not o.is_recurring for o in occurrences)
        assert all(o.description == "Rent" for o in occurrences)

        account = session.scalar(select(Account))
        assert account.balance == Decimal("700.00")

        # Rewinding the schedule must not post the same dates again.
        template.next_recurring_date = date(2024, 2, 1)
        session.commit()
        again = TransactionService(session, template.user_id).process_recurring(
            today=date(2024, 3, 15)
        )
        assert again == 0
        assert session.scalar(select(Account)).balance == Decimal("700.00")


def test_process_recurring_ignores_future_templates():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        user, account = _seed(session)
        service = TransactionService(session, user.id)
        service.create(
            TransactionIn(
                account_id=account.id,
                type=TransactionType.income,
                amount=Decimal("50"),
                date=date(2024, 5, 10),
                category="salary",
                is_recurring=True,
                recurring_interval=RecurringInterval.weekly,
            )
        )
        assert service.process_recurring(today=date(2024, 5, 16)) == 0
        assert service.process_recurring(today=date(2024, 5, 17)) == 1
        assert session.get(Account, account.id).balance == Decimal("1100.00")

from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from database import Base
from errors import NotFoundError
from models import Account, AccountType, User
from schemas import AccountIn
from services import AccountService


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _user(session: Session, external_id: str = "user-1") -> User:
    user = User(external_id=external_id)
    session.add(user)
    session.commit()
    return user


def _defaults(session: Session, user_id: int) -> int:
    return session.execute(
        select(func.count(Account.id)).where(
            Account.user_id == user_id, Account.is_default.is_(True)
        )
    ).scalar_one()


def test_first_account_is_forced_default():
    with _session() as session:
        user = _user(session)
        account = AccountService(session, user.id).create(
            AccountIn(name="Main", type=AccountType.chequeing, is_default=False)
        )
        assert account.is_default is True
        assert account.balance == Decimal("0.00")


def test_second_account_default_moves_flag():
    with _session() as session:
        user = _user(session)
        service = AccountService(session, user.id)
        first = service.create(AccountIn(name="Main", type=AccountType.chequeing))
        second = service.create(
            AccountIn(name="Savings", type=AccountType.savings, is_default=True)
        )
        third = service.create(AccountIn(name="Spare", type=AccountType.savings))

        assert session.get(Account, first.id).is_default is False
        assert session.get(Account, second.id).is_default is True
        assert session.get(Account, third.id).is_default is False
        assert _defaults(session, user.id) == 1


def test_set_default_is_idempotent():
    with _session() as session:
        user = _user(session)
        service = AccountService(session, user.id)
        service.create(AccountIn(name="Main", type=AccountType.chequeing))
        other = service.create(AccountIn(name="Savings", type=AccountType.savings))

        service.set_default(other.id)
        service.set_default(other.id)

        assert service.default_account().id == other.id
        assert _defaults(session, user.id) == 1


def test_set_default_foreign_account_is_not_found():
    with _session() as session:
        owner = _user(session, "owner")
        other = _user(session, "other")
        account = AccountService(session, owner.id).create(
            AccountIn(name="Main", type=AccountType.chequeing)
        )
        with pytest.raises(NotFoundError):
            AccountService(session, other.id).set_default(account.id)
        assert session.get(Account, account.id).is_default is True


def test_list_all_counts_transactions_and_scopes_by_user():
    with _session() as session:
        owner = _user(session, "owner")
        other = _user(session, "other")
        service = AccountService(session, owner.id)
        older = service.create(AccountIn(name="Main", type=AccountType.chequeing))
        newer = service.create(AccountIn(name="Savings", type=AccountType.savings))
        AccountService(session, other.id).create(
            AccountIn(name="Theirs", type=AccountType.chequeing)
        )

        listed = service.list_all()
        assert [a.id for a, _ in listed] == [newer.id, older.id]
        assert [count for _, count in listed] == [0, 0]


def test_account_input_is_validated():
    with pytest.raises(ValidationError):
        AccountIn(name="   ", type=AccountType.chequeing)
    with pytest.raises(ValidationError):
        AccountIn(name="Main", type=AccountType.chequeing, balance=Decimal("-1"))
    with pytest.raises(ValidationError):
        AccountIn(name="Main", type="CREDIT")
    assert AccountIn(name=" Main ", type="SAVINGS").name == "Main"

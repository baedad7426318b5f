"""Authenticated entry points returning ``ActionResult``.

Every action authenticates the caller first and never raises; failures come
back as a typed error. Routes in ``main`` only translate results to HTTP.
"""

import logging
from datetime import date
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from auth import read_identity_token, resolve_user
from errors import (
    ActionResult,
    ConflictError,
    ErrorKind,
    FinanceError,
    RateLimitedError,
    ValidationFailedError,
)
from models import User
from money import to_number
from rate_limit import RateLimiter, get_rate_limiter
from receipts import ReceiptScanner, build_prefill
from schemas import (
    AccountDetailOut,
    AccountIn,
    AccountOut,
    BudgetIn,
    BudgetOut,
    BudgetProgressOut,
    BulkDeleteIn,
    TransactionIn,
    TransactionOut,
    UserIn,
)
from services import (
    AccountService,
    BudgetService,
    InsightsService,
    TransactionService,
    UserService,
)

logger = logging.getLogger(__name__)

CONFLICT_MESSAGE = "The account was changed by another request. Please retry."


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        msg = err.get("msg", "Invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "Invalid input"


def run_action(session: Session, name: str, fn: Callable[[], Any]) -> ActionResult:
    try:
        data = fn()
    except ValidationError as exc:
        session.rollback()
        message = _validation_message(exc)
        logger.warning(f"{name}: validation_failed {message}")
        return ActionResult.fail(ErrorKind.validation_failed, message)
    except RateLimitedError as exc:
        session.rollback()
        logger.warning(f"{name}: rate_limited retry_after={exc.retry_after}")
        return ActionResult.fail(
            ErrorKind.rate_limited, str(exc), retry_after=exc.retry_after
        )
    except FinanceError as exc:
        session.rollback()
        logger.warning(f"{name}: {exc.kind.value} {exc}")
        return ActionResult.fail(exc.kind, str(exc))
    except StaleDataError:
        session.rollback()
        conflict = ConflictError(CONFLICT_MESSAGE)
        logger.warning(f"{name}: conflict on concurrent balance update")
        return ActionResult.fail(conflict.kind, str(conflict))
    except ValueError as exc:
        session.rollback()
        logger.warning(f"{name}: validation_failed {exc}")
        return ActionResult.fail(ErrorKind.validation_failed, str(exc))
    except Exception as exc:
        session.rollback()
        logger.exception(f"{name}: unexpected failure")
        return ActionResult.fail(ErrorKind.unknown, str(exc) or exc.__class__.__name__)
    return ActionResult.ok(data)


def _caller(session: Session, token: Optional[str]) -> User:
    return resolve_user(session, read_identity_token(token))


def _optional_id(value: Union[int, str, None], name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValidationFailedError(f"{name} must be an integer") from exc


def _transaction(txn) -> dict:
    return TransactionOut.model_validate(txn).model_dump(mode="json")


def sync_user(session: Session, token: Optional[str], payload: Any = None) -> ActionResult:
    def run():
        subject = read_identity_token(token)
        data = UserIn.model_validate(payload or {})
        user = UserService(session).ensure(subject, data)
        return {
            "id": user.id,
            "external_id": user.external_id,
            "email": user.email,
            "name": user.name,
        }

    return run_action(session, "sync_user", run)


def list_accounts(session: Session, token: Optional[str]) -> ActionResult:
    def run():
        user = _caller(session, token)
        items = []
        for account, count in AccountService(session, user.id).list_all():
            out = AccountOut.model_validate(account)
            out.transaction_count = count
            items.append(out.model_dump(mode="json"))
        return items

    return run_action(session, "list_accounts", run)


def create_account(session: Session, token: Optional[str], payload: Any) -> ActionResult:
    def run():
        user = _caller(session, token)
        data = AccountIn.model_validate(payload)
        account = AccountService(session, user.id).create(data)
        logger.info(f"account_created: user={user.id} account={account.id}")
        return AccountOut.model_validate(account).model_dump(mode="json")

    return run_action(session, "create_account", run)


def get_account(session: Session, token: Optional[str], account_id: int) -> ActionResult:
    def run():
        user = _caller(session, token)
        account, txns = AccountService(session, user.id).get_with_transactions(account_id)
        out = AccountDetailOut.model_validate(account)
        out.transactions = [TransactionOut.model_validate(t) for t in txns]
        out.transaction_count = len(txns)
        return out.model_dump(mode="json")

    return run_action(session, "get_account", run)


def set_default_account(
    session: Session, token: Optional[str], account_id: int
) -> ActionResult:
    def run():
        user = _caller(session, token)
        account = AccountService(session, user.id).set_default(account_id)
        return AccountOut.model_validate(account).model_dump(mode="json")

    return run_action(session, "set_default_account", run)


def account_chart(
    session: Session,
    token: Optional[str],
    account_id: int,
    range_key: Optional[str] = None,
    today: Optional[date] = None,
) -> ActionResult:
    def run():
        user = _caller(session, token)
        chart = InsightsService(session, user.id).account_chart(
            account_id, range_key, today=today
        )
        return chart.model_dump(mode="json")

    return run_action(session, "account_chart", run)


def list_transactions(session: Session, token: Optional[str]) -> ActionResult:
    def run():
        user = _caller(session, token)
        return [_transaction(t) for t in TransactionService(session, user.id).list_for_user()]

    return run_action(session, "list_transactions", run)


def create_transaction(
    session: Session,
    token: Optional[str],
    payload: Any,
    limiter: Optional[RateLimiter] = None,
) -> ActionResult:
    def run():
        user = _caller(session, token)
        (limiter or get_rate_limiter()).hit(f"user:{user.id}")
        data = TransactionIn.model_validate(payload)
        txn = TransactionService(session, user.id).create(data)
        logger.info(
            f"transaction_created: user={user.id} account={txn.account_id} id={txn.id}"
        )
        return _transaction(txn)

    return run_action(session, "create_transaction", run)


def get_transaction(
    session: Session, token: Optional[str], transaction_id: int
) -> ActionResult:
    def run():
        user = _caller(session, token)
        return _transaction(TransactionService(session, user.id).get(transaction_id))

    return run_action(session, "get_transaction", run)


def update_transaction(
    session: Session, token: Optional[str], transaction_id: int, payload: Any
) -> ActionResult:
    def run():
        user = _caller(session, token)
        data = TransactionIn.model_validate(payload)
        txn = TransactionService(session, user.id).update(transaction_id, data)
        logger.info(f"transaction_updated: user={user.id} id={txn.id}")
        return _transaction(txn)

    return run_action(session, "update_transaction", run)


def bulk_delete_transactions(
    session: Session, token: Optional[str], payload: Any
) -> ActionResult:
    def run():
        user = _caller(session, token)
        data = BulkDeleteIn.model_validate(payload)
        deleted = TransactionService(session, user.id).bulk_delete(data.transaction_ids)
        logger.info(f"transactions_deleted: user={user.id} count={deleted}")
        return {"deleted": deleted}

    return run_action(session, "bulk_delete_transactions", run)


def get_budget(
    session: Session,
    token: Optional[str],
    account_id: Union[int, str, None] = None,
    today: Optional[date] = None,
) -> ActionResult:
    def run():
        user = _caller(session, token)
        progress = BudgetService(session, user.id).get_current(
            _optional_id(account_id, "account_id"), today=today
        )
        return BudgetProgressOut(
            budget=BudgetOut.model_validate(progress.budget) if progress.budget else None,
            account_id=progress.account_id,
            current_expenses=to_number(progress.current_expenses),
            percentage_used=progress.percentage_used,
        ).model_dump(mode="json")

    return run_action(session, "get_budget", run)


def update_budget(session: Session, token: Optional[str], payload: Any) -> ActionResult:
    def run():
        user = _caller(session, token)
        data = BudgetIn.model_validate(payload)
        budget = BudgetService(session, user.id).update(data)
        return BudgetOut.model_validate(budget).model_dump(mode="json")

    return run_action(session, "update_budget", run)


def dashboard_overview(
    session: Session,
    token: Optional[str],
    account_id: Union[int, str, None] = None,
    today: Optional[date] = None,
) -> ActionResult:
    def run():
        user = _caller(session, token)
        overview = InsightsService(session, user.id).dashboard_overview(
            _optional_id(account_id, "account_id"), today=today
        )
        return overview.model_dump(mode="json")

    return run_action(session, "dashboard_overview", run)


def scan_receipt(
    session: Session,
    token: Optional[str],
    image: bytes,
    content_type: str,
    scanner: Optional[ReceiptScanner] = None,
) -> ActionResult:
    def run():
        _caller(session, token)
        scanned = (scanner or ReceiptScanner()).scan(image, content_type)
        return build_prefill(scanned).model_dump(mode="json")

    return run_action(session, "scan_receipt", run)


def process_recurring(
    session: Session, token: Optional[str], today: Optional[date] = None
) -> ActionResult:
    def run():
        user = _caller(session, token)
        posted = TransactionService(session, user.id).process_recurring(today)
        return {"posted": posted}

    return run_action(session, "process_recurring", run)

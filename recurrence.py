import logging
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from models import RecurringInterval, Transaction

logger = logging.getLogger(__name__)

MAX_OCCURRENCES_PER_RUN = 365


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def _add_months(base: date, months: int) -> date:
    """Advance the month field and keep the day number.

    A day past the end of the target month rolls into the following month
    instead of clamping: Jan 31 + 1 month is Mar 2 in a leap year and Mar 3
    otherwise, Feb 29 + 12 months is Mar 1.
    """
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, 1) + timedelta(days=base.day - 1)


def next_recurring_date(start: date, interval: RecurringInterval) -> date:
    if interval == RecurringInterval.daily:
        return start + timedelta(days=1)
    if interval == RecurringInterval.weekly:
        return start + timedelta(weeks=1)
    if interval == RecurringInterval.monthly:
        return _add_months(start, 1)
    if interval == RecurringInterval.yearly:
        return _add_months(start, 12)
    raise ValueError(f"Unsupported recurring interval: {interval}")


def projected_next_date(
    start: date,
    is_recurring: bool,
    interval: Optional[RecurringInterval],
) -> Optional[date]:
    if is_recurring and interval:
        return next_recurring_date(start, interval)
    return None


class RecurringEngine:
    """Posts the due occurrences of a user's recurring transactions.

    Each occurrence is an ordinary, non-recurring transaction on the template's
    account, linked back through ``origin_transaction_id``. The engine never
    commits; the caller owns the datastore transaction.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def due_templates(self, today: date) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.is_recurring.is_(True),
                Transaction.recurring_interval.is_not(None),
                Transaction.next_recurring_date <= today,
            )
            .order_by(Transaction.next_recurring_date, Transaction.id)
        )
        return list(self.session.scalars(stmt).all())

    def catch_up(self, template: Transaction, today: Optional[date] = None) -> int:
        today = today or local_today()
        posted = 0
        iterations = 0
        while (
            template.next_recurring_date is not None
            and template.next_recurring_date <= today
            and iterations < MAX_OCCURRENCES_PER_RUN
        ):
            occurrence_date = template.next_recurring_date
            if self._post_occurrence(template, occurrence_date):
                posted += 1
            template.next_recurring_date = next_recurring_date(
                occurrence_date, template.recurring_interval
            )
            template.last_processed = datetime.utcnow()
            iterations += 1
        if iterations >= MAX_OCCURRENCES_PER_RUN:
            logger.warning(
                f"recurring_catch_up: template={template.id} stopped after "
                f"{iterations} occurrences"
            )
        return posted

    def post_due(self, today: Optional[date] = None) -> int:
        today = today or local_today()
        count = 0
        for template in self.due_templates(today):
            count += self.catch_up(template, today)
        self.session.flush()
        logger.info(
            f"recurring_post_due: user={self.user_id} today={today} posted={count}"
        )
        return count

    def _post_occurrence(self, template: Transaction, occurrence_date: date) -> bool:
        from services import TransactionService

        exists_stmt = (
            select(Transaction.id)
            .where(
                Transaction.user_id == template.user_id,
                Transaction.origin_transaction_id == template.id,
                Transaction.date == occurrence_date,
            )
            .limit(1)
        )
        if self.session.execute(exists_stmt).scalar_one_or_none():
            return False

        TransactionService(self.session, self.user_id).record_occurrence(
            template, occurrence_date
        )
        return True

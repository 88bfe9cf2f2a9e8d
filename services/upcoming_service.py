"""
services/upcoming_service.py
-----------------------------
Read-only projection of the next unmaterialized occurrence of each
recurring payment, used for reminders and the upcoming list.
Nothing in this module writes to the store.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from config import UPCOMING_WINDOW_DAYS
from models.recurring import RecurringPayment
from repositories.recurring_repo import RecurringRepository
from utils.recurrence import DateLike, next_occurrence, normalize_date


@dataclass
class UpcomingPayment:
    payment: RecurringPayment
    next_date: date

    def to_dict(self) -> dict:
        data = self.payment.to_dict()
        data["nextPaymentDate"] = self.next_date.isoformat()
        return data


def next_due_date(payment: RecurringPayment) -> Optional[date]:
    """
    The next occurrence not yet materialized.

    Before anything was generated the start date itself is the candidate,
    not one step past it (the generator's first occurrence is one step
    past the start date). Inert schedules have no next occurrence.
    """
    if payment.is_inert:
        return None
    if payment.last_generated is None:
        return payment.start_date
    return next_occurrence(payment.frequency, payment.custom_interval, payment.last_generated)


def project(
    payments: Iterable[RecurringPayment], today: date, window_days: int
) -> list[UpcomingPayment]:
    """Payments whose next occurrence falls in [today, today + window_days]."""
    horizon = today + timedelta(days=window_days)
    upcoming = []
    for payment in payments:
        if not payment.is_active:
            continue
        if payment.end_date is not None and payment.end_date < today:
            continue
        due = next_due_date(payment)
        if due is None:
            continue
        if payment.end_date is not None and payment.end_date < due:
            continue
        if today <= due <= horizon:
            upcoming.append(UpcomingPayment(payment=payment, next_date=due))
    upcoming.sort(key=lambda item: (item.next_date, item.payment.id or 0))
    return upcoming


class UpcomingService:
    """Looks ahead `window_days` for payments about to become due."""

    def __init__(
        self,
        payment_repo: Optional[RecurringRepository] = None,
        window_days: int = UPCOMING_WINDOW_DAYS,
    ):
        self.payment_repo = payment_repo or RecurringRepository()
        self.window_days = window_days

    def upcoming(
        self, user_id: Optional[int] = None, now: Optional[DateLike] = None
    ) -> list[UpcomingPayment]:
        """
        Upcoming payments of one user, or of every user when `user_id` is None
        (the reminder job).
        """
        today = normalize_date(now if now is not None else datetime.now())
        payments = self.payment_repo.find_many(
            status="active", user_id=user_id, not_ended_before=today,
        )
        return project(payments, today, self.window_days)

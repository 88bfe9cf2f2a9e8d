"""
services/generation_service.py
-------------------------------
Materializes missed occurrences of recurring payments as expenses.

For every active payment the engine walks forward from its checkpoint
(`last_generated`, or `start_date` when nothing was generated yet) until
the next occurrence would fall after today, emitting one expense per
occurrence. All expenses of a run go to the store in one bulk insert and
all checkpoints move in one bulk compare-and-swap, so:

    - re-running on the same day emits nothing (the checkpoints already
      cover every emitted occurrence);
    - two overlapping runs cannot both materialize one occurrence (the
      store keeps one expense per payment and date, and only one of the
      checkpoint swaps can win);
    - a checkpoint only ever covers a gap-free prefix of stored
      occurrences, so undo can always step back exactly one occurrence.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from config import DEFAULT_RECURRING_CATEGORY
from models.expense import Expense
from models.recurring import RecurringPayment
from repositories.expense_repo import ExpenseRepository
from repositories.recurring_repo import CheckpointUpdate, RecurringRepository
from services.exceptions import ConflictError
from utils.icons import classify_icon
from utils.logger import get_logger
from utils.recurrence import DateLike, next_occurrence, normalize_date

logger = get_logger(__name__)


@dataclass
class GenerationReport:
    """Outcome of one generation run."""
    run_date: date
    payments_checked: int = 0
    generated: int = 0
    already_present: int = 0
    advanced: list[int] = field(default_factory=list)
    conflicts: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"Recurring generation for {self.run_date}: "
            f"{self.payments_checked} payments checked, "
            f"{self.generated} expenses generated, "
            f"{self.already_present} already present, "
            f"{len(self.advanced)} checkpoints advanced, "
            f"{len(self.conflicts)} conflicts, {len(self.failed)} failures"
        )


def plan_occurrences(payment: RecurringPayment, today: date) -> list[date]:
    """
    List the occurrence dates of `payment` that are due but not yet generated.

    Args:
        payment: The recurring payment definition.
        today: The normalized run date.

    Returns:
        Chronologically ordered dates in (checkpoint, today]; empty for
        paused, out-of-window or inert payments.
    """
    if not payment.is_active or not payment.in_window(today) or payment.is_inert:
        return []

    cursor = payment.last_generated or payment.start_date
    due: list[date] = []
    upcoming = next_occurrence(payment.frequency, payment.custom_interval, cursor)
    while upcoming <= today:
        if payment.end_date is not None and payment.end_date < upcoming:
            break
        due.append(upcoming)
        cursor = upcoming
        upcoming = next_occurrence(payment.frequency, payment.custom_interval, cursor)
    return due


def build_expense(payment: RecurringPayment, occurrence: date) -> Expense:
    """The expense recorded for one occurrence of `payment`."""
    return Expense(
        user_id=payment.user_id,
        amount=payment.amount,
        currency=payment.currency,
        category=payment.category or DEFAULT_RECURRING_CATEGORY,
        description=payment.expense_description(),
        date=occurrence,
        icon=payment.icon or classify_icon(payment.name),
        recurring_payment_id=payment.id,
    )


class GenerationService:
    """
    Catch-up generator for recurring payments.

    Usage:
        report = GenerationService().run()
    """

    def __init__(
        self,
        payment_repo: Optional[RecurringRepository] = None,
        expense_repo: Optional[ExpenseRepository] = None,
    ):
        self.payment_repo = payment_repo or RecurringRepository()
        self.expense_repo = expense_repo or ExpenseRepository()

    def run(self, now: Optional[DateLike] = None) -> GenerationReport:
        """
        Bring every active payment up to date as of `now`.

        Args:
            now: Run timestamp; the time of day is ignored. Defaults to now.

        Returns:
            A GenerationReport.

        Raises:
            StoreError: If the payment list cannot be read or a bulk write
                is aborted as a whole. Per-record failures never raise.
        """
        today = normalize_date(now if now is not None else datetime.now())
        report = GenerationReport(run_date=today)

        payments = self.payment_repo.find_many(
            status="active", started_by=today, not_ended_before=today,
        )
        report.payments_checked = len(payments)

        planned: list[tuple[RecurringPayment, list[date]]] = []
        expenses: list[Expense] = []
        for payment in payments:
            try:
                dates = plan_occurrences(payment, today)
                if not dates:
                    continue
                expenses.extend(build_expense(payment, d) for d in dates)
                planned.append((payment, dates))
            except Exception as e:
                logger.error(f"Skipping recurring payment #{payment.id}: {e}")
                report.failed.append(payment.id)

        if not expenses:
            logger.info(report.summary())
            return report

        inserted = self.expense_repo.bulk_insert(expenses)
        report.generated = len(inserted.inserted)
        report.already_present = len(inserted.existing)
        stored = {e.occurrence_key: e for e in inserted.inserted + inserted.existing}

        updates = []
        for payment, dates in planned:
            update = self._checkpoint_update(payment, dates, stored)
            if update is None or update.new != dates[-1]:
                report.failed.append(payment.id)
            if update is not None:
                updates.append(update)

        result = self.payment_repo.bulk_update_checkpoints(updates)
        report.advanced = [u.payment_id for u in result.applied]
        for update in result.conflicts:
            logger.warning(
                f"Recurring #{update.payment_id}: {ConflictError.default_message} "
                f"(expected checkpoint {update.expected})"
            )
            report.conflicts.append(update.payment_id)
        for update, _ in result.failed:
            if update.payment_id not in report.failed:
                report.failed.append(update.payment_id)

        logger.info(report.summary())
        return report

    @staticmethod
    def _checkpoint_update(
        payment: RecurringPayment,
        dates: list[date],
        stored: dict[tuple[Optional[int], date], Expense],
    ) -> Optional[CheckpointUpdate]:
        """Advance to the last occurrence of the stored, gap-free prefix."""
        last: Optional[Expense] = None
        for occurrence in dates:
            expense = stored.get((payment.id, occurrence))
            if expense is None:
                logger.warning(
                    f"Recurring #{payment.id}: occurrence {occurrence} was not stored, "
                    f"checkpoint stops before it"
                )
                break
            last = expense
        if last is None:
            return None
        return CheckpointUpdate(
            payment_id=payment.id,
            expected=payment.last_generated,
            new=last.date,
            expense_id=last.id,
        )


def generate_recurring_expenses() -> None:
    """
    Scheduler entry point: run generation for today and log the outcome.
    A failed run is retried by the next scheduled invocation.
    """
    try:
        GenerationService().run()
    except Exception as e:
        logger.error(f"Recurring generation run failed: {e}")

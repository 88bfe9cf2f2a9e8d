"""
services/recurring_service.py
------------------------------
Business logic for the recurring payment ledger: creating schedules,
pausing/resuming/rescheduling/deleting them, undoing a generated
expense, and listing what is about to come due.

Every operation returns the dict shape shared by both surfaces:
    {"success": True, "message": str, "data": ...}
and raises a `RecurBudgetError` subclass on failure.
"""

import math
from datetime import date
from typing import Any, Optional

from config import DEFAULT_CURRENCY
from models.expense import Expense
from models.recurring import RecurringPayment
from repositories.expense_repo import ExpenseRepository
from repositories.recurring_repo import CheckpointUpdate, RecurringRepository
from repositories.user_repo import UserRepository
from services.exceptions import ConflictError, NotFoundError, ValidationError
from services.upcoming_service import UpcomingService
from utils.icons import IconClassifier
from utils.logger import get_logger
from utils.recurrence import FREQUENCIES, normalize_date, previous_occurrence

logger = get_logger(__name__)

MAX_NAME_LENGTH = 100
MAX_CATEGORY_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
MAX_AMOUNT = 10_000_000_000
MAX_INTERVAL = 1000


def _clean_text(value: Any, field_name: str, max_length: int, required: bool = False) -> Optional[str]:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field_name} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be text")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field_name} must be at most {max_length} characters")
    return value


def _parse_amount(value: Any) -> float:
    if value is None or value == "":
        raise ValidationError("Amount is required")
    if isinstance(value, bool):
        raise ValidationError("Amount must be a number")
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Amount must be a number")
    if not math.isfinite(amount) or amount < 0:
        raise ValidationError("Amount must be zero or positive")
    if amount >= MAX_AMOUNT:
        raise ValidationError(f"Amount must be below {MAX_AMOUNT}")
    return amount


def _parse_interval(value: Any) -> int:
    if value is None or value == "":
        return 1
    if isinstance(value, bool):
        raise ValidationError("Custom interval must be a whole number")
    try:
        interval = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError("Custom interval must be a whole number")
    if interval != float(value) or interval < 1:
        raise ValidationError("Custom interval must be a positive whole number")
    if interval > MAX_INTERVAL:
        raise ValidationError(f"Custom interval must be at most {MAX_INTERVAL}")
    return interval


def _parse_date(value: Any, field_name: str) -> date:
    try:
        return normalize_date(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a date (YYYY-MM-DD)")


class RecurringService:
    """
    Handles all business logic for recurring payments.

    Responsibilities:
        - Validate and create recurring payments.
        - Lifecycle changes (pause, resume, reschedule, delete).
        - Undo the latest generated expense of a payment.
        - List payments about to come due.
    """

    def __init__(
        self,
        payment_repo: Optional[RecurringRepository] = None,
        expense_repo: Optional[ExpenseRepository] = None,
        user_repo: Optional[UserRepository] = None,
        icon_classifier: Optional[IconClassifier] = None,
    ):
        self.repo = payment_repo or RecurringRepository()
        self.expense_repo = expense_repo or ExpenseRepository()
        self.user_repo = user_repo or UserRepository()
        self.icons = icon_classifier or IconClassifier()
        self.upcoming = UpcomingService(self.repo)

    # ── CREATE ────────────────────────────────────────────

    def create_payment(
        self,
        user_id: int,
        name: Any,
        amount: Any,
        frequency: Any = "monthly",
        custom_interval: Any = 1,
        start_date: Any = None,
        end_date: Any = None,
        category: Any = None,
        description: Any = None,
    ) -> dict:
        """
        Validate input and store a new recurring payment.

        Args:
            user_id: Owner.
            name: Required, at most 100 characters.
            amount: Required, zero or positive and below 10 billion.
            frequency: daily | weekly | monthly | yearly | custom.
            custom_interval: Repeat every N units (every N days for custom), 1 to 1000.
            start_date: First anchor date, defaults to today.
            end_date: Optional last date an occurrence may fall on.
            category: Optional category for generated expenses.
            description: Optional description for generated expenses.

        Raises:
            ValidationError: On any invalid field.
        """
        name = _clean_text(name, "Name", MAX_NAME_LENGTH, required=True)
        amount = _parse_amount(amount)

        frequency = frequency or "monthly"
        if not isinstance(frequency, str) or frequency.strip().lower() not in FREQUENCIES:
            raise ValidationError(f"Frequency must be one of: {', '.join(FREQUENCIES)}")
        frequency = frequency.strip().lower()
        interval = _parse_interval(custom_interval)

        start = _parse_date(start_date, "Start date") if start_date else date.today()
        end = _parse_date(end_date, "End date") if end_date else None
        if end is not None and end < start:
            raise ValidationError("End date cannot be before start date")

        payment = RecurringPayment(
            user_id=user_id,
            name=name,
            amount=amount,
            frequency=frequency,
            custom_interval=interval,
            start_date=start,
            end_date=end,
            currency=DEFAULT_CURRENCY,
            category=_clean_text(category, "Category", MAX_CATEGORY_LENGTH),
            description=_clean_text(description, "Description", MAX_DESCRIPTION_LENGTH),
            icon=self.icons.classify(name),
        )
        self.user_repo.ensure_user(user_id)
        saved = self.repo.add(payment)
        return {"success": True, "message": "Recurring payment added", "data": saved}

    # ── READ ──────────────────────────────────────────────

    def list_payments(self, user_id: int) -> dict:
        """All payments of a user, most recent start date first."""
        payments = self.repo.find_many(user_id=user_id, newest_first=True)
        return {"success": True, "message": f"{len(payments)} recurring payments", "data": payments}

    def list_upcoming(self, user_id: int, now: Any = None) -> dict:
        """Active payments whose next occurrence falls within the lookahead window."""
        upcoming = self.upcoming.upcoming(user_id=user_id, now=now)
        return {"success": True, "message": f"{len(upcoming)} upcoming payments", "data": upcoming}

    # ── UPDATE ────────────────────────────────────────────

    def update_start_date(self, payment_id: int, user_id: int, new_start_date: Any) -> dict:
        """Postpone or prepone a schedule. The generation checkpoint is left as is."""
        if not new_start_date:
            raise ValidationError("New start date required")
        start = _parse_date(new_start_date, "New start date")

        payment = self.repo.get_by_id(payment_id, user_id)
        if payment is None:
            raise NotFoundError("Recurring payment not found")
        if payment.end_date is not None and start > payment.end_date:
            raise ValidationError("Start date cannot be after end date")

        updated = self.repo.update_fields(payment_id, user_id, start_date=start)
        if updated is None:
            raise NotFoundError("Recurring payment not found")
        return {"success": True, "message": "Start date updated", "data": updated}

    def pause_payment(self, payment_id: int, user_id: int) -> dict:
        return self._set_status(payment_id, user_id, "paused", "Recurring payment paused")

    def resume_payment(self, payment_id: int, user_id: int) -> dict:
        return self._set_status(payment_id, user_id, "active", "Recurring payment resumed")

    def _set_status(self, payment_id: int, user_id: int, status: str, message: str) -> dict:
        updated = self.repo.update_fields(payment_id, user_id, status=status)
        if updated is None:
            raise NotFoundError("Recurring payment not found")
        return {"success": True, "message": message, "data": updated}

    # ── DELETE ────────────────────────────────────────────

    def delete_payment(self, payment_id: int, user_id: int) -> dict:
        """Delete a recurring payment. Expenses already generated are kept."""
        if not self.repo.delete(payment_id, user_id):
            raise NotFoundError("Recurring payment not found")
        return {"success": True, "message": "Recurring payment deleted", "data": None}

    # ── UNDO ──────────────────────────────────────────────

    def undo_expense(self, expense_id: int, user_id: int) -> dict:
        """
        Delete a generated expense and, when it is the latest occurrence of
        its payment, move the payment's checkpoint back one occurrence.

        If the expense is an older occurrence the checkpoint is left
        untouched: the date stays missing from history and later generation
        runs will not backfill it.

        Raises:
            NotFoundError: Expense does not exist or belongs to someone else.
            ConflictError: The checkpoint moved while undoing, or generation
            stored the expense but has not checkpointed it yet.
        """
        expense = self.expense_repo.get_by_id(expense_id, user_id)
        if expense is None:
            raise NotFoundError("Expense not found")

        payment = self._source_payment(expense, user_id)
        if payment is not None and (
            payment.last_generated is None or expense.date > payment.last_generated
        ):
            if expense.recurring_payment_id == payment.id:
                raise ConflictError(
                    "This occurrence is not recorded by its schedule yet, "
                    "try again after the next generation run"
                )
            # matched by description only, not an occurrence of this schedule
            payment = None
        rolled_back = False
        if payment is not None and payment.last_generated == expense.date:
            previous = previous_occurrence(
                payment.frequency, payment.custom_interval, payment.last_generated
            )
            swapped = self.repo.conditional_update(CheckpointUpdate(
                payment_id=payment.id, expected=expense.date, new=previous,
            ))
            if not swapped:
                raise ConflictError()
            payment.last_generated = previous
            payment.last_generated_expense_id = None
            rolled_back = True
            logger.info(f"Rolled recurring #{payment.id} checkpoint back to {previous}")

        if not self.expense_repo.delete(expense_id, user_id):
            logger.warning(f"Expense #{expense_id} disappeared before undo could delete it")

        if rolled_back:
            message = "Payment undone successfully"
        elif payment is not None:
            message = (
                f"Expense deleted. It is not the latest occurrence of '{payment.name}', "
                f"so the schedule was left unchanged and {expense.date} will not be generated again"
            )
        else:
            message = "Expense deleted. No recurring payment is linked to it"
        return {
            "success": True,
            "message": message,
            "data": {"expense": expense, "payment": payment, "rolledBack": rolled_back},
        }

    def _source_payment(self, expense: Expense, user_id: int) -> Optional[RecurringPayment]:
        """
        Find the recurring payment an expense was generated from.

        Exact links (the payment's last generated expense id, then the
        expense's own payment id) are tried before matching on
        description and date.
        """
        payment = self.repo.find_by_last_expense(expense.id, user_id)
        if payment is None and expense.recurring_payment_id is not None:
            payment = self.repo.get_by_id(expense.recurring_payment_id, user_id)
        if payment is None and expense.description:
            payment = self.repo.find_by_occurrence(user_id, expense.description, expense.date)
        return payment

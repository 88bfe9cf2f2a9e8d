"""
Pytest fixtures: in-memory payment/expense stores with the same contracts
as the PostgreSQL repositories (owner scoping, compare-and-swap
checkpoints, one expense per payment and occurrence date).
"""
import itertools
from dataclasses import replace
from datetime import date, datetime
from typing import Optional

import pytest

from models.expense import Expense
from models.recurring import RecurringPayment
from repositories.expense_repo import BulkInsertResult
from repositories.recurring_repo import BulkUpdateResult, CheckpointUpdate
from security.rate_limiter import limiter
from services.generation_service import GenerationService
from services.recurring_service import RecurringService

USER = 7
OTHER_USER = 8
TODAY = date(2026, 10, 19)
NOW = datetime(2026, 10, 19, 17, 38, 0)


class InMemoryPaymentStore:
    """Stands in for RecurringRepository."""

    def __init__(self):
        self.rows: dict[int, RecurringPayment] = {}
        self._ids = itertools.count(1)
        self.fail_checkpoint_ids: set[int] = set()

    def add(self, payment: RecurringPayment) -> RecurringPayment:
        payment.id = next(self._ids)
        payment.created_at = datetime(2026, 1, 1)
        self.rows[payment.id] = replace(payment)
        return payment

    def find_many(self, status=None, user_id=None, started_by=None,
                  not_ended_before=None, newest_first=False) -> list[RecurringPayment]:
        found = []
        for p in self.rows.values():
            if status is not None and p.status != status:
                continue
            if user_id is not None and p.user_id != user_id:
                continue
            if started_by is not None and p.start_date > started_by:
                continue
            if not_ended_before is not None and p.end_date is not None and p.end_date < not_ended_before:
                continue
            found.append(replace(p))
        if newest_first:
            return sorted(found, key=lambda p: (p.start_date, p.id), reverse=True)
        return sorted(found, key=lambda p: p.id)

    def get_by_id(self, payment_id: int, user_id: int) -> Optional[RecurringPayment]:
        p = self.rows.get(payment_id)
        return replace(p) if p and p.user_id == user_id else None

    def find_by_last_expense(self, expense_id: int, user_id: int) -> Optional[RecurringPayment]:
        for p in self.rows.values():
            if p.user_id == user_id and p.last_generated_expense_id == expense_id:
                return replace(p)
        return None

    def find_by_occurrence(self, user_id: int, description: str, day: date) -> Optional[RecurringPayment]:
        matches = [
            p for p in self.rows.values()
            if p.user_id == user_id and p.expense_description() == description
        ]
        matches.sort(key=lambda p: (p.last_generated == day, p.id), reverse=True)
        return replace(matches[0]) if matches else None

    def update_fields(self, payment_id: int, user_id: int, **changes) -> Optional[RecurringPayment]:
        p = self.rows.get(payment_id)
        if p is None or p.user_id != user_id:
            return None
        for name, value in changes.items():
            setattr(p, name, value)
        return replace(p)

    def conditional_update(self, update: CheckpointUpdate) -> bool:
        p = self.rows.get(update.payment_id)
        if p is None or p.last_generated != update.expected:
            return False
        p.last_generated = update.new
        p.last_generated_expense_id = update.expense_id
        return True

    def bulk_update_checkpoints(self, updates: list[CheckpointUpdate]) -> BulkUpdateResult:
        result = BulkUpdateResult()
        for update in updates:
            if update.payment_id in self.fail_checkpoint_ids:
                result.failed.append((update, RuntimeError("checkpoint write failed")))
            elif self.conditional_update(update):
                result.applied.append(update)
            else:
                result.conflicts.append(update)
        return result

    def delete(self, payment_id: int, user_id: int) -> bool:
        p = self.rows.get(payment_id)
        if p is None or p.user_id != user_id:
            return False
        del self.rows[payment_id]
        return True


class InMemoryExpenseStore:
    """Stands in for ExpenseRepository."""

    def __init__(self):
        self.rows: dict[int, Expense] = {}
        self._ids = itertools.count(100)
        self.fail_occurrences: set[tuple[int, date]] = set()

    def add(self, expense: Expense) -> Expense:
        expense.id = next(self._ids)
        self.rows[expense.id] = replace(expense)
        return expense

    def bulk_insert(self, expenses: list[Expense]) -> BulkInsertResult:
        result = BulkInsertResult()
        for expense in expenses:
            if expense.occurrence_key in self.fail_occurrences:
                result.failed.append((expense, RuntimeError("insert failed")))
                continue
            existing = self._find_occurrence(expense)
            if existing is not None:
                expense.id = existing.id
                result.existing.append(expense)
            else:
                result.inserted.append(self.add(expense))
        return result

    def get_by_id(self, expense_id: int, user_id: int) -> Optional[Expense]:
        e = self.rows.get(expense_id)
        return replace(e) if e and e.user_id == user_id else None

    def delete(self, expense_id: int, user_id: int) -> bool:
        e = self.rows.get(expense_id)
        if e is None or e.user_id != user_id:
            return False
        del self.rows[expense_id]
        return True

    def for_payment(self, payment_id: int) -> list[Expense]:
        return sorted(
            (e for e in self.rows.values() if e.recurring_payment_id == payment_id),
            key=lambda e: e.date,
        )

    def _find_occurrence(self, expense: Expense) -> Optional[Expense]:
        if expense.recurring_payment_id is None:
            return None
        for e in self.rows.values():
            if e.occurrence_key == expense.occurrence_key:
                return e
        return None


class FakeUserRepository:
    def __init__(self):
        self.ensured: list[int] = []

    def ensure_user(self, telegram_id: int, first_name: Optional[str] = None) -> dict:
        self.ensured.append(telegram_id)
        return {"id": telegram_id, "telegram_id": telegram_id, "first_name": first_name, "currency": "EUR"}


@pytest.fixture
def payment_store():
    return InMemoryPaymentStore()


@pytest.fixture
def expense_store():
    return InMemoryExpenseStore()


@pytest.fixture
def user_repo():
    return FakeUserRepository()


@pytest.fixture
def generator(payment_store, expense_store):
    return GenerationService(payment_repo=payment_store, expense_repo=expense_store)


@pytest.fixture
def service(payment_store, expense_store, user_repo):
    return RecurringService(
        payment_repo=payment_store, expense_repo=expense_store, user_repo=user_repo,
    )


@pytest.fixture
def make_payment(payment_store):
    """Store a payment directly, bypassing validation."""
    def _make(**overrides) -> RecurringPayment:
        fields = dict(
            user_id=USER, name="Netflix", amount=15.0,
            frequency="monthly", start_date=TODAY,
        )
        fields.update(overrides)
        return payment_store.add(RecurringPayment(**fields))
    return _make


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    limiter.reset()
    yield
    limiter.reset()

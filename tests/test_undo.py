"""Tests for undoing generated expenses."""
import pytest
from datetime import date, timedelta

from models.expense import Expense
from services.exceptions import ConflictError, NotFoundError
from tests.conftest import NOW, OTHER_USER, TODAY, USER


@pytest.fixture
def daily(generator, expense_store, make_payment):
    """A daily payment caught up over three days."""
    payment = make_payment(frequency="daily", start_date=TODAY - timedelta(days=3))
    generator.run(now=NOW)
    return payment, expense_store.for_payment(payment.id)


def test_undo_latest_rolls_checkpoint_back(service, payment_store, expense_store, daily):
    payment, expenses = daily
    latest = expenses[-1]

    result = service.undo_expense(latest.id, USER)

    assert result["message"] == "Payment undone successfully"
    assert result["data"]["rolledBack"] is True
    assert result["data"]["payment"].last_generated == TODAY - timedelta(days=1)
    stored = payment_store.rows[payment.id]
    assert stored.last_generated == TODAY - timedelta(days=1)
    assert stored.last_generated_expense_id is None
    assert latest.id not in expense_store.rows


def test_undone_occurrence_is_regenerated_next_run(service, generator, expense_store, daily):
    payment, expenses = daily
    service.undo_expense(expenses[-1].id, USER)

    report = generator.run(now=NOW)

    assert report.generated == 1
    regenerated = expense_store.for_payment(payment.id)[-1]
    assert regenerated.date == TODAY
    assert regenerated.id != expenses[-1].id


def test_undo_monthly_steps_back_one_month(service, generator, payment_store, expense_store, make_payment):
    payment = make_payment(frequency="monthly", start_date=date(2026, 1, 15))
    generator.run(now=date(2026, 4, 20))
    latest = expense_store.for_payment(payment.id)[-1]
    assert latest.date == date(2026, 4, 15)

    service.undo_expense(latest.id, USER)

    assert payment_store.rows[payment.id].last_generated == date(2026, 3, 15)


def test_undo_older_occurrence_leaves_checkpoint_and_gap(service, generator, payment_store, expense_store, daily):
    payment, expenses = daily
    oldest = expenses[0]

    result = service.undo_expense(oldest.id, USER)

    assert result["data"]["rolledBack"] is False
    assert "will not be generated again" in result["message"]
    assert payment_store.rows[payment.id].last_generated == TODAY
    assert oldest.id not in expense_store.rows

    generator.run(now=NOW)
    assert [e.date for e in expense_store.for_payment(payment.id)] == [
        TODAY - timedelta(days=1), TODAY,
    ]


def test_undo_unknown_expense(service):
    with pytest.raises(NotFoundError):
        service.undo_expense(999, USER)


def test_undo_someone_elses_expense(service, expense_store, daily):
    _, expenses = daily

    with pytest.raises(NotFoundError):
        service.undo_expense(expenses[-1].id, OTHER_USER)
    assert expenses[-1].id in expense_store.rows


def test_undo_manual_expense_just_deletes_it(service, expense_store, daily):
    manual = expense_store.add(Expense(user_id=USER, amount=4.5, category="Food",
                                       description="Groceries", date=TODAY))

    result = service.undo_expense(manual.id, USER)

    assert result["data"]["payment"] is None
    assert result["message"] == "Expense deleted. No recurring payment is linked to it"
    assert manual.id not in expense_store.rows


def test_undo_falls_back_to_description_and_date(service, payment_store, expense_store, make_payment):
    """Expenses recorded without a payment link are matched by description and date."""
    payment = make_payment(frequency="monthly", start_date=date(2026, 8, 19), last_generated=TODAY)
    unlinked = expense_store.add(Expense(user_id=USER, amount=15.0, category="Recurring",
                                         description="Netflix", date=TODAY))

    result = service.undo_expense(unlinked.id, USER)

    assert result["data"]["rolledBack"] is True
    assert payment_store.rows[payment.id].last_generated == date(2026, 9, 19)


def test_undo_uses_payment_link_when_expense_id_was_not_recorded(service, payment_store, expense_store, make_payment):
    payment = make_payment(frequency="weekly", start_date=TODAY - timedelta(days=14), last_generated=TODAY)
    linked = expense_store.add(Expense(user_id=USER, amount=15.0, category="Recurring",
                                       description="Renamed", date=TODAY,
                                       recurring_payment_id=payment.id))

    service.undo_expense(linked.id, USER)

    assert payment_store.rows[payment.id].last_generated == TODAY - timedelta(days=7)


def test_concurrent_checkpoint_change_keeps_expense(service, payment_store, expense_store, daily, monkeypatch):
    payment, expenses = daily
    monkeypatch.setattr(payment_store, "conditional_update", lambda update: False)

    with pytest.raises(ConflictError):
        service.undo_expense(expenses[-1].id, USER)

    assert expenses[-1].id in expense_store.rows
    assert payment_store.rows[payment.id].last_generated == TODAY


def test_undo_past_checkpoint_is_refused(service, generator, payment_store, expense_store, make_payment):
    """An occurrence stored beyond a gap is not undone until generation records it."""
    payment = make_payment(frequency="daily", start_date=TODAY - timedelta(days=3))
    expense_store.fail_occurrences.add((payment.id, TODAY - timedelta(days=1)))
    generator.run(now=NOW)
    ahead = expense_store.for_payment(payment.id)[-1]
    assert ahead.date == TODAY
    assert payment_store.rows[payment.id].last_generated == TODAY - timedelta(days=2)

    with pytest.raises(ConflictError):
        service.undo_expense(ahead.id, USER)

    assert ahead.id in expense_store.rows
    assert payment_store.rows[payment.id].last_generated == TODAY - timedelta(days=2)


def test_undo_after_gap_is_filled_rolls_back(service, generator, payment_store, expense_store, make_payment):
    payment = make_payment(frequency="daily", start_date=TODAY - timedelta(days=3))
    expense_store.fail_occurrences.add((payment.id, TODAY - timedelta(days=1)))
    generator.run(now=NOW)
    expense_store.fail_occurrences.clear()
    generator.run(now=NOW)
    latest = expense_store.for_payment(payment.id)[-1]

    result = service.undo_expense(latest.id, USER)

    assert result["data"]["rolledBack"] is True
    assert payment_store.rows[payment.id].last_generated == TODAY - timedelta(days=1)

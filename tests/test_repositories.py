"""
Repository tests against a scripted cursor: SQL shape, savepoint handling
and error mapping, without a live PostgreSQL server.
"""
from contextlib import contextmanager
from datetime import date, datetime, timedelta

import psycopg2
import pytest

from models.expense import Expense
from repositories import expense_repo, recurring_repo
from repositories.expense_repo import ExpenseRepository
from repositories.recurring_repo import CheckpointUpdate, RecurringRepository
from services.exceptions import StoreError


class Batch(list):
    """Row tuples that execute_values rendered into one statement."""


class ScriptedCursor:
    """
    Records every statement. `respond(sql, params)` returns
    (rows, rowcount) for the statement or raises to simulate a failure.
    Statements built by execute_values arrive with their rows as a Batch.
    """

    def __init__(self, respond):
        self.respond = respond
        self.executed: list[tuple[str, object]] = []
        self.connection = ScriptedConnection(self)
        self._rows: list = []
        self._rendered = Batch()
        self.rowcount = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def mogrify(self, template, args):
        self._rendered.append(tuple(args))
        return repr(tuple(args)).encode()

    def execute(self, sql, params=None):
        if isinstance(sql, bytes):
            sql, params, self._rendered = sql.decode(), self._rendered, Batch()
        self.executed.append((" ".join(sql.split()), params))
        self._rows, self.rowcount = self.respond(sql, params)

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)


class ScriptedConnection:
    encoding = "UTF8"

    def __init__(self, cursor):
        self._cursor = cursor

    def cursor(self):
        return self._cursor


def default_respond(sql, params):
    return [], 0


@pytest.fixture
def cursor_for(monkeypatch):
    """Patch both repositories' transaction() to hand out one scripted cursor."""
    def _install(respond=default_respond):
        cur = ScriptedCursor(respond)

        @contextmanager
        def fake_transaction():
            yield ScriptedConnection(cur)

        monkeypatch.setattr(recurring_repo, "transaction", fake_transaction)
        monkeypatch.setattr(expense_repo, "transaction", fake_transaction)
        return cur
    return _install


def statements(cur):
    return [sql for sql, _ in cur.executed]


PAYMENT_ROW = (
    3, 7, "Netflix", 15, "EUR", "monthly", 1, date(2026, 1, 15), None,
    None, None, "🎬", date(2026, 9, 15), 120, "active", datetime(2026, 1, 1),
)


class TestRecurringRepository:

    def test_conditional_update_matches_expected_checkpoint(self, cursor_for):
        cur = cursor_for(lambda sql, params: ([], 1))
        update = CheckpointUpdate(payment_id=3, expected=None, new=date(2026, 10, 15), expense_id=120)

        assert RecurringRepository().conditional_update(update) is True

        sql, params = cur.executed[0]
        assert "last_generated IS NOT DISTINCT FROM %s" in sql
        assert params == (date(2026, 10, 15), 120, 3, None)

    def test_conditional_update_lost_race(self, cursor_for):
        cursor_for(lambda sql, params: ([], 0))
        update = CheckpointUpdate(payment_id=3, expected=date(2026, 9, 15), new=date(2026, 10, 15))

        assert RecurringRepository().conditional_update(update) is False

    def test_bulk_update_swaps_all_checkpoints_in_one_statement(self, cursor_for):
        def respond(sql, params):
            if isinstance(params, Batch):
                return [(row[0],) for row in params if row[0] != 3], 2
            return [], 0

        cur = cursor_for(respond)
        updates = [
            CheckpointUpdate(payment_id=pid, expected=None, new=date(2026, 10, 19))
            for pid in (1, 2, 3)
        ]

        result = RecurringRepository().bulk_update_checkpoints(updates)

        assert [u.payment_id for u in result.applied] == [1, 2]
        assert [u.payment_id for u in result.conflicts] == [3]
        assert result.failed == []
        assert len(cur.executed) == 3
        sql, rows = cur.executed[1]
        assert "IS NOT DISTINCT FROM v.expected" in sql
        assert rows == [(pid, None, date(2026, 10, 19), None) for pid in (1, 2, 3)]

    def test_bulk_update_isolates_failing_row(self, cursor_for):
        def respond(sql, params):
            if isinstance(params, Batch):
                raise psycopg2.OperationalError("lock timeout")
            if sql.lstrip().startswith("UPDATE") and params[2] == 2:
                raise psycopg2.OperationalError("lock timeout")
            if sql.lstrip().startswith("UPDATE") and params[2] == 3:
                return [], 0
            return [], 1

        cur = cursor_for(respond)
        updates = [
            CheckpointUpdate(payment_id=pid, expected=None, new=date(2026, 10, 19))
            for pid in (1, 2, 3)
        ]

        result = RecurringRepository().bulk_update_checkpoints(updates)

        assert [u.payment_id for u in result.applied] == [1]
        assert [u.payment_id for u, _ in result.failed] == [2]
        assert [u.payment_id for u in result.conflicts] == [3]
        assert "ROLLBACK TO SAVEPOINT checkpoint_batch;" in statements(cur)
        assert "ROLLBACK TO SAVEPOINT checkpoint_row;" in statements(cur)

    def test_find_many_builds_filters(self, cursor_for):
        cur = cursor_for(lambda sql, params: ([PAYMENT_ROW], 1))

        [payment] = RecurringRepository().find_many(
            status="active", started_by=date(2026, 10, 19), not_ended_before=date(2026, 10, 19),
        )

        sql, params = cur.executed[0]
        assert "status = %s" in sql and "start_date <= %s" in sql
        assert "(end_date IS NULL OR end_date >= %s)" in sql
        assert "user_id = %s" not in sql
        assert params == ["active", date(2026, 10, 19), date(2026, 10, 19)]
        assert payment.amount == 15.0
        assert payment.last_generated_expense_id == 120

    def test_update_fields_rejects_checkpoint(self, cursor_for):
        cursor_for()
        with pytest.raises(ValueError):
            RecurringRepository().update_fields(3, 7, last_generated=date(2026, 10, 1))

    def test_driver_error_becomes_store_error(self, cursor_for):
        def respond(sql, params):
            raise psycopg2.OperationalError("server closed the connection")

        cursor_for(respond)

        with pytest.raises(StoreError):
            RecurringRepository().get_by_id(3, 7)


def occurrence(day: int) -> Expense:
    return Expense(user_id=7, amount=15.0, category="Recurring", description="Netflix",
                   date=date(2026, 10, day), recurring_payment_id=3)


class TestExpenseRepository:

    def test_bulk_insert_stores_a_backlog_in_one_statement(self, cursor_for):
        stored_at = datetime(2026, 10, 19, 0, 5)
        backlog = [
            Expense(user_id=7, amount=1.0, category="Recurring", description="Gym",
                    date=date(2026, 7, 11) + timedelta(days=n), recurring_payment_id=3)
            for n in range(100)
        ]

        def respond(sql, params):
            if isinstance(params, Batch):
                return [(1000 + n, row[9], row[6], stored_at) for n, row in enumerate(params)], 100
            return [], 0

        cur = cursor_for(respond)

        result = ExpenseRepository().bulk_insert(backlog)

        assert [e.id for e in result.inserted] == list(range(1000, 1100))
        assert result.existing == [] and result.failed == []
        assert statements(cur)[0] == "SAVEPOINT expense_batch;"
        assert statements(cur)[-1] == "RELEASE SAVEPOINT expense_batch;"
        assert len(cur.executed) == 3
        assert len(cur.executed[1][1]) == 100

    def test_bulk_insert_reads_skipped_occurrences_in_one_query(self, cursor_for):
        stored_at = datetime(2026, 10, 19, 0, 5)

        def respond(sql, params):
            if isinstance(params, Batch):
                return [(501, 3, date(2026, 10, 17), stored_at)], 1
            if sql.lstrip().startswith("SELECT"):
                return [(400, 3, date(2026, 10, 18), stored_at)], 1
            return [], 0

        cur = cursor_for(respond)

        result = ExpenseRepository().bulk_insert([occurrence(17), occurrence(18), occurrence(19)])

        assert [e.id for e in result.inserted] == [501]
        assert [e.id for e in result.existing] == [400]
        assert [e.date.day for e, _ in result.failed] == [19]
        assert len(cur.executed) == 4
        _, lookup = cur.executed[2]
        assert lookup == (((3, date(2026, 10, 18)), (3, date(2026, 10, 19))),)

    def test_bulk_insert_reports_existing_and_failed(self, cursor_for):
        stored_at = datetime(2026, 10, 19, 0, 5)

        def respond(sql, params):
            if isinstance(params, Batch):
                raise psycopg2.IntegrityError("violates foreign key constraint")
            if sql.lstrip().startswith("INSERT"):
                day = params[6].day
                if day == 17:
                    return [(501, stored_at)], 1
                if day == 18:
                    return [], 0
                raise psycopg2.IntegrityError("violates foreign key constraint")
            if sql.lstrip().startswith("SELECT"):
                return [(400, stored_at)], 1
            return [], 0

        cur = cursor_for(respond)

        result = ExpenseRepository().bulk_insert([occurrence(17), occurrence(18), occurrence(19)])

        assert [e.id for e in result.inserted] == [501]
        assert [e.id for e in result.existing] == [400]
        assert [e.date.day for e, _ in result.failed] == [19]
        insert_sql = next(sql for sql in statements(cur) if sql.startswith("INSERT"))
        assert "ON CONFLICT (recurring_payment_id, date)" in insert_sql
        assert "ROLLBACK TO SAVEPOINT expense_batch;" in statements(cur)
        assert "ROLLBACK TO SAVEPOINT expense_row;" in statements(cur)

    def test_bulk_insert_of_nothing_touches_nothing(self, cursor_for):
        cur = cursor_for()

        result = ExpenseRepository().bulk_insert([])

        assert result.inserted == [] and cur.executed == []

    def test_delete_is_owner_scoped(self, cursor_for):
        cur = cursor_for(lambda sql, params: ([], 0))

        assert ExpenseRepository().delete(501, 8) is False
        assert cur.executed[0][1] == (501, 8)

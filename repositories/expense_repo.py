"""
repositories/expense_repo.py
-----------------------------
Data access layer for expense transactions (the Expense Store).
All SQL queries related to the `expenses` table live here.
"""

from dataclasses import dataclass, field
from typing import Optional

import psycopg2
from psycopg2.extras import execute_values

from db.connection import transaction
from models.expense import Expense
from services.exceptions import StoreError
from utils.logger import get_logger

logger = get_logger(__name__)

_COLUMNS = (
    "id, user_id, type, amount, currency, category, description, "
    "date, icon, trip_id, recurring_payment_id, created_at"
)


@dataclass
class BulkInsertResult:
    """
    Outcome of a continue-on-error bulk insert.

    Attributes:
        inserted: Newly created expenses, ids populated.
        existing: Occurrences that were already stored, ids populated
            from the stored row.
        failed: (expense, error) pairs that could not be written.
    """
    inserted: list[Expense] = field(default_factory=list)
    existing: list[Expense] = field(default_factory=list)
    failed: list[tuple[Expense, Exception]] = field(default_factory=list)


class ExpenseRepository:
    """Repository for CRUD operations on the expenses table."""

    # ── CREATE ────────────────────────────────────────────

    def add(self, expense: Expense) -> Expense:
        """
        Insert a new expense record.

        Returns:
            The same Expense with its `id` and `created_at` populated.
        """
        try:
            with transaction() as conn:
                with conn.cursor() as cur:
                    self._insert(cur, expense)
                    row = cur.fetchone()
                    expense.id, expense.created_at = row[0], row[1]
            logger.info(f"Added {expense.type} #{expense.id} for user {expense.user_id}")
            return expense
        except psycopg2.Error as e:
            logger.error(f"Failed to add expense: {e}")
            raise StoreError() from e

    def bulk_insert(self, expenses: list[Expense]) -> BulkInsertResult:
        """
        Insert generated occurrences in one statement, continuing past failures.

        The whole batch goes out as a single multi-row INSERT. Occurrences
        that already exist (same recurring payment and date) are skipped by
        the unique index and looked up in one SELECT, then reported in
        `existing` with the stored id. Only if the batch itself fails is it
        retried row by row, each row in its own savepoint, so a bad row is
        rolled back alone.

        Args:
            expenses: Generated expenses (recurring_payment_id set), in
                emission order.

        Returns:
            A BulkInsertResult.
        """
        result = BulkInsertResult()
        if not expenses:
            return result
        if any(e.recurring_payment_id is None for e in expenses):
            raise ValueError("bulk_insert only stores generated occurrences")

        try:
            with transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute("SAVEPOINT expense_batch;")
                    try:
                        self._insert_batch(cur, expenses, result)
                        cur.execute("RELEASE SAVEPOINT expense_batch;")
                    except psycopg2.Error as e:
                        cur.execute("ROLLBACK TO SAVEPOINT expense_batch;")
                        logger.warning(
                            f"Batch insert of {len(expenses)} expenses failed, "
                            f"retrying row by row: {e}"
                        )
                        result = BulkInsertResult()
                        self._insert_rows(cur, expenses, result)
        except psycopg2.Error as e:
            logger.error(f"Bulk expense insert aborted: {e}")
            raise StoreError() from e

        logger.info(
            f"Bulk insert: {len(result.inserted)} inserted, "
            f"{len(result.existing)} existing, {len(result.failed)} failed"
        )
        return result

    # ── READ ──────────────────────────────────────────────

    def get_by_id(self, expense_id: int, user_id: int) -> Optional[Expense]:
        """
        Fetch a single expense by ID, scoped to a user.

        Returns:
            An Expense object or None if not found (or not owned).
        """
        sql = f"SELECT {_COLUMNS} FROM expenses WHERE id = %s AND user_id = %s;"
        try:
            with transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, (expense_id, user_id))
                    row = cur.fetchone()
                    return self._row_to_expense(row) if row else None
        except psycopg2.Error as e:
            logger.error(f"Failed to fetch expense #{expense_id}: {e}")
            raise StoreError() from e

    # ── DELETE ────────────────────────────────────────────

    def delete(self, expense_id: int, user_id: int) -> bool:
        """
        Delete an expense by ID, scoped to a user.

        Returns:
            True if a row was deleted, False otherwise.
        """
        sql = "DELETE FROM expenses WHERE id = %s AND user_id = %s;"
        try:
            with transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, (expense_id, user_id))
                    deleted = cur.rowcount > 0
            if deleted:
                logger.info(f"Deleted expense #{expense_id} for user {user_id}")
            return deleted
        except psycopg2.Error as e:
            logger.error(f"Failed to delete expense #{expense_id}: {e}")
            raise StoreError() from e

    # ── HELPERS ───────────────────────────────────────────

    _INSERT_SQL = """
        INSERT INTO expenses
            (user_id, type, amount, currency, category, description,
             date, icon, trip_id, recurring_payment_id)
        VALUES {values}
    """
    _SKIP_EXISTING = """
        ON CONFLICT (recurring_payment_id, date)
            WHERE recurring_payment_id IS NOT NULL DO NOTHING
    """

    @staticmethod
    def _values(expense: Expense) -> tuple:
        return (
            expense.user_id, expense.type, expense.amount, expense.currency,
            expense.category, expense.description, expense.date,
            expense.icon, expense.trip_id, expense.recurring_payment_id,
        )

    def _insert(self, cur, expense: Expense, skip_existing: bool = False) -> None:
        sql = self._INSERT_SQL.format(values="(%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)")
        if skip_existing:
            sql += self._SKIP_EXISTING
        sql += " RETURNING id, created_at;"
        cur.execute(sql, self._values(expense))

    def _insert_batch(self, cur, expenses: list[Expense], result: BulkInsertResult) -> None:
        """One multi-row INSERT, then one SELECT for the occurrences it skipped."""
        sql = (
            self._INSERT_SQL.format(values="%s") + self._SKIP_EXISTING
            + " RETURNING id, recurring_payment_id, date, created_at;"
        )
        rows = execute_values(
            cur, sql, [self._values(e) for e in expenses],
            page_size=len(expenses), fetch=True,
        )
        stored = {(r[1], r[2]): (r[0], r[3]) for r in rows}

        skipped = [e for e in expenses if e.occurrence_key not in stored]
        if skipped:
            cur.execute(
                "SELECT id, recurring_payment_id, date, created_at FROM expenses "
                "WHERE (recurring_payment_id, date) IN %s;",
                (tuple(e.occurrence_key for e in skipped),),
            )
            existing = {(r[1], r[2]): (r[0], r[3]) for r in cur.fetchall()}
        else:
            existing = {}

        for expense in expenses:
            key = expense.occurrence_key
            if key in stored:
                expense.id, expense.created_at = stored[key]
                result.inserted.append(expense)
            elif key in existing:
                expense.id, expense.created_at = existing[key]
                result.existing.append(expense)
            else:
                # conflicting row was deleted before it could be read
                result.failed.append((expense, StoreError("Occurrence vanished")))

    def _insert_rows(self, cur, expenses: list[Expense], result: BulkInsertResult) -> None:
        """Row-by-row fallback: one savepoint per expense."""
        for expense in expenses:
            cur.execute("SAVEPOINT expense_row;")
            try:
                self._insert(cur, expense, skip_existing=True)
                row = cur.fetchone()
                if row:
                    expense.id, expense.created_at = row[0], row[1]
                    result.inserted.append(expense)
                else:
                    cur.execute(
                        "SELECT id, created_at FROM expenses "
                        "WHERE recurring_payment_id = %s AND date = %s;",
                        (expense.recurring_payment_id, expense.date),
                    )
                    existing = cur.fetchone()
                    if existing is None:
                        result.failed.append((expense, StoreError("Occurrence vanished")))
                    else:
                        expense.id, expense.created_at = existing[0], existing[1]
                        result.existing.append(expense)
                cur.execute("RELEASE SAVEPOINT expense_row;")
            except psycopg2.Error as e:
                cur.execute("ROLLBACK TO SAVEPOINT expense_row;")
                logger.error(
                    f"Failed to insert expense for payment "
                    f"#{expense.recurring_payment_id} on {expense.date}: {e}"
                )
                result.failed.append((expense, e))

    @staticmethod
    def _row_to_expense(row: tuple) -> Expense:
        """Convert a database row tuple to an Expense domain object."""
        return Expense(
            id=row[0],
            user_id=row[1],
            type=row[2],
            amount=float(row[3]),
            currency=row[4],
            category=row[5],
            description=row[6],
            date=row[7],
            icon=row[8],
            trip_id=row[9],
            recurring_payment_id=row[10],
            created_at=row[11],
        )

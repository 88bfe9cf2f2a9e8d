"""
repositories/recurring_repo.py
-------------------------------
Data access layer for recurring payments (the Payment Store).
All SQL queries related to the `recurring_payments` table live here.

The generation checkpoint (`last_generated`) is only ever written with a
compare-and-swap: the UPDATE matches the value the writer read, so two
overlapping writers cannot both move the same checkpoint.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

import psycopg2
from psycopg2.extras import execute_values

from db.connection import transaction
from models.recurring import RecurringPayment
from services.exceptions import StoreError
from utils.logger import get_logger

logger = get_logger(__name__)

_COLUMNS = (
    "id, user_id, name, amount, currency, frequency, custom_interval, "
    "start_date, end_date, category, description, icon, last_generated, "
    "last_generated_expense_id, status, created_at"
)

# Fields the lifecycle operations may patch directly.
_PATCHABLE = ("status", "start_date")


@dataclass
class CheckpointUpdate:
    """Move `last_generated` from `expected` to `new`, if nobody else did first."""
    payment_id: int
    expected: Optional[date]
    new: Optional[date]
    expense_id: Optional[int] = None


@dataclass
class BulkUpdateResult:
    applied: list[CheckpointUpdate] = field(default_factory=list)
    conflicts: list[CheckpointUpdate] = field(default_factory=list)
    failed: list[tuple[CheckpointUpdate, Exception]] = field(default_factory=list)


class RecurringRepository:
    """Repository for CRUD operations on recurring_payments table."""

    # ── CREATE ────────────────────────────────────────────

    def add(self, payment: RecurringPayment) -> RecurringPayment:
        """
        Insert a new recurring payment.

        Returns:
            The same object with its `id` and `created_at` populated.
        """
        sql = """
            INSERT INTO recurring_payments
                (user_id, name, amount, currency, frequency, custom_interval,
                 start_date, end_date, category, description, icon, status)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id, created_at;
        """
        try:
            with transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, (
                        payment.user_id, payment.name, payment.amount,
                        payment.currency, payment.frequency, payment.custom_interval,
                        payment.start_date, payment.end_date, payment.category,
                        payment.description, payment.icon, payment.status,
                    ))
                    payment.id, payment.created_at = cur.fetchone()
            logger.info(f"Added recurring payment '{payment.name}' #{payment.id}")
            return payment
        except psycopg2.Error as e:
            logger.error(f"Failed to add recurring payment: {e}")
            raise StoreError() from e

    # ── READ ──────────────────────────────────────────────

    def find_many(
        self,
        status: Optional[str] = None,
        user_id: Optional[int] = None,
        started_by: Optional[date] = None,
        not_ended_before: Optional[date] = None,
        newest_first: bool = False,
    ) -> list[RecurringPayment]:
        """
        Query recurring payments.

        Args:
            status: Only this status ('active' / 'paused').
            user_id: Only this owner.
            started_by: Only payments whose start_date <= this date.
            not_ended_before: Only open-ended payments or those whose
                end_date >= this date.
            newest_first: Order by start_date descending instead of id.
        """
        sql = f"SELECT {_COLUMNS} FROM recurring_payments WHERE TRUE"
        params: list = []
        if status is not None:
            sql += " AND status = %s"
            params.append(status)
        if user_id is not None:
            sql += " AND user_id = %s"
            params.append(user_id)
        if started_by is not None:
            sql += " AND start_date <= %s"
            params.append(started_by)
        if not_ended_before is not None:
            sql += " AND (end_date IS NULL OR end_date >= %s)"
            params.append(not_ended_before)
        sql += " ORDER BY start_date DESC, id DESC;" if newest_first else " ORDER BY id ASC;"
        return self._fetch_all(sql, params)

    def get_by_id(self, payment_id: int, user_id: int) -> Optional[RecurringPayment]:
        """Fetch a single recurring payment by ID, scoped to user."""
        sql = f"SELECT {_COLUMNS} FROM recurring_payments WHERE id = %s AND user_id = %s;"
        return self._fetch_one(sql, (payment_id, user_id))

    def find_by_last_expense(self, expense_id: int, user_id: int) -> Optional[RecurringPayment]:
        """Find the payment whose latest generated expense is `expense_id`."""
        sql = f"""
            SELECT {_COLUMNS} FROM recurring_payments
            WHERE last_generated_expense_id = %s AND user_id = %s
            LIMIT 1;
        """
        return self._fetch_one(sql, (expense_id, user_id))

    def find_by_occurrence(
        self, user_id: int, description: str, day: date
    ) -> Optional[RecurringPayment]:
        """
        Match a payment by the description it stamps on its expenses.
        A payment whose checkpoint equals `day` is preferred.
        """
        sql = f"""
            SELECT {_COLUMNS} FROM recurring_payments
            WHERE user_id = %s AND COALESCE(description, name) = %s
            ORDER BY (last_generated = %s) DESC NULLS LAST, id DESC
            LIMIT 1;
        """
        return self._fetch_one(sql, (user_id, description, day))

    # ── UPDATE ────────────────────────────────────────────

    def update_fields(
        self, payment_id: int, user_id: int, **changes
    ) -> Optional[RecurringPayment]:
        """
        Patch lifecycle fields (status, start_date) of one payment.

        Returns:
            The updated payment, or None if it does not exist for this user.
        """
        unknown = set(changes) - set(_PATCHABLE)
        if unknown:
            raise ValueError(f"Cannot patch fields: {sorted(unknown)}")
        assignments = ", ".join(f"{name} = %s" for name in changes)
        sql = f"""
            UPDATE recurring_payments SET {assignments}
            WHERE id = %s AND user_id = %s
            RETURNING {_COLUMNS};
        """
        try:
            with transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, (*changes.values(), payment_id, user_id))
                    row = cur.fetchone()
            if row:
                logger.info(f"Updated recurring payment #{payment_id}: {changes}")
            return self._row_to_payment(row) if row else None
        except psycopg2.Error as e:
            logger.error(f"Failed to update recurring #{payment_id}: {e}")
            raise StoreError() from e

    def conditional_update(self, update: CheckpointUpdate) -> bool:
        """
        Compare-and-swap the generation checkpoint of one payment.

        Returns:
            True if the checkpoint still held `update.expected` and was moved,
            False if another writer changed it first.
        """
        try:
            with transaction() as conn:
                with conn.cursor() as cur:
                    return self._swap_checkpoint(cur, update)
        except psycopg2.Error as e:
            logger.error(f"Failed to update checkpoint of recurring #{update.payment_id}: {e}")
            raise StoreError() from e

    def bulk_update_checkpoints(self, updates: list[CheckpointUpdate]) -> BulkUpdateResult:
        """
        Apply many checkpoint compare-and-swaps in a single UPDATE.

        Rows whose checkpoint no longer holds the expected value are left
        alone and reported as conflicts. If the batch statement fails it is
        retried per payment, each in its own savepoint, so one bad row never
        blocks the others.
        """
        result = BulkUpdateResult()
        if not updates:
            return result

        try:
            with transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute("SAVEPOINT checkpoint_batch;")
                    try:
                        self._swap_checkpoints(cur, updates, result)
                        cur.execute("RELEASE SAVEPOINT checkpoint_batch;")
                    except psycopg2.Error as e:
                        cur.execute("ROLLBACK TO SAVEPOINT checkpoint_batch;")
                        logger.warning(
                            f"Batch checkpoint update of {len(updates)} payments failed, "
                            f"retrying one by one: {e}"
                        )
                        result = BulkUpdateResult()
                        self._swap_each(cur, updates, result)
        except psycopg2.Error as e:
            logger.error(f"Bulk checkpoint update aborted: {e}")
            raise StoreError() from e
        return result

    # ── DELETE ────────────────────────────────────────────

    def delete(self, payment_id: int, user_id: int) -> bool:
        """Delete a recurring payment by ID, scoped to user."""
        sql = "DELETE FROM recurring_payments WHERE id = %s AND user_id = %s;"
        try:
            with transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, (payment_id, user_id))
                    deleted = cur.rowcount > 0
            if deleted:
                logger.info(f"Deleted recurring payment #{payment_id}")
            return deleted
        except psycopg2.Error as e:
            logger.error(f"Failed to delete recurring #{payment_id}: {e}")
            raise StoreError() from e

    # ── HELPERS ───────────────────────────────────────────

    @staticmethod
    def _swap_checkpoint(cur, update: CheckpointUpdate) -> bool:
        cur.execute(
            """
            UPDATE recurring_payments
            SET last_generated = %s, last_generated_expense_id = %s
            WHERE id = %s AND last_generated IS NOT DISTINCT FROM %s;
            """,
            (update.new, update.expense_id, update.payment_id, update.expected),
        )
        return cur.rowcount > 0

    def _swap_checkpoints(self, cur, updates: list[CheckpointUpdate], result: BulkUpdateResult) -> None:
        """One UPDATE ... FROM (VALUES ...) for the whole batch."""
        rows = execute_values(
            cur,
            """
            UPDATE recurring_payments AS p
            SET last_generated = v.new, last_generated_expense_id = v.expense_id
            FROM (VALUES %s) AS v(id, expected, new, expense_id)
            WHERE p.id = v.id AND p.last_generated IS NOT DISTINCT FROM v.expected
            RETURNING p.id;
            """,
            [(u.payment_id, u.expected, u.new, u.expense_id) for u in updates],
            template="(%s::int, %s::date, %s::date, %s::int)",
            page_size=len(updates),
            fetch=True,
        )
        swapped = {r[0] for r in rows}
        for update in updates:
            if update.payment_id in swapped:
                result.applied.append(update)
            else:
                result.conflicts.append(update)

    def _swap_each(self, cur, updates: list[CheckpointUpdate], result: BulkUpdateResult) -> None:
        """Per-payment fallback: one savepoint per compare-and-swap."""
        for update in updates:
            cur.execute("SAVEPOINT checkpoint_row;")
            try:
                if self._swap_checkpoint(cur, update):
                    result.applied.append(update)
                else:
                    result.conflicts.append(update)
                cur.execute("RELEASE SAVEPOINT checkpoint_row;")
            except psycopg2.Error as e:
                cur.execute("ROLLBACK TO SAVEPOINT checkpoint_row;")
                logger.error(f"Failed to move checkpoint of recurring #{update.payment_id}: {e}")
                result.failed.append((update, e))

    def _fetch_all(self, sql: str, params) -> list[RecurringPayment]:
        try:
            with transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    return [self._row_to_payment(r) for r in cur.fetchall()]
        except psycopg2.Error as e:
            logger.error(f"Failed to query recurring payments: {e}")
            raise StoreError() from e

    def _fetch_one(self, sql: str, params) -> Optional[RecurringPayment]:
        try:
            with transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    row = cur.fetchone()
                    return self._row_to_payment(row) if row else None
        except psycopg2.Error as e:
            logger.error(f"Failed to query recurring payment: {e}")
            raise StoreError() from e

    @staticmethod
    def _row_to_payment(row: tuple) -> RecurringPayment:
        """Convert a database row tuple to a RecurringPayment domain object."""
        return RecurringPayment(
            id=row[0],
            user_id=row[1],
            name=row[2],
            amount=float(row[3]),
            currency=row[4],
            frequency=row[5],
            custom_interval=row[6],
            start_date=row[7],
            end_date=row[8],
            category=row[9],
            description=row[10],
            icon=row[11],
            last_generated=row[12],
            last_generated_expense_id=row[13],
            status=row[14],
            created_at=row[15],
        )

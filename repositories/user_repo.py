"""
repositories/user_repo.py
--------------------------
Data access layer for user records.
Payments and expenses reference `users.telegram_id`, so an owner row
must exist before anything is created on their behalf.
"""

from typing import Optional

import psycopg2

from db.connection import transaction
from services.exceptions import StoreError
from utils.logger import get_logger

logger = get_logger(__name__)


class UserRepository:
    """Repository for the users table."""

    def ensure_user(self, telegram_id: int, first_name: Optional[str] = None) -> dict:
        """
        Insert a user if they don't exist, or return the existing record.
        Uses PostgreSQL's ON CONFLICT (upsert) for atomicity; a known
        first name is never overwritten with NULL.

        Returns:
            Dict with user data: {'id', 'telegram_id', 'first_name', 'currency'}.
        """
        sql = """
            INSERT INTO users (telegram_id, first_name)
            VALUES (%s, %s)
            ON CONFLICT (telegram_id) DO UPDATE
                SET first_name = COALESCE(EXCLUDED.first_name, users.first_name)
            RETURNING id, telegram_id, first_name, currency;
        """
        try:
            with transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, (telegram_id, first_name))
                    row = cur.fetchone()
        except psycopg2.Error as e:
            logger.error(f"Failed to ensure user {telegram_id}: {e}")
            raise StoreError() from e
        return {
            "id": row[0],
            "telegram_id": row[1],
            "first_name": row[2],
            "currency": row[3],
        }

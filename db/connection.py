"""
db/connection.py
----------------
PostgreSQL connection pool shared by the bot, its scheduled jobs and the
HTTP API. Generation runs in a worker thread and FastAPI serves sync
routes from a threadpool, so the pool is psycopg2's ThreadedConnectionPool.

Repositories only use `transaction()`.
"""

from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2 import pool
from config import DATABASE_URL, DB_POOL_MAX, DB_POOL_MIN
from utils.logger import get_logger

logger = get_logger(__name__)

_pool: pool.ThreadedConnectionPool | None = None


def init_pool(min_conn: int = DB_POOL_MIN, max_conn: int = DB_POOL_MAX) -> None:
    """
    Open the pool. Calling it again is a no-op.

    Raises:
        psycopg2.OperationalError: If the database is unreachable.
    """
    global _pool
    if _pool is not None:
        return
    try:
        _pool = pool.ThreadedConnectionPool(min_conn, max_conn, DATABASE_URL)
        logger.info(f"Database pool ready ({min_conn}-{max_conn} connections).")
    except psycopg2.OperationalError as e:
        logger.error(f"Failed to initialize database pool: {e}")
        raise


def _borrow():
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")
    return _pool.getconn()


def _give_back(conn, broken: bool = False) -> None:
    if _pool is not None:
        _pool.putconn(conn, close=broken)


@contextmanager
def transaction() -> Iterator:
    """
    Borrow a connection for one unit of work.

    Commits when the block exits normally and rolls back when it raises.
    A connection the server dropped is discarded instead of returned.

    Usage:
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(...)
    """
    conn = _borrow()
    try:
        yield conn
        conn.commit()
    except Exception:
        if not conn.closed:
            conn.rollback()
        raise
    finally:
        _give_back(conn, broken=bool(conn.closed))


def close_pool() -> None:
    """Close all connections in the pool."""
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None
        logger.info("Database connection pool closed.")

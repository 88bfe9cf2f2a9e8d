"""
db/init_db.py
-------------
Creates the database schema (tables) if they do not already exist.
Run this module directly to initialize a fresh database:
    python -m db.init_db
"""

from db.connection import transaction
from utils.logger import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
-- Users table: every bot or API user that owns payments and expenses
CREATE TABLE IF NOT EXISTS users (
    id              SERIAL PRIMARY KEY,
    telegram_id     BIGINT UNIQUE NOT NULL,
    first_name      VARCHAR(100),
    currency        VARCHAR(5) DEFAULT 'EUR',
    created_at      TIMESTAMPTZ DEFAULT NOW()
);

-- Recurring payments: schedule definitions plus the generation checkpoint
CREATE TABLE IF NOT EXISTS recurring_payments (
    id                          SERIAL PRIMARY KEY,
    user_id                     BIGINT NOT NULL REFERENCES users(telegram_id) ON DELETE CASCADE,
    name                        VARCHAR(100) NOT NULL,
    amount                      NUMERIC(12,2) NOT NULL CHECK (amount >= 0),
    currency                    VARCHAR(5) DEFAULT 'EUR',
    frequency                   VARCHAR(20) NOT NULL DEFAULT 'monthly'
                                CHECK (frequency IN ('daily', 'weekly', 'monthly', 'yearly', 'custom')),
    custom_interval             INT NOT NULL DEFAULT 1 CHECK (custom_interval >= 1),
    start_date                  DATE NOT NULL DEFAULT CURRENT_DATE,
    end_date                    DATE,
    category                    VARCHAR(100),
    description                 VARCHAR(500),
    icon                        VARCHAR(50),
    last_generated              DATE,
    last_generated_expense_id   INT,
    status                      VARCHAR(10) NOT NULL DEFAULT 'active'
                                CHECK (status IN ('active', 'paused')),
    created_at                  TIMESTAMPTZ DEFAULT NOW()
);

-- Expenses: manual entries and occurrences generated from recurring payments
CREATE TABLE IF NOT EXISTS expenses (
    id                      SERIAL PRIMARY KEY,
    user_id                 BIGINT NOT NULL REFERENCES users(telegram_id) ON DELETE CASCADE,
    type                    VARCHAR(10) NOT NULL DEFAULT 'expense' CHECK (type IN ('expense', 'income')),
    amount                  NUMERIC(12,2) NOT NULL,
    currency                VARCHAR(5) DEFAULT 'EUR',
    category                VARCHAR(100),
    description             TEXT,
    date                    DATE NOT NULL DEFAULT CURRENT_DATE,
    icon                    VARCHAR(50),
    trip_id                 INT,
    recurring_payment_id    INT REFERENCES recurring_payments(id) ON DELETE SET NULL,
    created_at              TIMESTAMPTZ DEFAULT NOW()
);

-- One expense per (payment, occurrence date), whichever run inserts it first
CREATE UNIQUE INDEX IF NOT EXISTS uq_expenses_occurrence
    ON expenses(recurring_payment_id, date) WHERE recurring_payment_id IS NOT NULL;

CREATE INDEX IF NOT EXISTS idx_expenses_user_date ON expenses(user_id, date);
CREATE INDEX IF NOT EXISTS idx_recurring_user ON recurring_payments(user_id);
CREATE INDEX IF NOT EXISTS idx_recurring_active ON recurring_payments(start_date) WHERE status = 'active';
"""


def create_tables() -> None:
    """
    Execute the schema SQL to create all tables.
    Safe to call multiple times (uses IF NOT EXISTS).
    """
    try:
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
        logger.info("Database schema initialized successfully.")
    except Exception as e:
        logger.error(f"Failed to initialize schema: {e}")
        raise


if __name__ == "__main__":
    from db.connection import init_pool
    init_pool()
    create_tables()
    print("✅ Database schema created successfully.")

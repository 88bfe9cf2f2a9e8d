"""
db/ - Persistence Setup
=======================
Thread-safe PostgreSQL pool, the `transaction()` unit of work and the
schema (users, recurring_payments, expenses and the one-expense-per-occurrence index).
Imports nothing from the layers above it.
"""

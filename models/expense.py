"""
models/expense.py
-----------------
Domain model for financial transactions, including the expenses
materialized from recurring payments.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional


@dataclass
class Expense:
    """
    Represents a single financial transaction.

    Attributes:
        id: Database primary key (None for new records).
        user_id: Owning user ID.
        amount: Transaction amount in the specified currency.
        category: Spending category.
        date: Date of the transaction.
        type: Either 'expense' or 'income'.
        currency: ISO currency code (default: EUR).
        description: Optional human-readable note.
        icon: Display glyph.
        trip_id: Shared trip the expense belongs to, if any.
        recurring_payment_id: Source recurring payment for generated
            expenses (None for manual entries).
        created_at: Timestamp when the record was created.
    """
    user_id: int
    amount: float
    category: str
    date: date = field(default_factory=date.today)
    type: str = "expense"  # 'expense' | 'income'
    currency: str = "EUR"
    description: Optional[str] = None
    icon: Optional[str] = None
    trip_id: Optional[int] = None
    recurring_payment_id: Optional[int] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def occurrence_key(self) -> tuple[Optional[int], date]:
        """(recurring_payment_id, date), unique across generated expenses."""
        return self.recurring_payment_id, self.date

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "type": self.type,
            "amount": self.amount,
            "currency": self.currency,
            "category": self.category,
            "description": self.description,
            "date": self.date.isoformat(),
            "icon": self.icon,
            "tripId": self.trip_id,
            "recurringPaymentId": self.recurring_payment_id,
        }

    def __str__(self) -> str:
        sign = "-" if self.type == "expense" else "+"
        return f"{sign}{self.amount:.2f} {self.currency} | {self.category} | {self.date}"

"""
models/recurring.py
-------------------
Domain model for recurring (scheduled) payments.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from utils.recurrence import advances


@dataclass
class RecurringPayment:
    """
    Represents a recurring payment (subscription, bill, etc.).

    Attributes:
        id: Database primary key (None for new records).
        user_id: Owning user ID.
        name: Friendly name of the payment (e.g., 'Netflix', 'Rent').
        amount: Payment amount (never negative).
        frequency: 'daily' | 'weekly' | 'monthly' | 'yearly' | 'custom'.
        custom_interval: Repeat every N units of the frequency
            (for 'custom', every N days).
        start_date: Date the schedule begins.
        end_date: Last date an occurrence may fall on (None = open-ended).
        currency: ISO currency code.
        category: Category copied onto generated expenses.
        description: Description copied onto generated expenses.
        icon: Display glyph.
        last_generated: Checkpoint, the date of the latest materialized
            occurrence (None = nothing generated yet).
        last_generated_expense_id: ID of the expense created for
            `last_generated`, used by undo.
        status: 'active' | 'paused'.
        created_at: Timestamp when the record was created.
    """
    user_id: int
    name: str
    amount: float
    frequency: str = "monthly"
    custom_interval: int = 1
    start_date: date = field(default_factory=date.today)
    end_date: Optional[date] = None
    currency: str = "EUR"
    category: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    last_generated: Optional[date] = None
    last_generated_expense_id: Optional[int] = None
    status: str = "active"
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def is_inert(self) -> bool:
        """True when the schedule can never advance (bad interval or frequency)."""
        return not advances(self.frequency, self.custom_interval)

    def in_window(self, day: date) -> bool:
        """True when `day` lies between start_date and end_date (inclusive)."""
        if self.start_date > day:
            return False
        return self.end_date is None or self.end_date >= day

    def expense_description(self) -> str:
        """Description stamped on generated expenses."""
        return self.description or self.name

    def to_dict(self) -> dict:
        """JSON-friendly representation for API responses."""
        return {
            "id": self.id,
            "userId": self.user_id,
            "name": self.name,
            "amount": self.amount,
            "currency": self.currency,
            "frequency": self.frequency,
            "customInterval": self.custom_interval,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "category": self.category,
            "description": self.description,
            "icon": self.icon,
            "lastGenerated": self.last_generated.isoformat() if self.last_generated else None,
            "lastGeneratedExpenseId": self.last_generated_expense_id,
            "status": self.status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __str__(self) -> str:
        status = "✅" if self.is_active else "⏸️"
        every = (
            f"every {self.custom_interval} × {self.frequency}"
            if self.custom_interval != 1 else self.frequency
        )
        return f"{status} {self.name}: {self.amount:.2f} {self.currency} ({every}) - Last: {self.last_generated or '—'}"

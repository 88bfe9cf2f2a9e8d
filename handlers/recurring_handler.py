"""
handlers/recurring_handler.py
------------------------------
Handles recurring payment commands.
Parses the command arguments, delegates to RecurringService and replies
with the result or the error message.
"""

import re
from functools import wraps
from typing import Callable

from telegram import Update
from telegram.ext import ContextTypes

from services.exceptions import RecurBudgetError
from services.recurring_service import RecurringService
from security.auth import authorized_only
from security.rate_limiter import rate_limited
from utils.logger import get_logger

logger = get_logger(__name__)
recurring_service = RecurringService()

# Arabic/English number conversion
_AR_DIGITS = str.maketrans("٠١٢٣٤٥٦٧٨٩", "0123456789")

_FREQ_MAP = {
    "daily": "daily", "day": "daily", "يومي": "daily",
    "weekly": "weekly", "week": "weekly", "أسبوعي": "weekly", "اسبوعي": "weekly",
    "monthly": "monthly", "month": "monthly", "شهري": "monthly",
    "yearly": "yearly", "year": "yearly", "annual": "yearly", "سنوي": "yearly",
    "custom": "custom", "days": "custom",
}

ADD_USAGE = (
    "📝 *Add a recurring payment*\n\n"
    "`/add_recurring name | amount | frequency`\n"
    "`/add_recurring name | amount | frequency | start | interval | end`\n\n"
    "*Examples:*\n"
    "• `/add_recurring Netflix | 15 | monthly`\n"
    "• `/add_recurring Rent | 800 | monthly | 2026-03-01`\n"
    "• `/add_recurring Gym | 20 | weekly | 2026-03-02 | 2`\n"
    "• `/add_recurring Plants | 5 | custom | 2026-03-01 | 10 | 2026-12-31`\n\n"
    "*Frequency:* daily, weekly, monthly, yearly, custom (every N days)"
)


def parse_add_arguments(text: str) -> dict | None:
    """
    Parse the pipe-separated `/add_recurring` arguments:
        name | amount | frequency [| start date [| interval [| end date]]]

    Amounts may use Arabic digits. Returns None when the first three
    parts are missing or unusable; dates and interval are passed on as
    text for the service to validate.
    """
    parts = [p.strip() for p in text.split("|")]
    if len(parts) < 3 or not parts[0]:
        return None

    amount_str = re.sub(r"[^\d.]", "", parts[1].translate(_AR_DIGITS))
    if not amount_str:
        return None

    frequency = _FREQ_MAP.get(parts[2].lower())
    if not frequency:
        return None

    def optional(index: int) -> str | None:
        if len(parts) > index and parts[index]:
            return parts[index].translate(_AR_DIGITS)
        return None

    return {
        "name": parts[0],
        "amount": amount_str,
        "frequency": frequency,
        "start_date": optional(3),
        "custom_interval": optional(4) or 1,
        "end_date": optional(5),
    }


def replies_errors(func: Callable):
    """Reply with the message of any RecurBudgetError raised by the handler."""
    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE, *args, **kwargs):
        try:
            return await func(update, context, *args, **kwargs)
        except RecurBudgetError as e:
            logger.warning(f"{func.__name__} failed for user {update.effective_user.id}: {e.message}")
            await update.message.reply_text(f"⚠️ {e.message}")

    return wrapper


async def _id_argument(update: Update, context: ContextTypes.DEFAULT_TYPE, usage: str) -> int | None:
    """First command argument as an integer ID, or None after replying with usage."""
    if not context.args:
        await update.message.reply_text(f"⚠️ Usage: {usage}")
        return None
    try:
        return int(context.args[0].translate(_AR_DIGITS))
    except ValueError:
        await update.message.reply_text("⚠️ The ID must be a whole number.")
        return None


def format_payments(payments) -> str:
    if not payments:
        return "📭 No recurring payments yet."
    lines = ["🔁 Recurring payments:\n"]
    monthly_total = 0.0
    for p in payments:
        icon = p.icon or "🔁"
        lines.append(f"  #{p.id} {icon} {p}")
        if p.is_active and p.frequency == "monthly" and p.custom_interval == 1:
            monthly_total += p.amount
    if monthly_total > 0:
        lines.append(f"\n💶 Monthly commitments: {monthly_total:.2f}")
    return "\n".join(lines)


def format_upcoming(upcoming) -> str:
    if not upcoming:
        return "📭 Nothing due in the next few days."
    lines = ["⏰ Coming up:\n"]
    for item in upcoming:
        p = item.payment
        lines.append(f"  📅 {item.next_date} | {p.icon or '🔁'} {p.name}: {p.amount:.2f} {p.currency}")
    return "\n".join(lines)


@authorized_only
@rate_limited
@replies_errors
async def recurring_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /recurring - list all recurring payments."""
    result = recurring_service.list_payments(update.effective_user.id)
    await update.message.reply_text(format_payments(result["data"]))


@authorized_only
@rate_limited
@replies_errors
async def add_recurring_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /add_recurring name | amount | frequency [| start | interval | end]."""
    if not context.args:
        await update.message.reply_text(ADD_USAGE, parse_mode="Markdown")
        return

    parsed = parse_add_arguments(" ".join(context.args))
    if parsed is None:
        await update.message.reply_text(ADD_USAGE, parse_mode="Markdown")
        return

    result = recurring_service.create_payment(user_id=update.effective_user.id, **parsed)
    saved = result["data"]
    await update.message.reply_text(
        f"🔁 Recurring payment added:\n"
        f"  📌 Name: {saved.icon} {saved.name}\n"
        f"  💶 Amount: {saved.amount:.2f} {saved.currency}\n"
        f"  🔄 Frequency: {saved.frequency}"
        f"{f' (every {saved.custom_interval})' if saved.custom_interval != 1 else ''}\n"
        f"  📅 Starts: {saved.start_date}\n"
        f"  🔖 ID: #{saved.id}"
    )


@authorized_only
@rate_limited
@replies_errors
async def pause_recurring_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /pause_recurring <id>."""
    payment_id = await _id_argument(update, context, "/pause_recurring <id>")
    if payment_id is None:
        return
    result = recurring_service.pause_payment(payment_id, update.effective_user.id)
    await update.message.reply_text(f"⏸️ {result['message']} (#{payment_id}).")


@authorized_only
@rate_limited
@replies_errors
async def resume_recurring_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /resume_recurring <id>."""
    payment_id = await _id_argument(update, context, "/resume_recurring <id>")
    if payment_id is None:
        return
    result = recurring_service.resume_payment(payment_id, update.effective_user.id)
    await update.message.reply_text(f"▶️ {result['message']} (#{payment_id}).")


@authorized_only
@rate_limited
@replies_errors
async def delete_recurring_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /delete_recurring <id>."""
    payment_id = await _id_argument(update, context, "/delete_recurring <id>")
    if payment_id is None:
        return
    result = recurring_service.delete_payment(payment_id, update.effective_user.id)
    await update.message.reply_text(f"🗑️ {result['message']} (#{payment_id}).")


@authorized_only
@rate_limited
@replies_errors
async def reschedule_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /reschedule <id> <YYYY-MM-DD> - move the start date."""
    payment_id = await _id_argument(update, context, "/reschedule <id> <YYYY-MM-DD>")
    if payment_id is None:
        return
    new_date = context.args[1].translate(_AR_DIGITS) if len(context.args) > 1 else None
    result = recurring_service.update_start_date(payment_id, update.effective_user.id, new_date)
    await update.message.reply_text(f"📅 {result['message']}: #{payment_id} now starts {result['data'].start_date}.")


@authorized_only
@rate_limited
@replies_errors
async def undo_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /undo <expense id> - remove a generated expense."""
    expense_id = await _id_argument(update, context, "/undo <expense id>")
    if expense_id is None:
        return
    result = recurring_service.undo_expense(expense_id, update.effective_user.id)
    await update.message.reply_text(f"↩️ {result['message']}.")


@authorized_only
@rate_limited
@replies_errors
async def upcoming_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /upcoming - payments due within the lookahead window."""
    result = recurring_service.list_upcoming(update.effective_user.id)
    await update.message.reply_text(format_upcoming(result["data"]))

"""
main.py
-------
Entry point for the RecurBudget Telegram bot.

Responsibilities:
    - Initialize the database connection pool and schema.
    - Configure and start the Telegram bot with all handlers.
    - Schedule daily expense generation (plus a catch-up run at start-up)
      and daily reminders for upcoming payments.
"""

import asyncio
from datetime import time as dt_time

from telegram import BotCommand
from telegram.ext import Application, CommandHandler, ContextTypes

from config import (
    GENERATION_HOUR,
    GENERATION_MINUTE,
    REMINDER_HOUR,
    REMINDER_MINUTE,
    TELEGRAM_BOT_TOKEN,
)
from db.connection import init_pool, close_pool
from db.init_db import create_tables
from handlers.start_handler import start_command, help_command, myid_command
from handlers.recurring_handler import (
    recurring_command,
    add_recurring_command,
    pause_recurring_command,
    resume_recurring_command,
    delete_recurring_command,
    reschedule_command,
    undo_command,
    upcoming_command,
)
from services.generation_service import generate_recurring_expenses
from services.upcoming_service import UpcomingService
from utils.logger import get_logger

logger = get_logger(__name__)


async def run_generation(context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Scheduled job: materialize due recurring payments as expenses.
    Runs daily and once right after start-up to catch up on downtime.
    The database work is blocking, so it runs in a worker thread.
    """
    await asyncio.to_thread(generate_recurring_expenses)


async def send_reminders(context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Scheduled job: remind users of payments due within the lookahead window.
    Runs daily at REMINDER_HOUR:REMINDER_MINUTE.
    """
    try:
        upcoming = UpcomingService().upcoming()
    except Exception as e:
        logger.error(f"Failed to load upcoming payments: {e}")
        return

    for item in upcoming:
        payment = item.payment
        try:
            await context.bot.send_message(
                chat_id=payment.user_id,
                text=(
                    f"⏰ *Upcoming payment*\n\n"
                    f"{payment.icon or '🔁'} {payment.name}\n"
                    f"💶 {payment.amount:.2f} {payment.currency}\n"
                    f"📅 Due: {item.next_date}"
                ),
                parse_mode="Markdown",
            )
            logger.info(f"Sent reminder for '{payment.name}' to user {payment.user_id}")
        except Exception as e:
            logger.error(f"Failed to send reminder for '{payment.name}': {e}")


async def set_bot_commands(application: Application) -> None:
    """Register bot commands menu in Telegram on startup."""
    commands = [
        BotCommand("start", "🚀 Start the bot"),
        BotCommand("help", "📖 Show help"),
        BotCommand("recurring", "🔁 Recurring payments"),
        BotCommand("add_recurring", "➕ Add a recurring payment"),
        BotCommand("pause_recurring", "⏸️ Pause a recurring payment"),
        BotCommand("resume_recurring", "▶️ Resume a recurring payment"),
        BotCommand("reschedule", "📅 Move a start date"),
        BotCommand("delete_recurring", "❌ Delete a recurring payment"),
        BotCommand("undo", "↩️ Undo a generated expense"),
        BotCommand("upcoming", "⏰ Payments due soon"),
        BotCommand("myid", "🆔 Your Telegram ID"),
    ]
    await application.bot.set_my_commands(commands)
    logger.info("Bot commands menu registered successfully.")


def main() -> None:
    """Initialize and run the bot."""

    # ── 1. Database setup ─────────────────────────────────
    logger.info("Initializing database...")
    init_pool()
    create_tables()

    # ── 2. Build the Telegram application ─────────────────
    logger.info("Starting Telegram bot...")
    app = Application.builder().token(TELEGRAM_BOT_TOKEN).post_init(set_bot_commands).build()

    # ── 3. Register command handlers ──────────────────────
    app.add_handler(CommandHandler("start", start_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CommandHandler("myid", myid_command))
    app.add_handler(CommandHandler("recurring", recurring_command))
    app.add_handler(CommandHandler("add_recurring", add_recurring_command))
    app.add_handler(CommandHandler("pause_recurring", pause_recurring_command))
    app.add_handler(CommandHandler("resume_recurring", resume_recurring_command))
    app.add_handler(CommandHandler("reschedule", reschedule_command))
    app.add_handler(CommandHandler("delete_recurring", delete_recurring_command))
    app.add_handler(CommandHandler("undo", undo_command))
    app.add_handler(CommandHandler("upcoming", upcoming_command))

    # ── 4. Schedule jobs ──────────────────────────────────
    job_queue = app.job_queue
    if job_queue:
        job_queue.run_once(run_generation, when=10, name="startup_generation")
        job_queue.run_daily(
            run_generation,
            time=dt_time(hour=GENERATION_HOUR, minute=GENERATION_MINUTE),
            name="daily_generation",
        )
        job_queue.run_daily(
            send_reminders,
            time=dt_time(hour=REMINDER_HOUR, minute=REMINDER_MINUTE),
            name="daily_reminders",
        )
        logger.info(
            f"Scheduled generation ({GENERATION_HOUR:02d}:{GENERATION_MINUTE:02d}) "
            f"+ reminders ({REMINDER_HOUR:02d}:{REMINDER_MINUTE:02d})"
        )
    else:
        logger.warning("JobQueue unavailable: install python-telegram-bot[job-queue] to schedule generation.")

    # ── 5. Start polling ──────────────────────────────────
    logger.info("🚀 RecurBudget is running! Press Ctrl+C to stop.")
    app.run_polling(drop_pending_updates=True, allowed_updates=["message"])

    # ── 6. Cleanup on shutdown ────────────────────────────
    close_pool()
    logger.info("RecurBudget stopped.")


if __name__ == "__main__":
    main()

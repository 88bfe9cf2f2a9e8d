"""
handlers/start_handler.py
--------------------------
Handles /start, /help and /myid.
Registers the user and shows available commands.
"""

from telegram import Update
from telegram.ext import ContextTypes

from repositories.user_repo import UserRepository
from security.auth import authorized_only
from security.rate_limiter import rate_limited
from utils.logger import get_logger

logger = get_logger(__name__)
user_repo = UserRepository()

HELP_TEXT = """
🤖 *Welcome to RecurBudget!*
Your subscriptions and bills, booked as expenses automatically 🔁

*🔧 Commands:*
/recurring - list recurring payments
/add\\_recurring - add a recurring payment
/pause\\_recurring - pause a payment (e.g. /pause\\_recurring 3)
/resume\\_recurring - resume a paused payment
/reschedule - move a start date (e.g. /reschedule 3 2026-05-01)
/delete\\_recurring - delete a recurring payment
/undo - remove a generated expense (e.g. /undo 42)
/upcoming - payments due in the next days
/myid - show your Telegram ID
"""


@authorized_only
@rate_limited
async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start command - register user and show welcome message."""
    user = update.effective_user
    user_repo.ensure_user(user.id, user.first_name)
    logger.info(f"User {user.id} ({user.first_name}) started the bot.")

    await update.message.reply_text(
        f"Hi {user.first_name}! 👋\n"
        f"Add your subscriptions and bills once and I'll record every payment for you.\n\n"
        f"Type /help to see all commands.",
    )


@authorized_only
@rate_limited
async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help command - show all available commands."""
    await update.message.reply_text(HELP_TEXT, parse_mode="Markdown")


@authorized_only
async def myid_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /myid command - show user's Telegram ID for whitelisting."""
    user = update.effective_user
    await update.message.reply_text(
        f"🆔 Your ID: `{user.id}`\n"
        f"Add it to `ALLOWED_USER_IDS` in `.env` to lock the bot down.",
        parse_mode="Markdown",
    )

"""
security/auth.py
-----------------
Access control shared by the Telegram bot and the HTTP API.
Blocks any user not in the allowed whitelist.
"""

from functools import wraps
from typing import Callable

from telegram import Update
from telegram.ext import ContextTypes

from config import ALLOWED_USER_IDS
from utils.logger import get_logger

logger = get_logger(__name__)


def is_allowed(user_id: int) -> bool:
    """
    True if `user_id` may use RecurBudget.
    An empty ALLOWED_USER_IDS allows everyone (dev mode).
    """
    return not ALLOWED_USER_IDS or user_id in ALLOWED_USER_IDS


def authorized_only(func: Callable):
    """
    Decorator that restricts a bot handler to whitelisted users only.

    Usage:
        @authorized_only
        async def my_handler(update, context):
            ...
    """
    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE, *args, **kwargs):
        user = update.effective_user
        if not user:
            return

        if not is_allowed(user.id):
            logger.warning(
                f"🚫 Unauthorized access attempt: user_id={user.id}, "
                f"username={user.username}, name={user.first_name}"
            )
            await update.message.reply_text("⛔ Sorry, this bot is private.")
            return

        return await func(update, context, *args, **kwargs)

    return wrapper

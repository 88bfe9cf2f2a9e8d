"""
security/rate_limiter.py
-------------------------
Per-user sliding-window rate limiting, shared by the bot handlers and
the HTTP API so one user cannot hammer the database through either.
"""

import time
from collections import defaultdict
from functools import wraps
from typing import Callable

from telegram import Update
from telegram.ext import ContextTypes

from config import RATE_LIMIT_MESSAGES, RATE_LIMIT_WINDOW_SECONDS
from utils.logger import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Remembers request timestamps per user and rejects the request that
    would exceed `limit` within the last `window_seconds`.
    """

    def __init__(self, limit: int = RATE_LIMIT_MESSAGES,
                 window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._timestamps: dict[int, list[float]] = defaultdict(list)

    def hit(self, user_id: int) -> bool:
        """Record one request. Returns False if the user is over the limit."""
        now = self._clock()
        cutoff = now - self.window_seconds
        recent = [t for t in self._timestamps[user_id] if t > cutoff]
        if len(recent) >= self.limit:
            self._timestamps[user_id] = recent
            logger.warning(f"⚠️ Rate limit hit for user {user_id}")
            return False
        recent.append(now)
        self._timestamps[user_id] = recent
        return True

    def reset(self) -> None:
        self._timestamps.clear()


limiter = RateLimiter()


def rate_limited(func: Callable):
    """
    Decorator that enforces the shared per-user limit on a bot handler.

    Configuration (via .env):
        RATE_LIMIT_MESSAGES: Max messages per window (default: 30).
        RATE_LIMIT_WINDOW_SECONDS: Window duration in seconds (default: 60).
    """
    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE, *args, **kwargs):
        user = update.effective_user
        if not user:
            return

        if not limiter.hit(user.id):
            await update.message.reply_text(
                "⚠️ You're sending too many messages. Wait a moment and try again."
            )
            return

        return await func(update, context, *args, **kwargs)

    return wrapper

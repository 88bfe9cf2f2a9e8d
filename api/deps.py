"""
api/deps.py
-----------
FastAPI dependencies: caller identity and service construction.

Authentication happens upstream; the gateway forwards the caller's id in
the `X-User-Id` header. The same whitelist and rate limit as the bot apply.
"""

from fastapi import Header, HTTPException, status

from security.auth import is_allowed
from security.rate_limiter import limiter
from services.recurring_service import RecurringService


def get_current_user_id(x_user_id: int = Header(...)) -> int:
    """
    Resolve the calling user.

    Raises:
        HTTPException(403): user is not whitelisted.
        HTTPException(429): user exceeded the rate limit.
    """
    if not is_allowed(x_user_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    if not limiter.hit(x_user_id):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Too many requests")
    return x_user_id


def get_recurring_service() -> RecurringService:
    return RecurringService()

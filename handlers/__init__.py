"""
handlers/ - Telegram Presentation Layer
=========================================
Bot command handlers. Each handler parses the command arguments,
delegates to RecurringService, and replies with the result or the error message.
No business logic lives here; the HTTP equivalent lives in api/.
"""

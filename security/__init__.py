"""
security/ - Access Control
==========================
Whitelist and rate limiting shared by the bot handlers and the HTTP API.
"""

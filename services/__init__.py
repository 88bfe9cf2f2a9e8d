"""
services/ - Business Logic Layer
=================================
Ledger lifecycle, expense generation, undo and upcoming projection.
Services talk to repositories only, never to the database directly.
"""

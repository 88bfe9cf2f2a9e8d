"""
models/ - Domain Layer
======================
Plain dataclasses for recurring payments and expenses. No I/O.
"""

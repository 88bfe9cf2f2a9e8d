"""
utils/ - Shared Helpers
=======================
Logging setup, recurrence date arithmetic and icon classification.
"""

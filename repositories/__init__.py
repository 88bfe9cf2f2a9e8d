"""
repositories/ - Data Access Layer
==================================
SQL for users, recurring payments and expenses. Rows come back as
dataclasses from models/; psycopg2 errors are logged and re-raised as
`StoreError`. Bulk writes report per-row outcomes instead of failing whole.
"""

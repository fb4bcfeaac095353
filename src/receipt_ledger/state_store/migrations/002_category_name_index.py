"""
Migration 002: Unique category names per owner and type.

Backs case-insensitive name lookups and makes concurrent creation of the
same category collapse into one row.
"""

import sqlite3

VERSION = 2
NAME = "category_name_index"


def upgrade(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_categories_owner_name_type
        ON categories(coalesce(owner_id, ''), lower(name), type)
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_transactions_owner_imported "
        "ON transactions(owner_id, is_imported)"
    )

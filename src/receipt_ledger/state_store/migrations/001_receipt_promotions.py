"""
Migration 001: Add receipt_promotions table.

One row per temp upload that was moved to permanent storage, so a second
promotion of the same upload can be rejected.
"""

import sqlite3

VERSION = 1
NAME = "receipt_promotions"


def upgrade(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS receipt_promotions (
            temp_id TEXT PRIMARY KEY,
            filename TEXT NOT NULL UNIQUE,
            original_name TEXT NOT NULL,
            mime_type TEXT NOT NULL,
            size_bytes INTEGER NOT NULL,
            storage_path TEXT NOT NULL,
            promoted_at TEXT NOT NULL
        )
    """
    )

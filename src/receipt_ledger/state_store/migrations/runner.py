"""
Migration runner for versioned database schema changes.

Migrations live next to this file as {version}_{name}.py, e.g.
001_receipt_promotions.py. Each one defines:
- VERSION: int
- NAME: str
- upgrade(conn: Connection) -> None
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

PACKAGE = "receipt_ledger.state_store.migrations"


@dataclass
class Migration:
    """One schema migration."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]


def get_all_migrations() -> list[Migration]:
    """Load all migration modules, sorted by version."""
    migrations = []
    for py_file in sorted(Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py")):
        module = importlib.import_module(f"{PACKAGE}.{py_file.stem}")
        migrations.append(Migration(module.VERSION, module.NAME, module.upgrade))
    return sorted(migrations, key=lambda m: m.version)


class MigrationRunner:
    """Applies pending migrations and tracks them in a `migrations` table."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def get_applied_versions(self) -> set[int]:
        return {row[0] for row in self.conn.execute("SELECT version FROM migrations")}

    def get_current_version(self) -> int:
        result = self.conn.execute("SELECT MAX(version) FROM migrations").fetchone()[0]
        return result if result is not None else 0

    def apply(self, migration: Migration) -> None:
        """Apply one migration inside its own transaction."""
        logger.info("Applying migration %03d: %s", migration.version, migration.name)
        try:
            migration.upgrade(self.conn)
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (
                    migration.version,
                    migration.name,
                    datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                ),
            )
            self.conn.commit()
        except sqlite3.Error:
            self.conn.rollback()
            logger.error("Migration %03d failed", migration.version)
            raise

    def run_pending(self) -> list[int]:
        """Apply every migration not yet recorded. Returns the applied versions."""
        applied = self.get_applied_versions()
        pending = [m for m in get_all_migrations() if m.version not in applied]
        for migration in pending:
            self.apply(migration)

        versions = [m.version for m in pending]
        if versions:
            logger.info("Applied %d migrations: %s", len(versions), versions)
        return versions

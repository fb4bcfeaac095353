"""
SQLite-based state store implementation.

Tables:
- categories: Per-owner and shared categories
- transactions: Income/expense records, with receipt fields as JSON
- receipt_promotions: Temp uploads already moved to permanent storage (migration 001)
"""

import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from ..schemas.amounts import validate_amount
from ..schemas.receipt import PermanentReceiptFile
from ..schemas.transaction import (
    Category,
    CategoryNotFoundError,
    CategoryType,
    ReceiptAttachment,
    Transaction,
    TransactionDraft,
    TransactionType,
    ensure_category_compatible,
)
from ..storage.blob_store import ReceiptAlreadyPromotedError
from .base import CategoryStore, TransactionNotFoundError, TransactionStore

logger = logging.getLogger(__name__)

# Shared categories available to every owner
DEFAULT_SHARED_CATEGORIES = [
    # Income categories
    ("Salary", CategoryType.INCOME, "#10B981", "money"),
    ("Freelance", CategoryType.INCOME, "#059669", "briefcase"),
    ("Investment", CategoryType.INCOME, "#047857", "trending-up"),
    ("Other Income", CategoryType.INCOME, "#065F46", "plus"),
    # Expense categories
    ("Food & Dining", CategoryType.EXPENSE, "#EF4444", "utensils"),
    ("Transportation", CategoryType.EXPENSE, "#F97316", "car"),
    ("Shopping", CategoryType.EXPENSE, "#8B5CF6", "shopping-bag"),
    ("Entertainment", CategoryType.EXPENSE, "#EC4899", "film"),
    ("Bills & Utilities", CategoryType.EXPENSE, "#6B7280", "file-text"),
    ("Healthcare", CategoryType.EXPENSE, "#14B8A6", "heart"),
    ("Education", CategoryType.EXPENSE, "#3B82F6", "book"),
    ("Other Expenses", CategoryType.EXPENSE, "#6366F1", "more-horizontal"),
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _category_from_row(row: sqlite3.Row) -> Category:
    return Category(
        id=row["id"],
        name=row["name"],
        type=CategoryType(row["type"]),
        owner_id=row["owner_id"],
        is_shared=bool(row["is_shared"]),
        color=row["color"],
        icon=row["icon"],
        is_active=bool(row["is_active"]),
    )


def _transaction_from_row(row: sqlite3.Row) -> Transaction:
    receipt = None
    if row["receipt_json"]:
        receipt = ReceiptAttachment.from_dict(json.loads(row["receipt_json"]))
    return Transaction(
        id=row["id"],
        owner_id=row["owner_id"],
        type=TransactionType(row["type"]),
        amount=Decimal(row["amount"]),
        date=row["date"],
        description=row["description"],
        category_id=row["category_id"],
        receipt=receipt,
        is_imported=bool(row["is_imported"]),
        notes=row["notes"],
        created_at=row["created_at"],
    )


class StateStore(CategoryStore, TransactionStore):
    """
    SQLite-based store for categories, transactions and receipt promotions.

    Enforces on every transaction write:
    - Positive, cent-rounded amounts
    - Category visible to the owner and compatible with the transaction type

    Thread-safe for single-writer scenarios (one connection per operation).
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    type TEXT NOT NULL,  -- income, expense, both
                    owner_id TEXT,  -- NULL for shared categories
                    is_shared INTEGER NOT NULL DEFAULT 0,
                    color TEXT,
                    icon TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT NOT NULL,
                    type TEXT NOT NULL,  -- income, expense
                    amount TEXT NOT NULL,  -- Decimal as string, always positive
                    date TEXT NOT NULL,  -- YYYY-MM-DD
                    description TEXT NOT NULL,
                    category_id INTEGER NOT NULL,
                    is_imported INTEGER NOT NULL DEFAULT 0,
                    notes TEXT,
                    receipt_json TEXT,  -- ReceiptAttachment as JSON
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (category_id) REFERENCES categories(id)
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_owner ON transactions(owner_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_categories_owner ON categories(owner_id)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Category methods

    def _find_category(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        category_id: Optional[int] = None,
        name: Optional[str] = None,
        types: Optional[Iterable[CategoryType]] = None,
    ) -> Optional[Category]:
        clauses = ["is_active = 1", "(owner_id = ? OR is_shared = 1)"]
        params: list[Any] = [owner_id]

        if category_id is not None:
            clauses.append("id = ?")
            params.append(category_id)
        if name is not None:
            clauses.append("lower(name) = lower(?)")
            params.append(name.strip())
        if types is not None:
            type_values = [CategoryType(t).value for t in types]
            if not type_values:
                return None
            clauses.append(f"type IN ({', '.join('?' for _ in type_values)})")
            params.extend(type_values)

        # The owner's own category wins over a shared one with the same name
        row = conn.execute(
            f"""
            SELECT * FROM categories
            WHERE {' AND '.join(clauses)}
            ORDER BY CASE WHEN owner_id = ? THEN 0 ELSE 1 END, id
            LIMIT 1
        """,
            (*params, owner_id),
        ).fetchone()
        return _category_from_row(row) if row else None

    def find_category(
        self,
        owner_id: str,
        category_id: Optional[int] = None,
        name: Optional[str] = None,
        types: Optional[Iterable[CategoryType]] = None,
    ) -> Optional[Category]:
        with self._transaction() as conn:
            return self._find_category(conn, owner_id, category_id, name, types)

    def create_category(
        self,
        owner_id: Optional[str],
        name: str,
        category_type: CategoryType,
        color: Optional[str] = None,
        icon: Optional[str] = None,
        is_shared: bool = False,
    ) -> Category:
        """Create a category. An existing one with the same owner/name/type is returned instead."""
        category_type = CategoryType(category_type)
        name = name.strip()
        if not name:
            raise ValueError("Category name cannot be empty")

        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO categories
                    (name, type, owner_id, is_shared, color, icon, is_active, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, 1, ?)
                """,
                    (
                        name,
                        category_type.value,
                        owner_id,
                        1 if is_shared else 0,
                        color,
                        icon,
                        _now(),
                    ),
                )
                category_id = cursor.lastrowid or 0
        except sqlite3.IntegrityError:
            # Unique (owner, lower(name), type) index from migration 002
            with self._transaction() as conn:
                row = conn.execute(
                    """
                    SELECT * FROM categories
                    WHERE coalesce(owner_id, '') = coalesce(?, '')
                      AND lower(name) = lower(?) AND type = ?
                """,
                    (owner_id, name, category_type.value),
                ).fetchone()
            if row is None:
                raise
            logger.debug("Category %r already exists for %r", name, owner_id)
            return _category_from_row(row)

        return Category(
            id=category_id,
            name=name,
            type=category_type,
            owner_id=owner_id,
            is_shared=is_shared,
            color=color,
            icon=icon,
        )

    def list_categories(
        self, owner_id: str, types: Optional[Iterable[CategoryType]] = None
    ) -> list[Category]:
        params: list[Any] = [owner_id]
        type_clause = ""
        if types is not None:
            type_values = [CategoryType(t).value for t in types]
            if not type_values:
                return []
            type_clause = f"AND type IN ({', '.join('?' for _ in type_values)})"
            params.extend(type_values)

        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM categories
                WHERE is_active = 1 AND (owner_id = ? OR is_shared = 1) {type_clause}
                ORDER BY name
            """,
                params,
            ).fetchall()
            return [_category_from_row(row) for row in rows]

    def seed_shared_categories(self) -> int:
        """Install the default shared categories. Returns how many were added."""
        added = 0
        with self._transaction() as conn:
            for name, category_type, color, icon in DEFAULT_SHARED_CATEGORIES:
                exists = conn.execute(
                    """
                    SELECT 1 FROM categories
                    WHERE is_shared = 1 AND lower(name) = lower(?) AND type = ?
                """,
                    (name, category_type.value),
                ).fetchone()
                if exists:
                    continue
                conn.execute(
                    """
                    INSERT INTO categories
                    (name, type, owner_id, is_shared, color, icon, is_active, created_at)
                    VALUES (?, ?, NULL, 1, ?, ?, 1, ?)
                """,
                    (name, category_type.value, color, icon, _now()),
                )
                added += 1

        if added:
            logger.info("Seeded %d shared categories", added)
        return added

    # Transaction methods

    def _check_category(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        category_id: int,
        transaction_type: TransactionType,
    ) -> Category:
        category = self._find_category(conn, owner_id, category_id=category_id)
        if category is None:
            raise CategoryNotFoundError(category_id, owner_id)
        ensure_category_compatible(category, transaction_type)
        return category

    def _insert_transaction(self, conn: sqlite3.Connection, draft: TransactionDraft) -> Transaction:
        transaction_type = TransactionType(draft.type)
        amount = validate_amount(draft.amount)
        self._check_category(conn, draft.owner_id, draft.category_id, transaction_type)

        now = _now()
        receipt_json = json.dumps(draft.receipt.to_dict()) if draft.receipt else None
        cursor = conn.execute(
            """
            INSERT INTO transactions
            (owner_id, type, amount, date, description, category_id, is_imported, notes,
             receipt_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
            (
                draft.owner_id,
                transaction_type.value,
                str(amount),
                draft.date,
                draft.description,
                draft.category_id,
                1 if draft.is_imported else 0,
                draft.notes,
                receipt_json,
                now,
                now,
            ),
        )
        return Transaction(
            id=cursor.lastrowid or 0,
            owner_id=draft.owner_id,
            type=transaction_type,
            amount=amount,
            date=draft.date,
            description=draft.description,
            category_id=draft.category_id,
            receipt=draft.receipt,
            is_imported=draft.is_imported,
            notes=draft.notes,
            created_at=now,
        )

    def create_transaction(self, draft: TransactionDraft) -> Transaction:
        with self._transaction() as conn:
            return self._insert_transaction(conn, draft)

    def bulk_insert_transactions(self, drafts: Sequence[TransactionDraft]) -> list[Transaction]:
        with self._transaction() as conn:
            return [self._insert_transaction(conn, draft) for draft in drafts]

    def find_transaction(self, owner_id: str, transaction_id: int) -> Optional[Transaction]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM transactions WHERE id = ? AND owner_id = ?",
                (transaction_id, owner_id),
            ).fetchone()
            return _transaction_from_row(row) if row else None

    def count_transactions(self, owner_id: str, is_imported: Optional[bool] = None) -> int:
        query = "SELECT COUNT(*) FROM transactions WHERE owner_id = ?"
        params: list[Any] = [owner_id]
        if is_imported is not None:
            query += " AND is_imported = ?"
            params.append(1 if is_imported else 0)

        with self._transaction() as conn:
            return conn.execute(query, params).fetchone()[0]

    def update_transaction(
        self,
        owner_id: str,
        transaction_id: int,
        *,
        transaction_type: Optional[TransactionType] = None,
        amount: Optional[Decimal] = None,
        date: Optional[str] = None,
        description: Optional[str] = None,
        category_id: Optional[int] = None,
    ) -> Transaction:
        """Update fields of a transaction; type/category compatibility is re-checked."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM transactions WHERE id = ? AND owner_id = ?",
                (transaction_id, owner_id),
            ).fetchone()
            if row is None:
                raise TransactionNotFoundError(transaction_id, owner_id)

            current = _transaction_from_row(row)
            new_type = TransactionType(transaction_type) if transaction_type else current.type
            new_category = category_id if category_id is not None else current.category_id
            self._check_category(conn, owner_id, new_category, new_type)

            current.type = new_type
            current.category_id = new_category
            if amount is not None:
                current.amount = validate_amount(amount)
            if date is not None:
                current.date = date
            if description is not None:
                current.description = description

            conn.execute(
                """
                UPDATE transactions
                SET type = ?, amount = ?, date = ?, description = ?, category_id = ?,
                    updated_at = ?
                WHERE id = ?
            """,
                (
                    current.type.value,
                    str(current.amount),
                    current.date,
                    current.description,
                    current.category_id,
                    _now(),
                    transaction_id,
                ),
            )
            return current

    # Receipt promotion ledger

    def get_receipt_promotion(self, temp_id: str) -> Optional[PermanentReceiptFile]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM receipt_promotions WHERE temp_id = ?", (temp_id,)
            ).fetchone()
            if row is None:
                return None
            return PermanentReceiptFile(
                temp_id=row["temp_id"],
                filename=row["filename"],
                original_name=row["original_name"],
                mime_type=row["mime_type"],
                size_bytes=row["size_bytes"],
                storage_path=row["storage_path"],
                promoted_at=row["promoted_at"],
            )

    def record_receipt_promotion(self, permanent_file: PermanentReceiptFile) -> None:
        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO receipt_promotions
                    (temp_id, filename, original_name, mime_type, size_bytes, storage_path,
                     promoted_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        permanent_file.temp_id,
                        permanent_file.filename,
                        permanent_file.original_name,
                        permanent_file.mime_type,
                        permanent_file.size_bytes,
                        permanent_file.storage_path,
                        permanent_file.promoted_at,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise ReceiptAlreadyPromotedError(permanent_file.temp_id) from e

    # Statistics

    def get_stats(self) -> dict[str, Any]:
        """Get pipeline statistics."""
        with self._transaction() as conn:
            stats: dict[str, Any] = {}

            stats["categories_total"] = conn.execute(
                "SELECT COUNT(*) FROM categories WHERE is_active = 1"
            ).fetchone()[0]
            stats["categories_shared"] = conn.execute(
                "SELECT COUNT(*) FROM categories WHERE is_active = 1 AND is_shared = 1"
            ).fetchone()[0]

            stats["transactions_total"] = conn.execute(
                "SELECT COUNT(*) FROM transactions"
            ).fetchone()[0]
            stats["transactions_imported"] = conn.execute(
                "SELECT COUNT(*) FROM transactions WHERE is_imported = 1"
            ).fetchone()[0]
            stats["transactions_with_receipt"] = conn.execute(
                "SELECT COUNT(*) FROM transactions WHERE receipt_json IS NOT NULL"
            ).fetchone()[0]
            stats["receipts_needing_review"] = conn.execute(
                """
                SELECT COUNT(*) FROM transactions
                WHERE json_extract(receipt_json, '$.needs_review') = 1
            """
            ).fetchone()[0]

            stats["by_type"] = {
                row["type"]: row["count"]
                for row in conn.execute(
                    "SELECT type, COUNT(*) AS count FROM transactions GROUP BY type"
                ).fetchall()
            }

            stats["receipt_promotions"] = conn.execute(
                "SELECT COUNT(*) FROM receipt_promotions"
            ).fetchone()[0]

            return stats

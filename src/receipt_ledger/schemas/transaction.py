"""
Transaction and category models.

Transactions are owned by the external persistence layer; this module only
defines the fields the pipeline produces to create one (TransactionDraft)
and the shape it reads back (Transaction).
"""

from dataclasses import dataclass, field
from datetime import date as date_type
from decimal import Decimal
from enum import Enum
from typing import Optional

from .receipt import ReceiptItem


class TransactionType(str, Enum):
    """Direction of a transaction."""

    INCOME = "income"
    EXPENSE = "expense"


class CategoryType(str, Enum):
    """Which transaction types a category may be used for."""

    INCOME = "income"
    EXPENSE = "expense"
    BOTH = "both"

    def accepts(self, transaction_type: TransactionType) -> bool:
        """Check whether a transaction of the given type may use this category."""
        return self is CategoryType.BOTH or self.value == TransactionType(transaction_type).value


class CategoryNotFoundError(Exception):
    """Raised when a category id does not exist for the owner (or shared)."""

    def __init__(self, category_id: int, owner_id: Optional[str] = None):
        self.category_id = category_id
        self.owner_id = owner_id
        super().__init__(f"Category {category_id} not found for owner {owner_id!r}")


class CategoryConflictError(Exception):
    """Raised when a category's type does not accept the transaction type."""

    def __init__(self, category: "Category", transaction_type: TransactionType):
        self.category = category
        self.transaction_type = TransactionType(transaction_type)
        super().__init__(
            f"Category '{category.name}' ({category.type.value}) cannot be used for "
            f"{self.transaction_type.value} transactions"
        )


@dataclass
class Category:
    """Expense/income category, owned by a user or shared by everyone."""

    id: int
    name: str
    type: CategoryType
    owner_id: Optional[str] = None
    is_shared: bool = False
    color: Optional[str] = None
    icon: Optional[str] = None
    is_active: bool = True


def ensure_category_compatible(category: Category, transaction_type: TransactionType) -> None:
    """Reject a category whose type does not accept the transaction type.

    Raises:
        CategoryConflictError: On mismatch (e.g. income category on an expense)
    """
    if not category.type.accepts(transaction_type):
        raise CategoryConflictError(category, transaction_type)


@dataclass
class Overrides:
    """User corrections applied on top of extracted values (always win)."""

    amount: Optional[Decimal] = None
    description: Optional[str] = None
    date: Optional[str] = None  # ISO format YYYY-MM-DD
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    transaction_type: TransactionType = TransactionType.EXPENSE


@dataclass
class ReceiptAttachment:
    """Receipt fields persisted on a transaction."""

    filename: str
    original_name: str
    mime_type: str
    size_bytes: int
    storage_path: str

    store_name: Optional[str] = None
    total: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    subtotal: Optional[Decimal] = None
    items: list[ReceiptItem] = field(default_factory=list)

    confidence_score: float = 0.0
    engine_id: str = ""
    needs_review: bool = False
    review_reason: Optional[str] = None

    processed_at: str = ""
    extracted_at: Optional[str] = None

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON storage."""
        return {
            "filename": self.filename,
            "original_name": self.original_name,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "storage_path": self.storage_path,
            "store_name": self.store_name,
            "total": str(self.total) if self.total is not None else None,
            "tax": str(self.tax) if self.tax is not None else None,
            "subtotal": str(self.subtotal) if self.subtotal is not None else None,
            "items": [item.to_dict() for item in self.items],
            "confidence_score": self.confidence_score,
            "engine_id": self.engine_id,
            "needs_review": self.needs_review,
            "review_reason": self.review_reason,
            "processed_at": self.processed_at,
            "extracted_at": self.extracted_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReceiptAttachment":
        """Deserialize from dictionary."""

        def dec(key: str) -> Optional[Decimal]:
            return Decimal(data[key]) if data.get(key) is not None else None

        return cls(
            filename=data["filename"],
            original_name=data["original_name"],
            mime_type=data["mime_type"],
            size_bytes=int(data["size_bytes"]),
            storage_path=data["storage_path"],
            store_name=data.get("store_name"),
            total=dec("total"),
            tax=dec("tax"),
            subtotal=dec("subtotal"),
            items=[ReceiptItem.from_dict(item) for item in data.get("items", [])],
            confidence_score=float(data.get("confidence_score", 0.0)),
            engine_id=data.get("engine_id", ""),
            needs_review=bool(data.get("needs_review", False)),
            review_reason=data.get("review_reason"),
            processed_at=data.get("processed_at", ""),
            extracted_at=data.get("extracted_at"),
        )


@dataclass
class TransactionDraft:
    """Fields needed to create one transaction."""

    owner_id: str
    type: TransactionType
    amount: Decimal  # Always positive
    date: str  # ISO format YYYY-MM-DD
    description: str
    category_id: int

    receipt: Optional[ReceiptAttachment] = None
    is_imported: bool = False
    notes: Optional[str] = None


@dataclass
class Transaction(TransactionDraft):
    """A persisted transaction."""

    id: int = 0
    created_at: str = ""


@dataclass
class CandidateTransactionRecord:
    """
    One transaction recovered from an imported statement line.

    Ephemeral: produced by the tabular parser, consumed by persistence.
    The category is still an unresolved name hint at this point.
    """

    raw_line: str
    date: date_type
    description: str
    amount: Decimal  # Positive magnitude
    inferred_type: TransactionType
    category_name_hint: str
    source_line_number: int
    owner_id: Optional[str] = None

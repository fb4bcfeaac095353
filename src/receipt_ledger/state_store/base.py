"""
Persistence contracts used by the pipeline.

The pipeline only depends on these interfaces; StateStore (sqlite) is the
reference implementation.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from decimal import Decimal
from typing import Optional

from ..schemas.receipt import PermanentReceiptFile
from ..schemas.transaction import (
    Category,
    CategoryType,
    Transaction,
    TransactionDraft,
    TransactionType,
)


class TransactionNotFoundError(Exception):
    """Raised when a transaction does not exist for the owner."""

    def __init__(self, transaction_id: int, owner_id: str):
        self.transaction_id = transaction_id
        self.owner_id = owner_id
        super().__init__(f"Transaction {transaction_id} not found for owner {owner_id!r}")


class CategoryStore(ABC):
    """Category lookup and creation, scoped to owner-or-shared."""

    @abstractmethod
    def find_category(
        self,
        owner_id: str,
        category_id: Optional[int] = None,
        name: Optional[str] = None,
        types: Optional[Iterable[CategoryType]] = None,
    ) -> Optional[Category]:
        """
        Find one active category visible to the owner (own or shared).

        Args:
            owner_id: Owner scope
            category_id: Exact id
            name: Case-insensitive exact name
            types: Restrict to these category types

        Returns:
            The owner's own category if both exist, else the shared one; None if absent
        """
        pass

    @abstractmethod
    def create_category(
        self,
        owner_id: Optional[str],
        name: str,
        category_type: CategoryType,
        color: Optional[str] = None,
        icon: Optional[str] = None,
        is_shared: bool = False,
    ) -> Category:
        pass

    @abstractmethod
    def list_categories(
        self, owner_id: str, types: Optional[Iterable[CategoryType]] = None
    ) -> list[Category]:
        pass


class TransactionStore(ABC):
    """Transaction writes plus the receipt promotion ledger.

    Every write validates that the category accepts the transaction type.
    """

    @abstractmethod
    def create_transaction(self, draft: TransactionDraft) -> Transaction:
        pass

    @abstractmethod
    def bulk_insert_transactions(self, drafts: Sequence[TransactionDraft]) -> list[Transaction]:
        """Insert all drafts in one database transaction (all or nothing)."""
        pass

    @abstractmethod
    def find_transaction(self, owner_id: str, transaction_id: int) -> Optional[Transaction]:
        pass

    @abstractmethod
    def count_transactions(self, owner_id: str, is_imported: Optional[bool] = None) -> int:
        pass

    @abstractmethod
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
        pass

    @abstractmethod
    def get_receipt_promotion(self, temp_id: str) -> Optional[PermanentReceiptFile]:
        pass

    @abstractmethod
    def record_receipt_promotion(self, permanent_file: PermanentReceiptFile) -> None:
        """Record a promoted temp upload.

        Raises:
            ReceiptAlreadyPromotedError: If the temp id was already recorded
        """
        pass

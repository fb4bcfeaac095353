"""
Category resolver.

Maps a transaction (owner, type, optional hints) to exactly one category,
creating one only when nothing usable exists. Resolution order:

1. Explicit id hint (owner-or-shared scope); unknown id → CategoryNotFoundError
2. Name hint, case-insensitive exact match, type-compatible
3. Generic defaults for the type, in order
4. Create: the hint name (tabular import) or the per-type fallback category

SSOT: This module is the single source of truth for category resolution.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..schemas.trace import TraceRecorder, TraceStage
from ..schemas.transaction import (
    Category,
    CategoryConflictError,
    CategoryNotFoundError,
    CategoryType,
    TransactionType,
    ensure_category_compatible,
)
from ..state_store.base import CategoryStore

logger = logging.getLogger(__name__)

__all__ = [
    "CategoryConflictError",
    "CategoryNotFoundError",
    "CategoryResolver",
    "DEFAULT_CATEGORY_NAMES",
    "FALLBACK_CATEGORIES",
    "FallbackCategory",
    "compatible_types",
    "ensure_category_compatible",
]

# Generic names tried in order before anything is created
DEFAULT_CATEGORY_NAMES: dict[TransactionType, tuple[str, ...]] = {
    TransactionType.EXPENSE: ("Groceries", "Shopping", "Other Expenses", "Food & Dining"),
    TransactionType.INCOME: ("Salary", "Other Income"),
}


@dataclass(frozen=True)
class FallbackCategory:
    name: str
    color: str
    icon: str


FALLBACK_CATEGORIES: dict[TransactionType, FallbackCategory] = {
    TransactionType.EXPENSE: FallbackCategory("Other Expenses", "#6366F1", "shopping-bag"),
    TransactionType.INCOME: FallbackCategory("Other Income", "#065F46", "plus"),
}

_DEFAULT_KEY = "\x00default"


def compatible_types(transaction_type: TransactionType) -> tuple[CategoryType, ...]:
    """Category types usable for a transaction type."""
    return (CategoryType(TransactionType(transaction_type).value), CategoryType.BOTH)


class CategoryResolver:
    """
    Resolves categories for transactions.

    Caches resolved categories per (owner, type, lower(name)) so a batch never
    creates the same category twice. One resolver per request/batch.
    """

    def __init__(self, store: CategoryStore):
        """
        Initialize the resolver.

        Args:
            store: Category store to look up and create categories in
        """
        self.store = store
        self._cache: dict[tuple[str, TransactionType, str], Category] = {}

    def clear_cache(self) -> None:
        self._cache.clear()

    def resolve(
        self,
        owner_id: str,
        transaction_type: TransactionType,
        name_hint: Optional[str] = None,
        id_hint: Optional[int] = None,
        create_from_hint: bool = False,
        recorder: Optional[TraceRecorder] = None,
    ) -> Category:
        """
        Resolve one category.

        Args:
            owner_id: Owner of the transaction
            transaction_type: income or expense
            name_hint: Category name suggested by the caller/file
            id_hint: Explicit category id chosen by the caller
            create_from_hint: Create the hint name itself when it does not exist
            recorder: Optional trace recorder for stage events

        Returns:
            Existing or newly created category

        Raises:
            CategoryNotFoundError: If id_hint does not exist for the owner
        """
        transaction_type = TransactionType(transaction_type)

        if id_hint is not None:
            category = self.store.find_category(owner_id, category_id=id_hint)
            if category is None:
                raise CategoryNotFoundError(id_hint, owner_id)
            self._emit(recorder, "category.resolved", category, "id_hint")
            return category

        hint = " ".join(name_hint.split()) if name_hint else ""
        key = (owner_id, transaction_type, hint.lower() if hint else _DEFAULT_KEY)
        if key in self._cache:
            return self._cache[key]

        types = compatible_types(transaction_type)
        category: Optional[Category] = None
        source = ""

        if hint:
            category = self.store.find_category(owner_id, name=hint, types=types)
            source = "name_hint"

        if category is None and hint and create_from_hint:
            category = self.store.create_category(
                owner_id,
                hint,
                CategoryType(transaction_type.value),
                color=FALLBACK_CATEGORIES[transaction_type].color,
                icon=FALLBACK_CATEGORIES[transaction_type].icon,
            )
            source = "created_from_hint"

        if category is None:
            category = self._find_default(owner_id, transaction_type)
            source = "default"

        if category is None:
            fallback = FALLBACK_CATEGORIES[transaction_type]
            category = self.store.create_category(
                owner_id,
                fallback.name,
                CategoryType(transaction_type.value),
                color=fallback.color,
                icon=fallback.icon,
            )
            source = "created_fallback"

        self._cache[key] = category
        self._emit(
            recorder,
            "category.created" if source.startswith("created") else "category.resolved",
            category,
            source,
        )
        return category

    def _find_default(self, owner_id: str, transaction_type: TransactionType) -> Optional[Category]:
        types = compatible_types(transaction_type)
        for name in DEFAULT_CATEGORY_NAMES[transaction_type]:
            category = self.store.find_category(owner_id, name=name, types=types)
            if category is not None:
                return category
        return None

    def _emit(
        self,
        recorder: Optional[TraceRecorder],
        event: str,
        category: Category,
        source: str,
    ) -> None:
        if recorder is None:
            logger.debug("%s: %s (id=%s, via %s)", event, category.name, category.id, source)
            return
        recorder.emit(
            TraceStage.CATEGORY,
            event,
            f"{category.name} via {source}",
            category_id=category.id,
            category_type=category.type,
            source=source,
        )

"""Tests for category resolution."""

import pytest

from receipt_ledger.categories import CategoryResolver
from receipt_ledger.schemas.trace import TraceRecorder
from receipt_ledger.schemas.transaction import (
    CategoryNotFoundError,
    CategoryType,
    TransactionType,
)
from receipt_ledger.state_store import StateStore


@pytest.fixture
def resolver(store):
    return CategoryResolver(store)


class TestResolve:
    """Tests for the resolution order."""

    def test_id_hint(self, store, resolver):
        own = store.create_category("alice", "Pets", CategoryType.EXPENSE)

        assert resolver.resolve("alice", TransactionType.EXPENSE, id_hint=own.id).id == own.id

    def test_unknown_id_hint(self, resolver):
        with pytest.raises(CategoryNotFoundError):
            resolver.resolve("alice", TransactionType.EXPENSE, id_hint=9999)

    def test_name_hint(self, resolver):
        category = resolver.resolve("alice", TransactionType.EXPENSE, name_hint="  healthcare ")

        assert category.name == "Healthcare"

    def test_name_hint_of_wrong_type_falls_to_default(self, resolver):
        category = resolver.resolve("alice", TransactionType.EXPENSE, name_hint="Salary")

        # "Groceries" is not seeded, so the next generic default wins
        assert category.name == "Shopping"
        assert category.type is CategoryType.EXPENSE

    def test_both_type_category_accepted(self, store, resolver):
        both = store.create_category("alice", "Transfers", CategoryType.BOTH)

        assert resolver.resolve("alice", TransactionType.INCOME, name_hint="transfers").id == both.id
        assert resolver.resolve("alice", TransactionType.EXPENSE, name_hint="transfers").id == both.id

    def test_income_default(self, resolver):
        assert resolver.resolve("alice", TransactionType.INCOME).name == "Salary"

    def test_create_from_hint(self, store, resolver):
        recorder = TraceRecorder()

        category = resolver.resolve(
            "alice",
            TransactionType.INCOME,
            name_hint="Imported",
            create_from_hint=True,
            recorder=recorder,
        )

        assert category.owner_id == "alice"
        assert category.type is CategoryType.INCOME
        assert recorder.trace.names() == ["category.created"]
        assert store.find_category("alice", name="imported").id == category.id

    def test_fallback_created_when_nothing_exists(self, temp_db):
        empty_store = StateStore(temp_db)
        resolver = CategoryResolver(empty_store)

        category = resolver.resolve("alice", TransactionType.EXPENSE)

        assert category.name == "Other Expenses"
        assert category.owner_id == "alice"

    def test_batch_creates_category_once(self, store, resolver):
        ids = {
            resolver.resolve(
                "alice", TransactionType.EXPENSE, name_hint=name, create_from_hint=True
            ).id
            for name in ("Coffee", "coffee", " COFFEE ")
        }

        assert len(ids) == 1
        coffee = [c for c in store.list_categories("alice") if c.name.lower() == "coffee"]
        assert len(coffee) == 1

    def test_separate_resolvers_do_not_duplicate(self, store):
        first = CategoryResolver(store).resolve(
            "alice", TransactionType.EXPENSE, name_hint="Coffee", create_from_hint=True
        )
        second = CategoryResolver(store).resolve(
            "alice", TransactionType.EXPENSE, name_hint="Coffee", create_from_hint=True
        )

        assert first.id == second.id

    def test_cache_is_per_type(self, resolver):
        expense = resolver.resolve(
            "alice", TransactionType.EXPENSE, name_hint="Imported", create_from_hint=True
        )
        income = resolver.resolve(
            "alice", TransactionType.INCOME, name_hint="Imported", create_from_hint=True
        )

        assert expense.id != income.id
        assert expense.type is CategoryType.EXPENSE
        assert income.type is CategoryType.INCOME

"""Tests for state store."""

from decimal import Decimal

import pytest

from receipt_ledger.schemas.amounts import AmountValidationError
from receipt_ledger.schemas.receipt import PermanentReceiptFile
from receipt_ledger.schemas.transaction import (
    CategoryConflictError,
    CategoryNotFoundError,
    CategoryType,
    ReceiptAttachment,
    TransactionDraft,
    TransactionType,
)
from receipt_ledger.state_store import (
    DEFAULT_SHARED_CATEGORIES,
    StateStore,
    TransactionNotFoundError,
)
from receipt_ledger.storage.blob_store import ReceiptAlreadyPromotedError


def draft(category_id: int, **overrides) -> TransactionDraft:
    values = dict(
        owner_id="alice",
        type=TransactionType.EXPENSE,
        amount=Decimal("12.96"),
        date="2024-03-14",
        description="Receipt from Corner Cafe",
        category_id=category_id,
    )
    values.update(overrides)
    return TransactionDraft(**values)


class TestStateStore:
    """Tests for SQLite state store."""

    def test_init_creates_tables(self, temp_db):
        store = StateStore(temp_db)
        conn = store._get_connection()
        try:
            tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
            table_names = [t[0] for t in tables]

            assert "categories" in table_names
            assert "transactions" in table_names
            assert "receipt_promotions" in table_names
            assert "migrations" in table_names
        finally:
            conn.close()

    def test_migrations_recorded_once(self, temp_db):
        StateStore(temp_db)
        store = StateStore(temp_db)

        conn = store._get_connection()
        try:
            versions = [r[0] for r in conn.execute("SELECT version FROM migrations")]
        finally:
            conn.close()

        assert versions == [1, 2]


class TestCategories:
    """Tests for category operations."""

    def test_seed_is_idempotent(self, store):
        assert store.seed_shared_categories() == 0
        assert len(store.list_categories("anyone")) == len(DEFAULT_SHARED_CATEGORIES)

    def test_find_by_name_case_insensitive(self, store):
        category = store.find_category("alice", name="food & dining")

        assert category is not None
        assert category.name == "Food & Dining"
        assert category.is_shared is True

    def test_own_category_preferred_over_shared(self, store):
        own = store.create_category("alice", "Shopping", CategoryType.EXPENSE)

        assert store.find_category("alice", name="shopping").id == own.id
        assert store.find_category("bob", name="shopping").is_shared is True

    def test_other_owner_not_visible(self, store):
        category = store.create_category("alice", "Pets", CategoryType.EXPENSE)

        assert store.find_category("bob", category_id=category.id) is None

    def test_type_filter(self, store):
        assert store.find_category("alice", name="Salary", types=[CategoryType.EXPENSE]) is None

    def test_create_duplicate_returns_existing(self, store):
        first = store.create_category("alice", "Pets", CategoryType.EXPENSE)
        second = store.create_category("alice", "PETS", CategoryType.EXPENSE)

        assert second.id == first.id

    def test_same_name_other_type_allowed(self, store):
        expense = store.create_category("alice", "Imported", CategoryType.EXPENSE)
        income = store.create_category("alice", "Imported", CategoryType.INCOME)

        assert expense.id != income.id

    def test_empty_name_rejected(self, store):
        with pytest.raises(ValueError):
            store.create_category("alice", "  ", CategoryType.EXPENSE)


class TestTransactions:
    """Tests for transaction writes."""

    @pytest.fixture
    def groceries(self, store):
        return store.create_category("alice", "Groceries", CategoryType.EXPENSE)

    def test_create_and_find(self, store, groceries):
        created = store.create_transaction(draft(groceries.id))

        found = store.find_transaction("alice", created.id)

        assert found is not None
        assert found.amount == Decimal("12.96")
        assert found.type is TransactionType.EXPENSE
        assert found.receipt is None
        assert store.find_transaction("bob", created.id) is None

    def test_receipt_round_trip(self, store, groceries):
        attachment = ReceiptAttachment(
            filename="receipt-1-2.png",
            original_name="lunch.png",
            mime_type="image/png",
            size_bytes=3,
            storage_path="/data/receipt-1-2.png",
            store_name="Corner Cafe",
            total=Decimal("12.96"),
            confidence_score=92.0,
            engine_id="textract",
            needs_review=True,
            review_reason="Date is missing",
        )
        created = store.create_transaction(draft(groceries.id, receipt=attachment))

        found = store.find_transaction("alice", created.id)

        assert found.receipt == attachment
        assert store.get_stats()["receipts_needing_review"] == 1

    def test_income_category_rejected_for_expense(self, store):
        salary = store.find_category("alice", name="Salary")

        with pytest.raises(CategoryConflictError):
            store.create_transaction(draft(salary.id))

        assert store.count_transactions("alice") == 0

    def test_unknown_category(self, store):
        with pytest.raises(CategoryNotFoundError):
            store.create_transaction(draft(9999))

    def test_amount_must_be_positive(self, store, groceries):
        with pytest.raises(AmountValidationError):
            store.create_transaction(draft(groceries.id, amount=Decimal("0")))

    def test_bulk_insert_is_all_or_nothing(self, store, groceries):
        salary = store.find_category("alice", name="Salary")
        drafts = [draft(groceries.id), draft(salary.id)]

        with pytest.raises(CategoryConflictError):
            store.bulk_insert_transactions(drafts)

        assert store.count_transactions("alice") == 0

    def test_bulk_insert(self, store, groceries):
        created = store.bulk_insert_transactions(
            [draft(groceries.id, is_imported=True) for _ in range(3)]
        )

        assert len({t.id for t in created}) == 3
        assert store.count_transactions("alice", is_imported=True) == 3
        assert store.count_transactions("alice", is_imported=False) == 0

    def test_update_rechecks_category(self, store, groceries):
        created = store.create_transaction(draft(groceries.id))

        with pytest.raises(CategoryConflictError):
            store.update_transaction("alice", created.id, transaction_type=TransactionType.INCOME)

        unchanged = store.find_transaction("alice", created.id)
        assert unchanged.type is TransactionType.EXPENSE

    def test_update_fields(self, store, groceries):
        created = store.create_transaction(draft(groceries.id))
        salary = store.find_category("alice", name="Salary")

        updated = store.update_transaction(
            "alice",
            created.id,
            transaction_type=TransactionType.INCOME,
            category_id=salary.id,
            amount=Decimal("20"),
            description="Refund",
        )

        assert updated.type is TransactionType.INCOME
        assert updated.amount == Decimal("20.00")
        assert store.find_transaction("alice", created.id).description == "Refund"

    def test_update_missing(self, store):
        with pytest.raises(TransactionNotFoundError):
            store.update_transaction("alice", 42, description="x")


class TestReceiptPromotions:
    def test_record_and_get(self, store):
        permanent = PermanentReceiptFile(
            temp_id="temp-receipt-1-2.png",
            filename="receipt-3-4.png",
            original_name="a.png",
            mime_type="image/png",
            size_bytes=10,
            storage_path="/data/receipt-3-4.png",
        )
        store.record_receipt_promotion(permanent)

        assert store.get_receipt_promotion("temp-receipt-1-2.png") == permanent
        assert store.get_receipt_promotion("other") is None

    def test_second_promotion_rejected(self, store):
        permanent = PermanentReceiptFile(
            temp_id="temp-receipt-1-2.png",
            filename="receipt-3-4.png",
            original_name="a.png",
            mime_type="image/png",
            size_bytes=10,
            storage_path="/data/receipt-3-4.png",
        )
        store.record_receipt_promotion(permanent)

        with pytest.raises(ReceiptAlreadyPromotedError):
            store.record_receipt_promotion(permanent)


def test_stats(store):
    stats = store.get_stats()

    assert stats["categories_shared"] == len(DEFAULT_SHARED_CATEGORIES)
    assert stats["transactions_total"] == 0
    assert stats["by_type"] == {}

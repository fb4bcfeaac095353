"""Tests for transaction assembly and receipt promotion."""

from datetime import date
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

import pytest

from receipt_ledger.schemas.amounts import AmountValidationError
from receipt_ledger.schemas.receipt import ReceiptFileHandle
from receipt_ledger.schemas.trace import TraceRecorder
from receipt_ledger.schemas.transaction import (
    CategoryConflictError,
    Overrides,
    TransactionType,
)
from receipt_ledger.services.assembler import (
    InvalidOverrideError,
    MissingAmountError,
    TransactionAssembler,
)
from receipt_ledger.storage.blob_store import ReceiptAlreadyPromotedError


@pytest.fixture
def assembler(store, blob_store):
    return TransactionAssembler(store, blob_store)


@pytest.fixture
def shopping(store):
    return store.find_category("alice", name="Shopping")


@pytest.fixture
def handle(blob_store):
    blob = blob_store.write_temp(b"receipt-bytes", "lunch.png", "image/png")
    return ReceiptFileHandle(
        temp_id=blob.id,
        original_name="lunch.png",
        mime_type="image/png",
        size_bytes=blob.size_bytes,
        storage_ref=blob.ref,
    )


class TestAssemble:
    """Tests for the pure merge step."""

    def test_receipt_values(self, assembler, extracted_receipt, shopping):
        draft = assembler.assemble(extracted_receipt, "alice", shopping)

        assert draft.amount == Decimal("12.96")
        assert draft.date == "2024-03-14"
        assert draft.description == "Receipt from Corner Cafe"
        assert draft.type is TransactionType.EXPENSE
        assert draft.category_id == shopping.id
        assert draft.receipt is None

    def test_overrides_win(self, assembler, extracted_receipt, shopping):
        overrides = Overrides(
            amount=Decimal("10.00"),
            description="Team lunch",
            date="2024-03-15",
        )

        draft = assembler.assemble(extracted_receipt, "alice", shopping, overrides)

        assert draft.amount == Decimal("10.00")
        assert draft.description == "Team lunch"
        assert draft.date == "2024-03-15"

    def test_blank_description_override_ignored(self, assembler, extracted_receipt, shopping):
        draft = assembler.assemble(
            extracted_receipt, "alice", shopping, Overrides(description="   ")
        )

        assert draft.description == "Receipt from Corner Cafe"

    def test_unknown_store(self, assembler, extracted_receipt, shopping):
        extracted_receipt.store_name = None

        draft = assembler.assemble(extracted_receipt, "alice", shopping)

        assert draft.description == "Receipt from Unknown Store"

    def test_missing_date_uses_today(self, assembler, extracted_receipt, shopping):
        extracted_receipt.date = None

        draft = assembler.assemble(extracted_receipt, "alice", shopping, today=date(2024, 5, 1))

        assert draft.date == "2024-05-01"

    def test_missing_amount(self, assembler, extracted_receipt, shopping):
        extracted_receipt.total = None

        with pytest.raises(MissingAmountError):
            assembler.assemble(extracted_receipt, "alice", shopping)

    def test_zero_override_rejected(self, assembler, extracted_receipt, shopping):
        with pytest.raises(AmountValidationError):
            assembler.assemble(extracted_receipt, "alice", shopping, Overrides(amount=Decimal("0")))

    def test_invalid_override_date(self, assembler, extracted_receipt, shopping):
        with pytest.raises(InvalidOverrideError):
            assembler.assemble(extracted_receipt, "alice", shopping, Overrides(date="someday"))


class TestCreateTransaction:
    """Tests for promote + write."""

    def test_promotes_and_attaches(self, assembler, store, extracted_receipt, shopping, handle):
        recorder = TraceRecorder()

        tx = assembler.create_transaction(
            extracted_receipt, handle, "alice", shopping, recorder=recorder
        )

        assert tx.receipt is not None
        assert tx.receipt.original_name == "lunch.png"
        assert tx.receipt.filename.startswith("receipt-")
        assert tx.receipt.total == Decimal("12.96")
        assert tx.receipt.engine_id == "textract"
        assert Path(tx.receipt.storage_path).read_bytes() == b"receipt-bytes"
        assert not Path(handle.storage_ref).exists()
        assert store.get_receipt_promotion(handle.temp_id).filename == tx.receipt.filename
        assert recorder.trace.names() == ["file.promoted", "write.transaction_created"]

        stored = store.find_transaction("alice", tx.id)
        assert stored.receipt.storage_path == tx.receipt.storage_path

    def test_without_handle(self, assembler, extracted_receipt, shopping):
        tx = assembler.create_transaction(extracted_receipt, None, "alice", shopping)

        assert tx.receipt is None

    def test_second_promotion_rejected(self, assembler, store, extracted_receipt, shopping, handle):
        assembler.create_transaction(extracted_receipt, handle, "alice", shopping)

        with pytest.raises(ReceiptAlreadyPromotedError):
            assembler.create_transaction(extracted_receipt, handle, "alice", shopping)

        assert store.count_transactions("alice") == 1

    def test_move_failure_degrades(self, assembler, blob_store, extracted_receipt, shopping, handle):
        blob_store.delete(handle.storage_ref)
        recorder = TraceRecorder()

        tx = assembler.create_transaction(
            extracted_receipt, handle, "alice", shopping, recorder=recorder
        )

        assert tx.receipt is None
        assert "without it" in tx.notes
        assert "file.promotion_failed" in recorder.trace.names()

    def test_category_conflict_before_move(self, assembler, store, extracted_receipt, handle):
        salary = store.find_category("alice", name="Salary")

        with pytest.raises(CategoryConflictError):
            assembler.create_transaction(extracted_receipt, handle, "alice", salary)

        assert Path(handle.storage_ref).exists()

    def test_income_override(self, assembler, store, extracted_receipt):
        salary = store.find_category("alice", name="Salary")

        tx = assembler.create_transaction(
            extracted_receipt,
            None,
            "alice",
            salary,
            Overrides(transaction_type=TransactionType.INCOME),
        )

        assert tx.type is TransactionType.INCOME

    def test_write_failure_after_move_is_traced(
        self, assembler, store, extracted_receipt, shopping, handle
    ):
        recorder = TraceRecorder()

        with patch.object(store, "create_transaction", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                assembler.create_transaction(
                    extracted_receipt, handle, "alice", shopping, recorder=recorder
                )

        assert recorder.trace.names()[-1] == "write.failed_orphan"

"""Test fixtures and utilities."""

from decimal import Decimal
from pathlib import Path
from typing import Optional

import pytest

from receipt_ledger.engines.base import EngineAdapter, EngineError
from receipt_ledger.schemas.receipt import (
    EngineId,
    ExtractedReceipt,
    RawEngineResult,
    ReceiptItem,
)
from receipt_ledger.state_store import StateStore
from receipt_ledger.storage.blob_store import FilesystemBlobStore

# Sample OCR text for testing
SAMPLE_OCR_TEXT_EN = """
FRESH MARKET
123 Main St
Date: 11/18/2024

Milk 1L          3.49
Bread            2.50
2 x Apples       1.98

Subtotal         7.97
Tax              0.64
Total            8.61
Visa ****1234    8.61
Thank you!
"""

SAMPLE_OCR_TEXT_DE = """
SPAR Österreich
Filiale 5631
Herrengasse 12
8010 Graz

Datum: 18.11.2024

Butter 250g                     2,49
Milch 1L                        1,29
Brot                            3,20
Käse 200g                       4,50

Gesamtbetrag EUR               11,48

Bezahlt mit Karte
Vielen Dank für Ihren Einkauf!
"""


def _field(field_type: str, text: str, confidence: float = 99.0) -> dict:
    return {
        "Type": {"Text": field_type, "Confidence": 99.0},
        "ValueDetection": {"Text": text, "Confidence": confidence},
    }


SAMPLE_TEXTRACT_RESPONSE = {
    "DocumentMetadata": {"Pages": 1},
    "ExpenseDocuments": [
        {
            "ExpenseIndex": 1,
            "SummaryFields": [
                _field("VENDOR_NAME", "Corner Cafe", 98.0),
                _field("INVOICE_RECEIPT_DATE", "03/14/2024", 96.0),
                _field("SUBTOTAL", "$12.00", 94.0),
                _field("TAX", "$0.96", 92.0),
                _field("TOTAL", "$12.96", 90.0),
                _field("OTHER", "ignored"),
            ],
            "LineItemGroups": [
                {
                    "LineItemGroupIndex": 1,
                    "LineItems": [
                        {
                            "LineItemExpenseFields": [
                                _field("ITEM", "Latte"),
                                _field("PRICE", "$4.50"),
                                _field("QUANTITY", "1"),
                            ]
                        },
                        {
                            "LineItemExpenseFields": [
                                _field("ITEM", "Bagel"),
                                _field("PRICE", "$7.50"),
                            ]
                        },
                    ],
                }
            ],
        }
    ],
}


class StubEngine(EngineAdapter):
    """Engine returning a fixed result (or raising) and counting calls."""

    def __init__(
        self,
        engine_id: EngineId,
        result: Optional[RawEngineResult] = None,
        error: Optional[Exception] = None,
    ):
        self._engine_id = engine_id
        self.result = result
        self.error = error
        self.calls = 0

    @property
    def engine_id(self) -> EngineId:
        return self._engine_id

    def extract(self, data, mime_type, hint=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


def good_raw_result(confidence: Optional[float] = 95.0) -> RawEngineResult:
    """Complete, internally consistent raw result."""
    return RawEngineResult(
        vendor="Corner Cafe",
        date="2024-03-14",
        subtotal="12.00",
        tax="0.96",
        total="12.96",
        items=[{"name": "Latte", "price": "4.50", "quantity": "1"}],
        confidence=confidence,
    )


@pytest.fixture
def sample_ocr_receipt() -> str:
    """Sample English receipt OCR text."""
    return SAMPLE_OCR_TEXT_EN


@pytest.fixture
def sample_ocr_receipt_de() -> str:
    """Sample German receipt OCR text."""
    return SAMPLE_OCR_TEXT_DE


@pytest.fixture
def sample_textract_response() -> dict:
    """Sample AnalyzeExpense response."""
    return SAMPLE_TEXTRACT_RESPONSE


@pytest.fixture
def make_engine():
    """Factory for stub engines."""

    def factory(engine_id, result=None, error=None):
        return StubEngine(engine_id, result=result, error=error)

    return factory


@pytest.fixture
def raw_result():
    """Factory for a good raw engine result."""
    return good_raw_result


@pytest.fixture
def transient_error():
    return EngineError.transient("ThrottlingException: slow down")


@pytest.fixture
def permanent_error():
    return EngineError.permanent("Unsupported document")


@pytest.fixture
def extracted_receipt() -> ExtractedReceipt:
    """Receipt that passes the review policy."""
    return ExtractedReceipt(
        engine_id=EngineId.TEXTRACT,
        confidence_score=92.0,
        store_name="Corner Cafe",
        date="2024-03-14",
        items=[ReceiptItem(name="Latte", price=Decimal("4.50"), quantity=Decimal("1"))],
        subtotal=Decimal("12.00"),
        tax=Decimal("0.96"),
        total=Decimal("12.96"),
        processed_at="2024-03-14T10:00:00Z",
    )


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store with the shared categories installed."""
    state_store = StateStore(temp_db)
    state_store.seed_shared_categories()
    return state_store


@pytest.fixture
def blob_store(tmp_path) -> FilesystemBlobStore:
    return FilesystemBlobStore(tmp_path / "temp-receipts", tmp_path / "receipts")

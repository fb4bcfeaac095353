"""
SSOT (Single Source of Truth) schemas for the pipeline.

These canonical schemas are the ONLY models used across all modules.
No duplicated "near-same" models allowed.
"""

from .amounts import (
    CURRENCY_PRECISION,
    AmountValidationError,
    parse_money,
    quantize_amount,
    validate_amount,
)
from .receipt import (
    EngineId,
    ExtractedReceipt,
    PermanentReceiptFile,
    RawEngineResult,
    ReceiptFileHandle,
    ReceiptItem,
)
from .trace import (
    PipelineTrace,
    TraceEvent,
    TraceRecorder,
    TraceStage,
    contains_sensitive_data,
    sanitize_string,
)
from .transaction import (
    CandidateTransactionRecord,
    Category,
    CategoryConflictError,
    CategoryNotFoundError,
    CategoryType,
    Overrides,
    ReceiptAttachment,
    Transaction,
    TransactionDraft,
    TransactionType,
    ensure_category_compatible,
)

__all__ = [
    # Receipt extraction (canonical input schema)
    "EngineId",
    "ExtractedReceipt",
    "RawEngineResult",
    "ReceiptItem",
    "ReceiptFileHandle",
    "PermanentReceiptFile",
    # Transactions & categories
    "Category",
    "CategoryConflictError",
    "CategoryNotFoundError",
    "CategoryType",
    "TransactionType",
    "TransactionDraft",
    "Transaction",
    "ReceiptAttachment",
    "Overrides",
    "CandidateTransactionRecord",
    "ensure_category_compatible",
    # Amounts (SSOT)
    "CURRENCY_PRECISION",
    "AmountValidationError",
    "parse_money",
    "quantize_amount",
    "validate_amount",
    # Trace
    "PipelineTrace",
    "TraceEvent",
    "TraceRecorder",
    "TraceStage",
    "contains_sensitive_data",
    "sanitize_string",
]

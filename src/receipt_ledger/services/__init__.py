"""
Services: transaction assembly and the receipt intake facade.
"""

from .assembler import InvalidOverrideError, MissingAmountError, TransactionAssembler
from .receipt_intake import (
    AutoFileResult,
    ExtractionOutcome,
    ImportSummary,
    ReceiptIntakeService,
    UploadRejectedError,
)

__all__ = [
    "AutoFileResult",
    "ExtractionOutcome",
    "ImportSummary",
    "InvalidOverrideError",
    "MissingAmountError",
    "ReceiptIntakeService",
    "TransactionAssembler",
    "UploadRejectedError",
]

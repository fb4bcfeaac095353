"""
Transaction assembler.

Merges an extracted receipt, a resolved category and user overrides into a
transaction, promotes the receipt file and writes the transaction.

Lifecycle:
    Uploaded(temp) → Extracted → [Reviewed]* → Assembled → Promoted → Persisted

Promotion happens immediately before the write. A failed move degrades the
transaction to receipt-less; a successful move followed by a failed write
leaves an orphaned permanent file that is logged for cleanup.
"""

import dataclasses
import logging
from datetime import date as date_type
from typing import Optional

from ..extraction.normalizer import normalize_date
from ..schemas.amounts import validate_amount
from ..schemas.receipt import ExtractedReceipt, PermanentReceiptFile, ReceiptFileHandle
from ..schemas.trace import TraceRecorder, TraceStage
from ..schemas.transaction import (
    Category,
    Overrides,
    ReceiptAttachment,
    Transaction,
    TransactionDraft,
    TransactionType,
    ensure_category_compatible,
)
from ..state_store.base import TransactionStore
from ..storage.blob_store import (
    BlobStore,
    FileMoveError,
    ReceiptAlreadyPromotedError,
    permanent_filename,
)

logger = logging.getLogger(__name__)

UNKNOWN_STORE = "Unknown Store"


class MissingAmountError(Exception):
    """Raised when neither an override amount nor an extracted total exists."""

    pass


class InvalidOverrideError(ValueError):
    """Raised when a user override cannot be interpreted."""

    pass


class TransactionAssembler:
    """
    Builds and persists transactions from extracted receipts.

    Args:
        store: Transaction store (also holds the promotion ledger)
        blob_store: Receipt file storage
    """

    def __init__(self, store: TransactionStore, blob_store: BlobStore):
        self.store = store
        self.blob_store = blob_store

    def assemble(
        self,
        receipt: ExtractedReceipt,
        owner_id: str,
        category: Category,
        overrides: Optional[Overrides] = None,
        today: Optional[date_type] = None,
    ) -> TransactionDraft:
        """
        Merge receipt and overrides into a draft (no I/O).

        Overrides always win: amount, description, date and type.

        Raises:
            MissingAmountError: No override amount and no extracted total
            AmountValidationError: Amount is zero or negative
            InvalidOverrideError: Override date is not a date
        """
        overrides = overrides or Overrides()

        if overrides.amount is not None:
            amount = validate_amount(overrides.amount, field_name="override amount")
        elif receipt.total is not None:
            amount = validate_amount(receipt.total, field_name="total")
        else:
            raise MissingAmountError(
                "Receipt has no total and no amount was provided; manual entry required"
            )

        if overrides.date:
            tx_date = normalize_date(overrides.date)
            if tx_date is None:
                raise InvalidOverrideError(f"Invalid override date: {overrides.date!r}")
        else:
            tx_date = receipt.date or (today or date_type.today()).isoformat()

        description = (overrides.description or "").strip()
        if not description:
            description = f"Receipt from {receipt.store_name or UNKNOWN_STORE}"

        return TransactionDraft(
            owner_id=owner_id,
            type=TransactionType(overrides.transaction_type),
            amount=amount,
            date=tx_date,
            description=description,
            category_id=category.id,
        )

    def attach_receipt(
        self,
        draft: TransactionDraft,
        receipt: ExtractedReceipt,
        permanent_file: PermanentReceiptFile,
    ) -> TransactionDraft:
        """Return a copy of the draft carrying the persisted receipt fields."""
        attachment = ReceiptAttachment(
            filename=permanent_file.filename,
            original_name=permanent_file.original_name,
            mime_type=permanent_file.mime_type,
            size_bytes=permanent_file.size_bytes,
            storage_path=permanent_file.storage_path,
            store_name=receipt.store_name,
            total=receipt.total,
            tax=receipt.tax,
            subtotal=receipt.subtotal,
            items=list(receipt.items),
            confidence_score=receipt.confidence_score,
            engine_id=receipt.engine_id.value,
            needs_review=receipt.needs_review,
            review_reason=receipt.review_reason,
            processed_at=receipt.processed_at,
            extracted_at=receipt.processed_at,
        )
        return dataclasses.replace(draft, receipt=attachment)

    def promote_receipt_file(self, handle: ReceiptFileHandle) -> PermanentReceiptFile:
        """
        Move a temp upload into permanent storage.

        Raises:
            ReceiptAlreadyPromotedError: The upload was promoted before
            FileMoveError: The move failed
        """
        existing = self.store.get_receipt_promotion(handle.temp_id)
        if existing is not None:
            raise ReceiptAlreadyPromotedError(handle.temp_id, existing.filename)

        filename = permanent_filename(handle.original_name, handle.mime_type)
        storage_path = self.blob_store.move(handle.storage_ref, filename)

        permanent = PermanentReceiptFile(
            temp_id=handle.temp_id,
            filename=filename,
            original_name=handle.original_name,
            mime_type=handle.mime_type,
            size_bytes=handle.size_bytes,
            storage_path=storage_path,
        )
        self.store.record_receipt_promotion(permanent)
        return permanent

    def create_transaction(
        self,
        receipt: ExtractedReceipt,
        handle: Optional[ReceiptFileHandle],
        owner_id: str,
        category: Category,
        overrides: Optional[Overrides] = None,
        recorder: Optional[TraceRecorder] = None,
    ) -> Transaction:
        """
        Assemble, promote and persist in one logical unit.

        Raises:
            MissingAmountError, CategoryConflictError, ReceiptAlreadyPromotedError,
            and any store error from the write
        """
        recorder = recorder or TraceRecorder()
        draft = self.assemble(receipt, owner_id, category, overrides)
        ensure_category_compatible(category, draft.type)

        permanent: Optional[PermanentReceiptFile] = None
        if handle is not None:
            try:
                permanent = self.promote_receipt_file(handle)
            except FileMoveError as e:
                recorder.emit(
                    TraceStage.FILE,
                    "file.promotion_failed",
                    str(e),
                    level=logging.WARNING,
                    temp_id=handle.temp_id,
                )
                draft = dataclasses.replace(
                    draft, notes="Receipt file could not be stored; transaction saved without it"
                )
            else:
                recorder.emit(
                    TraceStage.FILE,
                    "file.promoted",
                    permanent.filename,
                    temp_id=handle.temp_id,
                    size_bytes=permanent.size_bytes,
                )
                draft = self.attach_receipt(draft, receipt, permanent)

        try:
            transaction = self.store.create_transaction(draft)
        except Exception:
            if permanent is not None:
                recorder.emit(
                    TraceStage.WRITE,
                    "write.failed_orphan",
                    f"orphaned receipt file {permanent.filename}",
                    level=logging.ERROR,
                    filename=permanent.filename,
                    temp_id=permanent.temp_id,
                )
            raise

        recorder.emit(
            TraceStage.WRITE,
            "write.transaction_created",
            f"transaction {transaction.id}",
            transaction_id=transaction.id,
            transaction_type=transaction.type,
            amount=str(transaction.amount),
            has_receipt=transaction.receipt is not None,
        )
        return transaction

"""
Receipt intake service - the entry point used by the request layer.

Operations:
- extract_only: bytes → receipt or structured failure (never raises)
- upload_and_auto_file: bytes → transaction, or a manual-review payload
- create_from_extracted: reviewed receipt + overrides → transaction
- import_tabular: exported history text → bulk-inserted transactions

Extracted data is never discarded because a later stage failed.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from ..categories.resolver import CategoryResolver
from ..config import Config
from ..confidence.scorer import ReviewPolicy, ReviewThresholds
from ..engines.base import SUPPORTED_MIME_TYPES, EngineError
from ..engines.registry import create_adapters
from ..extraction.orchestrator import ExtractionFailure, ExtractionOrchestrator
from ..importers.tabular import NoValidRecordsError, ParseError, TabularImportParser
from ..schemas.amounts import AmountValidationError, validate_amount
from ..schemas.receipt import EngineId, ExtractedReceipt, ReceiptFileHandle
from ..schemas.trace import PipelineTrace, TraceRecorder, TraceStage
from ..schemas.transaction import (
    CategoryConflictError,
    CategoryNotFoundError,
    Overrides,
    Transaction,
    TransactionDraft,
    TransactionType,
    ensure_category_compatible,
)
from ..state_store.sqlite_store import StateStore
from ..storage.blob_store import BlobStore, FilesystemBlobStore
from .assembler import MissingAmountError, TransactionAssembler

logger = logging.getLogger(__name__)


class UploadRejectedError(Exception):
    """Raised when an upload fails basic validation (type or size)."""

    pass


@dataclass
class ExtractionOutcome:
    """Result of extract_only: exactly one of receipt/failure is set."""

    receipt: Optional[ExtractedReceipt] = None
    failure: Optional[ExtractionFailure] = None
    file_handle: Optional[ReceiptFileHandle] = None
    trace: Optional[PipelineTrace] = None

    @property
    def ok(self) -> bool:
        return self.receipt is not None

    @property
    def error(self) -> Optional[str]:
        return str(self.failure) if self.failure is not None else None


@dataclass
class AutoFileResult:
    """Result of upload_and_auto_file."""

    transaction: Optional[Transaction] = None
    receipt: Optional[ExtractedReceipt] = None
    error: Optional[str] = None
    needs_manual_review: bool = False
    file_handle: Optional[ReceiptFileHandle] = None
    trace: Optional[PipelineTrace] = None


@dataclass
class ImportSummary:
    """Result of import_tabular."""

    imported_count: int
    error_count: int
    records: list[Transaction] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)
    trace: Optional[PipelineTrace] = None


class ReceiptIntakeService:
    """
    Facade over extraction, category resolution, assembly and import.

    Args:
        orchestrator: Extraction orchestrator
        store: Category + transaction store
        blob_store: Receipt file storage
        parser: Tabular parser (default: "Imported" category label)
        timeout_seconds: Caller-level extraction timeout
        max_file_size: Upload size limit in bytes
    """

    def __init__(
        self,
        orchestrator: ExtractionOrchestrator,
        store: StateStore,
        blob_store: BlobStore,
        parser: Optional[TabularImportParser] = None,
        timeout_seconds: float = 60.0,
        max_file_size: int = 10 * 1024 * 1024,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.blob_store = blob_store
        self.parser = parser or TabularImportParser()
        self.assembler = TransactionAssembler(store, blob_store)
        self.timeout_seconds = timeout_seconds
        self.max_file_size = max_file_size

    @classmethod
    def from_config(cls, config: Config, store: Optional[StateStore] = None) -> "ReceiptIntakeService":
        """Wire the service from configuration."""
        policy = ReviewPolicy(ReviewThresholds.from_config(config.review))
        orchestrator = ExtractionOrchestrator(
            create_adapters(config),
            policy=policy,
            default_engine=EngineId.from_hint(config.engines.default_engine),
        )
        return cls(
            orchestrator=orchestrator,
            store=store or StateStore(config.state_db_path),
            blob_store=FilesystemBlobStore(config.storage.temp_dir, config.storage.permanent_dir),
            parser=TabularImportParser(config.importer.default_category_label),
            timeout_seconds=config.extraction.timeout_seconds,
            max_file_size=config.storage.max_file_size,
        )

    # Uploads

    def _validate_upload(self, data: bytes, mime_type: str) -> None:
        if not data:
            raise UploadRejectedError("Empty file")
        if mime_type not in SUPPORTED_MIME_TYPES:
            raise UploadRejectedError(
                f"Unsupported file type {mime_type!r}; "
                f"allowed: {', '.join(sorted(SUPPORTED_MIME_TYPES))}"
            )
        if len(data) > self.max_file_size:
            raise UploadRejectedError(
                f"File too large ({len(data)} bytes, limit {self.max_file_size})"
            )

    def _store_upload(
        self,
        data: bytes,
        mime_type: str,
        original_name: str,
        recorder: TraceRecorder,
    ) -> ReceiptFileHandle:
        blob = self.blob_store.write_temp(data, original_name, mime_type)
        handle = ReceiptFileHandle(
            temp_id=blob.id,
            original_name=original_name,
            mime_type=mime_type,
            size_bytes=blob.size_bytes,
            storage_ref=blob.ref,
        )
        recorder.emit(
            TraceStage.UPLOAD,
            "upload.stored",
            handle.temp_id,
            mime_type=mime_type,
            size_bytes=handle.size_bytes,
        )
        return handle

    def extract_only(
        self,
        data: bytes,
        mime_type: str,
        engine_hint: Optional[str] = None,
        original_name: Optional[str] = None,
    ) -> ExtractionOutcome:
        """
        Extract a receipt without persisting a transaction.

        When original_name is given the upload is kept in temp storage and its
        handle returned, so a transaction can be created from it later.
        Never raises for engine or input problems.
        """
        recorder = TraceRecorder()

        try:
            self._validate_upload(data, mime_type)
        except UploadRejectedError as e:
            failure = ExtractionFailure(EngineError.permanent(str(e)))
            recorder.emit(TraceStage.UPLOAD, "upload.rejected", str(e), level=logging.WARNING)
            return ExtractionOutcome(failure=failure, trace=recorder.build())

        handle = None
        if original_name:
            handle = self._store_upload(data, mime_type, original_name, recorder)

        try:
            receipt = self.orchestrator.extract_with_timeout(
                data,
                mime_type,
                engine_hint,
                timeout=self.timeout_seconds,
                original_name=original_name,
                recorder=recorder,
            )
        except ExtractionFailure as failure:
            return ExtractionOutcome(failure=failure, file_handle=handle, trace=recorder.build())

        return ExtractionOutcome(receipt=receipt, file_handle=handle, trace=recorder.build())

    def upload_and_auto_file(
        self,
        data: bytes,
        mime_type: str,
        owner_id: str,
        original_name: str,
        engine_hint: Optional[str] = None,
        category_name: Optional[str] = None,
        category_id: Optional[int] = None,
    ) -> AutoFileResult:
        """
        Extract and immediately file an expense transaction.

        Any failure after extraction returns the extracted receipt with an
        error so the caller can offer manual review; the temp upload is kept.
        """
        recorder = TraceRecorder()

        try:
            self._validate_upload(data, mime_type)
        except UploadRejectedError as e:
            recorder.emit(TraceStage.UPLOAD, "upload.rejected", str(e), level=logging.WARNING)
            return AutoFileResult(error=str(e), needs_manual_review=True, trace=recorder.build())

        handle = self._store_upload(data, mime_type, original_name, recorder)

        try:
            receipt = self.orchestrator.extract_with_timeout(
                data,
                mime_type,
                engine_hint,
                timeout=self.timeout_seconds,
                original_name=original_name,
                recorder=recorder,
            )
        except ExtractionFailure as failure:
            return AutoFileResult(
                error=f"Processing failed, please enter the transaction manually: {failure}",
                needs_manual_review=True,
                file_handle=handle,
                trace=recorder.build(),
            )

        resolver = CategoryResolver(self.store)
        try:
            category = resolver.resolve(
                owner_id,
                TransactionType.EXPENSE,
                name_hint=category_name,
                id_hint=category_id,
                recorder=recorder,
            )
            transaction = self.assembler.create_transaction(
                receipt, handle, owner_id, category, recorder=recorder
            )
        except (
            MissingAmountError,
            AmountValidationError,
            CategoryNotFoundError,
            CategoryConflictError,
        ) as e:
            recorder.emit(
                TraceStage.WRITE,
                "write.skipped",
                str(e),
                level=logging.WARNING,
                error_type=type(e).__name__,
            )
            return AutoFileResult(
                receipt=receipt,
                error=str(e),
                needs_manual_review=True,
                file_handle=handle,
                trace=recorder.build(),
            )
        except Exception as e:
            # Store/file failures must not lose the extraction
            logger.exception("Auto-filing failed for upload %s", handle.temp_id)
            return AutoFileResult(
                receipt=receipt,
                error=f"Could not save transaction: {e}",
                needs_manual_review=True,
                file_handle=handle,
                trace=recorder.build(),
            )

        return AutoFileResult(
            transaction=transaction,
            receipt=receipt,
            needs_manual_review=receipt.needs_review,
            file_handle=handle,
            trace=recorder.build(),
        )

    def create_from_extracted(
        self,
        receipt: ExtractedReceipt,
        file_handle: Optional[ReceiptFileHandle],
        overrides: Optional[Overrides],
        owner_id: str,
    ) -> Transaction:
        """
        Create a transaction from a (reviewed) receipt.

        Raises:
            MissingAmountError, InvalidOverrideError, CategoryNotFoundError,
            CategoryConflictError, ReceiptAlreadyPromotedError
        """
        overrides = overrides or Overrides()
        recorder = TraceRecorder()

        resolver = CategoryResolver(self.store)
        category = resolver.resolve(
            owner_id,
            overrides.transaction_type,
            name_hint=overrides.category_name,
            id_hint=overrides.category_id,
            recorder=recorder,
        )
        return self.assembler.create_transaction(
            receipt, file_handle, owner_id, category, overrides, recorder=recorder
        )

    # Tabular import

    def import_tabular(self, text: str, owner_id: str) -> ImportSummary:
        """
        Parse exported history text and bulk-insert the valid records.

        Per-line problems (parse, amount or category) are collected, never fatal.

        Raises:
            NoValidRecordsError: Nothing importable in the file
        """
        recorder = TraceRecorder()
        parsed = self.parser.parse(text, owner_id)
        errors = list(parsed.errors)

        recorder.emit(
            TraceStage.IMPORT,
            "import.parsed",
            f"{len(parsed.records)} records, {len(errors)} errors",
            record_count=len(parsed.records),
            error_count=len(errors),
        )

        resolver = CategoryResolver(self.store)
        drafts: list[TransactionDraft] = []
        for record in parsed.records:
            try:
                amount = validate_amount(record.amount)
            except AmountValidationError as e:
                errors.append(
                    ParseError(record.source_line_number, record.raw_line, str(e), stage="amount")
                )
                continue

            try:
                category = resolver.resolve(
                    owner_id,
                    record.inferred_type,
                    name_hint=record.category_name_hint,
                    create_from_hint=True,
                    recorder=recorder,
                )
                ensure_category_compatible(category, record.inferred_type)
            except (CategoryConflictError, ValueError) as e:
                errors.append(
                    ParseError(record.source_line_number, record.raw_line, str(e), stage="category")
                )
                continue

            drafts.append(
                TransactionDraft(
                    owner_id=owner_id,
                    type=record.inferred_type,
                    amount=amount,
                    date=record.date.isoformat(),
                    description=record.description,
                    category_id=category.id,
                    is_imported=True,
                )
            )

        if not drafts:
            recorder.emit(
                TraceStage.IMPORT,
                "import.failed",
                "no valid records",
                level=logging.ERROR,
                error_count=len(errors),
            )
            raise NoValidRecordsError(errors)

        transactions = self.store.bulk_insert_transactions(drafts)

        level = logging.WARNING if errors else logging.INFO
        recorder.emit(
            TraceStage.IMPORT,
            "import.completed",
            f"imported {len(transactions)}, {len(errors)} errors",
            level=level,
            imported_count=len(transactions),
            error_count=len(errors),
        )

        return ImportSummary(
            imported_count=len(transactions),
            error_count=len(errors),
            records=transactions,
            errors=errors,
            trace=recorder.build(),
        )

    # Maintenance

    def purge_temp_uploads(self, max_age: timedelta) -> int:
        """Remove stale temp uploads (filesystem blob store only)."""
        if not isinstance(self.blob_store, FilesystemBlobStore):
            return 0
        return self.blob_store.purge_expired(max_age)

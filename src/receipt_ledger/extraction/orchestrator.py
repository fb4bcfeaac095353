"""
Extraction orchestrator - runs the primary engine and the one-shot fallback.

Flow:
1. Pick the primary engine from the hint (unknown hints → cloud)
2. Invoke it; on success normalize and apply the review policy
3. Cloud primary failed → retry exactly once with the offline engine
   Offline primary failed → no fallback
4. Both attempts failed → ExtractionFailure carrying both errors

Engine calls are strictly sequential.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Optional

from ..confidence.scorer import ReviewPolicy
from ..engines.base import EngineAdapter, EngineError
from ..schemas.receipt import EngineId, ExtractedReceipt
from ..schemas.trace import TraceRecorder, TraceStage
from .normalizer import normalize

logger = logging.getLogger(__name__)

# The only fallback: cloud → offline
FALLBACK_ENGINE = {EngineId.TEXTRACT: EngineId.TESSERACT}


class ExtractionFailure(Exception):
    """All extraction attempts failed; manual entry is the only option."""

    def __init__(
        self,
        primary_error: EngineError,
        secondary_error: Optional[EngineError] = None,
    ):
        self.primary_error = primary_error
        self.secondary_error = secondary_error
        message = f"Extraction failed: {primary_error}"
        if secondary_error is not None:
            message += f"; fallback failed: {secondary_error}"
        super().__init__(message)

    @property
    def errors(self) -> list[EngineError]:
        return [e for e in (self.primary_error, self.secondary_error) if e is not None]


class ExtractionTimeout(ExtractionFailure):
    """Extraction did not finish within the caller-level timeout."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(EngineError.transient(f"Extraction timed out after {timeout_seconds:g}s"))


class ExtractionOrchestrator:
    """
    Turns receipt bytes into one normalized, review-flagged receipt.

    Args:
        adapters: One adapter per engine id
        policy: Review policy (also supplies default confidence bands)
        default_engine: Engine used when the caller gives no hint
    """

    def __init__(
        self,
        adapters: dict[EngineId, EngineAdapter],
        policy: Optional[ReviewPolicy] = None,
        default_engine: EngineId = EngineId.TEXTRACT,
    ):
        self.adapters = adapters
        self.policy = policy or ReviewPolicy()
        self.default_engine = default_engine

    def select_primary(self, engine_hint: Optional[str]) -> EngineId:
        """Primary engine for a hint; unknown hints map to the cloud engine."""
        if not engine_hint:
            return self.default_engine
        return EngineId.from_hint(engine_hint)

    def extract(
        self,
        data: bytes,
        mime_type: str,
        engine_hint: Optional[str] = None,
        original_name: Optional[str] = None,
        recorder: Optional[TraceRecorder] = None,
    ) -> ExtractedReceipt:
        """
        Extract a receipt, falling back from cloud to offline once.

        Raises:
            ExtractionFailure: When the primary (and fallback, if any) failed
        """
        recorder = recorder or TraceRecorder()
        primary_id = self.select_primary(engine_hint)

        try:
            return self._attempt(primary_id, data, mime_type, original_name, recorder)
        except EngineError as primary_error:
            fallback_id = FALLBACK_ENGINE.get(primary_id)
            if fallback_id is None or fallback_id not in self.adapters:
                recorder.emit(
                    TraceStage.EXTRACTION,
                    "extraction.failed",
                    f"{primary_id.value} failed, no fallback",
                    level=logging.ERROR,
                    engine=primary_id,
                    error_kind=primary_error.kind,
                )
                raise ExtractionFailure(primary_error) from primary_error

            recorder.emit(
                TraceStage.FALLBACK,
                "fallback.triggered",
                f"{primary_id.value} failed, retrying with {fallback_id.value}",
                level=logging.WARNING,
                engine=primary_id,
                fallback_engine=fallback_id,
                error_kind=primary_error.kind,
                error=primary_error.message,
            )

            try:
                return self._attempt(
                    fallback_id, data, mime_type, original_name, recorder, used_fallback=True
                )
            except EngineError as secondary_error:
                recorder.emit(
                    TraceStage.EXTRACTION,
                    "extraction.failed",
                    "primary and fallback engines failed",
                    level=logging.ERROR,
                    engine=primary_id,
                    fallback_engine=fallback_id,
                )
                raise ExtractionFailure(primary_error, secondary_error) from secondary_error

    def extract_with_timeout(
        self,
        data: bytes,
        mime_type: str,
        engine_hint: Optional[str] = None,
        timeout: float = 60.0,
        original_name: Optional[str] = None,
        recorder: Optional[TraceRecorder] = None,
    ) -> ExtractedReceipt:
        """
        Run extract() under a caller-level timeout.

        On expiry the in-flight engine call is abandoned (it keeps running in
        its worker thread until the engine returns) and ExtractionTimeout is
        raised.
        """
        recorder = recorder or TraceRecorder()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="receipt-extract")
        try:
            future = executor.submit(
                self.extract, data, mime_type, engine_hint, original_name, recorder
            )
            try:
                return future.result(timeout=timeout)
            except FuturesTimeoutError:
                future.cancel()
                recorder.emit(
                    TraceStage.EXTRACTION,
                    "extraction.timeout",
                    f"abandoned after {timeout:g}s",
                    level=logging.ERROR,
                    timeout_seconds=timeout,
                )
                raise ExtractionTimeout(timeout) from None
        finally:
            executor.shutdown(wait=False)

    def _attempt(
        self,
        engine_id: EngineId,
        data: bytes,
        mime_type: str,
        original_name: Optional[str],
        recorder: TraceRecorder,
        used_fallback: bool = False,
    ) -> ExtractedReceipt:
        adapter = self.adapters.get(engine_id)
        if adapter is None:
            raise EngineError.permanent("Engine is not available", engine_id)

        recorder.emit(
            TraceStage.EXTRACTION,
            "extraction.started",
            f"engine={engine_id.value}",
            engine=engine_id,
            mime_type=mime_type,
            size_bytes=len(data),
            fallback=used_fallback,
        )

        try:
            raw = adapter.extract(data, mime_type, original_name)
        except EngineError as e:
            if e.engine_id is None:
                e.engine_id = engine_id
            recorder.emit(
                TraceStage.EXTRACTION,
                "extraction.engine_error",
                e.message,
                level=logging.WARNING,
                engine=engine_id,
                error_kind=e.kind,
            )
            raise
        except Exception as e:
            # Adapter bug or SDK exception that escaped the adapter
            logger.warning("Unexpected error from %s engine", engine_id.value, exc_info=True)
            recorder.emit(
                TraceStage.EXTRACTION,
                "extraction.engine_error",
                f"unexpected {type(e).__name__}",
                level=logging.WARNING,
                engine=engine_id,
                error_kind="permanent",
            )
            raise EngineError.permanent(
                f"Unexpected {type(e).__name__}: {e}", engine_id
            ) from e

        confidence = self.policy.resolve_confidence(engine_id, raw.confidence)
        receipt = normalize(raw, engine_id, confidence, used_fallback=used_fallback)
        recorder.emit(
            TraceStage.NORMALIZATION,
            "extraction.normalized",
            f"engine={engine_id.value}",
            engine=engine_id,
            confidence=receipt.confidence_score,
            confidence_defaulted=raw.confidence is None,
            has_total=receipt.total is not None,
            has_date=receipt.date is not None,
            item_count=receipt.item_count,
        )

        self.policy.apply(receipt)
        recorder.emit(
            TraceStage.REVIEW,
            "review.decided",
            receipt.review_reason or "auto-file",
            level=logging.WARNING if receipt.needs_review else logging.INFO,
            engine=engine_id,
            needs_review=receipt.needs_review,
            reasons=receipt.review_reasons,
        )
        return receipt

"""Tests for engine selection, fallback and timeout."""

import threading

import pytest

from receipt_ledger.engines.base import EngineAdapter, EngineError
from receipt_ledger.extraction.orchestrator import (
    ExtractionFailure,
    ExtractionOrchestrator,
    ExtractionTimeout,
)
from receipt_ledger.schemas.receipt import EngineId
from receipt_ledger.schemas.trace import TraceRecorder


@pytest.fixture
def engines(make_engine, raw_result):
    return {
        EngineId.TEXTRACT: make_engine(EngineId.TEXTRACT, result=raw_result(95.0)),
        EngineId.TESSERACT: make_engine(EngineId.TESSERACT, result=raw_result(70.0)),
    }


@pytest.fixture
def orchestrator(engines):
    return ExtractionOrchestrator(engines)


class TestEngineSelection:
    def test_no_hint_uses_default(self, engines):
        orchestrator = ExtractionOrchestrator(engines, default_engine=EngineId.TESSERACT)

        assert orchestrator.select_primary(None) is EngineId.TESSERACT
        assert orchestrator.select_primary("") is EngineId.TESSERACT

    def test_unknown_hint_maps_to_cloud(self, orchestrator):
        assert orchestrator.select_primary("paddleocr") is EngineId.TEXTRACT

    def test_hint_is_case_insensitive(self, orchestrator):
        assert orchestrator.select_primary(" Tesseract ") is EngineId.TESSERACT


class TestExtract:
    """Tests for primary + fallback behavior."""

    def test_cloud_success_no_fallback(self, orchestrator, engines):
        receipt = orchestrator.extract(b"img", "image/png")

        assert receipt.engine_id is EngineId.TEXTRACT
        assert receipt.used_fallback is False
        assert receipt.needs_review is False
        assert engines[EngineId.TEXTRACT].calls == 1
        assert engines[EngineId.TESSERACT].calls == 0

    @pytest.mark.parametrize("error_fixture", ["transient_error", "permanent_error"])
    def test_cloud_failure_falls_back_once(self, orchestrator, engines, request, error_fixture):
        engines[EngineId.TEXTRACT].error = request.getfixturevalue(error_fixture)
        recorder = TraceRecorder()

        receipt = orchestrator.extract(b"img", "image/png", "textract", recorder=recorder)

        assert receipt.engine_id is EngineId.TESSERACT
        assert receipt.used_fallback is True
        assert receipt.confidence_score == 70.0
        assert engines[EngineId.TEXTRACT].calls == 1
        assert engines[EngineId.TESSERACT].calls == 1
        assert "fallback.triggered" in recorder.trace.names()

    def test_offline_failure_has_no_fallback(self, orchestrator, engines, permanent_error):
        engines[EngineId.TESSERACT].error = permanent_error

        with pytest.raises(ExtractionFailure) as exc_info:
            orchestrator.extract(b"img", "image/png", "tesseract")

        assert exc_info.value.primary_error is permanent_error
        assert exc_info.value.secondary_error is None
        assert engines[EngineId.TEXTRACT].calls == 0

    def test_both_fail(self, orchestrator, engines, transient_error, permanent_error):
        engines[EngineId.TEXTRACT].error = transient_error
        engines[EngineId.TESSERACT].error = permanent_error
        recorder = TraceRecorder()

        with pytest.raises(ExtractionFailure) as exc_info:
            orchestrator.extract(b"img", "image/png", recorder=recorder)

        failure = exc_info.value
        assert failure.errors == [transient_error, permanent_error]
        assert "fallback failed" in str(failure)
        assert engines[EngineId.TESSERACT].calls == 1
        assert recorder.trace.names()[-1] == "extraction.failed"

    def test_unexpected_exception_becomes_engine_error(self, orchestrator, engines):
        engines[EngineId.TEXTRACT].error = KeyError("ExpenseDocuments")

        receipt = orchestrator.extract(b"img", "image/png")

        assert receipt.used_fallback is True

    def test_engine_id_attached_to_error(self, orchestrator, engines):
        engines[EngineId.TESSERACT].error = EngineError.permanent("broken")

        with pytest.raises(ExtractionFailure) as exc_info:
            orchestrator.extract(b"img", "image/png", "tesseract")

        assert exc_info.value.primary_error.engine_id is EngineId.TESSERACT

    def test_missing_confidence_uses_engine_default(self, orchestrator, engines, raw_result):
        engines[EngineId.TEXTRACT].result = raw_result(None)

        receipt = orchestrator.extract(b"img", "image/png")

        assert receipt.confidence_score == 75.0
        assert receipt.needs_review is True
        assert receipt.review_reasons[0].startswith("Low confidence")

    def test_missing_fallback_adapter(self, make_engine, transient_error):
        orchestrator = ExtractionOrchestrator(
            {EngineId.TEXTRACT: make_engine(EngineId.TEXTRACT, error=transient_error)}
        )

        with pytest.raises(ExtractionFailure) as exc_info:
            orchestrator.extract(b"img", "image/png")

        assert exc_info.value.secondary_error is None

    def test_trace_event_order(self, orchestrator):
        recorder = TraceRecorder()

        orchestrator.extract(b"img", "image/png", recorder=recorder)

        assert recorder.trace.names() == [
            "extraction.started",
            "extraction.normalized",
            "review.decided",
        ]


class BlockingEngine(EngineAdapter):
    """Engine that blocks until released."""

    def __init__(self):
        self.release = threading.Event()

    @property
    def engine_id(self):
        return EngineId.TEXTRACT

    def extract(self, data, mime_type, hint=None):
        self.release.wait(5)
        raise EngineError.transient("released")


class TestTimeout:
    def test_returns_within_timeout(self, orchestrator):
        receipt = orchestrator.extract_with_timeout(b"img", "image/png", timeout=5)

        assert receipt.engine_id is EngineId.TEXTRACT

    def test_timeout_raises(self):
        engine = BlockingEngine()
        orchestrator = ExtractionOrchestrator({EngineId.TEXTRACT: engine})
        recorder = TraceRecorder()

        try:
            with pytest.raises(ExtractionTimeout) as exc_info:
                orchestrator.extract_with_timeout(
                    b"img", "image/png", timeout=0.05, recorder=recorder
                )
        finally:
            engine.release.set()

        assert exc_info.value.timeout_seconds == 0.05
        assert exc_info.value.primary_error.is_transient is True
        assert "extraction.timeout" in recorder.trace.names()

    def test_failures_propagate(self, orchestrator, engines, permanent_error):
        engines[EngineId.TESSERACT].error = permanent_error

        with pytest.raises(ExtractionFailure):
            orchestrator.extract_with_timeout(b"img", "image/png", "tesseract", timeout=5)

"""Tests for the offline OCR engine."""

import io
from unittest.mock import patch

import pytest
import pytesseract
from PIL import Image

from receipt_ledger.config import TesseractConfig
from receipt_ledger.engines.base import EngineError, EngineErrorKind
from receipt_ledger.engines.tesseract import TesseractEngine, mean_word_confidence
from receipt_ledger.schemas.receipt import EngineId


def png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (40, 20), "white").save(buffer, format="PNG")
    return buffer.getvalue()


WORD_DATA = {"conf": ["-1", "90", "80", "70"], "text": ["", "FRESH", "MARKET", " "]}


class TestMeanWordConfidence:
    def test_ignores_layout_boxes_and_blank_words(self):
        assert mean_word_confidence(WORD_DATA) == 85.0

    def test_no_words(self):
        assert mean_word_confidence({"conf": ["-1"], "text": [""]}) is None

    def test_non_numeric_values_skipped(self):
        assert mean_word_confidence({"conf": ["x", 50], "text": ["a", "b"]}) == 50.0


class TestTesseractEngine:
    """Tests for TesseractEngine with pytesseract mocked out."""

    @pytest.fixture
    def engine(self):
        return TesseractEngine(TesseractConfig())

    def test_engine_id(self, engine):
        assert engine.engine_id is EngineId.TESSERACT
        assert engine.is_configured() is True

    def test_extracts_fields(self, engine, sample_ocr_receipt):
        with patch.object(pytesseract, "image_to_data", return_value=WORD_DATA), patch.object(
            pytesseract, "image_to_string", return_value=sample_ocr_receipt
        ) as to_string:
            result = engine.extract(png_bytes(), "image/png", "receipt.png")

        assert result.confidence == 85.0
        assert result.vendor == "FRESH MARKET"
        assert result.total == "8.61"
        assert result.raw_matches["char_count"] == len(sample_ocr_receipt)
        assert to_string.call_args.kwargs["config"] == "--psm 6"

    def test_pdf_rejected(self, engine):
        with pytest.raises(EngineError) as exc_info:
            engine.extract(b"%PDF-1.4", "application/pdf")

        assert exc_info.value.kind is EngineErrorKind.PERMANENT
        assert exc_info.value.engine_id is EngineId.TESSERACT

    def test_undecodable_image(self, engine):
        with pytest.raises(EngineError, match="Cannot decode image") as exc_info:
            engine.extract(b"not an image", "image/jpeg")

        assert exc_info.value.is_transient is False

    def test_binary_missing_is_permanent(self, engine):
        with patch.object(
            pytesseract, "image_to_data", side_effect=pytesseract.TesseractNotFoundError()
        ):
            with pytest.raises(EngineError) as exc_info:
                engine.extract(png_bytes(), "image/png")

        assert exc_info.value.kind is EngineErrorKind.PERMANENT

    def test_timeout_is_transient(self, engine):
        with patch.object(
            pytesseract, "image_to_data", side_effect=RuntimeError("Tesseract process timeout")
        ):
            with pytest.raises(EngineError) as exc_info:
                engine.extract(png_bytes(), "image/png")

        assert exc_info.value.is_transient is True

    def test_no_text_is_permanent(self, engine):
        with patch.object(pytesseract, "image_to_data", return_value=WORD_DATA), patch.object(
            pytesseract, "image_to_string", return_value="  \n "
        ):
            with pytest.raises(EngineError, match="No text recognized"):
                engine.extract(png_bytes(), "image/png")

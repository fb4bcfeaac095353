"""
Offline OCR engine (Tesseract).

Decodes image bytes with Pillow, runs Tesseract through pytesseract and
recovers receipt fields from the text with the shared heuristics.
Lower accuracy than the cloud engine, but needs no network.
"""

import io
import logging
from typing import Optional

import pytesseract
from PIL import Image, ImageOps, UnidentifiedImageError

from ..config import TesseractConfig
from ..schemas.receipt import EngineId, RawEngineResult
from .base import IMAGE_MIME_TYPES, EngineAdapter, EngineError
from .text_heuristics import parse_receipt_text

logger = logging.getLogger(__name__)


def mean_word_confidence(data: dict) -> Optional[float]:
    """Mean of the valid per-word confidences from image_to_data (0-100).

    Tesseract reports -1 for layout boxes that are not words.
    """
    values: list[float] = []
    for raw, text in zip(data.get("conf", []), data.get("text", [])):
        try:
            conf = float(raw)
        except (TypeError, ValueError):
            continue
        if conf < 0 or not str(text).strip():
            continue
        values.append(conf)

    if not values:
        return None
    return sum(values) / len(values)


class TesseractEngine(EngineAdapter):
    """Offline receipt OCR."""

    def __init__(self, config: Optional[TesseractConfig] = None):
        self.config = config or TesseractConfig()
        if self.config.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.config.tesseract_cmd

    @property
    def engine_id(self) -> EngineId:
        return EngineId.TESSERACT

    @property
    def display_name(self) -> str:
        return "Tesseract OCR"

    def extract(
        self,
        data: bytes,
        mime_type: str,
        hint: Optional[str] = None,
    ) -> RawEngineResult:
        if mime_type not in IMAGE_MIME_TYPES:
            raise EngineError.permanent(
                f"Unsupported file type for offline OCR: {mime_type}", self.engine_id
            )

        image = self._load_image(data)
        tess_config = f"--psm {self.config.psm}"

        try:
            word_data = pytesseract.image_to_data(
                image,
                lang=self.config.lang,
                config=tess_config,
                output_type=pytesseract.Output.DICT,
            )
            text = pytesseract.image_to_string(image, lang=self.config.lang, config=tess_config)
        except pytesseract.TesseractNotFoundError as e:
            raise EngineError.permanent(f"Tesseract binary not found: {e}", self.engine_id) from e
        except pytesseract.TesseractError as e:
            raise EngineError.permanent(f"Tesseract failed: {e}", self.engine_id) from e
        except RuntimeError as e:
            # pytesseract raises RuntimeError when its process timeout expires
            raise EngineError.transient(f"Tesseract timed out: {e}", self.engine_id) from e

        if not text or not text.strip():
            raise EngineError.permanent("No text recognized in image", self.engine_id)

        confidence = mean_word_confidence(word_data)
        logger.debug(
            "Tesseract recognized %d chars from %s (confidence=%s)",
            len(text),
            hint or "upload",
            f"{confidence:.1f}" if confidence is not None else "n/a",
        )

        result = parse_receipt_text(text, confidence=confidence)
        result.raw_matches["char_count"] = len(text)
        return result

    def _load_image(self, data: bytes) -> Image.Image:
        """Decode bytes into a grayscale image suited for OCR."""
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise EngineError.permanent(f"Cannot decode image: {e}", self.engine_id) from e

        # Respect camera rotation, then drop color
        image = ImageOps.exif_transpose(image)
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        return image.convert("L")

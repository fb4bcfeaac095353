"""
Engine registry - builds adapters from configuration.
"""

from dataclasses import dataclass

from ..config import Config
from ..schemas.receipt import EngineId
from .base import EngineAdapter
from .tesseract import TesseractEngine
from .textract import TextractEngine


@dataclass
class EngineInfo:
    """Engine metadata for listings."""

    engine_id: EngineId
    name: str
    description: str
    accuracy: str
    offline: bool
    configured: bool
    is_default: bool
    fallback: EngineId | None = None


def create_adapters(config: Config) -> dict[EngineId, EngineAdapter]:
    """Build one adapter per engine."""
    return {
        EngineId.TEXTRACT: TextractEngine(config.engines.textract),
        EngineId.TESSERACT: TesseractEngine(config.engines.tesseract),
    }


def describe_engines(config: Config) -> list[EngineInfo]:
    """List available engines and whether they are usable."""
    default = EngineId.from_hint(config.engines.default_engine)
    return [
        EngineInfo(
            engine_id=EngineId.TEXTRACT,
            name="AWS Textract",
            description="Cloud expense analysis (requires AWS credentials and a staging bucket)",
            accuracy="95%+",
            offline=False,
            configured=config.engines.textract.is_configured(),
            is_default=default is EngineId.TEXTRACT,
            fallback=EngineId.TESSERACT,
        ),
        EngineInfo(
            engine_id=EngineId.TESSERACT,
            name="Tesseract OCR",
            description="Offline OCR, no network required",
            accuracy="60-70%",
            offline=True,
            configured=True,
            is_default=default is EngineId.TESSERACT,
        ),
    ]

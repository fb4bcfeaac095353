"""
Extraction engine adapters.
"""

from .base import (
    IMAGE_MIME_TYPES,
    SUPPORTED_MIME_TYPES,
    EngineAdapter,
    EngineError,
    EngineErrorKind,
)
from .registry import EngineInfo, create_adapters, describe_engines
from .tesseract import TesseractEngine
from .textract import TextractEngine

__all__ = [
    "EngineAdapter",
    "EngineError",
    "EngineErrorKind",
    "EngineInfo",
    "IMAGE_MIME_TYPES",
    "SUPPORTED_MIME_TYPES",
    "TesseractEngine",
    "TextractEngine",
    "create_adapters",
    "describe_engines",
]

"""
Base engine adapter interface and common error types.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from ..schemas.receipt import EngineId, RawEngineResult

# MIME types accepted for receipt uploads
SUPPORTED_MIME_TYPES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/bmp",
        "image/tiff",
        "application/pdf",
    }
)

IMAGE_MIME_TYPES = SUPPORTED_MIME_TYPES - {"application/pdf"}


class EngineErrorKind(str, Enum):
    """Whether retrying the same engine later could succeed."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"


class EngineError(Exception):
    """Failure reported by an extraction engine."""

    def __init__(
        self,
        kind: EngineErrorKind,
        message: str,
        engine_id: Optional[EngineId] = None,
    ):
        self.kind = EngineErrorKind(kind)
        self.message = message
        self.engine_id = engine_id
        prefix = f"{engine_id.value}: " if engine_id else ""
        super().__init__(f"{prefix}{message} ({self.kind.value})")

    @property
    def is_transient(self) -> bool:
        return self.kind is EngineErrorKind.TRANSIENT

    @classmethod
    def permanent(cls, message: str, engine_id: Optional[EngineId] = None) -> "EngineError":
        return cls(EngineErrorKind.PERMANENT, message, engine_id)

    @classmethod
    def transient(cls, message: str, engine_id: Optional[EngineId] = None) -> "EngineError":
        return cls(EngineErrorKind.TRANSIENT, message, engine_id)


class EngineAdapter(ABC):
    """
    Base class for all extraction engines.

    Each adapter wraps one external engine and returns an engine-neutral
    RawEngineResult. Engine SDK types and exceptions never leave the adapter;
    every failure is reported as EngineError.
    """

    @property
    @abstractmethod
    def engine_id(self) -> EngineId:
        """Engine identifier for logging and provenance."""
        pass

    @property
    def display_name(self) -> str:
        return self.engine_id.value

    def is_configured(self) -> bool:
        """Check whether the engine has everything it needs to run."""
        return True

    @abstractmethod
    def extract(
        self,
        data: bytes,
        mime_type: str,
        hint: Optional[str] = None,
    ) -> RawEngineResult:
        """
        Extract receipt fields from file bytes.

        Args:
            data: Raw file bytes
            mime_type: MIME type of the file
            hint: Optional original file name (used for logging / staging keys)

        Returns:
            RawEngineResult with the engine's raw values

        Raises:
            EngineError: On any engine failure
        """
        pass

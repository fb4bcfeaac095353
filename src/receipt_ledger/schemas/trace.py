"""
Pipeline trace module (SSOT).

Provides structured, leveled, privacy-safe events for every pipeline stage:
extraction start/result, fallback, normalization, review decision, category
resolution, file promotion, writes and imports.

Each event is emitted twice:
- as a log record on the ``receipt_ledger.trace`` logger, with the event
  attached as ``extra={"stage": ..., "event": {...}}`` for structured handlers
- into the PipelineTrace returned to the caller

Privacy Invariants:
- NO raw OCR text
- NO card/account numbers verbatim
- ONLY: identifiers, field names, engine ids, amounts, confidence scores
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger("receipt_ledger.trace")


# ============================================================================
# Constants and SSOT definitions
# ============================================================================

# Patterns that indicate PII/sensitive data (case-insensitive)
SENSITIVE_PATTERNS = [
    # IBAN patterns (various country formats)
    r"\b[A-Z]{2}\d{2}[A-Z0-9]{4,30}\b",
    # Credit card numbers (16 digits, possibly separated)
    r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b",
    # Long numeric sequences (potential account numbers), not parts of file names
    r"(?<![\w.-])\d{10,}(?![\w-]|\.\w)",
    # Email addresses
    r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b",
]

_SENSITIVE_REGEXES = [re.compile(p, re.IGNORECASE) for p in SENSITIVE_PATTERNS]

# Maximum allowed length for any string value in trace events
MAX_STRING_LENGTH = 200

# Blob identifiers are kept verbatim so orphaned files can be reclaimed
IDENTIFIER_FIELDS = frozenset({"temp_id", "filename", "storage_ref", "storage_path"})


class TraceStage(str, Enum):
    """Processing stages in the intake pipeline."""

    UPLOAD = "upload"
    EXTRACTION = "extraction"
    FALLBACK = "fallback"
    NORMALIZATION = "normalization"
    REVIEW = "review"
    CATEGORY = "category"
    FILE = "file"
    WRITE = "write"
    IMPORT = "import"


@dataclass
class TraceEvent:
    """A single event in the pipeline trace.

    All string values are sanitized before storage.
    """

    timestamp: str  # ISO format
    stage: TraceStage
    name: str  # e.g. "extraction.started", "fallback.triggered"
    level: int
    outcome: str
    fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = {
            "timestamp": self.timestamp,
            "stage": self.stage.value,
            "event": self.name,
            "level": logging.getLevelName(self.level),
            "outcome": self.outcome,
        }
        if self.fields:
            d["fields"] = dict(self.fields)
        return d


@dataclass
class PipelineTrace:
    """Complete trace for one upload or import run."""

    run_id: str
    events: list[TraceEvent] = field(default_factory=list)
    started_at: str = ""
    completed_at: str = ""
    duration_ms: int = 0

    def add_event(self, event: TraceEvent) -> None:
        self.events.append(event)

    def events_for(self, stage: TraceStage) -> list[TraceEvent]:
        return [e for e in self.events if e.stage == stage]

    def names(self) -> list[str]:
        return [e.name for e in self.events]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "run_id": self.run_id,
            "events": [e.to_dict() for e in self.events],
            "timing": {
                "started_at": self.started_at,
                "completed_at": self.completed_at,
                "duration_ms": self.duration_ms,
            },
        }


# ============================================================================
# Privacy enforcement utilities
# ============================================================================


def contains_sensitive_data(text: str) -> bool:
    """Check if text contains patterns that suggest sensitive data."""
    for regex in _SENSITIVE_REGEXES:
        if regex.search(text):
            return True
    return False


def sanitize_string(value: str, max_length: int = MAX_STRING_LENGTH) -> str:
    """Sanitize a string for safe trace storage.

    - Truncates to max length
    - Replaces detected sensitive patterns with [REDACTED]
    - Removes excessive whitespace
    """
    if not value:
        return ""

    result = " ".join(value.split())

    for regex in _SENSITIVE_REGEXES:
        result = regex.sub("[REDACTED]", result)

    if len(result) > max_length:
        result = result[: max_length - 3] + "..."

    return result


def _safe_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_safe_value(v) for v in value]
    return sanitize_string(str(value))


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# ============================================================================
# Trace Recorder (SSOT for emitting events)
# ============================================================================


class TraceRecorder:
    """Records pipeline events and mirrors them to logging.

    Example:
        recorder = TraceRecorder()
        recorder.emit(TraceStage.EXTRACTION, "extraction.started", "engine=textract")
        recorder.emit(TraceStage.FALLBACK, "fallback.triggered", "...", level=logging.WARNING)
        trace = recorder.build()
    """

    def __init__(self, run_id: str | None = None) -> None:
        self.trace = PipelineTrace(
            run_id=run_id or uuid.uuid4().hex[:12],
            started_at=_utc_now(),
        )
        self._start_time = time.time()

    def emit(
        self,
        stage: TraceStage,
        name: str,
        outcome: str,
        level: int = logging.INFO,
        **fields: Any,
    ) -> TraceEvent:
        """Record one event and log it at the given level."""
        event = TraceEvent(
            timestamp=_utc_now(),
            stage=stage,
            name=name,
            level=level,
            outcome=sanitize_string(outcome),
            fields={
                k: v if k in IDENTIFIER_FIELDS and isinstance(v, str) else _safe_value(v)
                for k, v in fields.items()
            },
        )
        self.trace.add_event(event)

        logger.log(
            level,
            "[%s] %s: %s",
            self.trace.run_id,
            name,
            event.outcome,
            extra={"stage": stage.value, "event": event.to_dict()},
        )
        return event

    def build(self) -> PipelineTrace:
        """Finalize and return the trace."""
        self.trace.completed_at = _utc_now()
        self.trace.duration_ms = int((time.time() - self._start_time) * 1000)
        return self.trace

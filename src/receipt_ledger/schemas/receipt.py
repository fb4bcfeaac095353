"""
Canonical extracted receipt object (SSOT).

This is THE single source of truth for extracted receipt data.
Engine-specific shapes (vendor/storeName, confidence/ocrConfidence,
engine/ocrEngine) are collapsed into ExtractedReceipt at the adapter
boundary; nothing downstream ever sees the engine's own naming.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class EngineId(str, Enum):
    """
    Closed set of extraction engines.

    TESSERACT: offline OCR, lower accuracy, no network
    TEXTRACT: cloud expense analysis, higher accuracy, usage-priced
    """

    TESSERACT = "tesseract"
    TEXTRACT = "textract"

    @property
    def is_cloud(self) -> bool:
        return self is EngineId.TEXTRACT

    @classmethod
    def from_hint(cls, hint: Optional[str]) -> "EngineId":
        """Map a caller-supplied hint to an engine; unknown or empty → cloud."""
        if isinstance(hint, EngineId):
            return hint
        if hint:
            try:
                return cls(str(hint).strip().lower())
            except ValueError:
                pass
        return cls.TEXTRACT


def utc_now_iso() -> str:
    """Current UTC time as ISO string with Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _dec(value: Any) -> Optional[Decimal]:
    return Decimal(value) if value not in (None, "") else None


def _str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


@dataclass
class RawEngineResult:
    """
    Engine-neutral raw result returned by an adapter.

    Values are kept as the engine reported them (amounts may still carry
    currency symbols); only the normalizer interprets them.
    """

    vendor: Optional[str] = None
    date: Optional[str] = None
    subtotal: Optional[str] = None
    tax: Optional[str] = None
    total: Optional[str] = None

    # Each item: {"name": str, "price": str|None, "quantity": str|None}
    items: list[dict[str, Any]] = field(default_factory=list)

    # Engine-reported confidence (0-100); None when the engine gives none
    confidence: Optional[float] = None

    # Debug info (never persisted)
    raw_matches: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReceiptItem:
    """Individual line item from a receipt."""

    name: str
    price: Optional[Decimal] = None
    quantity: Optional[Decimal] = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "price": _str(self.price),
            "quantity": _str(self.quantity),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReceiptItem":
        return cls(
            name=data.get("name", ""),
            price=_dec(data.get("price")),
            quantity=_dec(data.get("quantity")),
        )


@dataclass
class ExtractedReceipt:
    """
    CANONICAL extracted receipt (SSOT).

    confidence_score is always on a 0-100 scale. review_reason is the
    human-readable join of review_reasons.
    """

    engine_id: EngineId
    confidence_score: float

    store_name: Optional[str] = None
    date: Optional[str] = None  # ISO format YYYY-MM-DD
    items: list[ReceiptItem] = field(default_factory=list)
    subtotal: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    total: Optional[Decimal] = None

    # Review decision
    needs_review: bool = False
    review_reason: Optional[str] = None
    review_reasons: list[str] = field(default_factory=list)

    # True when this result came from the fallback engine
    used_fallback: bool = False
    processed_at: str = ""

    @property
    def item_count(self) -> int:
        return len(self.items)

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON storage."""
        return {
            "store_name": self.store_name,
            "date": self.date,
            "items": [item.to_dict() for item in self.items],
            "item_count": self.item_count,
            "subtotal": _str(self.subtotal),
            "tax": _str(self.tax),
            "total": _str(self.total),
            "confidence_score": self.confidence_score,
            "engine_id": self.engine_id.value,
            "needs_review": self.needs_review,
            "review_reason": self.review_reason,
            "review_reasons": list(self.review_reasons),
            "used_fallback": self.used_fallback,
            "processed_at": self.processed_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExtractedReceipt":
        """Deserialize from dictionary."""
        return cls(
            engine_id=EngineId(data["engine_id"]),
            confidence_score=float(data.get("confidence_score", 0.0)),
            store_name=data.get("store_name"),
            date=data.get("date"),
            items=[ReceiptItem.from_dict(item) for item in data.get("items", [])],
            subtotal=_dec(data.get("subtotal")),
            tax=_dec(data.get("tax")),
            total=_dec(data.get("total")),
            needs_review=bool(data.get("needs_review", False)),
            review_reason=data.get("review_reason"),
            review_reasons=list(data.get("review_reasons", [])),
            used_fallback=bool(data.get("used_fallback", False)),
            processed_at=data.get("processed_at", ""),
        )


@dataclass
class ReceiptFileHandle:
    """
    A receipt upload sitting in temp storage.

    Created on upload; either promoted to a PermanentReceiptFile bound to
    one transaction, or purged by the temp janitor.
    """

    temp_id: str
    original_name: str
    mime_type: str
    size_bytes: int
    storage_ref: str
    uploaded_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return {
            "temp_id": self.temp_id,
            "original_name": self.original_name,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "storage_ref": self.storage_ref,
            "uploaded_at": self.uploaded_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReceiptFileHandle":
        return cls(
            temp_id=data["temp_id"],
            original_name=data["original_name"],
            mime_type=data["mime_type"],
            size_bytes=int(data["size_bytes"]),
            storage_ref=data["storage_ref"],
            uploaded_at=data.get("uploaded_at") or utc_now_iso(),
        )


@dataclass
class PermanentReceiptFile:
    """A receipt file moved to permanent storage."""

    temp_id: str
    filename: str
    original_name: str
    mime_type: str
    size_bytes: int
    storage_path: str
    promoted_at: str = field(default_factory=utc_now_iso)

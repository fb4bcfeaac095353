"""
Normalization of raw engine results into the canonical ExtractedReceipt.

This is the only place where engine-reported strings become typed values:
amounts lose currency symbols and separators, dates become ISO, item
prices and quantities become Decimal. The review decision is NOT made here.
"""

import logging
import re
from datetime import date as date_type
from decimal import Decimal
from typing import Any, Optional

from dateutil import parser as date_parser

from ..schemas.amounts import parse_money, quantize_amount
from ..schemas.receipt import (
    EngineId,
    ExtractedReceipt,
    RawEngineResult,
    ReceiptItem,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Dates outside this range are OCR noise
MIN_YEAR = 1990
MAX_YEAR = 2100


def normalize_date(raw: Optional[str]) -> Optional[str]:
    """Convert an engine date string to YYYY-MM-DD.

    Dotted dates (18.11.2024) are read day-first, everything else
    month-first, matching how receipts print them.

    Returns:
        ISO date string or None when the value is not a plausible date
    """
    if not raw:
        return None
    text = raw.strip()
    if not text:
        return None

    try:
        if _ISO_DATE_RE.match(text):
            parsed = date_type.fromisoformat(text)
        else:
            dayfirst = "." in text and not re.search(r"[A-Za-z]", text)
            parsed = date_parser.parse(text, dayfirst=dayfirst, fuzzy=True).date()
    except (ValueError, OverflowError) as e:
        logger.debug("Unparseable receipt date %r: %s", text, e)
        return None

    if not MIN_YEAR <= parsed.year <= MAX_YEAR:
        return None
    return parsed.isoformat()


def normalize_amount(raw: Any) -> Optional[Decimal]:
    """Parse a total/subtotal/tax value into a positive, cent-rounded Decimal."""
    parsed = parse_money(raw)
    if parsed is None:
        return None
    return quantize_amount(abs(parsed))


def normalize_items(raw_items: list[dict[str, Any]]) -> list[ReceiptItem]:
    items: list[ReceiptItem] = []
    for raw in raw_items:
        name = " ".join(str(raw.get("name") or "").split())
        if not name:
            continue

        price = parse_money(raw.get("price"))
        quantity = parse_money(raw.get("quantity"))
        items.append(
            ReceiptItem(
                name=name,
                price=quantize_amount(price) if price is not None else None,
                quantity=quantity,
            )
        )
    return items


def normalize_store_name(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    name = " ".join(raw.split())
    return name[:100] or None


def normalize(
    raw: RawEngineResult,
    engine_id: EngineId,
    confidence_score: float,
    used_fallback: bool = False,
) -> ExtractedReceipt:
    """
    Build the canonical receipt from a raw engine result.

    Args:
        raw: Raw values from an adapter
        engine_id: Engine that produced them
        confidence_score: Resolved confidence (0-100), already defaulted
        used_fallback: Whether the result came from the fallback engine

    Returns:
        ExtractedReceipt without a review decision
    """
    return ExtractedReceipt(
        engine_id=engine_id,
        confidence_score=round(float(confidence_score), 2),
        store_name=normalize_store_name(raw.vendor),
        date=normalize_date(raw.date),
        items=normalize_items(raw.items),
        subtotal=normalize_amount(raw.subtotal),
        tax=normalize_amount(raw.tax),
        total=normalize_amount(raw.total),
        used_fallback=used_fallback,
        processed_at=utc_now_iso(),
    )

"""
OCR text heuristics.

Recovers receipt fields from plain OCR text using pattern matching.
Used by the offline engine, which only produces text.

Supported formats:
- Dates: Y-m-d, d.m.Y, d.m.y, m/d/Y, d. Month Y (German), Month d, Y
- Amounts: 1.234,56 (German), 1,234.56 (English), with or without currency
- Totals: lines labelled Total/Summe/Gesamt, Subtotal/Zwischensumme, Tax/MwSt/VAT
"""

import re
from datetime import datetime
from typing import Any, Optional

from ..schemas.receipt import RawEngineResult

# Date patterns (ordered by specificity)
DATE_PATTERNS = [
    # ISO format: 2024-11-18
    (r"\b(\d{4})-(\d{2})-(\d{2})\b", "%Y-%m-%d", "iso"),
    # German format: 18.11.2024
    (r"\b(\d{1,2})\.(\d{1,2})\.(\d{4})\b", "%d.%m.%Y", "german_dot"),
    # German format: 18.11.24 (2-digit year)
    (r"\b(\d{1,2})\.(\d{1,2})\.(\d{2})\b", "%d.%m.%y", "german_dot_short"),
    # US slash format: 11/18/2024
    (r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b", "%m/%d/%Y", "us_slash"),
    # US slash format: 11/18/24
    (r"\b(\d{1,2})/(\d{1,2})/(\d{2})\b", "%m/%d/%y", "us_slash_short"),
    # German month names
    (
        r"\b(\d{1,2})\.\s*(Januar|Februar|März|April|Mai|Juni|Juli|August|September|Oktober|November|Dezember)\s*(\d{4})\b",
        None,
        "german_month",
    ),
    # English month names: Nov 18, 2024
    (r"\b(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+(\d{1,2}),?\s+(\d{4})\b", None, "english_month"),
]

GERMAN_MONTHS = {
    "januar": 1,
    "februar": 2,
    "märz": 3,
    "april": 4,
    "mai": 5,
    "juni": 6,
    "juli": 7,
    "august": 8,
    "september": 9,
    "oktober": 10,
    "november": 11,
    "dezember": 12,
}

ENGLISH_MONTHS = {
    name: i
    for i, name in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"],
        start=1,
    )
}

# One amount token: optional currency, German or English separators
AMOUNT_TOKEN = r"[-]?(?:[$€£]\s*)?\d+(?:[.,]\d{3})*[.,]\d{2}(?:\s*(?:EUR|USD|€|\$))?-?"

_AMOUNT_AT_END_RE = re.compile(rf"({AMOUNT_TOKEN})\s*[A-Z]?\s*$")

# Labelled totals; checked in this order for each line
SUBTOTAL_KEYWORDS = re.compile(r"\b(?:sub\s*-?\s*total|zwischensumme|netto)\b", re.IGNORECASE)
TAX_KEYWORDS = re.compile(r"\b(?:tax|vat|mwst|ust|gst|sales\s+tax)\b", re.IGNORECASE)
TOTAL_KEYWORDS = re.compile(
    r"\b(?:total|summe|gesamt|gesamtbetrag|endbetrag|amount\s+due|balance\s+due|zu\s+zahlen)\b",
    re.IGNORECASE,
)

# Lines that are never items
SKIP_KEYWORDS = re.compile(
    r"\b(?:total|subtotal|summe|zwischensumme|gesamt\w*|endbetrag|tax|mwst|vat|change|cash"
    r"|card|visa|mastercard|balance|rückgeld|thank)\b",
    re.IGNORECASE,
)

# "2 x ITEM NAME    9.98" / "ITEM NAME   4.99"
ITEM_LINE_RE = re.compile(
    rf"^(?:(?P<qty>\d{{1,2}})\s*[xX*]\s+)?(?P<name>[^\d\s].*?)\s{{2,}}(?P<price>{AMOUNT_TOKEN})\s*[A-Z]?\s*$"
)

# Company suffixes hinting at a store header line
LEGAL_FORMS = ["GmbH", "AG", "KG", "e.K.", "OHG", "Ltd", "Inc", "LLC"]
SHOP_WORDS = ["Store", "Market"]

# Whole words only; legal forms are case-sensitive
_LEGAL_FORM_RE = re.compile(
    r"(?<!\w)(?:" + "|".join(re.escape(s) for s in LEGAL_FORMS) + r")(?!\w)"
)
_SHOP_WORD_RE = re.compile(
    r"(?<!\w)(?:" + "|".join(re.escape(s) for s in SHOP_WORDS) + r")(?!\w)",
    re.IGNORECASE,
)


def parse_date_match(match: re.Match, date_format: Optional[str], pattern_type: str) -> Optional[str]:
    """Parse a date regex match into YYYY-MM-DD format."""
    try:
        if pattern_type == "german_month":
            day = int(match.group(1))
            month = GERMAN_MONTHS.get(match.group(2).lower())
            year = int(match.group(3))
            if month:
                return datetime(year, month, day).strftime("%Y-%m-%d")
        elif pattern_type == "english_month":
            month = ENGLISH_MONTHS.get(match.group(1).lower()[:3])
            day = int(match.group(2))
            year = int(match.group(3))
            if month:
                return datetime(year, month, day).strftime("%Y-%m-%d")
        elif date_format:
            parsed = datetime.strptime(match.group(0), date_format)
            return parsed.strftime("%Y-%m-%d")
    except (ValueError, AttributeError):
        pass
    return None


def extract_date(content: str) -> Optional[dict[str, Any]]:
    """Find the most likely receipt date."""
    candidates: list[dict[str, Any]] = []

    for priority, (pattern, date_format, pattern_type) in enumerate(DATE_PATTERNS):
        for match in re.finditer(pattern, content, re.IGNORECASE):
            parsed_date = parse_date_match(match, date_format, pattern_type)
            if not parsed_date:
                continue

            # Dates near a date keyword are preferred
            context = content[max(0, match.start() - 30) : match.start()].lower()
            near_keyword = any(kw in context for kw in ("datum", "date", "belegdatum"))

            candidates.append(
                {
                    "date": parsed_date,
                    "match": match.group(0),
                    "position": match.start(),
                    "pattern_type": pattern_type,
                    "score": (0 if near_keyword else 1, priority, match.start()),
                }
            )

    if not candidates:
        return None

    candidates.sort(key=lambda c: c["score"])
    best = candidates[0]
    best.pop("score")
    return best


def extract_store_name(lines: list[str]) -> Optional[str]:
    """
    Pick the store name from the receipt header.

    Strategy:
    - A line with a company suffix within the first five lines wins
    - Otherwise the first line that is not just digits/punctuation
    """
    header = lines[:5]
    for line in header:
        if _LEGAL_FORM_RE.search(line) or _SHOP_WORD_RE.search(line):
            return line[:100]

    for line in header:
        if len(line) < 3:
            continue
        # Addresses, phone numbers, dates
        if re.match(r"^[\d\s,./:()+\-]+$", line):
            continue
        return line[:100]

    return None


def _amount_at_end(line: str) -> Optional[str]:
    match = _AMOUNT_AT_END_RE.search(line)
    return match.group(1).strip() if match else None


def extract_totals(lines: list[str]) -> dict[str, Optional[str]]:
    """
    Find labelled subtotal, tax and total amounts.

    The first subtotal and tax are kept; for the total the LAST labelled line
    wins (grand total printed after subtotals).
    """
    found: dict[str, Optional[str]] = {"subtotal": None, "tax": None, "total": None}

    for line in lines:
        amount = _amount_at_end(line)
        if amount is None:
            continue

        if SUBTOTAL_KEYWORDS.search(line):
            if found["subtotal"] is None:
                found["subtotal"] = amount
        elif TAX_KEYWORDS.search(line):
            if found["tax"] is None:
                found["tax"] = amount
        elif TOTAL_KEYWORDS.search(line):
            found["total"] = amount

    return found


def extract_items(lines: list[str]) -> list[dict[str, Any]]:
    """Find item lines of the form NAME <2+ spaces> PRICE."""
    items: list[dict[str, Any]] = []

    for line in lines:
        if SKIP_KEYWORDS.search(line):
            continue

        match = ITEM_LINE_RE.match(line)
        if not match:
            continue

        name = match.group("name").strip()
        alpha_count = sum(1 for c in name if c.isalpha())
        if len(name) < 2 or alpha_count < 2:
            continue

        items.append(
            {
                "name": name,
                "price": match.group("price").strip(),
                "quantity": match.group("qty") or "1",
            }
        )

    return items


def parse_receipt_text(content: str, confidence: Optional[float] = None) -> RawEngineResult:
    """
    Parse OCR text into raw receipt fields.

    Args:
        content: Text produced by OCR
        confidence: Engine-reported confidence (0-100), passed through unchanged

    Returns:
        RawEngineResult with raw strings; amounts are not yet parsed
    """
    result = RawEngineResult(confidence=confidence)
    lines = [line.strip() for line in (content or "").splitlines() if line.strip()]
    if not lines:
        return result

    result.vendor = extract_store_name(lines)
    if result.vendor:
        result.raw_matches["vendor"] = result.vendor

    date_result = extract_date(content)
    if date_result:
        result.date = date_result["date"]
        result.raw_matches["date"] = date_result

    totals = extract_totals(lines)
    result.subtotal = totals["subtotal"]
    result.tax = totals["tax"]
    result.total = totals["total"]
    result.raw_matches["totals"] = totals

    result.items = extract_items(lines)

    return result

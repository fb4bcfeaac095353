"""
Money parsing and validation (SSOT).

Every engine reports amounts in its own textual shape ("$1,234.56",
"11,48 EUR", "(4.50)"). This module is the single place that turns such
text into Decimal.

Amount Sign Convention (SSOT):
- Parsed amounts keep their sign; callers decide whether to take abs()
- Persisted transaction amounts are always positive; the transaction type
  (income/expense) carries the direction
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

# Rounding precision for currency amounts
CURRENCY_PRECISION = Decimal("0.01")

# Currency symbols and ISO codes seen on receipts and bank exports
_CURRENCY_RE = re.compile(r"[$€£¥₹]|\b(?:USD|EUR|GBP|CHF|INR|JPY|CAD|AUD)\b", re.IGNORECASE)

# German format: 1.234,56 / 11,48
_GERMAN_RE = re.compile(r"^\d{1,3}(?:\.\d{3})*,\d{1,2}$|^\d+,\d{1,2}$")


class AmountValidationError(Exception):
    """Raised when amount validation fails (SSOT for amount constraints)."""

    pass


def parse_german_amount(amount_str: str) -> Decimal:
    """Parse German format amount (1.234,56) to Decimal."""
    # Remove thousands separators (dots) and convert comma to dot
    cleaned = amount_str.replace(".", "").replace(",", ".")
    return Decimal(cleaned)


def parse_english_amount(amount_str: str) -> Decimal:
    """Parse English format amount (1,234.56) to Decimal."""
    # Remove thousands separators (commas)
    cleaned = amount_str.replace(",", "")
    return Decimal(cleaned)


def parse_money(value: Decimal | int | float | str | None) -> Decimal | None:
    """Parse a monetary value, stripping currency symbols and separators.

    Args:
        value: Raw value as reported by an engine or a file

    Returns:
        Decimal (sign preserved) or None when the value is empty or not numeric

    Examples:
        >>> parse_money("$1,234.56")
        Decimal('1234.56')
        >>> parse_money("11,48 EUR")
        Decimal('11.48')
        >>> parse_money("(4.50)")
        Decimal('-4.50')
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return Decimal(str(value))

    text = _CURRENCY_RE.sub("", str(value)).strip()
    if not text:
        return None

    negative = False
    # Accounting notation: (4.50)
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1].strip()
    if text.startswith("-"):
        negative = True
        text = text[1:].strip()
    elif text.endswith("-"):
        # Trailing minus as printed by some tills: 4.50-
        negative = True
        text = text[:-1].strip()
    elif text.startswith("+"):
        text = text[1:].strip()

    text = text.replace(" ", "").replace("'", "")
    if not text or not re.fullmatch(r"[\d.,]+", text) or not re.search(r"\d", text):
        return None

    try:
        if _GERMAN_RE.match(text):
            amount = parse_german_amount(text)
        elif "," in text and "." in text and text.rfind(",") > text.rfind("."):
            # 1.234,56 with unusual grouping
            amount = parse_german_amount(text)
        else:
            amount = parse_english_amount(text)
    except InvalidOperation:
        return None

    return -amount if negative else amount


def quantize_amount(amount: Decimal) -> Decimal:
    """Round an amount to currency precision."""
    return amount.quantize(CURRENCY_PRECISION, rounding=ROUND_HALF_UP)


def validate_amount(
    amount: Decimal | float | str,
    *,
    field_name: str = "amount",
    allow_zero: bool = False,
) -> Decimal:
    """Validate and normalize a transaction amount.

    Args:
        amount: The amount to validate (Decimal, float, or string)
        field_name: Name for error messages (e.g., "total", "override amount")
        allow_zero: Whether zero is a valid value (default: False)

    Returns:
        Validated Decimal amount, quantized to CURRENCY_PRECISION

    Raises:
        AmountValidationError: If amount is invalid (negative, zero when not allowed, etc.)
    """
    parsed = parse_money(amount)
    if parsed is None:
        raise AmountValidationError(f"{field_name}: Invalid amount format {amount!r}")

    parsed = quantize_amount(parsed)

    if parsed < 0:
        raise AmountValidationError(
            f"{field_name}: Amount must be positive, got {parsed}. "
            f"Use the transaction type (income/expense) to indicate direction."
        )

    if not allow_zero and parsed == 0:
        raise AmountValidationError(f"{field_name}: Amount cannot be zero (got {parsed})")

    return parsed

"""
Tabular transaction-history parser.

Reads exported bank/card history (CSV, TSV or space-aligned text) without
knowing its schema. Expected columns, by position:

    date, description, amount[, category]

Rules:
- Blank lines are dropped; the first remaining line is a header and skipped
- Delimiter per line: comma > tab > runs of 2+ spaces
- Amount: currency symbols/separators stripped, absolute value kept
- Type: expense if the raw amount has a minus sign or the description
  mentions "payment", otherwise income
- Problems are collected per line as ParseError; parsing never raises
"""

import csv
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional

from dateutil import parser as date_parser

from ..schemas.amounts import quantize_amount
from ..schemas.transaction import CandidateTransactionRecord, TransactionType

DEFAULT_CATEGORY_LABEL = "Imported"

_SPACE_RUN_RE = re.compile(r" {2,}")
_AMOUNT_CLEAN_RE = re.compile(r"[^0-9.\-+]")
_PAYMENT_RE = re.compile(r"payment", re.IGNORECASE)


@dataclass
class ParseError:
    """A problem with one input line (collected, never raised)."""

    line_number: int
    raw_line: str
    message: str
    stage: str = "parse"

    def to_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "raw_line": self.raw_line,
            "message": self.message,
            "stage": self.stage,
        }


@dataclass
class ParseResult:
    records: list[CandidateTransactionRecord] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)


class NoValidRecordsError(Exception):
    """Raised when an import yields no usable record at all."""

    def __init__(self, errors: list[ParseError]):
        self.errors = errors
        super().__init__(f"No valid transactions found ({len(errors)} line errors)")


def detect_delimiter(line: str) -> Optional[str]:
    """Delimiter for one line by priority, or None when the line has none."""
    if "," in line:
        return ","
    if "\t" in line:
        return "\t"
    if _SPACE_RUN_RE.search(line.strip()):
        return "  "
    return None


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1].strip()
    return value


def split_fields(line: str) -> list[str]:
    """Split one line into trimmed, unquoted fields."""
    delimiter = detect_delimiter(line)
    if delimiter is None:
        return [_strip_quotes(line)]
    if delimiter == "  ":
        return [_strip_quotes(f) for f in _SPACE_RUN_RE.split(line.strip())]

    # csv keeps quoted fields containing the delimiter together
    row = next(csv.reader([line], delimiter=delimiter, skipinitialspace=True), [])
    return [_strip_quotes(f) for f in row]


def parse_amount(raw: str) -> Optional[Decimal]:
    """Positive magnitude of an amount field; None if not a non-zero number."""
    cleaned = _AMOUNT_CLEAN_RE.sub("", raw)
    if not cleaned:
        return None
    try:
        amount = abs(Decimal(cleaned))
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    # sub-cent amounts round to zero
    amount = quantize_amount(amount)
    if amount == 0:
        return None
    return amount


def infer_type(raw_amount: str, description: str) -> TransactionType:
    if "-" in raw_amount or _PAYMENT_RE.search(description):
        return TransactionType.EXPENSE
    return TransactionType.INCOME


class TabularImportParser:
    """Turns delimited text into candidate transaction records."""

    def __init__(self, default_category_label: str = DEFAULT_CATEGORY_LABEL):
        self.default_category_label = default_category_label

    def parse(self, text: str, owner_id: Optional[str] = None) -> ParseResult:
        """
        Parse exported history text.

        Args:
            text: Whole file content
            owner_id: Owner stamped onto every record

        Returns:
            ParseResult with records and per-line errors (line numbers are
            physical, 1-based, counting blank lines)
        """
        result = ParseResult()
        numbered = [
            (number, line.rstrip("\r"))
            for number, line in enumerate((text or "").split("\n"), start=1)
            if line.strip()
        ]

        # First non-blank line is the header
        for line_number, line in numbered[1:]:
            record = self._parse_line(line_number, line, owner_id, result.errors)
            if record is not None:
                result.records.append(record)

        return result

    def _parse_line(
        self,
        line_number: int,
        line: str,
        owner_id: Optional[str],
        errors: list[ParseError],
    ) -> Optional[CandidateTransactionRecord]:
        fields = split_fields(line)
        if len(fields) < 3:
            errors.append(
                ParseError(line_number, line, f"Expected at least 3 fields, got {len(fields)}")
            )
            return None

        raw_date, description, raw_amount = fields[0], fields[1], fields[2]

        try:
            parsed_date = date_parser.parse(raw_date).date()
        except (ValueError, OverflowError):
            errors.append(ParseError(line_number, line, f"Invalid date: {raw_date!r}"))
            return None

        amount = parse_amount(raw_amount)
        if amount is None:
            errors.append(ParseError(line_number, line, f"Invalid amount: {raw_amount!r}"))
            return None

        category_hint = fields[3] if len(fields) > 3 and fields[3] else self.default_category_label

        return CandidateTransactionRecord(
            raw_line=line,
            date=parsed_date,
            description=description,
            amount=amount,
            inferred_type=infer_type(raw_amount, description),
            category_name_hint=category_hint,
            source_line_number=line_number,
            owner_id=owner_id,
        )

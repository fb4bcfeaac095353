"""
Importers for exported transaction history.
"""

from .tabular import (
    NoValidRecordsError,
    ParseError,
    ParseResult,
    TabularImportParser,
)

__all__ = [
    "NoValidRecordsError",
    "ParseError",
    "ParseResult",
    "TabularImportParser",
]

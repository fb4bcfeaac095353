"""
Receipt & statement intake → normalized transactions

A deterministic, testable pipeline that turns photographed receipts and
exported transaction histories into normalized finance transactions, with
two-engine extraction fallback, confidence-based review flags, and
duplicate-free category resolution.
"""

__version__ = "0.1.0"

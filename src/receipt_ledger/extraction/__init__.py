"""
Receipt extraction: engine orchestration and normalization.
"""

from .normalizer import normalize, normalize_amount, normalize_date
from .orchestrator import ExtractionFailure, ExtractionOrchestrator, ExtractionTimeout

__all__ = [
    "ExtractionFailure",
    "ExtractionOrchestrator",
    "ExtractionTimeout",
    "normalize",
    "normalize_amount",
    "normalize_date",
]

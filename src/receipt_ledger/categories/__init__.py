"""
Category resolution.
"""

from .resolver import (
    CategoryConflictError,
    CategoryNotFoundError,
    CategoryResolver,
    compatible_types,
    ensure_category_compatible,
)

__all__ = [
    "CategoryConflictError",
    "CategoryNotFoundError",
    "CategoryResolver",
    "compatible_types",
    "ensure_category_compatible",
]

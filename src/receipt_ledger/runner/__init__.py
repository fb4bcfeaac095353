"""
CLI runner module.

Provides commands:
- extract: Extract a receipt without saving anything
- upload: Extract and file an expense transaction
- import: Import exported transaction history
- engines: List extraction engines
- seed-categories: Install the shared default categories
- cleanup: Purge stale temp uploads
- status: Show store statistics
- init-config: Write a default config file
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]

"""
Repository layer for Folio.

All SQL lives here and ONLY here. No database access outside this module.
"""

from backend.repos.page_repo import PageRepo
from backend.repos.table_repo import TableRepo

__all__ = [
    "TableRepo",
    "PageRepo",
]

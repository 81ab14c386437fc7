"""
Folio Kernel — tables, views and pages without I/O of its own.

Components:
  column_types  — type registry: operators, parsers, formatters, templates
  table_ops     — (table, intent) → table  (pure, copy-on-write)
  query         — (rows, filters, sort) → displayed rows  (pure)
  blocks        — (blocks, intent) → blocks  (pure)
  history       — undo/redo snapshot stack
  debounce      — quiet-period commit timer for cell editors
  stores        — DatabaseStore / PageStore: two-phase mutations over a backend
  storage       — backend interfaces plus in-memory implementations
"""

from portal.kernel.database_store import DatabaseStore
from portal.kernel.debounce import Debouncer, cell_debouncer
from portal.kernel.history import BlockHistory
from portal.kernel.page_store import PageStore, slugify
from portal.kernel.query import derive_view
from portal.kernel.storage import (
    BackendError,
    MemoryBackend,
    MemoryObjectStorage,
    ObjectStorage,
    PageBackend,
    TableBackend,
)
from portal.kernel.types import ColumnType, ErrorKind, FilterCondition, MutationResult

__all__ = [
    "DatabaseStore",
    "PageStore",
    "derive_view",
    "slugify",
    "BlockHistory",
    "Debouncer",
    "cell_debouncer",
    "TableBackend",
    "PageBackend",
    "ObjectStorage",
    "BackendError",
    "MemoryBackend",
    "MemoryObjectStorage",
    "ColumnType",
    "ErrorKind",
    "FilterCondition",
    "MutationResult",
]

"""
Per-user store registry.

The HTTP API drives the same stores a single-user client would: one
DatabaseStore and one PageStore per authenticated user, created on first
use and hydrated from the backend once. Later requests from that user reuse
the hydrated stores.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from portal.kernel.database_store import DatabaseStore
from portal.kernel.debounce import Debouncer, cell_debouncer
from portal.kernel.page_store import PageStore
from portal.kernel.storage import BackendError, ObjectStorage, PageBackend, TableBackend

logger = logging.getLogger(__name__)


@dataclass
class UserWorkspace:
    user_id: str
    tables: DatabaseStore
    pages: PageStore
    pending_cells: dict[tuple[str, str, str], Debouncer] = field(default_factory=dict)

    def cell_writer(self, table_id: str, row_id: str, column_id: str, delay: float) -> Debouncer:
        """The debouncer for one cell, created on first edit and dropped once it commits."""
        key = (table_id, row_id, column_id)
        writer = self.pending_cells.get(key)
        if writer is None:

            def settled() -> None:
                if self.pending_cells.get(key) is writer and not writer.pending:
                    del self.pending_cells[key]

            writer = cell_debouncer(self.tables, table_id, row_id, column_id, delay=delay, on_commit=settled)
            self.pending_cells[key] = writer
        return writer

    def drop_cells(
        self,
        table_id: str,
        row_ids: Iterable[str] | None = None,
        column_id: str | None = None,
    ) -> int:
        """
        Cancel queued edits for cells that no longer exist.

        With neither row_ids nor column_id, every queued edit in the table is
        dropped. Returns how many writers were removed.
        """
        rows = set(row_ids) if row_ids is not None else None
        doomed = [
            key
            for key in self.pending_cells
            if key[0] == table_id
            and (rows is None or key[1] in rows)
            and (column_id is None or key[2] == column_id)
        ]
        for key in doomed:
            self.pending_cells.pop(key).cancel()
        return len(doomed)

    async def flush_cells(self) -> int:
        """Commit every pending cell edit now. Returns how many were pending."""
        writers = list(self.pending_cells.values())
        self.pending_cells.clear()
        pending = sum(1 for w in writers if w.pending)
        for writer in writers:
            await writer.flush()
        return pending


class Workspace:
    """Lazily created, hydrated stores keyed by user id."""

    def __init__(
        self,
        table_backend: TableBackend,
        page_backend: PageBackend,
        storage: ObjectStorage | None = None,
    ) -> None:
        self._table_backend = table_backend
        self._page_backend = page_backend
        self._storage = storage
        self._workspaces: dict[str, UserWorkspace] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def for_user(self, user_id: str) -> UserWorkspace:
        """
        Get the user's stores, loading their tables and pages on first use.

        Raises:
            BackendError: If the initial load fails. Nothing is cached in that case.
        """
        existing = self._workspaces.get(user_id)
        if existing is not None:
            return existing

        lock = self._locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            existing = self._workspaces.get(user_id)
            if existing is not None:
                return existing

            workspace = UserWorkspace(
                user_id=user_id,
                tables=DatabaseStore(self._table_backend, user_id),
                pages=PageStore(self._page_backend, user_id, storage=self._storage),
            )
            for result in (await workspace.tables.fetch_user_tables(), await workspace.pages.fetch_pages()):
                if not result.ok:
                    raise BackendError(result.error or "Failed to load workspace")

            self._workspaces[user_id] = workspace
            logger.info(
                "workspace: hydrated user %s (%d tables, %d pages)",
                user_id,
                len(workspace.tables.tables),
                len(workspace.pages.pages),
            )
            return workspace

    async def flush_all(self) -> None:
        """Commit queued cell edits for every cached user."""
        for workspace in list(self._workspaces.values()):
            await workspace.flush_cells()

"""
Folio Kernel — Database Store

The aggregate root for a user's tables: every table, the active table, and
per-table row selection. One instance per session, constructor-injected with
a TableBackend and a source for the current user id.

Every mutation is two-phase:
  1. apply a local patch synchronously (callers see it immediately)
  2. await the backend

Structural operations (tables, columns, rows) revert exactly their own patch
if the backend fails, record `error`, and return a failed MutationResult.
Cell edits keep the new content no matter what: a failed write is logged and
nothing is reverted, so a flaky network never eats a keystroke.

Rollbacks apply to the *current* state, not a saved copy, so a concurrent
edit to the same table survives. If the table itself disappeared while the
call was in flight, the rollback is skipped.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import replace
from typing import Any, TypeVar

from portal.kernel import table_ops
from portal.kernel.column_types import formats_for, get_predefined_attribute
from portal.kernel.mutations import Refused, UserIdSource, guarded, ok, user_id_getter
from portal.kernel.query import derive_view
from portal.kernel.storage import BackendError, TableBackend
from portal.kernel.types import (
    ColumnType,
    ErrorKind,
    FilterCondition,
    MutationResult,
    Row,
    SortDirection,
    Table,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DatabaseStore:
    """Client-side state for tables, columns, rows and cells."""

    def __init__(self, backend: TableBackend, current_user_id: UserIdSource = None) -> None:
        self._backend = backend
        self._current_user_id = user_id_getter(current_user_id)
        self.tables: dict[str, Table] = {}
        self.active_table_id: str | None = None
        self.selected_rows: dict[str, list[str]] = {}
        self.is_loading = False
        self.error: str | None = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_user(self) -> str:
        user_id = self._current_user_id()
        if not user_id:
            raise Refused(ErrorKind.NOT_AUTHENTICATED, "Not authenticated")
        return str(user_id)

    def _require_table(self, table_id: str) -> Table:
        table = self.tables.get(table_id)
        if table is None:
            raise Refused(ErrorKind.NOT_FOUND, f"Table not found: {table_id}")
        return table

    def _patch_table(self, table_id: str, undo: Callable[[Table], Table]) -> Callable[[], None]:
        """Rollback that re-applies `undo` to whatever the table looks like now."""

        def rollback() -> None:
            table = self.tables.get(table_id)
            if table is None:
                return
            try:
                self.tables[table_id] = undo(table)
            except (KeyError, IndexError):
                logger.info("database_store: rollback skipped, table %s changed underneath", table_id)

        return rollback

    async def _persist(self, call: Awaitable[T], message: str, rollback: Callable[[], None]) -> T:
        """Await a backend call; on failure roll the local patch back and refuse."""
        try:
            return await call
        except BackendError as e:
            logger.warning("database_store: %s: %s", message, e)
            rollback()
            raise Refused(ErrorKind.BACKEND, f"{message}: {e}") from e

    def _validate_column(
        self,
        column_type: ColumnType,
        metadata: dict[str, Any],
        requested: dict[str, Any] | None = None,
    ) -> None:
        """Check a column definition. Only a format in `requested` (default: all of metadata) is checked."""
        if column_type == ColumnType.SELECT and not metadata.get("options"):
            raise Refused(ErrorKind.INVALID, "Select columns need at least one option")
        fmt = (metadata if requested is None else requested).get("format")
        allowed = formats_for(column_type)
        if fmt is not None and allowed and fmt not in allowed:
            raise Refused(ErrorKind.INVALID, f"Unknown {column_type.value} format: {fmt}")

    def _done(self, value: Any = None) -> MutationResult:
        self.error = None
        return ok(value)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def active_table(self) -> Table | None:
        if self.active_table_id is None:
            return None
        return self.tables.get(self.active_table_id)

    def selected(self, table_id: str) -> list[str]:
        return list(self.selected_rows.get(table_id, []))

    def view(
        self,
        table_id: str,
        filters: Iterable[FilterCondition] = (),
        sort_column_id: str | None = None,
        sort_direction: SortDirection | str = SortDirection.ASC,
    ) -> list[Row]:
        """Filtered, sorted rows for a table. Unknown tables give an empty list."""
        table = self.tables.get(table_id)
        if table is None:
            return []
        return derive_view(table.rows, filters, sort_column_id, sort_direction, columns=table.columns)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @guarded
    async def fetch_user_tables(self) -> MutationResult:
        """Replace local state with everything the backend has for this user."""
        user_id = self._require_user()
        self.is_loading = True
        self.error = None
        try:
            tables = await self._backend.load_tables(user_id)
        except BackendError as e:
            logger.exception("database_store: failed to load tables for user %s", user_id)
            raise Refused(ErrorKind.BACKEND, f"Failed to load tables: {e}") from e
        finally:
            self.is_loading = False

        self.tables = {t.id: t for t in tables}
        self.active_table_id = tables[0].id if tables else None
        self.selected_rows = {t.id: [] for t in tables}
        logger.info("database_store: loaded %d tables for user %s", len(tables), user_id)
        return ok(list(self.tables))

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    @guarded
    async def create_table(self, name: str | None = None) -> MutationResult:
        """Create a table with the default columns and one empty row. Value: the new id."""
        user_id = self._require_user()
        table = table_ops.new_table(name)
        previous_active = self.active_table_id

        self.tables = {table.id: table, **self.tables}
        self.active_table_id = table.id
        self.selected_rows[table.id] = []

        def rollback() -> None:
            self.tables.pop(table.id, None)
            self.selected_rows.pop(table.id, None)
            if self.active_table_id == table.id:
                self.active_table_id = previous_active if previous_active in self.tables else None

        stored = await self._persist(
            self._backend.insert_table(user_id, table),
            "Failed to create table",
            rollback,
        )
        if table.id in self.tables:
            self.tables[table.id] = replace(self.tables[table.id], created_at=stored.created_at)
        return self._done(table.id)

    @guarded
    async def rename_table(self, table_id: str, name: str | None) -> MutationResult:
        user_id = self._require_user()
        table = self._require_table(table_id)
        previous_name = table.name
        renamed = table_ops.rename_table(table, name)
        self.tables[table_id] = renamed

        await self._persist(
            self._backend.rename_table(user_id, table_id, renamed.name),
            "Failed to rename table",
            self._patch_table(table_id, lambda t: replace(t, name=previous_name)),
        )
        return self._done(renamed.name)

    @guarded
    async def delete_table(self, table_id: str) -> MutationResult:
        """Delete a table and everything in it. The first remaining table becomes active."""
        user_id = self._require_user()
        table = self._require_table(table_id)
        order = list(self.tables)
        selection = self.selected_rows.pop(table_id, [])
        was_active = self.active_table_id == table_id

        del self.tables[table_id]
        if was_active:
            self.active_table_id = next(iter(self.tables), None)
        fallback_active = self.active_table_id

        def rollback() -> None:
            if table_id in self.tables:
                return
            restored = {**self.tables, table_id: table}
            position = {tid: i for i, tid in enumerate(order)}
            self.tables = dict(
                sorted(restored.items(), key=lambda item: position.get(item[0], len(order)))
            )
            self.selected_rows[table_id] = selection
            if was_active and self.active_table_id == fallback_active:
                self.active_table_id = table_id

        await self._persist(
            self._backend.delete_table(user_id, table_id),
            "Failed to delete table",
            rollback,
        )
        return self._done()

    def set_active_table(self, table_id: str | None) -> MutationResult:
        if table_id is not None and table_id not in self.tables:
            return MutationResult(ok=False, error=f"Table not found: {table_id}", kind=ErrorKind.NOT_FOUND)
        self.active_table_id = table_id
        return ok(table_id)

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    @guarded
    async def add_column(self, table_id: str, definition: dict[str, Any] | None = None) -> MutationResult:
        """
        Append a column (default: text, "New Column") and back-fill empty cells.
        Value: the new Column.
        """
        user_id = self._require_user()
        table = self._require_table(table_id)
        definition = definition or {}
        column = table_ops.new_column(
            definition.get("name"),
            definition.get("type") or ColumnType.TEXT,
            definition.get("metadata"),
        )
        self._validate_column(column.type, column.metadata)

        updated = table_ops.add_column(table, column)
        self.tables[table_id] = updated
        cells = {row.id: row.cells[column.id] for row in updated.rows}

        await self._persist(
            self._backend.insert_column(user_id, table_id, column, len(updated.columns) - 1, cells),
            "Failed to add column",
            self._patch_table(table_id, lambda t: table_ops.delete_column(t, column.id)),
        )
        return self._done(column)

    async def add_predefined_column(self, table_id: str, attribute_id: str) -> MutationResult:
        """Add a column from one of the predefined attribute templates."""
        attribute = get_predefined_attribute(attribute_id)
        if attribute is None:
            message = f"Unknown attribute: {attribute_id}"
            self.error = message
            return MutationResult(ok=False, error=message, kind=ErrorKind.NOT_FOUND)
        return await self.add_column(
            table_id,
            {"name": attribute.name, "type": attribute.type, "metadata": copy.deepcopy(attribute.metadata)},
        )

    @guarded
    async def update_column(self, table_id: str, column_id: str, updates: dict[str, Any]) -> MutationResult:
        """
        Merge name/type/metadata into a column. Metadata merges key by key.
        The new type is stamped on every cell of the column; content is not converted.
        """
        user_id = self._require_user()
        table = self._require_table(table_id)
        column = table.get_column(column_id)
        if column is None:
            raise Refused(ErrorKind.NOT_FOUND, f"Column not found: {column_id}")

        merged = table_ops.merge_column(column, updates)
        if updates.get("type") is not None or updates.get("metadata"):
            self._validate_column(merged.type, merged.metadata, updates.get("metadata") or {})

        self.tables[table_id] = table_ops.replace_column(table, merged)

        await self._persist(
            self._backend.update_column(user_id, table_id, merged),
            "Failed to update column",
            self._patch_table(table_id, lambda t: table_ops.replace_column(t, column)),
        )
        return self._done(merged)

    @guarded
    async def delete_column(self, table_id: str, column_id: str) -> MutationResult:
        """Remove a column and its cells. Deleting an absent column succeeds without a remote call."""
        user_id = self._require_user()
        table = self._require_table(table_id)
        column = table.get_column(column_id)
        if column is None:
            return ok()

        index = table.column_ids().index(column_id)
        cells = {row.id: row.cells[column_id] for row in table.rows if column_id in row.cells}
        self.tables[table_id] = table_ops.delete_column(table, column_id)

        await self._persist(
            self._backend.delete_column(user_id, table_id, column_id),
            "Failed to delete column",
            self._patch_table(table_id, lambda t: table_ops.restore_column(t, index, column, cells)),
        )
        return self._done()

    @guarded
    async def reorder_columns(self, table_id: str, from_index: int, to_index: int) -> MutationResult:
        user_id = self._require_user()
        table = self._require_table(table_id)
        previous_order = table.column_ids()
        try:
            reordered = table_ops.reorder_columns(table, from_index, to_index)
        except IndexError as e:
            raise Refused(ErrorKind.INVALID, str(e)) from e
        self.tables[table_id] = reordered

        await self._persist(
            self._backend.reorder_columns(user_id, table_id, reordered.column_ids()),
            "Failed to reorder columns",
            self._patch_table(table_id, lambda t: table_ops.order_columns(t, previous_order)),
        )
        return self._done(reordered.column_ids())

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    @guarded
    async def add_row(self, table_id: str) -> MutationResult:
        """Append a row with one empty cell per column. Value: the new Row."""
        user_id = self._require_user()
        table = self._require_table(table_id)
        row = table_ops.new_row(table.columns)
        self.tables[table_id] = table_ops.add_row(table, row)

        await self._persist(
            self._backend.insert_row(user_id, table_id, row),
            "Failed to add row",
            self._patch_table(table_id, lambda t: table_ops.delete_rows(t, [row.id])),
        )
        return self._done(row)

    async def delete_row(self, table_id: str, row_id: str) -> MutationResult:
        return await self.delete_multiple_rows(table_id, [row_id])

    @guarded
    async def delete_multiple_rows(self, table_id: str, row_ids: Iterable[str]) -> MutationResult:
        """
        Delete rows as one logical operation: one local update, one remote call.
        Deleted ids are pruned from the table's selection. Unknown ids are ignored.
        """
        user_id = self._require_user()
        table = self._require_table(table_id)
        wanted = set(row_ids)
        removed = [(i, row) for i, row in enumerate(table.rows) if row.id in wanted]
        if not removed:
            raise Refused(ErrorKind.NOT_FOUND, "Row not found")
        doomed = [row.id for _, row in removed]

        previous_selection = self.selected(table_id)
        self.tables[table_id] = table_ops.delete_rows(table, doomed)
        self.selected_rows[table_id] = [r for r in previous_selection if r not in wanted]

        restore_table = self._patch_table(table_id, lambda t: table_ops.restore_rows(t, removed))

        def rollback() -> None:
            restore_table()
            if table_id in self.tables:
                current = self.selected_rows.get(table_id, [])
                pruned = [r for r in previous_selection if r in wanted and r not in current]
                self.selected_rows[table_id] = current + pruned

        await self._persist(
            self._backend.delete_rows(user_id, table_id, doomed),
            "Failed to delete rows",
            rollback,
        )
        return self._done(doomed)

    # ------------------------------------------------------------------
    # Cells
    # ------------------------------------------------------------------

    @guarded
    async def update_cell(self, table_id: str, row_id: str, column_id: str, value: str) -> MutationResult:
        """
        Replace a cell's content. Local state changes before the remote call;
        a failed write is logged and the new content is kept.
        """
        user_id = self._require_user()
        table = self._require_table(table_id)
        if table.get_column(column_id) is None:
            raise Refused(ErrorKind.NOT_FOUND, f"Column not found: {column_id}")
        if table.get_row(row_id) is None:
            raise Refused(ErrorKind.NOT_FOUND, f"Row not found: {row_id}")

        updated = table_ops.update_cell(table, row_id, column_id, "" if value is None else str(value))
        self.tables[table_id] = updated
        cell = updated.get_row(row_id).cells[column_id]

        try:
            await self._backend.upsert_cell(user_id, table_id, row_id, column_id, cell)
        except BackendError as e:
            logger.warning(
                "database_store: failed to save cell %s/%s in table %s, keeping local value: %s",
                row_id,
                column_id,
                table_id,
                e,
            )
            return MutationResult(ok=True, value=cell, error=str(e), kind=ErrorKind.BACKEND)
        return ok(cell)

    # ------------------------------------------------------------------
    # Selection (local only)
    # ------------------------------------------------------------------

    def toggle_row_selection(self, table_id: str, row_id: str) -> MutationResult:
        if table_id not in self.tables:
            return MutationResult(ok=False, error=f"Table not found: {table_id}", kind=ErrorKind.NOT_FOUND)
        if self.tables[table_id].get_row(row_id) is None:
            return MutationResult(ok=False, error=f"Row not found: {row_id}", kind=ErrorKind.NOT_FOUND)
        current = self.selected(table_id)
        if row_id in current:
            current.remove(row_id)
        else:
            current.append(row_id)
        self.selected_rows[table_id] = current
        return ok(list(current))

    def clear_selection(self, table_id: str) -> None:
        if table_id in self.tables:
            self.selected_rows[table_id] = []

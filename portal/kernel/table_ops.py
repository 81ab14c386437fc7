"""
Folio Kernel — Table Aggregate Operations

Pure functions: (table, intent) → new table.

Every function here copies what it touches and never mutates its input, so
the store can keep the previous snapshot around and revert a failed write.
The store is responsible for existence checks; functions that need a column
or row raise KeyError when it is missing.

Invariant kept by every operation: each row holds exactly one cell per
column id, no more and no less.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any
from uuid import uuid4

from portal.kernel.column_types import default_metadata
from portal.kernel.types import (
    DEFAULT_COLUMN_NAME,
    DEFAULT_TABLE_COLUMNS,
    DEFAULT_TABLE_NAME,
    Cell,
    Column,
    ColumnType,
    Row,
    Table,
)

# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------


def new_id() -> str:
    return str(uuid4())


def coerce_name(name: str | None, default: str) -> str:
    """Blank names are replaced with a placeholder rather than rejected."""
    cleaned = (name or "").strip()
    return cleaned or default


def new_column(
    name: str | None = None,
    type: ColumnType | str = ColumnType.TEXT,
    metadata: dict[str, Any] | None = None,
) -> Column:
    """Build a column with a fresh id; metadata is layered over the type defaults."""
    column_type = ColumnType.parse(type)
    merged = default_metadata(column_type)
    merged.update(metadata or {})
    return Column(
        id=new_id(),
        name=coerce_name(name, DEFAULT_COLUMN_NAME),
        type=column_type,
        metadata=merged,
    )


def empty_cell(column: Column) -> Cell:
    return Cell(id=new_id(), content="", type=column.type)


def new_row(columns: list[Column]) -> Row:
    return Row(id=new_id(), cells={c.id: empty_cell(c) for c in columns})


def new_table(name: str | None, column_names: tuple[str, ...] = DEFAULT_TABLE_COLUMNS) -> Table:
    """A fresh table with the default text columns and one empty row."""
    columns = [new_column(n) for n in column_names]
    return Table(
        id=new_id(),
        name=coerce_name(name, DEFAULT_TABLE_NAME),
        columns=columns,
        rows=[new_row(columns)],
    )


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------


def rename_table(table: Table, name: str | None) -> Table:
    return replace(table, name=coerce_name(name, DEFAULT_TABLE_NAME))


# ---------------------------------------------------------------------------
# Columns
# ---------------------------------------------------------------------------


def _require_column(table: Table, column_id: str) -> Column:
    column = table.get_column(column_id)
    if column is None:
        raise KeyError(column_id)
    return column


def add_column(table: Table, column: Column) -> Table:
    """Append a column and back-fill an empty cell of its type into every row."""
    rows = [replace(row, cells={**row.cells, column.id: empty_cell(column)}) for row in table.rows]
    return replace(table, columns=[*table.columns, column], rows=rows)


def merge_column(column: Column, updates: dict[str, Any]) -> Column:
    """
    Apply name/type/metadata updates to a column.
    Metadata is merged key by key, never replaced wholesale.
    """
    merged = replace(column, metadata=dict(column.metadata))
    if "name" in updates and updates["name"] is not None:
        merged.name = coerce_name(updates["name"], DEFAULT_COLUMN_NAME)
    if "type" in updates and updates["type"] is not None:
        merged.type = ColumnType.parse(updates["type"])
    if updates.get("metadata"):
        merged.metadata.update(updates["metadata"])
    return merged


def replace_column(table: Table, column: Column) -> Table:
    """
    Swap in a new definition for an existing column id.
    The column's type is stamped onto each row's cell; content is untouched.
    """
    _require_column(table, column.id)
    columns = [column if c.id == column.id else c for c in table.columns]
    rows = []
    for row in table.rows:
        cell = row.cells.get(column.id)
        if cell is None:
            cell = empty_cell(column)
        elif cell.type != column.type:
            cell = replace(cell, type=column.type)
        else:
            rows.append(row)
            continue
        rows.append(replace(row, cells={**row.cells, column.id: cell}))
    return replace(table, columns=columns, rows=rows)


def update_column(table: Table, column_id: str, updates: dict[str, Any]) -> Table:
    return replace_column(table, merge_column(_require_column(table, column_id), updates))


def delete_column(table: Table, column_id: str) -> Table:
    """Remove a column and its cell from every row. Absent ids are a no-op."""
    if table.get_column(column_id) is None:
        return table
    columns = [c for c in table.columns if c.id != column_id]
    rows = [
        replace(row, cells={cid: cell for cid, cell in row.cells.items() if cid != column_id})
        for row in table.rows
    ]
    return replace(table, columns=columns, rows=rows)


def restore_column(table: Table, index: int, column: Column, cells: dict[str, Cell]) -> Table:
    """
    Put a deleted column back at its old position with its old cells.
    Rows created since the delete get an empty cell.
    """
    if table.get_column(column.id) is not None:
        return table
    columns = list(table.columns)
    columns.insert(min(max(index, 0), len(columns)), column)
    rows = [
        replace(row, cells={**row.cells, column.id: cells.get(row.id) or empty_cell(column)})
        for row in table.rows
    ]
    return replace(table, columns=columns, rows=rows)


def order_columns(table: Table, column_ids: list[str]) -> Table:
    """Order columns by the given ids; columns not listed keep their relative order at the end."""
    by_id = {c.id: c for c in table.columns}
    ordered = [by_id[cid] for cid in column_ids if cid in by_id]
    listed = {c.id for c in ordered}
    ordered.extend(c for c in table.columns if c.id not in listed)
    return replace(table, columns=ordered)


def reorder_columns(table: Table, from_index: int, to_index: int) -> Table:
    """Move one column from one position to another (array move)."""
    count = len(table.columns)
    if not (0 <= from_index < count and 0 <= to_index < count):
        raise IndexError(f"column index out of range: {from_index} -> {to_index}")
    ids = table.column_ids()
    moved = ids.pop(from_index)
    ids.insert(to_index, moved)
    return order_columns(table, ids)


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------


def add_row(table: Table, row: Row) -> Table:
    return replace(table, rows=[*table.rows, row])


def delete_rows(table: Table, row_ids: list[str] | set[str]) -> Table:
    doomed = set(row_ids)
    return replace(table, rows=[r for r in table.rows if r.id not in doomed])


def restore_rows(table: Table, removed: list[tuple[int, Row]]) -> Table:
    """Re-insert deleted rows at their old indexes (clamped to the current length)."""
    rows = list(table.rows)
    present = {r.id for r in rows}
    columns = table.columns
    for index, row in sorted(removed, key=lambda pair: pair[0]):
        if row.id in present:
            continue
        # Align the restored row with the current column set
        cells = {c.id: row.cells.get(c.id) or empty_cell(c) for c in columns}
        rows.insert(min(index, len(rows)), replace(row, cells=cells))
    return replace(table, rows=rows)


# ---------------------------------------------------------------------------
# Cells
# ---------------------------------------------------------------------------


def update_cell(table: Table, row_id: str, column_id: str, value: str) -> Table:
    """Replace one cell's content. A missing cell is created with the column's type."""
    column = _require_column(table, column_id)
    rows = []
    found = False
    for row in table.rows:
        if row.id != row_id:
            rows.append(row)
            continue
        found = True
        cell = row.cells.get(column_id)
        if cell is None:
            cell = Cell(id=new_id(), content=value, type=column.type)
        else:
            cell = replace(cell, content=value)
        rows.append(replace(row, cells={**row.cells, column_id: cell}))
    if not found:
        raise KeyError(row_id)
    return replace(table, rows=rows)

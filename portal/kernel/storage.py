"""
Folio Kernel — Persistence Interfaces

The stores never talk to a database directly. They are handed a backend
that speaks in terms of the relational collections (tables, columns, rows,
cells, pages) and an object storage for uploads.

Implement with Postgres + R2 for production (see backend/), or with the
in-memory classes below for tests.

Every backend method takes the current user id first and raises
BackendError when the remote call fails or the target is not visible to
that user.
"""

from __future__ import annotations

import copy
import itertools
from datetime import datetime
from typing import Any

from portal.kernel.blocks import blocks_from_json, blocks_to_json
from portal.kernel.types import Cell, Column, ColumnType, Page, Row, Table, now_utc

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class BackendError(Exception):
    """A persistence call failed (network, rejection, or target not visible)."""


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class TableBackend:
    """Persistence for tables, columns, rows and cells."""

    async def load_tables(self, user_id: str) -> list[Table]:
        """All of the user's tables, newest first, fully hydrated."""
        raise NotImplementedError

    async def insert_table(self, user_id: str, table: Table) -> Table:
        """Insert a table with its columns, rows and cells. Returns it with timestamps."""
        raise NotImplementedError

    async def rename_table(self, user_id: str, table_id: str, name: str) -> None:
        raise NotImplementedError

    async def delete_table(self, user_id: str, table_id: str) -> None:
        """Delete a table; columns, rows and cells cascade."""
        raise NotImplementedError

    async def insert_column(
        self,
        user_id: str,
        table_id: str,
        column: Column,
        position: int,
        cells: dict[str, Cell],
    ) -> None:
        """Insert a column at `position` plus its back-filled cells (keyed by row id)."""
        raise NotImplementedError

    async def update_column(self, user_id: str, table_id: str, column: Column) -> None:
        raise NotImplementedError

    async def delete_column(self, user_id: str, table_id: str, column_id: str) -> None:
        raise NotImplementedError

    async def reorder_columns(self, user_id: str, table_id: str, column_ids: list[str]) -> None:
        """Rewrite the order field so it follows `column_ids`."""
        raise NotImplementedError

    async def insert_row(self, user_id: str, table_id: str, row: Row) -> None:
        raise NotImplementedError

    async def delete_rows(self, user_id: str, table_id: str, row_ids: list[str]) -> None:
        """Delete several rows in one call."""
        raise NotImplementedError

    async def upsert_cell(self, user_id: str, table_id: str, row_id: str, column_id: str, cell: Cell) -> None:
        raise NotImplementedError


class PageBackend:
    """Persistence for pages. Blocks are stored as one JSON content value per page."""

    async def load_pages(self, user_id: str) -> list[Page]:
        """All of the user's pages with their blocks, most recently updated first."""
        raise NotImplementedError

    async def load_page(self, user_id: str, page_id: str) -> Page | None:
        raise NotImplementedError

    async def insert_page(self, user_id: str, page: Page) -> Page:
        raise NotImplementedError

    async def update_page_meta(self, user_id: str, page_id: str, fields: dict[str, Any]) -> datetime:
        """Update name/slug/is_published. Returns the new updated_at."""
        raise NotImplementedError

    async def save_page_content(self, user_id: str, page_id: str, content: list[dict[str, Any]]) -> datetime:
        """Replace the page's block array. Returns the new updated_at."""
        raise NotImplementedError

    async def delete_page(self, user_id: str, page_id: str) -> None:
        raise NotImplementedError

    async def load_published(self, slug: str) -> Page | None:
        """Public lookup: the most recently updated published page with this slug. Not user-scoped."""
        raise NotImplementedError


class ObjectStorage:
    """Blob storage for uploads. The kernel never looks inside the bytes."""

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store a blob and return a publicly resolvable URL."""
        raise NotImplementedError


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------


class MemoryBackend(TableBackend, PageBackend):
    """
    In-memory backend for testing.
    Laid out like the relational collections so loads rebuild aggregates the
    same way the Postgres repos do. Every call is recorded in `calls`.
    """

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, Any]] = {}
        self.columns: dict[str, dict[str, Any]] = {}
        self.rows: dict[str, dict[str, Any]] = {}
        self.cells: dict[tuple[str, str], dict[str, Any]] = {}
        self.pages: dict[str, dict[str, Any]] = {}
        self.calls: list[str] = []
        self._seq = itertools.count(1)

    def _record(self, op: str) -> None:
        self.calls.append(op)

    # -- scoping --

    def _table(self, user_id: str, table_id: str) -> dict[str, Any]:
        record = self.tables.get(table_id)
        if record is None or record["user_id"] != user_id:
            raise BackendError(f"table {table_id} not found")
        return record

    def _page(self, user_id: str, page_id: str) -> dict[str, Any]:
        record = self.pages.get(page_id)
        if record is None or record["user_id"] != user_id:
            raise BackendError(f"page {page_id} not found")
        return record

    def _drop_cells(self, predicate) -> None:
        for key in [k for k, cell in self.cells.items() if predicate(cell)]:
            del self.cells[key]

    def _build_table(self, record: dict[str, Any]) -> Table:
        table_id = record["id"]
        column_records = sorted(
            (c for c in self.columns.values() if c["table_id"] == table_id),
            key=lambda c: c["order"],
        )
        columns = [
            Column(
                id=c["id"],
                name=c["name"],
                type=ColumnType.parse(c["type"]),
                metadata=copy.deepcopy(c["metadata"]),
            )
            for c in column_records
        ]
        types = {c.id: c.type for c in columns}
        rows = []
        for r in (r for r in self.rows.values() if r["table_id"] == table_id):
            cells = {}
            for (row_id, column_id), cell in self.cells.items():
                if row_id == r["id"] and column_id in types:
                    cells[column_id] = Cell(id=cell["id"], content=cell["content"], type=types[column_id])
            rows.append(Row(id=r["id"], cells=cells))
        return Table(
            id=table_id,
            name=record["name"],
            columns=columns,
            rows=rows,
            created_at=record["created_at"],
        )

    def _put_cell(self, row_id: str, column_id: str, cell: Cell) -> None:
        self.cells[(row_id, column_id)] = {
            "id": cell.id,
            "row_id": row_id,
            "column_id": column_id,
            "content": cell.content,
        }

    # -- tables --

    async def load_tables(self, user_id: str) -> list[Table]:
        self._record("load_tables")
        owned = [t for t in self.tables.values() if t["user_id"] == user_id]
        owned.sort(key=lambda t: (t["created_at"], t["seq"]), reverse=True)
        return [self._build_table(t) for t in owned]

    async def insert_table(self, user_id: str, table: Table) -> Table:
        self._record("insert_table")
        self.tables[table.id] = {
            "id": table.id,
            "user_id": user_id,
            "name": table.name,
            "created_at": now_utc(),
            "seq": next(self._seq),
        }
        for order, column in enumerate(table.columns):
            self.columns[column.id] = {
                "id": column.id,
                "table_id": table.id,
                "name": column.name,
                "type": column.type.value,
                "metadata": copy.deepcopy(column.metadata),
                "order": order,
            }
        for row in table.rows:
            self.rows[row.id] = {"id": row.id, "table_id": table.id}
            for column_id, cell in row.cells.items():
                self._put_cell(row.id, column_id, cell)
        return self._build_table(self.tables[table.id])

    async def rename_table(self, user_id: str, table_id: str, name: str) -> None:
        self._record("rename_table")
        self._table(user_id, table_id)["name"] = name

    async def delete_table(self, user_id: str, table_id: str) -> None:
        self._record("delete_table")
        self._table(user_id, table_id)
        del self.tables[table_id]
        column_ids = {cid for cid, c in self.columns.items() if c["table_id"] == table_id}
        row_ids = {rid for rid, r in self.rows.items() if r["table_id"] == table_id}
        for cid in column_ids:
            del self.columns[cid]
        for rid in row_ids:
            del self.rows[rid]
        self._drop_cells(lambda cell: cell["row_id"] in row_ids)

    # -- columns --

    async def insert_column(
        self,
        user_id: str,
        table_id: str,
        column: Column,
        position: int,
        cells: dict[str, Cell],
    ) -> None:
        self._record("insert_column")
        self._table(user_id, table_id)
        self.columns[column.id] = {
            "id": column.id,
            "table_id": table_id,
            "name": column.name,
            "type": column.type.value,
            "metadata": copy.deepcopy(column.metadata),
            "order": position,
        }
        for row_id, cell in cells.items():
            if row_id in self.rows:
                self._put_cell(row_id, column.id, cell)

    async def update_column(self, user_id: str, table_id: str, column: Column) -> None:
        self._record("update_column")
        self._table(user_id, table_id)
        record = self.columns.get(column.id)
        if record is None or record["table_id"] != table_id:
            raise BackendError(f"column {column.id} not found")
        record.update(
            name=column.name,
            type=column.type.value,
            metadata=copy.deepcopy(column.metadata),
        )

    async def delete_column(self, user_id: str, table_id: str, column_id: str) -> None:
        self._record("delete_column")
        self._table(user_id, table_id)
        self.columns.pop(column_id, None)
        self._drop_cells(lambda cell: cell["column_id"] == column_id)

    async def reorder_columns(self, user_id: str, table_id: str, column_ids: list[str]) -> None:
        self._record("reorder_columns")
        self._table(user_id, table_id)
        for order, column_id in enumerate(column_ids):
            record = self.columns.get(column_id)
            if record is not None and record["table_id"] == table_id:
                record["order"] = order

    # -- rows & cells --

    async def insert_row(self, user_id: str, table_id: str, row: Row) -> None:
        self._record("insert_row")
        self._table(user_id, table_id)
        self.rows[row.id] = {"id": row.id, "table_id": table_id}
        for column_id, cell in row.cells.items():
            self._put_cell(row.id, column_id, cell)

    async def delete_rows(self, user_id: str, table_id: str, row_ids: list[str]) -> None:
        self._record("delete_rows")
        self._table(user_id, table_id)
        doomed = {rid for rid in row_ids if self.rows.get(rid, {}).get("table_id") == table_id}
        for rid in doomed:
            del self.rows[rid]
        self._drop_cells(lambda cell: cell["row_id"] in doomed)

    async def upsert_cell(self, user_id: str, table_id: str, row_id: str, column_id: str, cell: Cell) -> None:
        self._record("upsert_cell")
        self._table(user_id, table_id)
        if row_id not in self.rows or column_id not in self.columns:
            raise BackendError(f"cell {row_id}/{column_id} has no row or column")
        existing = self.cells.get((row_id, column_id))
        if existing is not None:
            existing["content"] = cell.content
        else:
            self._put_cell(row_id, column_id, cell)

    # -- pages --

    def _build_page(self, record: dict[str, Any]) -> Page:
        return Page(
            id=record["id"],
            name=record["name"],
            slug=record["slug"],
            is_published=record["is_published"],
            blocks=blocks_from_json(copy.deepcopy(record["content"])),
            created_at=record["created_at"],
            updated_at=record["updated_at"],
        )

    async def load_pages(self, user_id: str) -> list[Page]:
        self._record("load_pages")
        owned = [p for p in self.pages.values() if p["user_id"] == user_id]
        owned.sort(key=lambda p: (p["updated_at"], p["seq"]), reverse=True)
        return [self._build_page(p) for p in owned]

    async def load_page(self, user_id: str, page_id: str) -> Page | None:
        self._record("load_page")
        record = self.pages.get(page_id)
        if record is None or record["user_id"] != user_id:
            return None
        return self._build_page(record)

    async def insert_page(self, user_id: str, page: Page) -> Page:
        self._record("insert_page")
        now = now_utc()
        self.pages[page.id] = {
            "id": page.id,
            "user_id": user_id,
            "name": page.name,
            "slug": page.slug,
            "is_published": page.is_published,
            "content": blocks_to_json(page.blocks),
            "created_at": now,
            "updated_at": now,
            "seq": next(self._seq),
        }
        return self._build_page(self.pages[page.id])

    async def update_page_meta(self, user_id: str, page_id: str, fields: dict[str, Any]) -> datetime:
        self._record("update_page_meta")
        record = self._page(user_id, page_id)
        record.update({k: v for k, v in fields.items() if k in ("name", "slug", "is_published")})
        record["updated_at"] = now_utc()
        record["seq"] = next(self._seq)
        return record["updated_at"]

    async def save_page_content(self, user_id: str, page_id: str, content: list[dict[str, Any]]) -> datetime:
        self._record("save_page_content")
        record = self._page(user_id, page_id)
        record["content"] = copy.deepcopy(content)
        record["updated_at"] = now_utc()
        record["seq"] = next(self._seq)
        return record["updated_at"]

    async def delete_page(self, user_id: str, page_id: str) -> None:
        self._record("delete_page")
        self._page(user_id, page_id)
        del self.pages[page_id]

    async def load_published(self, slug: str) -> Page | None:
        self._record("load_published")
        published = [p for p in self.pages.values() if p["slug"] == slug and p["is_published"]]
        if not published:
            return None
        return self._build_page(max(published, key=lambda p: (p["updated_at"], p["seq"])))


class MemoryObjectStorage(ObjectStorage):
    """In-memory object storage for testing."""

    def __init__(self, public_url: str = "https://uploads.test") -> None:
        self.public_url = public_url.rstrip("/")
        self.objects: dict[str, tuple[bytes, str]] = {}

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        self.objects[key] = (data, content_type)
        return f"{self.public_url}/{key}"

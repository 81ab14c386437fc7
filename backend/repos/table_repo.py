"""Repository for user tables: columns, rows and cells."""

from __future__ import annotations

from datetime import UTC, datetime

import asyncpg

from backend.db import scoped
from portal.kernel.storage import BackendError, TableBackend
from portal.kernel.types import Cell, Column, ColumnType, Row, Table


def _row_to_column(row: asyncpg.Record) -> Column:
    """Convert a database row to a Column."""
    return Column(
        id=str(row["id"]),
        name=row["name"],
        type=ColumnType.parse(row["type"]),
        metadata=dict(row["metadata"] or {}),
    )


def _assemble(
    table_row: asyncpg.Record,
    columns: list[Column],
    rows: list[asyncpg.Record],
    cells: dict[tuple[str, str], asyncpg.Record],
) -> Table:
    types = {c.id: c.type for c in columns}
    built = []
    for r in rows:
        row_id = str(r["id"])
        row_cells = {}
        for column_id, column_type in types.items():
            cell = cells.get((row_id, column_id))
            if cell is not None:
                row_cells[column_id] = Cell(id=str(cell["id"]), content=cell["content"], type=column_type)
        built.append(Row(id=row_id, cells=row_cells))
    return Table(
        id=str(table_row["id"]),
        name=table_row["name"],
        columns=columns,
        rows=built,
        created_at=table_row["created_at"],
    )


async def _insert_cells(conn: asyncpg.Connection, user_id: str, cells: list[tuple[str, str, Cell]]) -> None:
    if not cells:
        return
    await conn.executemany(
        """
        INSERT INTO database_cells (id, row_id, column_id, user_id, content)
        VALUES ($1, $2, $3, $4, $5)
        ON CONFLICT (row_id, column_id) DO UPDATE SET content = EXCLUDED.content, updated_at = now()
        """,
        [(cell.id, row_id, column_id, user_id, cell.content) for row_id, column_id, cell in cells],
    )


class TableRepo(TableBackend):
    """All table-related database operations. RLS limits every query to the caller's rows."""

    async def load_tables(self, user_id: str) -> list[Table]:
        """
        Load every table the user owns, fully hydrated.

        Returns:
            Tables newest first; columns by their order field, rows by creation
        """
        async with scoped(user_id, "load_tables") as conn:
            tables = await conn.fetch("SELECT * FROM database_tables ORDER BY created_at DESC, seq DESC")
            if not tables:
                return []
            columns = await conn.fetch('SELECT * FROM database_columns ORDER BY table_id, "order", seq')
            rows = await conn.fetch("SELECT id, table_id FROM database_rows ORDER BY created_at, seq")
            cells = await conn.fetch("SELECT id, row_id, column_id, content FROM database_cells")

        columns_by_table: dict[str, list[Column]] = {}
        for c in columns:
            columns_by_table.setdefault(str(c["table_id"]), []).append(_row_to_column(c))
        rows_by_table: dict[str, list[asyncpg.Record]] = {}
        for r in rows:
            rows_by_table.setdefault(str(r["table_id"]), []).append(r)
        cell_index = {(str(c["row_id"]), str(c["column_id"])): c for c in cells}

        return [
            _assemble(
                t,
                columns_by_table.get(str(t["id"]), []),
                rows_by_table.get(str(t["id"]), []),
                cell_index,
            )
            for t in tables
        ]

    async def insert_table(self, user_id: str, table: Table) -> Table:
        """
        Insert a table with its columns, rows and cells in one transaction.

        Returns:
            The table with its database created_at
        """
        async with scoped(user_id, "insert_table") as conn:
            created_at: datetime = await conn.fetchval(
                """
                INSERT INTO database_tables (id, user_id, name)
                VALUES ($1, $2, $3)
                RETURNING created_at
                """,
                table.id,
                user_id,
                table.name,
            )
            await conn.executemany(
                """
                INSERT INTO database_columns (id, table_id, user_id, name, type, metadata, "order")
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                [
                    (c.id, table.id, user_id, c.name, c.type.value, c.metadata, order)
                    for order, c in enumerate(table.columns)
                ],
            )
            await conn.executemany(
                "INSERT INTO database_rows (id, table_id, user_id) VALUES ($1, $2, $3)",
                [(r.id, table.id, user_id) for r in table.rows],
            )
            await _insert_cells(
                conn,
                user_id,
                [(r.id, column_id, cell) for r in table.rows for column_id, cell in r.cells.items()],
            )
        return Table(
            id=table.id,
            name=table.name,
            columns=table.columns,
            rows=table.rows,
            created_at=created_at or datetime.now(UTC),
        )

    async def rename_table(self, user_id: str, table_id: str, name: str) -> None:
        async with scoped(user_id, "rename_table") as conn:
            result = await conn.execute(
                "UPDATE database_tables SET name = $2, updated_at = now() WHERE id = $1",
                table_id,
                name,
            )
        if result != "UPDATE 1":
            raise BackendError(f"table {table_id} not found")

    async def delete_table(self, user_id: str, table_id: str) -> None:
        """Delete a table. Columns, rows and cells go with it (ON DELETE CASCADE)."""
        async with scoped(user_id, "delete_table") as conn:
            result = await conn.execute("DELETE FROM database_tables WHERE id = $1", table_id)
        if result != "DELETE 1":
            raise BackendError(f"table {table_id} not found")

    async def insert_column(
        self,
        user_id: str,
        table_id: str,
        column: Column,
        position: int,
        cells: dict[str, Cell],
    ) -> None:
        """
        Insert a column and its back-filled cells.

        Args:
            position: Value for the column's order field
            cells: One empty cell per existing row, keyed by row id
        """
        async with scoped(user_id, "insert_column") as conn:
            await conn.execute(
                """
                INSERT INTO database_columns (id, table_id, user_id, name, type, metadata, "order")
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                column.id,
                table_id,
                user_id,
                column.name,
                column.type.value,
                column.metadata,
                position,
            )
            await _insert_cells(conn, user_id, [(row_id, column.id, cell) for row_id, cell in cells.items()])

    async def update_column(self, user_id: str, table_id: str, column: Column) -> None:
        async with scoped(user_id, "update_column") as conn:
            result = await conn.execute(
                """
                UPDATE database_columns
                SET name = $3, type = $4, metadata = $5
                WHERE id = $1 AND table_id = $2
                """,
                column.id,
                table_id,
                column.name,
                column.type.value,
                column.metadata,
            )
        if result != "UPDATE 1":
            raise BackendError(f"column {column.id} not found")

    async def delete_column(self, user_id: str, table_id: str, column_id: str) -> None:
        async with scoped(user_id, "delete_column") as conn:
            await conn.execute(
                "DELETE FROM database_columns WHERE id = $1 AND table_id = $2",
                column_id,
                table_id,
            )

    async def reorder_columns(self, user_id: str, table_id: str, column_ids: list[str]) -> None:
        """Rewrite the order field to follow `column_ids`."""
        async with scoped(user_id, "reorder_columns") as conn:
            await conn.executemany(
                'UPDATE database_columns SET "order" = $3 WHERE id = $1 AND table_id = $2',
                [(column_id, table_id, order) for order, column_id in enumerate(column_ids)],
            )

    async def insert_row(self, user_id: str, table_id: str, row: Row) -> None:
        async with scoped(user_id, "insert_row") as conn:
            await conn.execute(
                "INSERT INTO database_rows (id, table_id, user_id) VALUES ($1, $2, $3)",
                row.id,
                table_id,
                user_id,
            )
            await _insert_cells(conn, user_id, [(row.id, column_id, cell) for column_id, cell in row.cells.items()])

    async def delete_rows(self, user_id: str, table_id: str, row_ids: list[str]) -> None:
        """Delete several rows in one statement. Their cells cascade."""
        async with scoped(user_id, "delete_rows") as conn:
            await conn.execute(
                "DELETE FROM database_rows WHERE table_id = $1 AND id = ANY($2::uuid[])",
                table_id,
                row_ids,
            )

    async def upsert_cell(self, user_id: str, table_id: str, row_id: str, column_id: str, cell: Cell) -> None:
        """Write one cell's content, creating the cell if it does not exist yet."""
        async with scoped(user_id, "upsert_cell") as conn:
            await _insert_cells(conn, user_id, [(row_id, column_id, cell)])

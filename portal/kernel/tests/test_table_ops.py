"""
Folio Kernel — Table Aggregate Tests

Pure table operations: copy-on-write, name coercion, and cell completeness
(every row holds exactly one cell per column) across any sequence of
column and row edits.
"""

import pytest

from portal.kernel import table_ops
from portal.kernel.types import ColumnType


def assert_cells_complete(table):
    column_ids = set(table.column_ids())
    for row in table.rows:
        assert set(row.cells) == column_ids, f"row {row.id} out of sync with columns"


@pytest.fixture
def table():
    return table_ops.new_table("Inventory")


# ============================================================================
# Construction
# ============================================================================


class TestNewTable:
    def test_default_columns_and_one_row(self, table):
        assert [c.name for c in table.columns] == ["Name", "Type", "Status"]
        assert all(c.type == ColumnType.TEXT for c in table.columns)
        assert len(table.rows) == 1
        assert_cells_complete(table)

    def test_empty_name_coerced(self):
        assert table_ops.new_table("").name == "Untitled Table"
        assert table_ops.new_table("   ").name == "Untitled Table"
        assert table_ops.new_table(None).name == "Untitled Table"

    def test_new_column_defaults(self):
        column = table_ops.new_column()
        assert column.name == "New Column"
        assert column.type == ColumnType.TEXT
        assert column.metadata == {}

    def test_new_column_metadata_layers_over_type_defaults(self):
        column = table_ops.new_column("Price", "number", {"precision": 2})
        assert column.metadata == {"format": "plain", "precision": 2}

    def test_ids_are_unique(self, table):
        ids = [c.id for c in table.columns] + [r.id for r in table.rows]
        ids += [cell.id for r in table.rows for cell in r.cells.values()]
        assert len(ids) == len(set(ids))


# ============================================================================
# Columns
# ============================================================================


class TestColumns:
    def test_add_column_backfills(self, table):
        column = table_ops.new_column("Price", ColumnType.NUMBER)
        updated = table_ops.add_column(table, column)

        assert updated.columns[-1] is column
        assert updated.rows[0].cells[column.id].content == ""
        assert updated.rows[0].cells[column.id].type == ColumnType.NUMBER
        assert_cells_complete(updated)

    def test_add_column_does_not_mutate_input(self, table):
        before = len(table.columns)
        table_ops.add_column(table, table_ops.new_column("Extra"))
        assert len(table.columns) == before
        assert len(table.rows[0].cells) == before

    def test_update_column_merges_metadata(self, table):
        column = table_ops.new_column("Status", "select", {"options": ["a"], "color": "red"})
        table = table_ops.add_column(table, column)
        updated = table_ops.update_column(table, column.id, {"metadata": {"options": ["a", "b"]}})

        merged = updated.get_column(column.id)
        assert merged.metadata == {"options": ["a", "b"], "color": "red"}
        assert table.get_column(column.id).metadata["options"] == ["a"]

    def test_type_change_stamps_cells_and_keeps_content(self, table):
        name_id = table.columns[0].id
        row_id = table.rows[0].id
        table = table_ops.update_cell(table, row_id, name_id, "12")

        updated = table_ops.update_column(table, name_id, {"type": "number"})

        cell = updated.get_row(row_id).cells[name_id]
        assert cell.type == ColumnType.NUMBER
        assert cell.content == "12"

    def test_update_missing_column_raises(self, table):
        with pytest.raises(KeyError):
            table_ops.update_column(table, "missing", {"name": "x"})

    def test_delete_column_removes_cells(self, table):
        doomed = table.columns[1].id
        updated = table_ops.delete_column(table, doomed)
        assert doomed not in updated.column_ids()
        assert_cells_complete(updated)

    def test_delete_absent_column_is_noop(self, table):
        assert table_ops.delete_column(table, "missing") is table

    def test_restore_column_puts_it_back_in_place(self, table):
        column = table.columns[1]
        row = table.rows[0]
        table = table_ops.update_cell(table, row.id, column.id, "kept")
        cells = {r.id: r.cells[column.id] for r in table.rows}

        deleted = table_ops.delete_column(table, column.id)
        deleted = table_ops.add_row(deleted, table_ops.new_row(deleted.columns))
        restored = table_ops.restore_column(deleted, 1, column, cells)

        assert restored.column_ids() == table.column_ids()
        assert restored.get_row(row.id).cells[column.id].content == "kept"
        assert_cells_complete(restored)

    def test_reorder_columns(self, table):
        a, b, c = table.column_ids()
        assert table_ops.reorder_columns(table, 0, 2).column_ids() == [b, c, a]
        assert table_ops.reorder_columns(table, 2, 0).column_ids() == [c, a, b]

    def test_reorder_out_of_range(self, table):
        with pytest.raises(IndexError):
            table_ops.reorder_columns(table, 0, 5)

    def test_order_columns_keeps_unlisted_at_end(self, table):
        a, b, c = table.column_ids()
        assert table_ops.order_columns(table, [c]).column_ids() == [c, a, b]


# ============================================================================
# Rows and cells
# ============================================================================


class TestRowsAndCells:
    def test_new_row_has_cell_per_column(self, table):
        row = table_ops.new_row(table.columns)
        assert set(row.cells) == set(table.column_ids())
        assert all(cell.content == "" for cell in row.cells.values())

    def test_delete_rows(self, table):
        r2 = table_ops.new_row(table.columns)
        r3 = table_ops.new_row(table.columns)
        table = table_ops.add_row(table_ops.add_row(table, r2), r3)

        updated = table_ops.delete_rows(table, [table.rows[0].id, r3.id])
        assert [r.id for r in updated.rows] == [r2.id]

    def test_restore_rows_at_old_indexes(self, table):
        r2 = table_ops.new_row(table.columns)
        r3 = table_ops.new_row(table.columns)
        table = table_ops.add_row(table_ops.add_row(table, r2), r3)
        removed = [(0, table.rows[0]), (2, r3)]

        deleted = table_ops.delete_rows(table, [table.rows[0].id, r3.id])
        restored = table_ops.restore_rows(deleted, removed)

        assert [r.id for r in restored.rows] == [r.id for r in table.rows]

    def test_update_cell_copy_on_write(self, table):
        row_id = table.rows[0].id
        column_id = table.columns[0].id
        updated = table_ops.update_cell(table, row_id, column_id, "Widget")

        assert updated.get_row(row_id).content(column_id) == "Widget"
        assert table.get_row(row_id).content(column_id) == ""

    def test_update_cell_unknown_row(self, table):
        with pytest.raises(KeyError):
            table_ops.update_cell(table, "missing", table.columns[0].id, "x")

    def test_cell_completeness_under_mixed_edits(self, table):
        steps = [
            lambda t: table_ops.add_column(t, table_ops.new_column("A", "number")),
            lambda t: table_ops.add_row(t, table_ops.new_row(t.columns)),
            lambda t: table_ops.delete_column(t, t.columns[0].id),
            lambda t: table_ops.add_column(t, table_ops.new_column("B", "date")),
            lambda t: table_ops.add_row(t, table_ops.new_row(t.columns)),
            lambda t: table_ops.delete_column(t, t.columns[-1].id),
            lambda t: table_ops.reorder_columns(t, 0, len(t.columns) - 1),
        ]
        for step in steps:
            table = step(table)
            assert_cells_complete(table)
        assert len(table.rows) == 3

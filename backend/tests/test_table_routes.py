"""Integration tests for /api/tables against in-memory stores."""

from __future__ import annotations

import pytest
import pytest_asyncio

from portal.kernel.storage import BackendError


@pytest_asyncio.fixture
async def table(async_client, auth_headers):
    """A freshly created table: Name/Type/Status columns and one row."""
    res = await async_client.post("/api/tables", json={"name": "Products"}, headers=auth_headers)
    assert res.status_code == 201
    return res.json()


def _column(table: dict, name: str) -> dict:
    return next(c for c in table["columns"] if c["name"] == name)


# ============================================================================
# Tables
# ============================================================================


class TestTableRoutes:
    async def test_list_empty(self, async_client, auth_headers):
        res = await async_client.get("/api/tables", headers=auth_headers)
        assert res.status_code == 200
        assert res.json() == {"tables": [], "active_table_id": None}

    async def test_create_table(self, async_client, auth_headers, table):
        assert table["name"] == "Products"
        assert [c["name"] for c in table["columns"]] == ["Name", "Type", "Status"]
        assert len(table["rows"]) == 1
        row = table["rows"][0]
        assert set(row["cells"]) == {c["id"] for c in table["columns"]}

        res = await async_client.get("/api/tables", headers=auth_headers)
        assert res.json()["active_table_id"] == table["id"]

    async def test_create_table_blank_name(self, async_client, auth_headers):
        res = await async_client.post("/api/tables", json={"name": "  "}, headers=auth_headers)
        assert res.status_code == 201
        assert res.json()["name"] == "Untitled Table"

    async def test_get_table(self, async_client, auth_headers, table):
        res = await async_client.get(f"/api/tables/{table['id']}", headers=auth_headers)
        assert res.status_code == 200
        assert res.json()["id"] == table["id"]

    async def test_get_table_not_found(self, async_client, auth_headers):
        res = await async_client.get("/api/tables/missing", headers=auth_headers)
        assert res.status_code == 404

    async def test_rename_table(self, async_client, auth_headers, table):
        res = await async_client.patch(f"/api/tables/{table['id']}", json={"name": "Inventory"}, headers=auth_headers)
        assert res.status_code == 200
        assert res.json()["name"] == "Inventory"

    async def test_delete_table(self, async_client, auth_headers, table, memory_backend):
        res = await async_client.delete(f"/api/tables/{table['id']}", headers=auth_headers)
        assert res.status_code == 204
        assert table["id"] not in memory_backend.tables

        res = await async_client.get("/api/tables", headers=auth_headers)
        assert res.json() == {"tables": [], "active_table_id": None}

    async def test_activate_table(self, async_client, auth_headers, table):
        other = (await async_client.post("/api/tables", json={"name": "Other"}, headers=auth_headers)).json()

        res = await async_client.post(f"/api/tables/{table['id']}/activate", headers=auth_headers)
        assert res.status_code == 200

        listing = (await async_client.get("/api/tables", headers=auth_headers)).json()
        assert listing["active_table_id"] == table["id"]
        assert [t["id"] for t in listing["tables"]] == [other["id"], table["id"]]

    async def test_tables_are_per_user(self, async_client, auth_headers, second_user_headers, table):
        res = await async_client.get("/api/tables", headers=second_user_headers)
        assert res.json()["tables"] == []

        res = await async_client.get(f"/api/tables/{table['id']}", headers=second_user_headers)
        assert res.status_code == 404

    async def test_refresh_reloads_from_backend(self, async_client, auth_headers, table, memory_backend):
        memory_backend.tables[table["id"]]["name"] = "Renamed elsewhere"

        res = await async_client.post("/api/tables/refresh", headers=auth_headers)
        assert res.status_code == 200
        assert res.json()["tables"][0]["name"] == "Renamed elsewhere"

    async def test_rename_backend_failure_reverts(self, async_client, auth_headers, table, memory_backend, monkeypatch):
        async def fail(*args, **kwargs):
            raise BackendError("connection reset")

        monkeypatch.setattr(memory_backend, "rename_table", fail)

        res = await async_client.patch(f"/api/tables/{table['id']}", json={"name": "Inventory"}, headers=auth_headers)
        assert res.status_code == 502

        res = await async_client.get(f"/api/tables/{table['id']}", headers=auth_headers)
        assert res.json()["name"] == "Products"

    async def test_workspace_load_failure(self, async_client, auth_headers, memory_backend, monkeypatch):
        async def fail(*args, **kwargs):
            raise BackendError("database down")

        monkeypatch.setattr(memory_backend, "load_tables", fail)

        res = await async_client.get("/api/tables", headers=auth_headers)
        assert res.status_code == 502

    async def test_column_catalog(self, async_client):
        res = await async_client.get("/api/tables/column-types")
        assert res.status_code == 200
        data = res.json()
        assert {t["type"] for t in data["types"]} == {"text", "number", "select", "date", "boolean"}
        assert "price" in {a["id"] for a in data["attributes"]}


# ============================================================================
# Columns
# ============================================================================


class TestColumnRoutes:
    async def test_add_column(self, async_client, auth_headers, table):
        res = await async_client.post(
            f"/api/tables/{table['id']}/columns",
            json={"name": "Price", "type": "number"},
            headers=auth_headers,
        )
        assert res.status_code == 201
        column = res.json()
        assert column["type"] == "number"

        updated = (await async_client.get(f"/api/tables/{table['id']}", headers=auth_headers)).json()
        assert column["id"] in updated["rows"][0]["cells"]

    async def test_add_select_column_without_options(self, async_client, auth_headers, table):
        res = await async_client.post(
            f"/api/tables/{table['id']}/columns",
            json={"name": "Stage", "type": "select", "metadata": {"options": []}},
            headers=auth_headers,
        )
        assert res.status_code == 422

    async def test_add_column_unknown_type(self, async_client, auth_headers, table):
        res = await async_client.post(
            f"/api/tables/{table['id']}/columns",
            json={"name": "Blob", "type": "binary"},
            headers=auth_headers,
        )
        assert res.status_code == 422

    async def test_add_column_unknown_format(self, async_client, auth_headers, table):
        res = await async_client.post(
            f"/api/tables/{table['id']}/columns",
            json={"name": "Price", "type": "number", "metadata": {"format": "scientific"}},
            headers=auth_headers,
        )
        assert res.status_code == 422

    async def test_add_predefined_column(self, async_client, auth_headers, table):
        res = await async_client.post(
            f"/api/tables/{table['id']}/columns/predefined",
            json={"attribute_id": "price"},
            headers=auth_headers,
        )
        assert res.status_code == 201
        assert res.json()["name"] == "Price"
        assert res.json()["metadata"]["format"] == "currency"

    async def test_add_predefined_column_unknown(self, async_client, auth_headers, table):
        res = await async_client.post(
            f"/api/tables/{table['id']}/columns/predefined",
            json={"attribute_id": "nope"},
            headers=auth_headers,
        )
        assert res.status_code == 404

    async def test_update_column(self, async_client, auth_headers, table):
        column = _column(table, "Status")
        res = await async_client.patch(
            f"/api/tables/{table['id']}/columns/{column['id']}",
            json={"name": "Stage", "type": "select", "metadata": {"options": ["Open", "Closed"]}},
            headers=auth_headers,
        )
        assert res.status_code == 200
        assert res.json()["name"] == "Stage"
        assert res.json()["type"] == "select"

    async def test_delete_column(self, async_client, auth_headers, table):
        column = _column(table, "Type")
        res = await async_client.delete(f"/api/tables/{table['id']}/columns/{column['id']}", headers=auth_headers)
        assert res.status_code == 204

        updated = (await async_client.get(f"/api/tables/{table['id']}", headers=auth_headers)).json()
        assert [c["name"] for c in updated["columns"]] == ["Name", "Status"]
        assert column["id"] not in updated["rows"][0]["cells"]

    async def test_reorder_columns(self, async_client, auth_headers, table):
        res = await async_client.post(
            f"/api/tables/{table['id']}/columns/reorder",
            json={"from_index": 0, "to_index": 2},
            headers=auth_headers,
        )
        assert res.status_code == 200
        assert [c["name"] for c in res.json()["columns"]] == ["Type", "Status", "Name"]

    async def test_reorder_columns_out_of_range(self, async_client, auth_headers, table):
        res = await async_client.post(
            f"/api/tables/{table['id']}/columns/reorder",
            json={"from_index": 0, "to_index": 9},
            headers=auth_headers,
        )
        assert res.status_code == 422


# ============================================================================
# Rows, cells and views
# ============================================================================


class TestRowRoutes:
    async def test_add_and_delete_row(self, async_client, auth_headers, table):
        res = await async_client.post(f"/api/tables/{table['id']}/rows", headers=auth_headers)
        assert res.status_code == 201
        row = res.json()
        assert set(row["cells"]) == {c["id"] for c in table["columns"]}

        res = await async_client.delete(f"/api/tables/{table['id']}/rows/{row['id']}", headers=auth_headers)
        assert res.status_code == 204

        updated = (await async_client.get(f"/api/tables/{table['id']}", headers=auth_headers)).json()
        assert [r["id"] for r in updated["rows"]] == [table["rows"][0]["id"]]

    async def test_delete_multiple_rows_clears_selection(self, async_client, auth_headers, table):
        base = f"/api/tables/{table['id']}"
        r1 = table["rows"][0]["id"]
        r2 = (await async_client.post(f"{base}/rows", headers=auth_headers)).json()["id"]
        r3 = (await async_client.post(f"{base}/rows", headers=auth_headers)).json()["id"]

        await async_client.post(f"{base}/selection/{r1}", headers=auth_headers)
        res = await async_client.post(f"{base}/selection/{r2}", headers=auth_headers)
        assert res.json()["row_ids"] == [r1, r2]

        res = await async_client.post(f"{base}/rows/delete", json={"row_ids": [r1, r2]}, headers=auth_headers)
        assert res.status_code == 200
        assert [r["id"] for r in res.json()["rows"]] == [r3]
        assert res.json()["selected_rows"] == []

    async def test_delete_rows_none_known(self, async_client, auth_headers, table):
        res = await async_client.post(
            f"/api/tables/{table['id']}/rows/delete",
            json={"row_ids": ["ghost"]},
            headers=auth_headers,
        )
        assert res.status_code == 404

    async def test_toggle_and_clear_selection(self, async_client, auth_headers, table):
        base = f"/api/tables/{table['id']}"
        row_id = table["rows"][0]["id"]

        res = await async_client.post(f"{base}/selection/{row_id}", headers=auth_headers)
        assert res.json()["row_ids"] == [row_id]
        res = await async_client.post(f"{base}/selection/{row_id}", headers=auth_headers)
        assert res.json()["row_ids"] == []

        await async_client.post(f"{base}/selection/{row_id}", headers=auth_headers)
        res = await async_client.delete(f"{base}/selection", headers=auth_headers)
        assert res.json()["row_ids"] == []

    async def test_select_unknown_row(self, async_client, auth_headers, table):
        base = f"/api/tables/{table['id']}"
        res = await async_client.post(f"{base}/selection/ghost", headers=auth_headers)
        assert res.status_code == 404
        res = await async_client.get(f"{base}/selection", headers=auth_headers)
        assert res.json()["row_ids"] == []

    async def test_update_cell(self, async_client, auth_headers, table, memory_backend):
        column = _column(table, "Name")
        row_id = table["rows"][0]["id"]

        res = await async_client.put(
            f"/api/tables/{table['id']}/rows/{row_id}/cells/{column['id']}",
            json={"value": "Widget"},
            headers=auth_headers,
        )
        assert res.status_code == 200
        assert res.json()["saved"] is True
        assert res.json()["cell"]["content"] == "Widget"
        assert memory_backend.cells[(row_id, column["id"])]["content"] == "Widget"

    async def test_update_cell_backend_failure_keeps_edit(
        self, async_client, auth_headers, table, memory_backend, monkeypatch
    ):
        async def fail(*args, **kwargs):
            raise BackendError("timeout")

        monkeypatch.setattr(memory_backend, "upsert_cell", fail)
        column = _column(table, "Name")
        row_id = table["rows"][0]["id"]

        res = await async_client.put(
            f"/api/tables/{table['id']}/rows/{row_id}/cells/{column['id']}",
            json={"value": "Widget"},
            headers=auth_headers,
        )
        assert res.status_code == 200
        assert res.json()["saved"] is False
        assert res.json()["error"]

        updated = (await async_client.get(f"/api/tables/{table['id']}", headers=auth_headers)).json()
        assert updated["rows"][0]["cells"][column["id"]]["content"] == "Widget"

    async def test_update_cell_unknown_row(self, async_client, auth_headers, table):
        column = _column(table, "Name")
        res = await async_client.put(
            f"/api/tables/{table['id']}/rows/ghost/cells/{column['id']}",
            json={"value": "x"},
            headers=auth_headers,
        )
        assert res.status_code == 404

    async def test_debounced_cell_waits_for_flush(self, async_client, auth_headers, table, memory_backend):
        column = _column(table, "Name")
        row_id = table["rows"][0]["id"]
        url = f"/api/tables/{table['id']}/rows/{row_id}/cells/{column['id']}?debounce=true"

        for value in ("W", "Wi", "Widget"):
            res = await async_client.put(url, json={"value": value}, headers=auth_headers)
            assert res.status_code == 200
            assert res.json()["pending"] is True
        assert "upsert_cell" not in memory_backend.calls

        res = await async_client.post("/api/tables/flush", headers=auth_headers)
        assert res.json() == {"flushed": 1}
        assert memory_backend.calls.count("upsert_cell") == 1
        assert memory_backend.cells[(row_id, column["id"])]["content"] == "Widget"

    async def test_direct_write_drops_queued_value(self, async_client, auth_headers, table, memory_backend):
        column = _column(table, "Name")
        row_id = table["rows"][0]["id"]
        url = f"/api/tables/{table['id']}/rows/{row_id}/cells/{column['id']}"

        await async_client.put(f"{url}?debounce=true", json={"value": "stale"}, headers=auth_headers)
        await async_client.put(url, json={"value": "final"}, headers=auth_headers)

        res = await async_client.post("/api/tables/flush", headers=auth_headers)
        assert res.json() == {"flushed": 0}
        assert memory_backend.cells[(row_id, column["id"])]["content"] == "final"

    async def test_deleting_row_drops_queued_value(
        self, async_client, auth_headers, table, workspace, test_user_id, memory_backend
    ):
        column = _column(table, "Name")
        row_id = table["rows"][0]["id"]
        base = f"/api/tables/{table['id']}"
        await async_client.put(
            f"{base}/rows/{row_id}/cells/{column['id']}?debounce=true", json={"value": "gone"}, headers=auth_headers
        )

        res = await async_client.delete(f"{base}/rows/{row_id}", headers=auth_headers)
        assert res.status_code == 204

        res = await async_client.post("/api/tables/flush", headers=auth_headers)
        assert res.json() == {"flushed": 0}
        ws = await workspace.for_user(test_user_id)
        assert ws.tables.error is None
        assert "upsert_cell" not in memory_backend.calls

    async def test_deleting_column_or_table_drops_queued_values(
        self, async_client, auth_headers, table, workspace, test_user_id
    ):
        name, status_column = _column(table, "Name"), _column(table, "Status")
        row_id = table["rows"][0]["id"]
        base = f"/api/tables/{table['id']}"
        for column in (name, status_column):
            await async_client.put(
                f"{base}/rows/{row_id}/cells/{column['id']}?debounce=true", json={"value": "x"}, headers=auth_headers
            )
        ws = await workspace.for_user(test_user_id)

        await async_client.delete(f"{base}/columns/{name['id']}", headers=auth_headers)
        assert list(ws.pending_cells) == [(table["id"], row_id, status_column["id"])]

        await async_client.delete(base, headers=auth_headers)
        assert ws.pending_cells == {}
        assert ws.tables.error is None

    async def test_view_filters_numbers(self, async_client, auth_headers, table):
        base = f"/api/tables/{table['id']}"
        price = (
            await async_client.post(f"{base}/columns", json={"name": "Price", "type": "number"}, headers=auth_headers)
        ).json()
        first = table["rows"][0]["id"]
        second = (await async_client.post(f"{base}/rows", headers=auth_headers)).json()["id"]
        await async_client.put(f"{base}/rows/{first}/cells/{price['id']}", json={"value": "42.5"}, headers=auth_headers)
        await async_client.put(f"{base}/rows/{second}/cells/{price['id']}", json={"value": "10"}, headers=auth_headers)

        res = await async_client.post(
            f"{base}/view",
            json={"filters": [{"column_id": price["id"], "operator": "greater_than", "value": "40"}]},
            headers=auth_headers,
        )
        assert res.status_code == 200
        assert res.json()["total"] == 1
        assert res.json()["rows"][0]["id"] == first

    async def test_view_sorts(self, async_client, auth_headers, table):
        base = f"/api/tables/{table['id']}"
        name = _column(table, "Name")
        first = table["rows"][0]["id"]
        second = (await async_client.post(f"{base}/rows", headers=auth_headers)).json()["id"]
        await async_client.put(f"{base}/rows/{first}/cells/{name['id']}", json={"value": "b"}, headers=auth_headers)
        await async_client.put(f"{base}/rows/{second}/cells/{name['id']}", json={"value": "a"}, headers=auth_headers)

        res = await async_client.post(
            f"{base}/view",
            json={"sort_column_id": name["id"], "sort_direction": "asc"},
            headers=auth_headers,
        )
        assert [r["id"] for r in res.json()["rows"]] == [second, first]

    @pytest.mark.parametrize("logic", ["XOR", "and"])
    async def test_view_rejects_bad_logic(self, async_client, auth_headers, table, logic):
        res = await async_client.post(
            f"/api/tables/{table['id']}/view",
            json={"filters": [{"column_id": "c", "operator": "equals", "value": "x", "logic": logic}]},
            headers=auth_headers,
        )
        assert res.status_code == 422

"""Table routes: tables, columns, rows, cells, selection and filtered views."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from backend.config import settings
from backend.dependencies import get_workspace, raise_for
from backend.models.table import (
    AddColumnRequest,
    AddPredefinedColumnRequest,
    CellResponse,
    CellWriteResponse,
    ColumnCatalogResponse,
    ColumnResponse,
    CreateTableRequest,
    DeleteRowsRequest,
    FlushResponse,
    RenameTableRequest,
    ReorderRequest,
    RowResponse,
    SelectionResponse,
    TableListResponse,
    TableResponse,
    UpdateCellRequest,
    UpdateColumnRequest,
    ViewRequest,
    ViewResponse,
)
from backend.services.workspace import UserWorkspace

router = APIRouter(prefix="/api/tables", tags=["tables"])


def _require_table(ws: UserWorkspace, table_id: str) -> None:
    if table_id not in ws.tables.tables:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Table not found.")


def _table_response(ws: UserWorkspace, table_id: str) -> TableResponse:
    store = ws.tables
    return TableResponse.from_model(store.tables[table_id], store.selected(table_id))


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


@router.get("", status_code=200)
async def list_tables(ws: UserWorkspace = Depends(get_workspace)) -> TableListResponse:
    """All of the current user's tables, newest first."""
    store = ws.tables
    return TableListResponse(
        tables=[TableResponse.from_model(t, store.selected(t.id)) for t in store.tables.values()],
        active_table_id=store.active_table_id,
    )


@router.post("/refresh", status_code=200)
async def refresh_tables(ws: UserWorkspace = Depends(get_workspace)) -> TableListResponse:
    """Reload everything from the database, discarding the cached state."""
    raise_for(await ws.tables.fetch_user_tables())
    return await list_tables(ws)


@router.post("/flush", status_code=200)
async def flush_cells(ws: UserWorkspace = Depends(get_workspace)) -> FlushResponse:
    """Write every queued cell edit now."""
    return FlushResponse(flushed=await ws.flush_cells())


@router.get("/column-types", status_code=200)
async def column_catalog() -> ColumnCatalogResponse:
    """Column types, their filter operators, and the predefined attributes."""
    return ColumnCatalogResponse.build()


@router.post("", status_code=201)
async def create_table(req: CreateTableRequest, ws: UserWorkspace = Depends(get_workspace)) -> TableResponse:
    """Create a table with Name/Type/Status columns and one empty row. It becomes active."""
    result = raise_for(await ws.tables.create_table(req.name))
    return _table_response(ws, result.value)


@router.get("/{table_id}", status_code=200)
async def get_table(table_id: str, ws: UserWorkspace = Depends(get_workspace)) -> TableResponse:
    _require_table(ws, table_id)
    return _table_response(ws, table_id)


@router.post("/{table_id}/activate", status_code=200)
async def activate_table(table_id: str, ws: UserWorkspace = Depends(get_workspace)) -> TableResponse:
    """Make this the active table."""
    raise_for(ws.tables.set_active_table(table_id))
    return _table_response(ws, table_id)


@router.patch("/{table_id}", status_code=200)
async def rename_table(
    table_id: str,
    req: RenameTableRequest,
    ws: UserWorkspace = Depends(get_workspace),
) -> TableResponse:
    raise_for(await ws.tables.rename_table(table_id, req.name))
    return _table_response(ws, table_id)


@router.delete("/{table_id}", status_code=204)
async def delete_table(table_id: str, ws: UserWorkspace = Depends(get_workspace)) -> Response:
    """Delete a table with all of its columns, rows and cells."""
    raise_for(await ws.tables.delete_table(table_id))
    ws.drop_cells(table_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{table_id}/view", status_code=200)
async def view_table(
    table_id: str,
    req: ViewRequest,
    ws: UserWorkspace = Depends(get_workspace),
) -> ViewResponse:
    """Filtered and sorted rows. Filters fold left to right with their AND/OR."""
    _require_table(ws, table_id)
    rows = ws.tables.view(table_id, req.conditions(), req.sort_column_id, req.sort_direction)
    return ViewResponse(rows=[RowResponse.from_model(r) for r in rows], total=len(rows))


# ---------------------------------------------------------------------------
# Columns
# ---------------------------------------------------------------------------


@router.post("/{table_id}/columns", status_code=201)
async def add_column(
    table_id: str,
    req: AddColumnRequest,
    ws: UserWorkspace = Depends(get_workspace),
) -> ColumnResponse:
    result = raise_for(await ws.tables.add_column(table_id, req.model_dump()))
    return ColumnResponse.from_model(result.value)


@router.post("/{table_id}/columns/predefined", status_code=201)
async def add_predefined_column(
    table_id: str,
    req: AddPredefinedColumnRequest,
    ws: UserWorkspace = Depends(get_workspace),
) -> ColumnResponse:
    result = raise_for(await ws.tables.add_predefined_column(table_id, req.attribute_id))
    return ColumnResponse.from_model(result.value)


@router.patch("/{table_id}/columns/{column_id}", status_code=200)
async def update_column(
    table_id: str,
    column_id: str,
    req: UpdateColumnRequest,
    ws: UserWorkspace = Depends(get_workspace),
) -> ColumnResponse:
    """Rename, retype or re-configure a column. Cell content is never converted."""
    result = raise_for(await ws.tables.update_column(table_id, column_id, req.model_dump(exclude_unset=True)))
    return ColumnResponse.from_model(result.value)


@router.delete("/{table_id}/columns/{column_id}", status_code=204)
async def delete_column(table_id: str, column_id: str, ws: UserWorkspace = Depends(get_workspace)) -> Response:
    raise_for(await ws.tables.delete_column(table_id, column_id))
    ws.drop_cells(table_id, column_id=column_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{table_id}/columns/reorder", status_code=200)
async def reorder_columns(
    table_id: str,
    req: ReorderRequest,
    ws: UserWorkspace = Depends(get_workspace),
) -> TableResponse:
    raise_for(await ws.tables.reorder_columns(table_id, req.from_index, req.to_index))
    return _table_response(ws, table_id)


# ---------------------------------------------------------------------------
# Rows and cells
# ---------------------------------------------------------------------------


@router.post("/{table_id}/rows", status_code=201)
async def add_row(table_id: str, ws: UserWorkspace = Depends(get_workspace)) -> RowResponse:
    result = raise_for(await ws.tables.add_row(table_id))
    return RowResponse.from_model(result.value)


@router.delete("/{table_id}/rows/{row_id}", status_code=204)
async def delete_row(table_id: str, row_id: str, ws: UserWorkspace = Depends(get_workspace)) -> Response:
    raise_for(await ws.tables.delete_row(table_id, row_id))
    ws.drop_cells(table_id, row_ids=[row_id])
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{table_id}/rows/delete", status_code=200)
async def delete_rows(
    table_id: str,
    req: DeleteRowsRequest,
    ws: UserWorkspace = Depends(get_workspace),
) -> TableResponse:
    """Delete several rows in one operation. Deleted rows leave the selection."""
    raise_for(await ws.tables.delete_multiple_rows(table_id, req.row_ids))
    ws.drop_cells(table_id, row_ids=req.row_ids)
    return _table_response(ws, table_id)


@router.put("/{table_id}/rows/{row_id}/cells/{column_id}", status_code=200)
async def update_cell(
    table_id: str,
    row_id: str,
    column_id: str,
    req: UpdateCellRequest,
    debounce: bool = Query(default=False),
    ws: UserWorkspace = Depends(get_workspace),
) -> CellWriteResponse:
    """
    Write a cell. The new content is kept even if the database write fails;
    `saved` tells the client whether it reached the database.

    With `debounce=true` the value is queued and written after
    CELL_DEBOUNCE_SECONDS without further edits to the same cell.
    """
    if debounce:
        table = ws.tables.tables.get(table_id)
        if table is None or table.get_row(row_id) is None or table.get_column(column_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cell not found.")
        ws.cell_writer(table_id, row_id, column_id, settings.CELL_DEBOUNCE_SECONDS).push(req.value)
        return CellWriteResponse(saved=False, pending=True)

    # A direct write supersedes any queued value for this cell
    queued = ws.pending_cells.pop((table_id, row_id, column_id), None)
    if queued is not None:
        queued.cancel()
    result = raise_for(await ws.tables.update_cell(table_id, row_id, column_id, req.value))
    return CellWriteResponse(
        cell=CellResponse.from_model(result.value),
        saved=result.error is None,
        error=result.error,
    )


# ---------------------------------------------------------------------------
# Selection (not persisted)
# ---------------------------------------------------------------------------


@router.get("/{table_id}/selection", status_code=200)
async def get_selection(table_id: str, ws: UserWorkspace = Depends(get_workspace)) -> SelectionResponse:
    _require_table(ws, table_id)
    return SelectionResponse(row_ids=ws.tables.selected(table_id))


@router.post("/{table_id}/selection/{row_id}", status_code=200)
async def toggle_selection(table_id: str, row_id: str, ws: UserWorkspace = Depends(get_workspace)) -> SelectionResponse:
    result = raise_for(ws.tables.toggle_row_selection(table_id, row_id))
    return SelectionResponse(row_ids=result.value)


@router.delete("/{table_id}/selection", status_code=200)
async def clear_selection(table_id: str, ws: UserWorkspace = Depends(get_workspace)) -> SelectionResponse:
    ws.tables.clear_selection(table_id)
    return SelectionResponse(row_ids=ws.tables.selected(table_id))

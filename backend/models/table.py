"""Table models: columns, rows, cells, filters and views."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from portal.kernel.column_types import ATTRIBUTE_CATEGORIES, PREDEFINED_ATTRIBUTES, TYPE_REGISTRY
from portal.kernel.types import Cell, Column, FilterCondition, Row, Table

ColumnTypeName = Literal["text", "number", "select", "date", "boolean"]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class CreateTableRequest(BaseModel):
    """What the client sends to create a table."""

    model_config = {"extra": "forbid"}

    name: str | None = Field(default=None, max_length=200)


class RenameTableRequest(BaseModel):
    model_config = {"extra": "forbid"}

    name: str = Field(max_length=200)


class AddColumnRequest(BaseModel):
    """Column definition. Everything is optional: a bare request adds a text column."""

    model_config = {"extra": "forbid"}

    name: str | None = Field(default=None, max_length=200)
    type: ColumnTypeName = "text"
    metadata: dict[str, Any] = Field(default_factory=dict)


class AddPredefinedColumnRequest(BaseModel):
    model_config = {"extra": "forbid"}

    attribute_id: str


class UpdateColumnRequest(BaseModel):
    """Only the fields that are set are changed. Metadata is merged, not replaced."""

    model_config = {"extra": "forbid"}

    name: str | None = Field(default=None, max_length=200)
    type: ColumnTypeName | None = None
    metadata: dict[str, Any] | None = None


class ReorderRequest(BaseModel):
    model_config = {"extra": "forbid"}

    from_index: int = Field(ge=0)
    to_index: int = Field(ge=0)


class DeleteRowsRequest(BaseModel):
    model_config = {"extra": "forbid"}

    row_ids: list[str] = Field(min_length=1)


class UpdateCellRequest(BaseModel):
    model_config = {"extra": "forbid"}

    value: str = Field(max_length=100_000)


class FilterConditionModel(BaseModel):
    """One filter row as sent by the client."""

    model_config = {"extra": "forbid"}

    id: str = ""
    column_id: str
    operator: str
    value: str = ""
    logic: Literal["AND", "OR"] = "AND"

    def to_condition(self, index: int) -> FilterCondition:
        return FilterCondition(
            id=self.id or f"filter-{index}",
            column_id=self.column_id,
            operator=self.operator,
            value=self.value,
            logic=self.logic,
        )


class ViewRequest(BaseModel):
    """Filters and sort for a table view. Not persisted."""

    model_config = {"extra": "forbid"}

    filters: list[FilterConditionModel] = Field(default_factory=list)
    sort_column_id: str | None = None
    sort_direction: Literal["asc", "desc"] = "asc"

    def conditions(self) -> list[FilterCondition]:
        return [f.to_condition(i) for i, f in enumerate(self.filters)]


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ColumnResponse(BaseModel):
    id: str
    name: str
    type: str
    metadata: dict[str, Any]

    @classmethod
    def from_model(cls, column: Column) -> ColumnResponse:
        return cls(id=column.id, name=column.name, type=column.type.value, metadata=column.metadata)


class CellResponse(BaseModel):
    id: str
    content: str
    type: str

    @classmethod
    def from_model(cls, cell: Cell) -> CellResponse:
        return cls(id=cell.id, content=cell.content, type=cell.type.value)


class RowResponse(BaseModel):
    id: str
    cells: dict[str, CellResponse]

    @classmethod
    def from_model(cls, row: Row) -> RowResponse:
        return cls(id=row.id, cells={cid: CellResponse.from_model(c) for cid, c in row.cells.items()})


class TableResponse(BaseModel):
    """A fully hydrated table."""

    id: str
    name: str
    columns: list[ColumnResponse]
    rows: list[RowResponse]
    created_at: datetime | None = None
    selected_rows: list[str] = Field(default_factory=list)

    @classmethod
    def from_model(cls, table: Table, selected_rows: list[str] | None = None) -> TableResponse:
        return cls(
            id=table.id,
            name=table.name,
            columns=[ColumnResponse.from_model(c) for c in table.columns],
            rows=[RowResponse.from_model(r) for r in table.rows],
            created_at=table.created_at,
            selected_rows=selected_rows or [],
        )


class TableListResponse(BaseModel):
    tables: list[TableResponse]
    active_table_id: str | None = None


class ViewResponse(BaseModel):
    rows: list[RowResponse]
    total: int


class SelectionResponse(BaseModel):
    row_ids: list[str]


class CellWriteResponse(BaseModel):
    """
    Result of a cell edit. `saved` is False when the write failed but the edit was kept.
    A debounced edit is only queued: `pending` is True and there is no cell yet.
    """

    cell: CellResponse | None = None
    saved: bool
    pending: bool = False
    error: str | None = None


class FlushResponse(BaseModel):
    flushed: int


class ColumnTypeInfo(BaseModel):
    type: str
    operators: list[str]
    default_metadata: dict[str, Any]


class AttributeInfo(BaseModel):
    id: str
    name: str
    type: str
    category: str
    metadata: dict[str, Any]


class ColumnCatalogResponse(BaseModel):
    """Column types with their filter operators, plus the predefined attribute templates."""

    types: list[ColumnTypeInfo]
    attributes: list[AttributeInfo]
    categories: dict[str, str]

    @classmethod
    def build(cls) -> ColumnCatalogResponse:
        return cls(
            types=[
                ColumnTypeInfo(
                    type=spec.type.value,
                    operators=list(spec.operators),
                    default_metadata=spec.default_metadata,
                )
                for spec in TYPE_REGISTRY.values()
            ],
            attributes=[
                AttributeInfo(id=a.id, name=a.name, type=a.type.value, category=a.category, metadata=a.metadata)
                for a in PREDEFINED_ATTRIBUTES
            ],
            categories=dict(ATTRIBUTE_CATEGORIES),
        )

"""
Folio Kernel — Shared Types

Data classes used across the table ops, query layer, block model and the
two stores. These are the contracts that bind the kernel together.

Key points:
- Cell content is always a raw string; types only drive parsing and display
- ColumnType and BlockType are closed enums with a fail-closed parse
- Tables and rows are plain dataclasses; the ops modules copy, never mutate
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ColumnType(StrEnum):
    TEXT = "text"
    NUMBER = "number"
    SELECT = "select"
    DATE = "date"
    BOOLEAN = "boolean"

    @classmethod
    def parse(cls, value: Any) -> ColumnType:
        """Stored type strings are free text; anything unknown reads as text."""
        if isinstance(value, ColumnType):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.TEXT


class FilterLogic(StrEnum):
    AND = "AND"
    OR = "OR"

    @classmethod
    def parse(cls, value: Any) -> FilterLogic:
        return cls.OR if str(value).upper() == "OR" else cls.AND


class SortDirection(StrEnum):
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, value: Any) -> SortDirection:
        return cls.DESC if str(value).lower() == "desc" else cls.ASC


class BlockType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    RECORD_LINK = "record-link"


class ErrorKind(StrEnum):
    NOT_AUTHENTICATED = "not_authenticated"
    NOT_FOUND = "not_found"
    INVALID = "invalid"
    BACKEND = "backend"


# Placeholders substituted for empty names
DEFAULT_TABLE_NAME = "Untitled Table"
DEFAULT_COLUMN_NAME = "New Column"
DEFAULT_PAGE_NAME = "Untitled"

# Columns every new table starts with
DEFAULT_TABLE_COLUMNS: tuple[str, ...] = ("Name", "Type", "Status")


# ---------------------------------------------------------------------------
# Table aggregate
# ---------------------------------------------------------------------------


@dataclass
class Column:
    id: str
    name: str
    type: ColumnType = ColumnType.TEXT
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Cell:
    id: str
    content: str = ""
    type: ColumnType = ColumnType.TEXT


@dataclass
class Row:
    id: str
    cells: dict[str, Cell] = field(default_factory=dict)

    def content(self, column_id: str) -> str:
        """Raw content for a column; a missing cell reads as empty."""
        cell = self.cells.get(column_id)
        return cell.content if cell is not None else ""


@dataclass
class Table:
    id: str
    name: str
    columns: list[Column] = field(default_factory=list)
    rows: list[Row] = field(default_factory=list)
    created_at: datetime | None = None

    def get_column(self, column_id: str) -> Column | None:
        for column in self.columns:
            if column.id == column_id:
                return column
        return None

    def get_row(self, row_id: str) -> Row | None:
        for row in self.rows:
            if row.id == row_id:
                return row
        return None

    def column_ids(self) -> list[str]:
        return [c.id for c in self.columns]


# ---------------------------------------------------------------------------
# View state
# ---------------------------------------------------------------------------


@dataclass
class FilterCondition:
    """One filter row. Transient view state, never persisted with the table."""

    id: str
    column_id: str
    operator: str
    value: str = ""
    logic: FilterLogic = FilterLogic.AND


# ---------------------------------------------------------------------------
# Blocks and pages
# ---------------------------------------------------------------------------


def empty_doc() -> dict[str, Any]:
    """An empty rich-text document: one blank paragraph."""
    return {"type": "doc", "content": [{"type": "paragraph"}]}


@dataclass
class TextBlock:
    id: str
    doc: dict[str, Any] = field(default_factory=empty_doc)

    @property
    def type(self) -> BlockType:
        return BlockType.TEXT


@dataclass
class ImageBlock:
    id: str
    url: str = ""
    alt: str = ""
    caption: str = ""

    @property
    def type(self) -> BlockType:
        return BlockType.IMAGE


@dataclass
class RecordLinkBlock:
    id: str
    record_id: str = ""
    record_type: str = ""
    title: str = ""

    @property
    def type(self) -> BlockType:
        return BlockType.RECORD_LINK


Block = TextBlock | ImageBlock | RecordLinkBlock


@dataclass
class Page:
    id: str
    name: str = DEFAULT_PAGE_NAME
    slug: str = ""
    is_published: bool = False
    blocks: list[Block] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class MutationResult:
    """
    Result of one store operation.
    Store operations never raise for expected failures; they return one of these.
    """

    ok: bool
    value: Any = None
    error: str | None = None
    kind: ErrorKind | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def now_utc() -> datetime:
    """Current UTC time."""
    return datetime.now(UTC)

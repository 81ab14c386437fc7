"""
Folio Kernel — Column Type Registry

Maps each ColumnType to its filter operators, a content parser, the default
metadata shape and a display formatter. No side effects anywhere in here.

Unknown type tags fail closed: they get the text spec, never an exception.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from portal.kernel.types import Column, ColumnType

# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------

TEXT_OPERATORS: tuple[str, ...] = (
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "starts_with",
    "ends_with",
    "is_empty",
    "is_not_empty",
)

NUMBER_OPERATORS: tuple[str, ...] = (
    "equals",
    "not_equals",
    "greater_than",
    "less_than",
    "greater_equal",
    "less_equal",
    "is_empty",
    "is_not_empty",
)

DATE_OPERATORS: tuple[str, ...] = (
    "equals",
    "not_equals",
    "after",
    "before",
    "on_or_after",
    "on_or_before",
    "is_empty",
    "is_not_empty",
)

SELECT_OPERATORS: tuple[str, ...] = ("equals", "not_equals", "is_empty", "is_not_empty")

BOOLEAN_OPERATORS: tuple[str, ...] = ("equals", "not_equals")

VALUELESS_OPERATORS: frozenset[str] = frozenset({"is_empty", "is_not_empty"})

NUMBER_FORMATS: tuple[str, ...] = ("plain", "currency", "percent")
DATE_FORMATS: tuple[str, ...] = ("short", "medium", "long", "iso")

# Accepted in addition to ISO 8601
_DATE_INPUT_FORMATS = ("%m/%d/%Y", "%b %d, %Y", "%B %d, %Y")


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


def parse_text(content: str) -> str:
    return content


def parse_number(content: str) -> float | None:
    """Parse numeric content. Blank, malformed or non-finite input → None."""
    text = (content or "").strip()
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_date(content: str) -> date | None:
    """Parse ISO dates/datetimes, plus a few display formats. Failure → None."""
    text = (content or "").strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in _DATE_INPUT_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_boolean(content: str) -> bool:
    return (content or "").strip().lower() == "true"


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


def _trim_fraction(text: str) -> str:
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_number(content: str, fmt: str = "plain") -> str:
    if not content:
        return ""
    value = parse_number(content)
    if value is None:
        return content

    sign = "-" if value < 0 else ""
    magnitude = abs(value)
    if fmt == "currency":
        return f"{sign}${magnitude:,.2f}"
    if fmt == "percent":
        # content is already in percent units: "12.5" → 12.5%
        return f"{sign}{_trim_fraction(f'{magnitude:,.2f}')}%"
    return f"{sign}{_trim_fraction(f'{magnitude:,.3f}')}"


def format_date(content: str, fmt: str = "short") -> str:
    if not content:
        return ""
    value = parse_date(content)
    if value is None:
        return content

    if fmt == "iso":
        return value.isoformat()
    if fmt == "medium":
        return f"{value:%b} {value.day}, {value.year}"
    if fmt == "long":
        return f"{value:%B} {value.day}, {value.year}"
    return f"{value.month}/{value.day}/{value.year}"


def format_boolean(content: str, fmt: str = "") -> str:
    return "true" if parse_boolean(content) else "false"


def format_raw(content: str, fmt: str = "") -> str:
    return content or ""


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TypeSpec:
    """Everything the kernel knows about one column type."""

    type: ColumnType
    operators: tuple[str, ...]
    parse: Callable[[str], Any]
    format: Callable[[str, str], str]
    default_metadata: dict[str, Any] = field(default_factory=dict)


TYPE_REGISTRY: dict[ColumnType, TypeSpec] = {
    ColumnType.TEXT: TypeSpec(ColumnType.TEXT, TEXT_OPERATORS, parse_text, format_raw),
    ColumnType.NUMBER: TypeSpec(
        ColumnType.NUMBER,
        NUMBER_OPERATORS,
        parse_number,
        format_number,
        {"format": "plain"},
    ),
    ColumnType.DATE: TypeSpec(
        ColumnType.DATE,
        DATE_OPERATORS,
        parse_date,
        format_date,
        {"format": "short"},
    ),
    ColumnType.SELECT: TypeSpec(
        ColumnType.SELECT,
        SELECT_OPERATORS,
        parse_text,
        format_raw,
        {"options": []},
    ),
    ColumnType.BOOLEAN: TypeSpec(ColumnType.BOOLEAN, BOOLEAN_OPERATORS, parse_boolean, format_boolean),
}


def type_spec(type_tag: ColumnType | str | None) -> TypeSpec:
    """Look up a type spec. Unrecognized tags get the text spec."""
    return TYPE_REGISTRY[ColumnType.parse(type_tag)]


def operators_for(type_tag: ColumnType | str | None) -> tuple[str, ...]:
    return type_spec(type_tag).operators


def operator_needs_value(operator: str) -> bool:
    return operator not in VALUELESS_OPERATORS


def default_metadata(type_tag: ColumnType | str | None) -> dict[str, Any]:
    """A fresh copy of the default metadata for a type."""
    return copy.deepcopy(type_spec(type_tag).default_metadata)


def formats_for(type_tag: ColumnType | str | None) -> tuple[str, ...]:
    """Display formats a type accepts in metadata["format"]. Empty for types without formats."""
    column_type = ColumnType.parse(type_tag)
    if column_type == ColumnType.NUMBER:
        return NUMBER_FORMATS
    if column_type == ColumnType.DATE:
        return DATE_FORMATS
    return ()


def format_cell(content: str, column: Column) -> str:
    """Display string for a cell's raw content under its column's type and format."""
    spec = type_spec(column.type)
    fmt = column.metadata.get("format") or spec.default_metadata.get("format", "")
    return spec.format(content or "", fmt)


# ---------------------------------------------------------------------------
# Predefined attribute templates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AttributeTemplate:
    id: str
    name: str
    type: ColumnType
    category: str
    metadata: dict[str, Any] = field(default_factory=dict)


ATTRIBUTE_CATEGORIES: dict[str, str] = {
    "common": "Common Fields",
    "product": "Product Attributes",
    "contact": "Contact Information",
    "system": "System Fields",
}

PREDEFINED_ATTRIBUTES: tuple[AttributeTemplate, ...] = (
    AttributeTemplate("name", "Name", ColumnType.TEXT, "common"),
    AttributeTemplate("description", "Description", ColumnType.TEXT, "common"),
    AttributeTemplate("email", "Email", ColumnType.TEXT, "contact"),
    AttributeTemplate("phone", "Phone", ColumnType.TEXT, "contact"),
    AttributeTemplate("price", "Price", ColumnType.NUMBER, "product", {"format": "currency"}),
    AttributeTemplate("stockLevel", "Stock Level", ColumnType.NUMBER, "product"),
    AttributeTemplate("discount", "Discount", ColumnType.NUMBER, "product", {"format": "percent"}),
    AttributeTemplate(
        "status",
        "Status",
        ColumnType.SELECT,
        "common",
        {"options": ["New", "In Progress", "Completed", "Canceled"]},
    ),
    AttributeTemplate("createdAt", "Created at", ColumnType.DATE, "system"),
    AttributeTemplate("updatedAt", "Updated at", ColumnType.DATE, "system"),
    AttributeTemplate("dueDate", "Due date", ColumnType.DATE, "common"),
    AttributeTemplate("active", "Active", ColumnType.BOOLEAN, "common"),
)


def get_predefined_attribute(attribute_id: str) -> AttributeTemplate | None:
    for attribute in PREDEFINED_ATTRIBUTES:
        if attribute.id == attribute_id:
            return attribute
    return None

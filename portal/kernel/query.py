"""
Folio Kernel — Query / View Layer

Pure function: (rows, filters, sort) → displayed rows.

Filters chain left to right. The first condition's logic is ignored; every
later condition folds into the running result with its own AND/OR:

    result = c0
    for i in 1..n:
        result = (result and ci) if logic_i == AND else (result or ci)

Evaluation never raises. An operator outside the column type's set, an
unknown operator, or content that fails to parse is simply "no match".

Sorting is single-column, lexicographic on the raw content string, and
stable in both directions so ties keep their original order.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from portal.kernel.column_types import operators_for, parse_boolean, parse_date, parse_number
from portal.kernel.types import (
    Column,
    ColumnType,
    FilterCondition,
    FilterLogic,
    Row,
    SortDirection,
)

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def derive_view(
    rows: Sequence[Row],
    filters: Iterable[FilterCondition] = (),
    sort_column_id: str | None = None,
    sort_direction: SortDirection | str = SortDirection.ASC,
    columns: Sequence[Column] | None = None,
) -> list[Row]:
    """
    Return the rows to display, filtered then sorted.
    Always a new list; neither `rows` nor the row objects are modified.
    """
    conditions = list(filters)
    types = {c.id: c.type for c in columns} if columns is not None else {}

    visible = [row for row in rows if row_matches(row, conditions, types)]

    if sort_column_id:
        descending = SortDirection.parse(sort_direction) == SortDirection.DESC
        # sorted() is stable, and stays stable with reverse=True
        visible = sorted(visible, key=lambda r: r.content(sort_column_id), reverse=descending)

    return visible


def row_matches(
    row: Row,
    conditions: Sequence[FilterCondition],
    types: dict[str, ColumnType] | None = None,
) -> bool:
    """Left-fold the conditions over one row. No conditions → match."""
    if not conditions:
        return True

    types = types or {}
    result = evaluate_condition(row, conditions[0], _column_type(row, conditions[0].column_id, types))
    for condition in conditions[1:]:
        matched = evaluate_condition(row, condition, _column_type(row, condition.column_id, types))
        if FilterLogic.parse(condition.logic) == FilterLogic.OR:
            result = result or matched
        else:
            result = result and matched
    return result


def evaluate_condition(row: Row, condition: FilterCondition, column_type: ColumnType | str) -> bool:
    """Evaluate a single condition against a row's cell under the given column type."""
    column_type = ColumnType.parse(column_type)
    operator = condition.operator
    if operator not in operators_for(column_type):
        return False

    content = row.content(condition.column_id)
    value = condition.value or ""

    if operator == "is_empty":
        return not content.strip()
    if operator == "is_not_empty":
        return bool(content.strip())

    evaluator = _EVALUATORS.get(column_type, _eval_text)
    return evaluator(operator, content, value)


# ---------------------------------------------------------------------------
# Per-type evaluators
# ---------------------------------------------------------------------------


def _column_type(row: Row, column_id: str, types: dict[str, ColumnType]) -> ColumnType:
    if column_id in types:
        return types[column_id]
    cell = row.cells.get(column_id)
    return cell.type if cell is not None else ColumnType.TEXT


def _eval_text(operator: str, content: str, value: str) -> bool:
    haystack = content.casefold()
    needle = value.casefold()
    if operator == "equals":
        return haystack == needle
    if operator == "not_equals":
        return haystack != needle
    if operator == "contains":
        return needle in haystack
    if operator == "not_contains":
        return needle not in haystack
    if operator == "starts_with":
        return haystack.startswith(needle)
    if operator == "ends_with":
        return haystack.endswith(needle)
    return False


def _compare(operator: str, left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    if operator == "equals":
        return left == right
    if operator == "not_equals":
        return left != right
    if operator in ("greater_than", "after"):
        return left > right
    if operator in ("less_than", "before"):
        return left < right
    if operator in ("greater_equal", "on_or_after"):
        return left >= right
    if operator in ("less_equal", "on_or_before"):
        return left <= right
    return False


def _eval_number(operator: str, content: str, value: str) -> bool:
    return _compare(operator, parse_number(content), parse_number(value))


def _eval_date(operator: str, content: str, value: str) -> bool:
    return _compare(operator, parse_date(content), parse_date(value))


def _eval_select(operator: str, content: str, value: str) -> bool:
    if operator == "equals":
        return content == value
    if operator == "not_equals":
        return content != value
    return False


def _eval_boolean(operator: str, content: str, value: str) -> bool:
    return _compare(operator, parse_boolean(content), parse_boolean(value))


_EVALUATORS = {
    ColumnType.TEXT: _eval_text,
    ColumnType.NUMBER: _eval_number,
    ColumnType.DATE: _eval_date,
    ColumnType.SELECT: _eval_select,
    ColumnType.BOOLEAN: _eval_boolean,
}

"""Column-type dispatcher.

Given a row and a column, :func:`derive_cell` produces the derived value and
its display text; :func:`validate_write` checks a direct edit before it is stored.
FORMULA columns are evaluated first by :func:`evaluate_row`, so every other
consumer of the row sees their results.

Type map
--------

======================== ============================================ ========
Type                     Derivation                                   Editable
======================== ============================================ ========
TEXT, MESSAGE, WATERFALL identity (stringified)                       yes
NUMBER, CURRENCY         numeric coercion; invalid input kept as text yes
DATE                     ISO string passthrough, no tz handling       yes
URL, EMAIL, IMAGE        passthrough                                  yes
CHECKBOX                 ``True, 'true', 1, '1'`` are checked         yes
SELECT                   one option label or empty                    yes
FORMULA                  ``resolve(formula, row, columns)``           no
MERGE                    first non-blank resolved merge input         no
ENRICHMENT               parsed JSON blob                             no
HTTP                     last mapped response string                  no
======================== ============================================ ========

Linked columns are read-only whatever their type and take their value from a
:class:`~gridwright.sheet_runtime.engine.linked.LinkedColumnIndex`.

Coercion never raises.  Bad numbers, dates or JSON degrade to a safe value so
one bad cell can never break a render.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from typing import Any

from gridwright.sheet_runtime.constants import HTTP_UNCONFIGURED, MERGE_NO_DATA, SELECT_PALETTE
from gridwright.sheet_runtime.engine.enrichment import parse_enrichment
from gridwright.sheet_runtime.engine.linked import LinkedColumnIndex
from gridwright.sheet_runtime.engine.references import resolve, stringify_cell
from gridwright.sheet_runtime.models.enrichment import EnrichmentError
from gridwright.sheet_runtime.models.enums import ColumnType
from gridwright.sheet_runtime.models.render import RenderedCell, RenderedRow
from gridwright.sheet_runtime.models.sheet import CellValue, ColumnDefinition, RowData, SelectOption

COMPUTED_TYPES = frozenset({ColumnType.FORMULA, ColumnType.MERGE, ColumnType.ENRICHMENT, ColumnType.HTTP})
NUMERIC_TYPES = frozenset({ColumnType.NUMBER, ColumnType.CURRENCY})
_CHECKED_VALUES = frozenset({"true", "1"})

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ReadOnlyColumnError(ValueError):
    """A direct write targeted a computed or linked column."""

    def __init__(self, column: ColumnDefinition) -> None:
        reason = "linked" if column.is_linked else f"computed ({column.type})"
        super().__init__(f"Column '{column.id}' is {reason} and cannot be edited")


class InvalidSelectOptionError(ValueError):
    """A SELECT write did not match any option label."""

    def __init__(self, column: ColumnDefinition, value: str) -> None:
        super().__init__(f"'{value}' is not an option of column '{column.id}'")


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def parse_number(value: Any) -> int | float | None:
    """Parse a finite number, or ``None`` when *value* is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = value
    else:
        text = str(value).strip().replace(",", "")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if not math.isfinite(number):
        return None
    if isinstance(number, float) and number.is_integer():
        return int(number)
    return number


def format_currency(value: Any) -> str:
    """``$``-prefixed, two decimals.  Non-numeric input is returned as text."""
    number = parse_number(value)
    if number is None:
        return stringify_cell(value)
    sign = "-" if number < 0 else ""
    return f"{sign}${abs(number):,.2f}"


def is_checked(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    return isinstance(value, str) and value.strip().lower() in _CHECKED_VALUES


def is_editable(column: ColumnDefinition) -> bool:
    return not column.is_linked and column.type not in COMPUTED_TYPES


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------


def evaluate_formula(column: ColumnDefinition, row: RowData, columns: Sequence[ColumnDefinition]) -> str:
    return resolve(column.formula or "", row, columns)


def evaluate_merge(
    column: ColumnDefinition,
    row: RowData,
    columns: Sequence[ColumnDefinition],
) -> str | None:
    """First merge input whose resolved text is non-blank; else the stored value.

    Returns ``None`` when neither yields anything.
    """
    for merge_input in column.merge_inputs or []:
        result = resolve(merge_input.template, row, columns).strip()
        if result:
            return result
    stored = stringify_cell(row.get(column.id)).strip()
    return stored or None


def evaluate_row(row: RowData, columns: Sequence[ColumnDefinition]) -> RowData:
    """Copy of *row* with every FORMULA column resolved, in column order.

    Single pass: a formula sees the results of formulas to its left and the
    stored value of those to its right.
    """
    evaluated = dict(row)
    for column in columns:
        if column.type == ColumnType.FORMULA and column.formula and column.linked_column is None:
            evaluated[column.id] = evaluate_formula(column, evaluated, columns)
    return evaluated


def derive_cell(
    row: RowData,
    column: ColumnDefinition,
    columns: Sequence[ColumnDefinition],
    *,
    linked: LinkedColumnIndex | None = None,
) -> RenderedCell:
    """Derive the typed value and display text for one cell."""
    return _derive(evaluate_row(row, columns), column, columns, linked)


def _derive(
    row: RowData,
    column: ColumnDefinition,
    columns: Sequence[ColumnDefinition],
    linked: LinkedColumnIndex | None,
) -> RenderedCell:
    if column.linked_column is not None:
        raw = linked.resolve(row, column.linked_column) if linked is not None else None
        cell = _derive_by_type(raw, row, column, columns)
        cell.editable = False
        return cell
    return _derive_by_type(row.get(column.id), row, column, columns)


def _derive_by_type(
    raw: CellValue,
    row: RowData,
    column: ColumnDefinition,
    columns: Sequence[ColumnDefinition],
) -> RenderedCell:
    cell = RenderedCell(column_id=column.id, type=column.type, editable=is_editable(column))

    match column.type:
        case ColumnType.NUMBER | ColumnType.CURRENCY:
            number = parse_number(raw)
            cell.is_numeric = number is not None
            cell.value = number if number is not None else stringify_cell(raw)
            if number is None:
                cell.display = stringify_cell(raw)
            elif column.type == ColumnType.CURRENCY:
                cell.display = format_currency(number)
            else:
                cell.display = stringify_cell(number)

        case ColumnType.CHECKBOX:
            checked = is_checked(raw)
            cell.value = cell.checked = checked
            cell.display = stringify_cell(checked)

        case ColumnType.SELECT:
            label = stringify_cell(raw)
            cell.value = cell.display = label
            option = next((o for o in column.options or [] if o.label == label), None)
            cell.option_color = option.color if option else None

        case ColumnType.FORMULA:
            # Already resolved by evaluate_row.
            cell.value = cell.display = stringify_cell(raw)

        case ColumnType.MERGE:
            merged = evaluate_merge(column, row, columns)
            cell.value = merged
            cell.display = merged if merged is not None else MERGE_NO_DATA

        case ColumnType.ENRICHMENT:
            result = parse_enrichment(raw)
            cell.enrichment = result
            if isinstance(result, EnrichmentError):
                cell.value = None
                cell.display = result.message
            else:
                cell.value = result.data
                cell.display = f"JSON | {result.field_count} Fields" if result.field_count else ""

        case ColumnType.HTTP:
            cell.configured = column.connected_http_request_id is not None
            cell.value = stringify_cell(raw)
            cell.display = cell.value if cell.configured else (cell.value or HTTP_UNCONFIGURED)

        case _:
            # TEXT, MESSAGE, WATERFALL, DATE, URL, EMAIL, IMAGE
            cell.value = cell.display = stringify_cell(raw)

    return cell


def render_row(
    row: RowData,
    columns: Sequence[ColumnDefinition],
    *,
    linked: LinkedColumnIndex | None = None,
) -> RenderedRow:
    evaluated = evaluate_row(row, columns)
    return RenderedRow(
        id=str(row.get("id", "")),
        cells={c.id: _derive(evaluated, c, columns, linked) for c in columns},
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def coerce_write(column: ColumnDefinition, value: Any) -> CellValue:
    """Normalise a user-entered value for storage (never raises)."""
    match column.type:
        case ColumnType.CHECKBOX:
            return is_checked(value)
        case ColumnType.NUMBER | ColumnType.CURRENCY:
            number = parse_number(value)
            # Invalid numbers are accepted as raw text.
            return number if number is not None else stringify_cell(value)
        case _:
            if value is None or isinstance(value, (str, int, float, bool)):
                return value
            return stringify_cell(value)


def validate_write(column: ColumnDefinition, value: Any) -> CellValue:
    """Check that *value* may be written to *column*; return the stored form.

    Raises ``ReadOnlyColumnError`` for linked / computed columns and
    ``InvalidSelectOptionError`` for SELECT values outside the option set.
    """
    if not is_editable(column):
        raise ReadOnlyColumnError(column)
    stored = coerce_write(column, value)
    if column.type == ColumnType.SELECT:
        label = stringify_cell(stored)
        if label and label not in {o.label for o in column.options or []}:
            raise InvalidSelectOptionError(column, label)
    return stored


# ---------------------------------------------------------------------------
# Column type conversion
# ---------------------------------------------------------------------------


def populate_select_options(
    column: ColumnDefinition,
    rows: Iterable[RowData],
    palette: Sequence[str] = SELECT_PALETTE,
) -> list[SelectOption]:
    """Options for a column being converted to SELECT.

    Existing options are preserved untouched.  Otherwise one option is built
    per distinct non-empty value, in row order, with colours assigned
    round-robin from *palette*.
    """
    if column.options:
        return list(column.options)
    labels: dict[str, None] = {}
    for row in rows:
        label = stringify_cell(row.get(column.id)).strip()
        if label:
            labels.setdefault(label, None)
    return [
        SelectOption(id=f"opt_{i + 1}", label=label, color=palette[i % len(palette)])
        for i, label in enumerate(labels)
    ]


def convert_column_type(
    column: ColumnDefinition,
    new_type: ColumnType,
    rows: Iterable[RowData],
    palette: Sequence[str] = SELECT_PALETTE,
) -> ColumnDefinition:
    """Return *column* retyped to *new_type*, auto-populating SELECT options."""
    update: dict[str, Any] = {"type": new_type}
    if new_type == ColumnType.SELECT:
        update["options"] = populate_select_options(column, rows, palette)
    return column.model_copy(update=update)

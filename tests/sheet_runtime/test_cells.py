"""Unit tests for the column-type dispatcher."""

from __future__ import annotations

import json

import pytest

from gridwright.sheet_runtime.engine.cells import (
    InvalidSelectOptionError,
    ReadOnlyColumnError,
    coerce_write,
    convert_column_type,
    derive_cell,
    evaluate_row,
    format_currency,
    is_checked,
    populate_select_options,
    render_row,
    validate_write,
)
from gridwright.sheet_runtime.engine.linked import LinkedColumnIndex
from gridwright.sheet_runtime.models.enums import ColumnType
from gridwright.sheet_runtime.models.sheet import (
    ColumnDefinition,
    LinkedColumnConfig,
    MergeInput,
    SelectOption,
)

STATUS = ColumnDefinition(
    id="status",
    header="Status",
    type=ColumnType.SELECT,
    options=[
        SelectOption(id="o1", label="Open", color="#3B82F6"),
        SelectOption(id="o2", label="Closed", color="#EF4444"),
    ],
)


def _col(col_id: str, col_type: ColumnType = ColumnType.TEXT, **kwargs: object) -> ColumnDefinition:
    return ColumnDefinition(id=col_id, header=col_id.title(), type=col_type, **kwargs)


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------


def test_number_cell() -> None:
    col = _col("amount", ColumnType.NUMBER)
    cell = derive_cell({"amount": "1,234"}, col, [col])
    assert cell.value == 1234
    assert cell.is_numeric is True
    assert cell.display == "1234"


def test_number_cell_invalid_kept_as_text() -> None:
    col = _col("amount", ColumnType.NUMBER)
    cell = derive_cell({"amount": "n/a"}, col, [col])
    assert cell.is_numeric is False
    assert cell.value == "n/a"
    assert cell.display == "n/a"


def test_currency_cell_display() -> None:
    col = _col("price", ColumnType.CURRENCY)
    assert derive_cell({"price": 1234.5}, col, [col]).display == "$1,234.50"
    assert format_currency(-5) == "-$5.00"
    assert format_currency("abc") == "abc"


@pytest.mark.parametrize("value", [True, "true", "TRUE", 1, "1"])
def test_checkbox_checked(value: object) -> None:
    assert is_checked(value) is True


@pytest.mark.parametrize("value", [False, "false", 0, "yes", "", None])
def test_checkbox_unchecked(value: object) -> None:
    assert is_checked(value) is False


def test_select_cell_color() -> None:
    cell = derive_cell({"status": "Closed"}, STATUS, [STATUS])
    assert cell.display == "Closed"
    assert cell.option_color == "#EF4444"
    assert derive_cell({"status": "Other"}, STATUS, [STATUS]).option_color is None


def test_formula_cell() -> None:
    first, last = _col("first"), _col("last")
    full = _col("full", ColumnType.FORMULA, formula="/first /last")
    cell = derive_cell({"first": "Ada", "last": "Lovelace"}, full, [first, last, full])
    assert cell.value == "Ada Lovelace"
    assert cell.editable is False


def test_evaluate_row_single_pass_in_column_order() -> None:
    a = _col("a")
    left = _col("left", ColumnType.FORMULA, formula="</a>")
    middle = _col("middle", ColumnType.FORMULA, formula="/left+/right")
    right = _col("right", ColumnType.FORMULA, formula="/a!")
    row = {"a": "x", "right": "stale"}

    evaluated = evaluate_row(row, [a, left, middle, right])
    assert evaluated["left"] == "<x>"
    assert evaluated["middle"] == "<x>+stale"
    assert evaluated["right"] == "x!"
    assert row == {"a": "x", "right": "stale"}


def test_merge_over_formula() -> None:
    first, last = _col("first"), _col("last")
    full = _col("full", ColumnType.FORMULA, formula="/first /last")
    label = _col("label", ColumnType.MERGE, merge_inputs=[MergeInput(id="m1", template="/full")])
    columns = [first, last, full, label]

    rendered = render_row({"id": "r1", "first": "Ada", "last": "Lovelace"}, columns)
    assert rendered.cells["full"].value == "Ada Lovelace"
    assert rendered.cells["label"].value == "Ada Lovelace"
    assert derive_cell({"first": "Ada", "last": "Lovelace"}, label, columns).display == "Ada Lovelace"


def test_merge_cell_first_non_blank() -> None:
    work, personal = _col("work"), _col("personal")
    merged = _col(
        "email",
        ColumnType.MERGE,
        merge_inputs=[MergeInput(id="m1", template="/work"), MergeInput(id="m2", template="/personal")],
    )
    columns = [work, personal, merged]
    assert derive_cell({"work": " ", "personal": "p@x.io"}, merged, columns).value == "p@x.io"
    assert derive_cell({"work": "w@x.io", "personal": "p@x.io"}, merged, columns).value == "w@x.io"


def test_merge_cell_falls_back_to_stored_then_no_data() -> None:
    merged = _col("email", ColumnType.MERGE, merge_inputs=[MergeInput(id="m1", template="/work")])
    columns = [_col("work"), merged]
    assert derive_cell({"email": "kept@x.io"}, merged, columns).value == "kept@x.io"

    empty = derive_cell({}, merged, columns)
    assert empty.value is None
    assert empty.display == "no data"


def test_enrichment_cell() -> None:
    col = _col("info", ColumnType.ENRICHMENT)
    blob = json.dumps({"ceo": "Ada", "size": 10, "_sources": ["x.io"]})
    cell = derive_cell({"info": blob}, col, [col])
    assert cell.value == {"ceo": "Ada", "size": 10}
    assert cell.display == "JSON | 2 Fields"
    assert cell.enrichment.sources == ["x.io"]


def test_enrichment_cell_error_and_garbage() -> None:
    col = _col("info", ColumnType.ENRICHMENT)
    failed = derive_cell({"info": json.dumps({"error": "quota"})}, col, [col])
    assert failed.value is None
    assert failed.display == "quota"

    garbage = derive_cell({"info": "{not json"}, col, [col])
    assert garbage.value == {}
    assert garbage.display == ""


def test_http_cell_unconfigured() -> None:
    col = _col("resp", ColumnType.HTTP)
    cell = derive_cell({}, col, [col])
    assert cell.configured is False
    assert cell.display == "unconfigured"

    wired = _col("resp", ColumnType.HTTP, connected_http_request_id="h1")
    assert derive_cell({"resp": "ok"}, wired, [wired]).display == "ok"


def test_linked_cell_is_read_only() -> None:
    link = LinkedColumnConfig(
        source_sheet_id="companies",
        source_column_id="industry",
        match_column_id="company",
        source_match_column_id="name",
    )
    col = _col("industry", linked_column=link)
    index = LinkedColumnIndex({"companies": [{"id": "c1", "name": "Acme", "industry": "Rockets"}]})

    cell = derive_cell({"company": "Acme"}, col, [col], linked=index)
    assert cell.value == "Rockets"
    assert cell.editable is False


def test_render_row() -> None:
    columns = [_col("name"), _col("n", ColumnType.NUMBER)]
    rendered = render_row({"id": "r1", "name": "Ada", "n": "7"}, columns)
    assert rendered.id == "r1"
    assert set(rendered.cells) == {"name", "n"}
    assert rendered.cells["n"].value == 7


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def test_write_rejects_computed_and_linked() -> None:
    with pytest.raises(ReadOnlyColumnError):
        validate_write(_col("f", ColumnType.FORMULA, formula="/x"), "x")
    link = LinkedColumnConfig(
        source_sheet_id="s", source_column_id="c", match_column_id="m", source_match_column_id="k"
    )
    with pytest.raises(ReadOnlyColumnError, match="linked"):
        validate_write(_col("l", linked_column=link), "x")


def test_write_select_must_match_option() -> None:
    assert validate_write(STATUS, "Open") == "Open"
    assert validate_write(STATUS, "") == ""
    with pytest.raises(InvalidSelectOptionError):
        validate_write(STATUS, "Maybe")


def test_coerce_write() -> None:
    assert coerce_write(_col("n", ColumnType.NUMBER), "42") == 42
    assert coerce_write(_col("n", ColumnType.NUMBER), "abc") == "abc"
    assert coerce_write(_col("c", ColumnType.CHECKBOX), "1") is True
    assert coerce_write(_col("t"), ["a"]) == '["a"]'


# ---------------------------------------------------------------------------
# Type conversion
# ---------------------------------------------------------------------------


def test_populate_select_options_from_values() -> None:
    rows = [{"tier": "Gold"}, {"tier": ""}, {"tier": "Silver"}, {"tier": "Gold"}]
    options = populate_select_options(_col("tier"), rows, palette=("#111", "#222"))
    assert [(o.label, o.color) for o in options] == [("Gold", "#111"), ("Silver", "#222")]


def test_convert_to_select_keeps_existing_options() -> None:
    converted = convert_column_type(STATUS, ColumnType.SELECT, [{"status": "New"}])
    assert [o.label for o in converted.options] == ["Open", "Closed"]


def test_convert_column_type_returns_copy() -> None:
    col = _col("n")
    converted = convert_column_type(col, ColumnType.NUMBER, [])
    assert converted.type == ColumnType.NUMBER
    assert col.type == ColumnType.TEXT

"""File import: parse uploads and plan how they land in a sheet.

Parsing is synchronous (csv / openpyxl); run it off the event loop with
``anyio.to_thread.run_sync`` when called from async code.
"""

from __future__ import annotations

import csv
import io
import math
import re
import time
import uuid
import zipfile
from collections.abc import Callable, Iterable, Sequence
from datetime import date, datetime
from typing import Any

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from gridwright.sheet_runtime.constants import NUMBER_INFERENCE_RATIO
from gridwright.sheet_runtime.engine.cells import parse_number
from gridwright.sheet_runtime.engine.header_match import normalize_header, partition_matches
from gridwright.sheet_runtime.engine.references import stringify_cell
from gridwright.sheet_runtime.models.enums import ColumnType
from gridwright.sheet_runtime.models.imports import (
    HeaderMatch,
    ImportCell,
    ImportPlan,
    ParsedFile,
    ParsedSheet,
)
from gridwright.sheet_runtime.models.sheet import CellValue, ColumnDefinition, RowData

RESERVED_IDS = frozenset({"id"})
"""Row keys that can never be used as a column id."""

_NON_ID_CHARS = re.compile(r"[^a-z0-9]+")


class UnsupportedFileError(ValueError):
    """The upload is neither CSV nor Excel."""


# ---------------------------------------------------------------------------
# Headers and ids
# ---------------------------------------------------------------------------


def dedupe_headers(headers: Iterable[str]) -> list[str]:
    """Rename repeated headers (by normalised form) to ``"H (2)"``, ``"H (3)"``..."""
    seen: dict[str, int] = {}
    result = []
    for header in headers:
        trimmed = header.strip()
        key = normalize_header(trimmed)
        count = seen.get(key, 0) + 1
        seen[key] = count
        result.append(trimmed if count == 1 else f"{trimmed} ({count})")
    return result


def create_column_id(header: str, existing_ids: Iterable[str] = ()) -> str:
    """Slug a header into a column id unique among *existing_ids*."""
    base = _NON_ID_CHARS.sub("_", normalize_header(header)).strip("_")
    if not base:
        base = f"field_{int(time.time() * 1000)}"
    taken = set(existing_ids) | RESERVED_IDS
    candidate, n = base, 1
    while candidate in taken:
        n += 1
        candidate = f"{base}_{n}"
    return candidate


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------


def infer_column_type(values: Iterable[ImportCell]) -> ColumnType:
    """NUMBER when at least 80% of the non-empty values are finite numbers."""
    total = numeric = 0
    for value in values:
        if value is None or value == "":
            continue
        total += 1
        if parse_number(value) is not None:
            numeric += 1
    if total and numeric / total >= NUMBER_INFERENCE_RATIO:
        return ColumnType.NUMBER
    return ColumnType.TEXT


def coerce_cell_value(value: ImportCell, column_type: ColumnType) -> CellValue:
    if column_type in (ColumnType.NUMBER, ColumnType.CURRENCY):
        number = parse_number(value)
        return 0 if number is None else number
    return stringify_cell(value)


def _excel_value(value: Any) -> ImportCell:
    if value is None:
        return None
    if isinstance(value, bool):
        return stringify_cell(value)
    if isinstance(value, (int, float)):
        return value if not isinstance(value, float) or math.isfinite(value) else None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _build_sheet(name: str, header_row: Sequence[Any], data_rows: Iterable[Sequence[Any]]) -> ParsedSheet:
    """Key data rows by deduped header; drop empty headers and wholly empty rows."""
    positions = [i for i, cell in enumerate(header_row) if cell is not None and str(cell).strip()]
    headers = dedupe_headers(str(header_row[i]).lstrip("\ufeff") for i in positions)

    rows = []
    for raw in data_rows:
        row: dict[str, ImportCell] = {}
        for header, index in zip(headers, positions, strict=True):
            row[header] = raw[index] if index < len(raw) else None
        if any(v is not None and v != "" for v in row.values()):
            rows.append(row)
    return ParsedSheet(name=name, headers=headers, rows=rows)


def parse_csv(text: str, name: str = "Sheet1") -> ParsedFile:
    records = list(csv.reader(io.StringIO(text.lstrip("\ufeff"))))
    if not records:
        return ParsedFile()
    sheet = _build_sheet(name, records[0], records[1:])
    return ParsedFile(headers=sheet.headers, rows=sheet.rows)


def parse_excel(data: bytes) -> ParsedFile:
    workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        sheets = []
        for worksheet in workbook.worksheets:
            values = [[_excel_value(v) for v in row] for row in worksheet.iter_rows(values_only=True)]
            if not values:
                sheets.append(ParsedSheet(name=worksheet.title))
                continue
            sheets.append(_build_sheet(worksheet.title, values[0], values[1:]))
    finally:
        workbook.close()

    if not sheets:
        return ParsedFile(sheets=[])
    first = sheets[0]
    return ParsedFile(headers=first.headers, rows=first.rows, sheets=sheets)


def parse_upload(file_name: str, data: bytes) -> ParsedFile:
    """Dispatch on extension.  Raises ``UnsupportedFileError`` for anything else."""
    ext = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    if ext == "csv":
        parsed = parse_csv(data.decode("utf-8-sig", errors="replace"))
    elif ext in ("xls", "xlsx"):
        try:
            parsed = parse_excel(data)
        except (InvalidFileException, zipfile.BadZipFile) as exc:
            msg = f"Could not read workbook '{file_name}': {exc}"
            raise UnsupportedFileError(msg) from exc
    else:
        msg = f"Unsupported file type: '{file_name}'"
        raise UnsupportedFileError(msg)
    parsed.file_name = file_name
    return parsed


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def _new_row_id() -> str:
    return f"row-{uuid.uuid4().hex[:12]}"


def build_import_plan(
    headers: Sequence[str],
    rows: Sequence[dict[str, ImportCell]],
    columns: Sequence[ColumnDefinition],
    matches: Sequence[HeaderMatch],
    threshold: float,
    *,
    row_id_factory: Callable[[], str] = _new_row_id,
) -> ImportPlan:
    """Decide the target column of every uploaded header and key rows by column id.

    Matches at or above *threshold* map onto the existing column with that
    header; every other header becomes a new column (below-threshold matches
    are also listed in ``review``).
    """
    applied, review = partition_matches(matches, threshold)
    by_header = {}
    for column in columns:
        by_header.setdefault(column.header, column)

    targets: dict[str, ColumnDefinition] = {}
    mapped: dict[str, str] = {}
    for match in applied:
        column = by_header.get(match.target_header or "")
        if column is not None and column.id not in mapped.values():
            targets[match.source_header] = column
            mapped[match.source_header] = column.id

    taken = {c.id for c in columns}
    new_columns = []
    for header in headers:
        if header in targets:
            continue
        column = ColumnDefinition(
            id=create_column_id(header, taken),
            header=header,
            type=infer_column_type(r.get(header) for r in rows),
        )
        taken.add(column.id)
        targets[header] = column
        new_columns.append(column)

    planned_rows: list[RowData] = []
    for source in rows:
        row: RowData = {"id": row_id_factory()}
        for header in headers:
            column = targets[header]
            row[column.id] = coerce_cell_value(source.get(header), column.type)
        planned_rows.append(row)

    return ImportPlan(mapped=mapped, new_columns=new_columns, review=review, rows=planned_rows)

"""
Snapshot Extractor - Reads raw workbook bytes into a bounded, typed cell grid.

The snapshot is a preview, not a full ingestion:
- Rows and columns are capped per sheet to keep AI payloads small
- Every cell is rendered as its displayed string ('' for blanks)
- Dropdown validations are captured as explicit options or a range source
"""
import io
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.cell import range_boundaries

from ..errors import SnapshotExtractionError
from .cells import column_to_index, expand_range, index_to_column, split_cell_address
from .values import display_value

DEFAULT_MAX_ROWS = 250
DEFAULT_MAX_COLUMNS = 64

HEADER_PATTERN = re.compile(r"tier|service|fees|price|billing|qty|quantity", re.IGNORECASE)


@dataclass(frozen=True)
class HeaderCell:
    column_index: int
    label: str
    row_index: int


@dataclass(frozen=True)
class SnapshotRow:
    """One worksheet row. row_index is zero-based; values start at column A."""
    row_index: int
    values: tuple[str, ...]

    @property
    def excel_row(self) -> int:
        return self.row_index + 1

    def value(self, column: Optional[str]) -> str:
        index = column_to_index(column)
        if index is None or index < 0 or index >= len(self.values):
            return ""
        return self.values[index]


@dataclass(frozen=True)
class CellValidation:
    """Validation bound to a cell. options for literal lists, source for range references."""
    type: str
    options: tuple[str, ...] = ()
    source: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"type": self.type, "options": list(self.options)}
        if self.source:
            data["source"] = self.source
        return data


@dataclass(frozen=True)
class WorksheetSnapshot:
    name: str
    row_count: int
    column_count: int
    headers: tuple[HeaderCell, ...] = ()
    rows: tuple[SnapshotRow, ...] = ()
    validations: dict[str, CellValidation] = field(default_factory=dict)

    def to_frame(self) -> pd.DataFrame:
        """Grid as a DataFrame indexed by Excel row number with column letters."""
        columns = [index_to_column(i) for i in range(self.column_count)]
        data = [list(row.values) + [""] * (self.column_count - len(row.values)) for row in self.rows]
        return pd.DataFrame(data, index=[row.excel_row for row in self.rows], columns=columns)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "rowCount": self.row_count,
            "columnCount": self.column_count,
            "headers": [
                {"columnIndex": h.column_index, "label": h.label, "rowIndex": h.row_index}
                for h in self.headers
            ],
            "data": [{"rowIndex": row.row_index, "values": list(row.values)} for row in self.rows],
            "validations": {address: v.to_dict() for address, v in self.validations.items()} or None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorksheetSnapshot":
        validations = {}
        for address, raw in (data.get("validations") or {}).items():
            validations[address] = CellValidation(
                type=raw.get("type") or "unknown",
                options=tuple(raw.get("options") or ()),
                source=raw.get("source"),
            )
        return cls(
            name=data.get("name", ""),
            row_count=int(data.get("rowCount") or 0),
            column_count=int(data.get("columnCount") or 0),
            headers=tuple(
                HeaderCell(h["columnIndex"], h["label"], h["rowIndex"]) for h in data.get("headers") or []
            ),
            rows=tuple(
                SnapshotRow(r["rowIndex"], tuple("" if v is None else str(v) for v in r["values"]))
                for r in data.get("data") or []
            ),
            validations=validations,
        )


@dataclass(frozen=True)
class WorkbookSnapshot:
    generated_at: str
    sheets: tuple[WorksheetSnapshot, ...]
    workbook_filename: Optional[str] = None

    def sheet(self, name: Optional[str]) -> Optional[WorksheetSnapshot]:
        for candidate in self.sheets:
            if candidate.name == name:
                return candidate
        return None

    def to_dict(self) -> dict:
        return {
            "workbookFilename": self.workbook_filename,
            "generatedAt": self.generated_at,
            "sheets": [sheet.to_dict() for sheet in self.sheets],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkbookSnapshot":
        return cls(
            workbook_filename=data.get("workbookFilename"),
            generated_at=data.get("generatedAt") or "",
            sheets=tuple(WorksheetSnapshot.from_dict(s) for s in data.get("sheets") or []),
        )


def parse_list_formula(formula: Optional[str]) -> tuple[tuple[str, ...], Optional[str]]:
    """
    Split a list-validation formula into (options, source).

    '"Low,Midpoint,High"' → (('Low', 'Midpoint', 'High'), None)
    '=Lists!$A$1:$A$3'    → ((), 'Lists!$A$1:$A$3')
    """
    if not formula:
        return (), None
    trimmed = formula.strip()
    if len(trimmed) >= 2 and trimmed.startswith('"') and trimmed.endswith('"'):
        options = tuple(part.strip() for part in trimmed[1:-1].split(",") if part.strip())
        return options, None
    return (), trimmed.lstrip("=") or None


def _bounding_box(sheet, max_rows: int, max_columns: int) -> Optional[tuple[int, int, int, int]]:
    """(min_row, min_col, max_row, max_col) of non-empty cells, scanning within the caps."""
    found = None
    for row in sheet.iter_rows(max_row=max_rows, max_col=max_columns):
        for cell in row:
            if cell.value is None or display_value(cell.value) == "":
                continue
            r, c = cell.row, cell.column
            if found is None:
                found = [r, c, r, c]
            else:
                found = [min(found[0], r), min(found[1], c), max(found[2], r), max(found[3], c)]
    return tuple(found) if found else None


def _used_bounds(sheet, max_rows: int, max_columns: int) -> Optional[tuple[int, int, int, int]]:
    try:
        min_col, min_row, max_col, max_row = range_boundaries(sheet.calculate_dimension())
        if None not in (min_col, min_row, max_col, max_row):
            return min_row, min_col, max_row, max_col
    except (ValueError, TypeError):
        pass
    return _bounding_box(sheet, max_rows, max_columns)


def _read_validations(sheet, max_row: int, max_col: int) -> dict[str, CellValidation]:
    validations: dict[str, CellValidation] = {}
    container = getattr(sheet, "data_validations", None)
    for validation in getattr(container, "dataValidation", None) or []:
        reference = str(validation.sqref or "").strip()
        if not reference:
            continue
        vtype = validation.type or "any"
        if vtype == "list":
            options, source = parse_list_formula(validation.formula1)
        else:
            options, source = (), None
        meta = CellValidation(type=vtype, options=options, source=source)
        for address in expand_range(reference):
            column, row = split_cell_address(address)
            if column_to_index(column) + 1 > max_col or row > max_row:
                continue
            validations[address] = meta
    return validations


def _read_sheet(sheet, max_rows: int, max_columns: int) -> WorksheetSnapshot:
    bounds = _used_bounds(sheet, max_rows, max_columns)
    if bounds is None:
        return WorksheetSnapshot(name=sheet.title, row_count=0, column_count=0)

    min_row, _min_col, max_row, max_col = bounds
    row_end = min(max_row, min_row + max_rows - 1)
    col_end = min(max_col, max_columns)

    rows: list[SnapshotRow] = []
    headers: dict[int, HeaderCell] = {}
    for cells in sheet.iter_rows(min_row=min_row, max_row=row_end, min_col=1, max_col=col_end):
        values = tuple(display_value(cell.value) for cell in cells)
        row_index = cells[0].row - 1 if cells else len(rows)
        for col, cell in enumerate(cells):
            if not isinstance(cell.value, str) or not values[col]:
                continue
            if cell.row == min_row or HEADER_PATTERN.search(values[col]):
                headers.setdefault(col, HeaderCell(col, values[col], row_index))
        rows.append(SnapshotRow(row_index=row_index, values=values))

    return WorksheetSnapshot(
        name=sheet.title,
        row_count=row_end - min_row + 1,
        column_count=col_end,
        headers=tuple(sorted(headers.values(), key=lambda h: h.column_index)),
        rows=tuple(rows),
        validations=_read_validations(sheet, row_end, col_end),
    )


def extract_workbook_snapshot(
    data: bytes,
    max_rows: int = DEFAULT_MAX_ROWS,
    max_columns: int = DEFAULT_MAX_COLUMNS,
    sheet_names: Optional[list[str]] = None,
    filename: Optional[str] = None,
) -> WorkbookSnapshot:
    """
    Extract a bounded snapshot from raw xlsx bytes.

    Raises SnapshotExtractionError when the bytes are not a readable workbook.
    """
    if not data:
        raise SnapshotExtractionError("Workbook data is empty.")
    try:
        workbook = load_workbook(io.BytesIO(data), data_only=True)
    except Exception as e:
        raise SnapshotExtractionError(f"Failed to read pricing workbook snapshot: {e}") from e

    requested = [name.strip() for name in (sheet_names or []) if name and name.strip()]
    names = [n for n in requested if n in workbook.sheetnames] if requested else workbook.sheetnames

    sheets = tuple(_read_sheet(workbook[name], max_rows, max_columns) for name in names)
    title = workbook.properties.title if workbook.properties else None

    return WorkbookSnapshot(
        workbook_filename=filename or title or None,
        generated_at=datetime.now(timezone.utc).isoformat(),
        sheets=sheets,
    )

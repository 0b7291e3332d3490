"""
Tests for snapshot extraction.
"""
import pytest

from service_pricing.errors import SnapshotExtractionError
from service_pricing.workbook.snapshot import (
    WorkbookSnapshot,
    extract_workbook_snapshot,
    parse_list_formula,
)


@pytest.fixture(scope="module")
def snapshot(workbook_bytes):
    return extract_workbook_snapshot(workbook_bytes, filename="pricing.xlsx")


def test_sheets_in_workbook_order(snapshot):
    assert [sheet.name for sheet in snapshot.sheets] == ["Calculator", "Quote Builder"]
    assert snapshot.workbook_filename == "pricing.xlsx"


def test_rows_are_zero_based_from_column_a(snapshot):
    sheet = snapshot.sheet("Calculator")
    row = next(r for r in sheet.rows if r.excel_row == 10)
    assert row.row_index == 9
    assert row.value("E") == "Bookkeeping"
    assert row.value("A") == "TRUE"
    assert row.value("J") == "150"
    assert row.value("ZZ") == ""


def test_formula_cells_without_cached_values_are_blank(snapshot):
    row = next(r for r in snapshot.sheet("Calculator").rows if r.excel_row == 10)
    assert row.value("R") == ""


def test_headers_detected(snapshot):
    labels = {header.label for header in snapshot.sheet("Calculator").headers}
    assert {"Tier", "Billing", "Qty"} <= labels


def test_list_validation_captured(snapshot):
    validation = snapshot.sheet("Calculator").validations["E4"]
    assert validation.type == "list"
    assert validation.options == ("Low", "Midpoint", "High")


def test_caps(workbook_bytes):
    capped = extract_workbook_snapshot(workbook_bytes, max_rows=5, max_columns=3)
    sheet = capped.sheet("Calculator")
    assert sheet.row_count == 5
    assert sheet.column_count == 3
    assert len(sheet.rows) == 5
    assert all(len(row.values) == 3 for row in sheet.rows)
    assert "E4" not in sheet.validations


def test_sheet_filter(workbook_bytes):
    only = extract_workbook_snapshot(workbook_bytes, sheet_names=["Quote Builder", "Missing"])
    assert [sheet.name for sheet in only.sheets] == ["Quote Builder"]


def test_dict_round_trip(snapshot):
    restored = WorkbookSnapshot.from_dict(snapshot.to_dict())
    assert restored.sheet("Calculator").rows == snapshot.sheet("Calculator").rows
    assert restored.sheet("Calculator").validations["E4"].options == ("Low", "Midpoint", "High")


def test_frame_is_indexed_by_excel_row(snapshot):
    frame = snapshot.sheet("Calculator").to_frame()
    assert frame.loc[10, "E"] == "Bookkeeping"


@pytest.mark.parametrize("data", [b"", b"not a spreadsheet"])
def test_unreadable_bytes(data):
    with pytest.raises(SnapshotExtractionError):
        extract_workbook_snapshot(data)


def test_parse_list_formula():
    assert parse_list_formula('"Low, High"') == (("Low", "High"), None)
    assert parse_list_formula("=Lists!$A$1:$A$3") == ((), "Lists!$A$1:$A$3")
    assert parse_list_formula(None) == ((), None)

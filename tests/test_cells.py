"""
Tests for cell addressing and value coercion.
"""
import pytest

from service_pricing.workbook.cells import (
    column_to_index,
    expand_range,
    index_to_column,
    is_cell,
    is_column,
    split_cell_address,
)
from service_pricing.workbook.values import as_string, display_value, parse_bool, parse_number, to_float


class TestColumns:
    def test_index_column_round_trip(self):
        for index in range(0, 702):
            assert column_to_index(index_to_column(index)) == index

    @pytest.mark.parametrize("column,index", [("A", 0), ("Z", 25), ("AA", 26), ("ZZ", 701), ("$c", 2)])
    def test_known_columns(self, column, index):
        assert column_to_index(column) == index

    def test_cell_address_uses_its_column(self):
        assert column_to_index("AB12") == 27

    def test_negative_index_rejected(self):
        with pytest.raises(ValueError):
            index_to_column(-1)

    def test_blank_column(self):
        assert column_to_index("") is None
        assert column_to_index(None) is None

    def test_shape_checks(self):
        assert is_column("R") and is_column("$AB")
        assert not is_column("R10")
        assert is_cell("$B$32") and not is_cell("B")
        assert split_cell_address("$d$4") == ("D", 4)


class TestExpandRange:
    def test_row_major_with_singles(self):
        assert expand_range("A1:B2 D5") == ["A1", "B1", "A2", "B2", "D5"]

    def test_reversed_corners(self):
        assert expand_range("B2:A1") == ["A1", "B1", "A2", "B2"]

    def test_cap(self):
        assert len(expand_range("A1:Z100", max_cells=10)) == 10

    def test_garbage_skipped(self):
        assert expand_range("nonsense C3") == ["C3"]


class TestParseNumber:
    @pytest.mark.parametrize("raw,expected", [
        (42, 42.0),
        (1.5, 1.5),
        ("$1,250.00", 1250.0),
        ("(300)", -300.0),
        ("  75 ", 75.0),
        ("-12.5", -12.5),
    ])
    def test_accounting_values(self, raw, expected):
        assert parse_number(raw) == expected

    @pytest.mark.parametrize("raw", ["", "-", "--", "—", "N/A", "none", "null", None, True, False, "abc"])
    def test_missing_values(self, raw):
        assert parse_number(raw) is None

    def test_non_finite(self):
        assert parse_number(float("nan")) is None
        assert parse_number(float("inf")) is None

    def test_to_float_fallback(self):
        assert to_float("#DIV/0!") == 0.0
        assert to_float("3") == 3.0


class TestParseBool:
    @pytest.mark.parametrize("raw", [True, "TRUE", "yes", "x", "1", 1, 2.5])
    def test_truthy(self, raw):
        assert parse_bool(raw) is True

    @pytest.mark.parametrize("raw", [False, "FALSE", "no", "0", 0])
    def test_falsy(self, raw):
        assert parse_bool(raw) is False

    def test_unrecognized(self):
        assert parse_bool("maybe") is None
        assert parse_bool(None) is None


class TestDisplay:
    def test_rendering(self):
        assert display_value(None) == ""
        assert display_value(True) == "TRUE"
        assert display_value(100.0) == "100"
        assert display_value(12.5) == "12.5"
        assert display_value("  Bookkeeping ") == "Bookkeeping"

    def test_as_string(self):
        assert as_string("   ") is None
        assert as_string(3.0) == "3"
        assert as_string(" Monthly ") == "Monthly"

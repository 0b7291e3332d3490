"""
Cell addressing primitives shared by every workbook component.

Column letters map to zero-based indices: A → 0, Z → 25, AA → 26, ZZ → 701.
"""
import re
from typing import Optional

CELL_PATTERN = re.compile(r"^\$?([A-Za-z]{1,3})\$?(\d+)$")
COLUMN_PATTERN = re.compile(r"^\$?([A-Za-z]{1,3})$")


def column_to_index(column: Optional[str]) -> Optional[int]:
    """Convert a column letter (or a cell address) to a zero-based index."""
    if not column:
        return None
    match = re.match(r"\$?([A-Za-z]+)", column.strip())
    if not match:
        return None
    index = 0
    for char in match.group(1).upper():
        index = index * 26 + (ord(char) - 64)
    return index - 1


def index_to_column(index: int) -> str:
    """Convert a zero-based index to a column letter."""
    if index < 0:
        raise ValueError(f"Column index must be non-negative, got {index}")
    letters = ""
    n = index + 1
    while n:
        n, remainder = divmod(n - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


def is_column(value: Optional[str]) -> bool:
    return bool(value) and COLUMN_PATTERN.match(value.strip()) is not None


def is_cell(value: Optional[str]) -> bool:
    return bool(value) and CELL_PATTERN.match(value.strip()) is not None


def split_cell_address(address: str) -> tuple[str, int]:
    """Split 'B12' (or '$B$12') into ('B', 12)."""
    match = CELL_PATTERN.match(address.strip())
    if not match:
        raise ValueError(f"Invalid cell address: {address!r}")
    return match.group(1).upper(), int(match.group(2))


def make_cell(column: str, row: int) -> str:
    return f"{column.strip().lstrip('$').upper()}{row}"


def normalize_cell(address: str) -> str:
    column, row = split_cell_address(address)
    return make_cell(column, row)


def expand_range(reference: str, max_cells: int = 5000) -> list[str]:
    """
    Expand an sqref-style reference ('A1:B3 D5') into single cell addresses.

    Expansion stops after max_cells addresses.
    """
    cells: list[str] = []
    for part in reference.replace(",", " ").split():
        part = part.split("!")[-1]
        if ":" in part:
            start, end = part.split(":", 1)
            try:
                start_col, start_row = split_cell_address(start)
                end_col, end_row = split_cell_address(end)
            except ValueError:
                continue
            first_col, last_col = sorted((column_to_index(start_col), column_to_index(end_col)))
            first_row, last_row = sorted((start_row, end_row))
            for row in range(first_row, last_row + 1):
                for col in range(first_col, last_col + 1):
                    cells.append(make_cell(index_to_column(col), row))
                    if len(cells) >= max_cells:
                        return cells
        elif is_cell(part):
            cells.append(normalize_cell(part))
            if len(cells) >= max_cells:
                return cells
    return cells

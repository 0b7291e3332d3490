"""
Value coercion for human-edited accounting spreadsheets.

Handles accounting notation: thousands separators, parenthesized negatives,
stray currency symbols and blank/dash cells treated as missing.
"""
import math
import re
from datetime import date, datetime, time
from typing import Any, Optional

MISSING_MARKERS = {"", "-", "--", "—", "–", "n/a", "na", "none", "null"}
TRUE_MARKERS = {"true", "yes", "y", "1", "on", "selected", "checked", "x", "✓"}
FALSE_MARKERS = {"false", "no", "n", "0", "off"}


def display_value(value: Any) -> str:
    """Render a raw cell value as its displayed string. Blank cells become ''."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return ""
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, (date, time)):
        return value.isoformat()
    return str(value).strip()


def as_string(value: Any) -> Optional[str]:
    """Trimmed string or None when blank."""
    if value is None:
        return None
    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed or None
    if isinstance(value, (bool, int, float)):
        return display_value(value) or None
    return None


def parse_number(value: Any) -> Optional[float]:
    """
    Parse a number from a cell value.

    '$1,250.00' → 1250.0, '(300)' → -300.0, '' / '-' / 'N/A' → None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None

    trimmed = value.strip()
    if trimmed.lower() in MISSING_MARKERS:
        return None

    sanitized = re.sub(r"[^0-9.,()\-]", "", trimmed)
    if not sanitized:
        return None
    sanitized = sanitized.replace(",", "")

    multiplier = 1.0
    if sanitized.startswith("(") and sanitized.endswith(")"):
        sanitized = sanitized[1:-1]
        multiplier = -1.0
    sanitized = re.sub(r"[^0-9.+\-]", "", sanitized)
    if not sanitized:
        return None

    try:
        number = float(sanitized) * multiplier
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_bool(value: Any) -> Optional[bool]:
    """Parse a checkbox-like cell. Returns None when the value is not recognizable."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        return value != 0
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in TRUE_MARKERS:
            return True
        if normalized in FALSE_MARKERS:
            return False
    return None


def to_float(value: Any, fallback: float = 0.0) -> float:
    """Numeric coercion for recalculated cells; anything non-numeric yields fallback."""
    parsed = parse_number(value)
    return fallback if parsed is None else parsed

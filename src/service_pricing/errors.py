"""
Error taxonomy for the pricing core.

Extraction and generation errors are absorbed by the service layer and recorded
on the workbook record. Calculation-time structural errors propagate to callers.
"""
from typing import Iterable, Optional


class PricingError(Exception):
    """Base class for every pricing core failure."""


class WorkbookNotFoundError(PricingError):
    """No workbook has been uploaded yet."""


class MappingIncompleteError(PricingError):
    """A required WorkbookMapping field is missing or not addressable."""

    def __init__(self, field: str, row: Optional[int] = None, detail: str = ""):
        self.field = field
        self.row = row
        where = f" while processing row {row}" if row is not None else ""
        message = f"Workbook mapping is missing a required column definition for '{field}'{where}."
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)


class SnapshotExtractionError(PricingError):
    """Raw bytes could not be read as a spreadsheet."""


class BlueprintGenerationError(PricingError):
    """The AI-assisted generator failed; callers fall back to the deterministic strategy."""


class CriticalColumnMissingError(PricingError):
    """A calculator-sheet blueprint lacks a unit price, line total or quantity binding."""

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__(
            f"Calculator sheet is missing critical columns: {', '.join(self.missing)}. "
            "Cannot calculate pricing without these columns. "
            "Verify the workbook structure and re-run the analysis."
        )

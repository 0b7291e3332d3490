"""
Quote export - writes computed values back into the workbook copy and
serializes it as xlsx bytes or calculator-sheet CSV.
"""
import io
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import pandas as pd

from ..workbook.cells import is_cell
from ..workbook.mapping import WorkbookMapping
from .models import CalculationResult, PricingMetadata, QuoteDetails

logger = logging.getLogger(__name__)

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_MIME = "text/csv"


def _write(sheet, address: Optional[str], value: Any) -> None:
    """Plain value write; any formula in the cell is replaced."""
    if sheet is not None and address and is_cell(address):
        sheet[address.replace("$", "")] = value


def write_quote_details(workbook, mapping: WorkbookMapping, segment: str, price_tier: str,
                        details: Optional[QuoteDetails]) -> None:
    if details is None or not mapping.quote_sheet or mapping.quote_sheet not in workbook.sheetnames:
        return
    sheet = workbook[mapping.quote_sheet]
    fields = mapping.quote_fields
    if fields is None:
        return
    _write(sheet, fields.client_segment, segment)
    _write(sheet, fields.price_tier, price_tier)
    for attr in ("client_name", "company_name", "prepared_by", "prepared_for_email", "notes"):
        value = getattr(details, attr)
        if value:
            _write(sheet, getattr(fields, attr), value)


def write_computed_values(workbook, metadata: PricingMetadata, result: CalculationResult,
                          details: Optional[QuoteDetails] = None) -> None:
    """
    Write override prices, line totals, every total, segment/tier and quote
    details into the workbook as plain values.
    """
    if workbook is None:
        return
    mapping = metadata.workbook_mapping
    sheet = workbook[mapping.calculator_sheet] if mapping.calculator_sheet in workbook.sheetnames else None

    _write(sheet, mapping.client_segment_cell, result.segment)
    _write(sheet, mapping.price_tier_cell, result.price_tier)

    for line_result in result.lines:
        line = metadata.line(line_result.id)
        refs = line.cell_refs if line else None
        if refs is None:
            continue
        if line_result.override_price is not None:
            _write(sheet, refs.unit_price, line_result.override_price)
        else:
            _write(sheet, refs.unit_price, line_result.unit_price)
        _write(sheet, refs.line_total, line_result.line_total)
        if refs.maintenance_total:
            _write(sheet, refs.maintenance_total, line_result.maintenance_total)

    totals = result.totals
    cells = metadata.totals
    _write(sheet, cells.monthly_subtotal, totals.monthly_subtotal)
    _write(sheet, cells.one_time_subtotal, totals.one_time_subtotal)
    if cells.maintenance_subtotal:
        _write(sheet, cells.maintenance_subtotal, totals.maintenance_subtotal or 0.0)
    _write(sheet, cells.grand_total, totals.grand_total_month_one)
    ongoing_cell = cells.ongoing_monthly or mapping.ongoing_monthly_cell or cells.monthly_subtotal
    _write(sheet, ongoing_cell, totals.ongoing_monthly)

    write_quote_details(workbook, mapping, result.segment, result.price_tier, details)


def workbook_to_bytes(workbook) -> bytes:
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def sheet_to_frame(workbook, sheet_name: str) -> pd.DataFrame:
    """Sheet values as a DataFrame. Formulas left unevaluated export as blanks."""
    sheet = workbook[sheet_name]
    rows = []
    for values in sheet.iter_rows(values_only=True):
        rows.append([
            None if isinstance(value, str) and value.startswith("=") else value
            for value in values
        ])
    return pd.DataFrame(rows)


def workbook_to_csv(workbook, sheet_name: str) -> bytes:
    frame = sheet_to_frame(workbook, sheet_name)
    return frame.to_csv(index=False, header=False).encode("utf-8")


def export_filename(segment: str, price_tier: str, extension: str, now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d-%H%M%S")

    def slug(value: str) -> str:
        return "".join(ch if ch.isalnum() else "-" for ch in value.lower()).strip("-") or "quote"

    return f"quote-{slug(segment)}-{slug(price_tier)}-{stamp}.{extension}"

"""
Price computation backends.

Both answer the same question (unit price, recalculated line total and
maintenance total per line) behind one interface:
- PricingTableBackend: declarative rate-band lookup, no spreadsheet involved
- CalculatorSheetBackend: writes inputs into a private workbook copy and lets
  the workbook's own formulas compute the prices (pycel recalculation)
"""
import io
import logging
import math
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from openpyxl import load_workbook
from pycel import ExcelCompiler

from ..errors import CriticalColumnMissingError, WorkbookNotFoundError
from ..workbook.values import parse_number
from .models import MODE_CALCULATOR, MODE_PRICING_TABLE, LineMetadata, LineSelection, PricingMetadata
from .rates import find_segment_patch, merge_band, resolve_price_point, resolve_unit_price

logger = logging.getLogger(__name__)


@dataclass
class LinePlan:
    """A catalog line with its selection resolved (per-call → admin → blueprint)."""
    line: LineMetadata
    selection: Optional[LineSelection]
    selected: bool
    quantity: float
    include_maintenance: bool

    @property
    def rate_overrides(self) -> Optional[dict]:
        return self.selection.rate_overrides if self.selection else None


@dataclass
class LinePrice:
    unit_price: Optional[float] = None
    line_total: Optional[float] = None
    maintenance_unit: Optional[float] = None
    maintenance_total: Optional[float] = None
    source: str = ""
    warnings: list[str] = field(default_factory=list)


@dataclass
class BackendOutcome:
    prices: dict[str, LinePrice]
    workbook: Any = None  # recalculated openpyxl copy, calculator mode only


def load_workbook_copy(workbook_bytes: Optional[bytes]):
    if not workbook_bytes:
        return None
    return load_workbook(io.BytesIO(workbook_bytes))


def _band_lookup(plan: LinePlan, segment: str, price_tier: str) -> LinePrice:
    line = plan.line
    unit, band = resolve_unit_price(line.rate_bands, segment, price_tier, line.custom_rates, plan.rate_overrides)
    price = LinePrice(unit_price=unit, source="rate band")
    if band:
        price.maintenance_unit = resolve_price_point(band, "maintenance")
    if unit is None:
        price.warnings.append(f"No '{price_tier}' rate for segment '{segment}' on '{line.service}'; priced at 0.")
    return price


class PricingBackend(ABC):
    """One backend interface, selected structurally from metadata.mode."""

    mode: str

    @abstractmethod
    def evaluate(
        self,
        metadata: PricingMetadata,
        segment: str,
        price_tier: str,
        plans: list[LinePlan],
        workbook_bytes: Optional[bytes] = None,
    ) -> BackendOutcome:
        """Price every planned line."""


class PricingTableBackend(PricingBackend):
    """Pure rate-band lookup."""

    mode = MODE_PRICING_TABLE

    def evaluate(self, metadata, segment, price_tier, plans, workbook_bytes=None) -> BackendOutcome:
        prices = {plan.line.id: _band_lookup(plan, segment, price_tier) for plan in plans}
        return BackendOutcome(prices=prices)


def _sheet_ref(sheet: str, address: str) -> str:
    if any(not (ch.isalnum() or ch == "_") for ch in sheet):
        return f"'{sheet}'!{address}"
    return f"{sheet}!{address}"


class CalculatorSheetBackend(PricingBackend):
    """
    Recalculates the workbook's own formulas.

    Each call parses its own openpyxl copy from the cached bytes and compiles
    it from a private temp file, so concurrent calculations never share state.
    """

    mode = MODE_CALCULATOR

    def _check_bindings(self, plans: list[LinePlan]) -> None:
        missing = []
        for plan in plans:
            refs = plan.line.cell_refs
            for label, value in (
                ("unitPrice", refs.unit_price if refs else None),
                ("lineTotal", refs.line_total if refs else None),
                ("quantity", refs.quantity if refs else None),
            ):
                if not value and label not in missing:
                    missing.append(label)
        if missing:
            raise CriticalColumnMissingError(missing)

    def _write_inputs(self, sheet, metadata: PricingMetadata, segment: str, price_tier: str, plans: list[LinePlan]):
        mapping = metadata.workbook_mapping
        sheet[mapping.require_cell("client_segment_cell")] = segment
        sheet[mapping.require_cell("price_tier_cell")] = price_tier

        for plan in plans:
            refs = plan.line.cell_refs
            if refs.select:
                sheet[refs.select] = plan.selected
            sheet[refs.quantity] = plan.quantity
            if refs.maintenance_toggle:
                sheet[refs.maintenance_toggle] = plan.include_maintenance

            for segment_label, cells in refs.rate_cells.items():
                patch = merge_band(
                    find_segment_patch(plan.line.custom_rates, segment_label),
                    find_segment_patch(plan.rate_overrides, segment_label),
                )
                for point, value in (patch or {}).items():
                    address = next((c for p, c in cells.items() if p.lower() == str(point).lower()), None)
                    number = None if isinstance(value, bool) else parse_number(value)
                    if address and number is not None:
                        sheet[address] = number

    def evaluate(self, metadata, segment, price_tier, plans, workbook_bytes=None) -> BackendOutcome:
        if not workbook_bytes:
            raise WorkbookNotFoundError("Calculator mode requires the uploaded workbook.")
        self._check_bindings(plans)

        mapping = metadata.workbook_mapping
        sheet_name = mapping.calculator_sheet
        workbook = load_workbook_copy(workbook_bytes)
        self._write_inputs(workbook[sheet_name], metadata, segment, price_tier, plans)

        prices: dict[str, LinePrice] = {}
        with tempfile.TemporaryDirectory(prefix="pricing-calc-") as tmpdir:
            path = os.path.join(tmpdir, "calculator.xlsx")
            workbook.save(path)
            compiler = ExcelCompiler(filename=path)

            def read(address: Optional[str]) -> Optional[float]:
                if not address:
                    return None
                value = compiler.evaluate(_sheet_ref(sheet_name, address))
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    return None
                return float(value) if math.isfinite(value) else None

            for plan in plans:
                refs = plan.line.cell_refs
                price = LinePrice(
                    unit_price=read(refs.unit_price),
                    line_total=read(refs.line_total),
                    maintenance_total=read(refs.maintenance_total),
                    source="workbook",
                )
                if price.unit_price is None:
                    fallback = _band_lookup(plan, segment, price_tier)
                    price.unit_price = fallback.unit_price
                    price.source = "rate band"
                    price.warnings.append(
                        f"Unit price cell {refs.unit_price} did not evaluate to a number; used rate band."
                    )
                    price.warnings.extend(fallback.warnings)
                if price.maintenance_total is None:
                    price.maintenance_unit = _band_lookup(plan, segment, price_tier).maintenance_unit
                prices[plan.line.id] = price

        logger.debug("Recalculated %d calculator lines on sheet %s", len(prices), sheet_name)
        return BackendOutcome(prices=prices, workbook=workbook)

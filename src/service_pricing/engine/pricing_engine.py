"""
Pricing Engine - resolves a quote against the catalog with traceability.

Resolution per line:
1. Selection: per-call value → administrator default → blueprint default
2. Unit price: override price → backend price (workbook recalculation or
   rate-band lookup with custom rates and per-call rate overrides) → 0
3. Line total: effective unit price × quantity when selected, else 0
4. Aggregation: recurring → monthly subtotal, everything else → one-time
5. Maintenance: only when the mapping declares a maintenance subtotal cell
"""
import logging
from typing import Iterable, Optional

from ..blueprint.models import CHARGE_RECURRING
from ..workbook.values import parse_number, to_float
from .backends import (
    CalculatorSheetBackend,
    LinePlan,
    LinePrice,
    PricingBackend,
    PricingTableBackend,
    load_workbook_copy,
)
from .export import write_computed_values
from .models import (
    CalculationResult,
    LineMetadata,
    LineResult,
    LineSelection,
    PricingMetadata,
    QuoteDetails,
    Totals,
)

logger = logging.getLogger(__name__)


def _money(value: float) -> str:
    return f"${value:,.2f}"


class PricingEngine:
    """
    Mode-agnostic quote resolver.

    The backend is chosen from metadata.mode; callers never branch on it.
    """

    def __init__(self, backends: Optional[Iterable[PricingBackend]] = None):
        backends = list(backends) if backends is not None else [CalculatorSheetBackend(), PricingTableBackend()]
        self.backends = {backend.mode: backend for backend in backends}

    def backend_for(self, mode: str) -> PricingBackend:
        try:
            return self.backends[mode]
        except KeyError:
            raise ValueError(f"No pricing backend registered for mode '{mode}'") from None

    @staticmethod
    def plan_line(line: LineMetadata, selection: Optional[LineSelection]) -> LinePlan:
        """Resolve selected/quantity/maintenance for a line."""
        selected = line.default_selected
        quantity = line.default_quantity
        include_maintenance = line.default_maintenance
        if selection is not None:
            if selection.selected is not None:
                selected = bool(selection.selected)
            if selection.quantity is not None:
                quantity = selection.quantity
            if selection.include_maintenance is not None:
                include_maintenance = bool(selection.include_maintenance)
        return LinePlan(
            line=line,
            selection=selection,
            selected=bool(selected),
            quantity=to_float(quantity),
            include_maintenance=bool(include_maintenance),
        )

    def calculate(
        self,
        metadata: PricingMetadata,
        segment: str,
        price_tier: str,
        selections: Optional[Iterable[LineSelection]] = None,
        quote_details: Optional[QuoteDetails] = None,
        workbook_bytes: Optional[bytes] = None,
        export: bool = False,
    ) -> CalculationResult:
        """
        Calculate a quote with full traceability.

        Missing rates never raise; the line is priced at 0 with a warning.
        Structural calculator failures (CriticalColumnMissingError,
        WorkbookNotFoundError) propagate.

        With export=True the computed values are written into a workbook copy
        (the recalculated one in calculator mode) and returned on the result.
        """
        by_id = {}
        for selection in selections or []:
            by_id[selection.line_id] = selection

        result = CalculationResult(
            mode=metadata.mode,
            segment=segment,
            price_tier=price_tier,
            lines=[],
            totals=Totals.from_parts(0.0, 0.0),
        )
        result.add_trace("Mode", "Pricing backend", metadata.mode)
        result.add_trace("Segment", "Client segment", segment)
        result.add_trace("Price Tier", "Price point", price_tier)

        if segment not in metadata.client_segments:
            result.add_warning(f"Segment '{segment}' is not one of the catalog segments.")
        for line_id in by_id:
            if metadata.line(line_id) is None:
                result.add_warning(f"Selection for unknown line '{line_id}' was ignored.")

        plans = [self.plan_line(line, by_id.get(line.id)) for line in metadata.line_items]
        backend = self.backend_for(metadata.mode)
        outcome = backend.evaluate(metadata, segment, price_tier, plans, workbook_bytes=workbook_bytes)
        logger.info("Calculating %d lines in %s mode (%s / %s)", len(plans), metadata.mode, segment, price_tier)

        has_maintenance = bool(metadata.totals.maintenance_subtotal)
        monthly = 0.0
        one_time = 0.0
        maintenance = 0.0

        for plan in plans:
            line_result = self._price_line(plan, outcome.prices.get(plan.line.id) or LinePrice(), has_maintenance)
            result.lines.append(line_result)
            for warning in line_result.warnings:
                result.add_warning(warning)

            if not line_result.selected:
                continue
            if line_result.charge_type == CHARGE_RECURRING:
                monthly += line_result.line_total
            else:
                one_time += line_result.line_total
            maintenance += line_result.maintenance_total

        result.totals = Totals.from_parts(monthly, one_time, maintenance if has_maintenance else None)
        result.add_trace("Monthly Subtotal", "Recurring lines", _money(result.totals.monthly_subtotal))
        result.add_trace("One-time Subtotal", "Non-recurring lines", _money(result.totals.one_time_subtotal))
        if has_maintenance:
            result.add_trace("Maintenance Subtotal", "Maintenance on selected lines",
                             _money(result.totals.maintenance_subtotal))
        result.add_trace("Grand Total", "Month one", _money(result.totals.grand_total_month_one))

        if export:
            workbook = outcome.workbook if outcome.workbook is not None else load_workbook_copy(workbook_bytes)
            if workbook is not None:
                write_computed_values(workbook, metadata, result, quote_details)
                result.workbook = workbook
        return result

    def _price_line(self, plan: LinePlan, price: LinePrice, has_maintenance: bool) -> LineResult:
        line = plan.line
        override = None
        if plan.selection is not None and plan.selection.override_price is not None:
            raw = plan.selection.override_price
            override = None if isinstance(raw, bool) else parse_number(raw)

        line_result = LineResult(
            id=line.id,
            service=line.service,
            tier=line.tier,
            billing=line.billing,
            type=line.type,
            charge_type=line.charge_type,
            selected=plan.selected,
            quantity=plan.quantity,
            unit_price=price.unit_price or 0.0,
            override_price=override,
        )
        line_result.add_trace("Selection", "Selected" if plan.selected else "Not selected", f"qty {plan.quantity:g}")
        for warning in price.warnings:
            line_result.add_warning(warning)

        if override is not None:
            line_result.effective_unit_price = override
            line_result.add_trace("Price Resolution", "Override price", _money(override))
        else:
            line_result.effective_unit_price = line_result.unit_price
            line_result.add_trace("Price Resolution", f"Unit price from {price.source or 'catalog'}",
                                  _money(line_result.unit_price))

        if plan.selected:
            line_result.line_total = line_result.effective_unit_price * plan.quantity
        if price.line_total is not None and abs(price.line_total - line_result.line_total) > 0.005:
            line_result.add_trace("Workbook Total", "Recalculated line total differs", _money(price.line_total))

        if has_maintenance and plan.selected and plan.include_maintenance:
            if price.maintenance_total is not None:
                line_result.maintenance_total = price.maintenance_total
            elif price.maintenance_unit is not None:
                line_result.maintenance_total = price.maintenance_unit * plan.quantity
            line_result.add_trace("Maintenance", "Included", _money(line_result.maintenance_total))

        return line_result

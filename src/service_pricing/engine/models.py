"""
Data models for the pricing engine.

Uses dataclasses for structured, type-safe data representation.
"""
from dataclasses import dataclass, field
from typing import Any, Optional

from ..blueprint.models import RateBand, copy_rate_bands
from ..workbook.mapping import TotalsMapping, WorkbookMapping

MODE_CALCULATOR = "calculator"
MODE_PRICING_TABLE = "pricing-table"

DEFAULT_CLIENT_SEGMENTS = ["Solo/Startup", "Small Business", "Mid-Market"]
DEFAULT_PRICE_TIERS = ["Low", "Midpoint", "High"]


def _pick(data: dict, camel: str, snake: str, default: Any = None) -> Any:
    """Read a payload key accepting both camelCase and snake_case spellings."""
    if camel in data:
        return data[camel]
    return data.get(snake, default)


@dataclass
class TraceStep:
    """A single step in the pricing resolution trace."""
    step: str
    description: str
    value: Optional[str] = None


class _Traceable:
    """Trace/warning helpers shared by line and quote results."""

    trace: list
    warnings: list

    def add_trace(self, step: str, description: str, value: str = None):
        self.trace.append(TraceStep(step=step, description=description, value=value))

    def add_warning(self, warning: str):
        if warning not in self.warnings:
            self.warnings.append(warning)

    def get_trace_text(self, bullet: str = "→") -> str:
        """Get human-readable trace as formatted text."""
        lines = []
        for t in self.trace:
            if t.value:
                lines.append(f"{bullet} {t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"{bullet} {t.step}: {t.description}")
        return "\n".join(lines)


@dataclass
class LineSelection:
    """Per-call choices for one catalog line."""
    line_id: str
    selected: Optional[bool] = None
    quantity: Optional[float] = None
    include_maintenance: Optional[bool] = None
    rate_overrides: Optional[dict[str, RateBand]] = None  # segment → band patch
    override_price: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "LineSelection":
        return cls(
            line_id=str(_pick(data, "lineId", "line_id", "")),
            selected=data.get("selected"),
            quantity=data.get("quantity"),
            include_maintenance=_pick(data, "includeMaintenance", "include_maintenance"),
            rate_overrides=_pick(data, "rateOverrides", "rate_overrides"),
            override_price=_pick(data, "overridePrice", "override_price"),
        )


@dataclass
class LineOverride:
    """Administrator default for a line, persisted in settings."""
    line_id: str
    default_selected: Optional[bool] = None
    default_quantity: Optional[float] = None
    default_maintenance: Optional[bool] = None
    custom_rates: Optional[dict[str, RateBand]] = None
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "lineId": self.line_id,
            "defaultSelected": self.default_selected,
            "defaultQuantity": self.default_quantity,
            "defaultMaintenance": self.default_maintenance,
            "customRates": copy_rate_bands(self.custom_rates) if self.custom_rates else None,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LineOverride":
        return cls(
            line_id=str(_pick(data, "lineId", "line_id", "")),
            default_selected=_pick(data, "defaultSelected", "default_selected"),
            default_quantity=_pick(data, "defaultQuantity", "default_quantity"),
            default_maintenance=_pick(data, "defaultMaintenance", "default_maintenance"),
            custom_rates=_pick(data, "customRates", "custom_rates"),
            notes=data.get("notes"),
        )


@dataclass
class QuoteDetails:
    client_name: Optional[str] = None
    company_name: Optional[str] = None
    prepared_by: Optional[str] = None
    prepared_for_email: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["QuoteDetails"]:
        if not data:
            return None
        return cls(
            client_name=_pick(data, "clientName", "client_name"),
            company_name=_pick(data, "companyName", "company_name"),
            prepared_by=_pick(data, "preparedBy", "prepared_by"),
            prepared_for_email=_pick(data, "preparedForEmail", "prepared_for_email"),
            notes=data.get("notes"),
        )


@dataclass
class CellRefs:
    """Calculator-sheet addresses for one line (calculator mode only)."""
    quantity: str
    unit_price: str
    line_total: str
    select: Optional[str] = None
    type: Optional[str] = None
    maintenance_toggle: Optional[str] = None
    maintenance_total: Optional[str] = None
    rate_cells: dict[str, dict[str, str]] = field(default_factory=dict)  # segment → point → address

    def to_dict(self) -> dict:
        return {
            "select": self.select,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "lineTotal": self.line_total,
            "type": self.type,
            "maintenanceToggle": self.maintenance_toggle,
            "maintenanceTotal": self.maintenance_total,
            "rateCells": {segment: dict(cells) for segment, cells in self.rate_cells.items()},
        }


@dataclass
class LineMetadata:
    """One catalog line as offered to the quote builder."""
    id: str
    row: int
    tier: str
    service: str
    billing: str
    type: str
    charge_type: str
    default_selected: bool = False
    default_quantity: float = 1
    default_maintenance: bool = False
    description: Optional[str] = None
    rate_bands: dict[str, RateBand] = field(default_factory=dict)
    custom_rates: Optional[dict[str, RateBand]] = None  # administrator patch, applied at lookup
    cell_refs: Optional[CellRefs] = None
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "row": self.row,
            "tier": self.tier,
            "service": self.service,
            "billing": self.billing,
            "description": self.description,
            "type": self.type,
            "chargeType": self.charge_type,
            "defaultSelected": self.default_selected,
            "defaultQuantity": self.default_quantity,
            "defaultMaintenance": self.default_maintenance,
            "rateBands": copy_rate_bands(self.rate_bands),
            "customRates": copy_rate_bands(self.custom_rates) if self.custom_rates else None,
            "cellRefs": self.cell_refs.to_dict() if self.cell_refs else None,
            "notes": self.notes,
        }


@dataclass
class PricingMetadata:
    """Resolved catalog for the current workbook, mapping and override layer."""
    client_segments: list[str]
    price_tiers: list[str]
    line_items: list[LineMetadata]
    totals: TotalsMapping
    mode: str
    workbook_mapping: WorkbookMapping
    workbook_filename: Optional[str] = None
    workbook_uploaded_at: Optional[str] = None
    blueprint_id: Optional[str] = None

    def line(self, line_id: str) -> Optional[LineMetadata]:
        for candidate in self.line_items:
            if candidate.id == line_id:
                return candidate
        return None

    def to_dict(self) -> dict:
        return {
            "clientSegments": list(self.client_segments),
            "priceTiers": list(self.price_tiers),
            "lineItems": [line.to_dict() for line in self.line_items],
            "totals": self.totals.to_dict(),
            "mode": self.mode,
            "workbookFilename": self.workbook_filename,
            "workbookUploadedAt": self.workbook_uploaded_at,
            "workbookMapping": self.workbook_mapping.to_dict(),
            "blueprintId": self.blueprint_id,
        }


@dataclass
class QuoteRequest:
    """A pricing request: segment, tier and per-line selections."""
    segment: str
    price_tier: str
    selections: list[LineSelection] = field(default_factory=list)
    quote_details: Optional[QuoteDetails] = None

    @classmethod
    def from_dict(cls, data: dict) -> "QuoteRequest":
        return cls(
            segment=_pick(data, "clientSize", "segment", ""),
            price_tier=_pick(data, "pricePoint", "price_tier", ""),
            selections=[LineSelection.from_dict(s) for s in data.get("selections") or []],
            quote_details=QuoteDetails.from_dict(_pick(data, "quoteDetails", "quote_details")),
        )


@dataclass
class LineResult(_Traceable):
    """A single priced line in a quote result."""
    id: str
    service: str
    tier: str
    billing: str
    type: str
    charge_type: str
    selected: bool
    quantity: float
    unit_price: float = 0.0
    override_price: Optional[float] = None
    effective_unit_price: float = 0.0
    line_total: float = 0.0
    maintenance_total: float = 0.0
    warnings: list[str] = field(default_factory=list)
    trace: list[TraceStep] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "service": self.service,
            "tier": self.tier,
            "billing": self.billing,
            "selected": self.selected,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "overridePrice": self.override_price,
            "effectiveUnitPrice": self.effective_unit_price,
            "lineTotal": self.line_total,
            "maintenanceTotal": self.maintenance_total,
            "type": self.type,
            "chargeType": self.charge_type,
            "warnings": list(self.warnings),
        }


@dataclass
class Totals:
    """Quote totals. Build with from_parts so the identities always hold."""
    monthly_subtotal: float
    one_time_subtotal: float
    grand_total_month_one: float
    ongoing_monthly: float
    maintenance_subtotal: Optional[float] = None

    @classmethod
    def from_parts(cls, monthly: float, one_time: float, maintenance: Optional[float] = None) -> "Totals":
        contribution = maintenance or 0.0
        return cls(
            monthly_subtotal=monthly,
            one_time_subtotal=one_time,
            maintenance_subtotal=maintenance,
            grand_total_month_one=monthly + one_time + contribution,
            ongoing_monthly=monthly + contribution,
        )

    def to_dict(self) -> dict:
        data = {
            "monthlySubtotal": self.monthly_subtotal,
            "oneTimeSubtotal": self.one_time_subtotal,
            "grandTotalMonthOne": self.grand_total_month_one,
            "ongoingMonthly": self.ongoing_monthly,
        }
        if self.maintenance_subtotal is not None:
            data["maintenanceSubtotal"] = self.maintenance_subtotal
        return data


@dataclass
class CalculationResult(_Traceable):
    """Complete result of a pricing calculation."""
    mode: str
    segment: str
    price_tier: str
    lines: list[LineResult]
    totals: Totals
    warnings: list[str] = field(default_factory=list)
    trace: list[TraceStep] = field(default_factory=list)
    workbook: Any = None  # openpyxl Workbook holding computed values, for export

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "clientSize": self.segment,
            "pricePoint": self.price_tier,
            "lines": [line.to_dict() for line in self.lines],
            "totals": self.totals.to_dict(),
            "warnings": list(self.warnings),
        }

"""
Workbook mapping - which cells and columns of the calculator sheet hold which fields.

Pure data plus merge-with-defaults logic. Validation is lazy: a missing required
column surfaces when a row is extracted, naming the row and the field.
"""
import copy
import hashlib
import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from ..errors import MappingIncompleteError
from .cells import is_cell, is_column

SEGMENT_KEYS = ("soloStartup", "smallBusiness", "midMarket")

SEGMENT_LABELS = {
    "soloStartup": "Solo/Startup",
    "smallBusiness": "Small Business",
    "midMarket": "Mid-Market",
}

REQUIRED_COLUMNS = (
    "select", "quantity", "tier", "service", "billing", "type", "unit_price", "line_total",
)


@dataclass
class RateColumnSet:
    """Rate columns for one client segment."""
    low: str
    high: str
    maintenance: Optional[str] = None

    def to_dict(self) -> dict:
        return {"low": self.low, "high": self.high, "maintenance": self.maintenance}

    def items(self) -> list[tuple[str, str]]:
        """Price point name → column letter, skipping unmapped points."""
        pairs = [("low", self.low), ("high", self.high), ("maintenance", self.maintenance)]
        return [(name, column) for name, column in pairs if column]


@dataclass
class ColumnMapping:
    """Line-item column letters on the calculator sheet."""
    select: Optional[str]
    quantity: Optional[str]
    tier: Optional[str]
    service: Optional[str]
    billing: Optional[str]
    type: Optional[str]
    unit_price: Optional[str]
    line_total: Optional[str]
    rate_columns: dict[str, RateColumnSet] = field(default_factory=dict)
    maintenance_toggle: Optional[str] = None
    description: Optional[str] = None
    maintenance_total: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "select": self.select,
            "quantity": self.quantity,
            "maintenanceToggle": self.maintenance_toggle,
            "description": self.description,
            "tier": self.tier,
            "service": self.service,
            "billing": self.billing,
            "type": self.type,
            "unitPrice": self.unit_price,
            "lineTotal": self.line_total,
            "maintenanceTotal": self.maintenance_total,
            "rateColumns": {key: band.to_dict() for key, band in self.rate_columns.items()},
        }


@dataclass
class TotalsMapping:
    monthly_subtotal: str
    one_time_subtotal: str
    grand_total: str
    maintenance_subtotal: Optional[str] = None
    ongoing_monthly: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "monthlySubtotal": self.monthly_subtotal,
            "oneTimeSubtotal": self.one_time_subtotal,
            "maintenanceSubtotal": self.maintenance_subtotal,
            "grandTotal": self.grand_total,
            "ongoingMonthly": self.ongoing_monthly,
        }


@dataclass
class LineRange:
    start_row: int
    end_row: int
    max_empty_rows: int = 3

    def to_dict(self) -> dict:
        return {"startRow": self.start_row, "endRow": self.end_row, "maxEmptyRows": self.max_empty_rows}


@dataclass
class QuoteFields:
    """Cells on the quote sheet that receive quote details on export."""
    client_name: Optional[str] = None
    company_name: Optional[str] = None
    prepared_by: Optional[str] = None
    prepared_for_email: Optional[str] = None
    notes: Optional[str] = None
    client_segment: Optional[str] = None
    price_tier: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "clientName": self.client_name,
            "companyName": self.company_name,
            "preparedBy": self.prepared_by,
            "preparedForEmail": self.prepared_for_email,
            "notes": self.notes,
            "clientSize": self.client_segment,
            "pricePoint": self.price_tier,
        }


@dataclass
class WorkbookMapping:
    """Structural schema of an uploaded pricing workbook."""
    calculator_sheet: str
    client_segment_cell: str
    price_tier_cell: str
    totals: TotalsMapping
    line_items_range: LineRange
    columns: ColumnMapping
    quote_sheet: Optional[str] = None
    ongoing_monthly_cell: Optional[str] = None
    quote_fields: Optional[QuoteFields] = None

    def require_column(self, name: str, row: Optional[int] = None) -> str:
        """Column letter for a line-item field, or MappingIncompleteError."""
        column = getattr(self.columns, name, None)
        if not is_column(column):
            raise MappingIncompleteError(name, row)
        return column.strip().lstrip("$").upper()

    def require_cell(self, name: str) -> str:
        """Address of a single control cell (e.g. client_segment_cell)."""
        address = getattr(self, name, None)
        if not is_cell(address):
            raise MappingIncompleteError(name)
        return address.replace("$", "").upper()

    def validate(self) -> None:
        """Fail fast on every required field (used before deterministic extraction)."""
        self.require_cell("client_segment_cell")
        self.require_cell("price_tier_cell")
        for name in REQUIRED_COLUMNS:
            self.require_column(name)

    @property
    def has_maintenance(self) -> bool:
        return bool(self.totals.maintenance_subtotal)

    def to_dict(self) -> dict:
        return {
            "calculatorSheet": self.calculator_sheet,
            "quoteSheet": self.quote_sheet,
            "clientSizeCell": self.client_segment_cell,
            "pricePointCell": self.price_tier_cell,
            "ongoingMonthlyCell": self.ongoing_monthly_cell,
            "totals": self.totals.to_dict(),
            "lineItemsRange": self.line_items_range.to_dict(),
            "columns": self.columns.to_dict(),
            "quoteFields": self.quote_fields.to_dict() if self.quote_fields else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkbookMapping":
        totals = data.get("totals") or {}
        line_range = data.get("lineItemsRange") or {}
        columns = data.get("columns") or {}
        quote_fields = data.get("quoteFields")
        rate_columns = {}
        for key, band in (columns.get("rateColumns") or {}).items():
            if not band:
                continue
            rate_columns[key] = RateColumnSet(
                low=band.get("low"), high=band.get("high"), maintenance=band.get("maintenance")
            )

        return cls(
            calculator_sheet=data.get("calculatorSheet"),
            quote_sheet=data.get("quoteSheet"),
            client_segment_cell=data.get("clientSizeCell"),
            price_tier_cell=data.get("pricePointCell"),
            ongoing_monthly_cell=data.get("ongoingMonthlyCell"),
            totals=TotalsMapping(
                monthly_subtotal=totals.get("monthlySubtotal"),
                one_time_subtotal=totals.get("oneTimeSubtotal"),
                maintenance_subtotal=totals.get("maintenanceSubtotal"),
                grand_total=totals.get("grandTotal"),
                ongoing_monthly=totals.get("ongoingMonthly"),
            ),
            line_items_range=LineRange(
                start_row=int(line_range.get("startRow") or 1),
                end_row=int(line_range.get("endRow") or line_range.get("startRow") or 1),
                max_empty_rows=int(line_range.get("maxEmptyRows") or 0),
            ),
            columns=ColumnMapping(
                select=columns.get("select"),
                quantity=columns.get("quantity"),
                maintenance_toggle=columns.get("maintenanceToggle"),
                description=columns.get("description"),
                tier=columns.get("tier"),
                service=columns.get("service"),
                billing=columns.get("billing"),
                type=columns.get("type"),
                unit_price=columns.get("unitPrice"),
                line_total=columns.get("lineTotal"),
                maintenance_total=columns.get("maintenanceTotal"),
                rate_columns=rate_columns,
            ),
            quote_fields=QuoteFields(
                client_name=quote_fields.get("clientName"),
                company_name=quote_fields.get("companyName"),
                prepared_by=quote_fields.get("preparedBy"),
                prepared_for_email=quote_fields.get("preparedForEmail"),
                notes=quote_fields.get("notes"),
                client_segment=quote_fields.get("clientSize"),
                price_tier=quote_fields.get("pricePoint"),
            ) if quote_fields else None,
        )


DEFAULT_WORKBOOK_MAPPING_DICT: dict = {
    "calculatorSheet": "Calculator",
    "quoteSheet": "Quote Builder",
    "clientSizeCell": "D4",
    "pricePointCell": "E4",
    "ongoingMonthlyCell": "B36",
    "totals": {
        "monthlySubtotal": "B32",
        "oneTimeSubtotal": "B33",
        "maintenanceSubtotal": "B34",
        "grandTotal": "B35",
        "ongoingMonthly": "B36",
    },
    "lineItemsRange": {"startRow": 10, "endRow": 200, "maxEmptyRows": 3},
    "columns": {
        "select": "A",
        "quantity": "B",
        "maintenanceToggle": "C",
        "description": None,
        "tier": "D",
        "service": "E",
        "billing": "F",
        "type": "T",
        "unitPrice": "R",
        "lineTotal": "S",
        "maintenanceTotal": "U",
        "rateColumns": {
            "soloStartup": {"low": "G", "high": "H", "maintenance": "I"},
            "smallBusiness": {"low": "J", "high": "K", "maintenance": "L"},
            "midMarket": {"low": "M", "high": "N", "maintenance": "O"},
        },
    },
    "quoteFields": {
        "clientName": "B5",
        "companyName": "B6",
        "preparedBy": "B7",
        "preparedForEmail": "E7",
        "notes": "B9",
        "clientSize": "E5",
        "pricePoint": "E6",
    },
}

DEFAULT_WORKBOOK_MAPPING = WorkbookMapping.from_dict(DEFAULT_WORKBOOK_MAPPING_DICT)

# snake_case names accepted from API payloads → stored camelCase keys
_KEY_ALIASES = {
    "client_segment_cell": "clientSizeCell",
    "price_tier_cell": "pricePointCell",
    "client_segment": "clientSize",
    "price_tier": "pricePoint",
}


def _camelize(key: str) -> str:
    if key in _KEY_ALIASES:
        return _KEY_ALIASES[key]
    return re.sub(r"_([a-z])", lambda m: m.group(1).upper(), key)


def _normalize_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {_camelize(str(k)): _normalize_keys(v) for k, v in value.items()}
    return value


# Marks an optional cell or column as deliberately cleared. None and blanks
# inherit the default, so the marker is stored as-is and survives re-merging.
UNSET = "unset"


def _is_unset(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() == UNSET


def _strip_unset(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _strip_unset(item) for key, item in value.items()}
    return None if _is_unset(value) else value


def _deep_merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        if _is_unset(value):
            merged[key] = UNSET
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        elif isinstance(value, str) and not value.strip():
            continue
        else:
            merged[key] = value
    return merged


def merge_workbook_mapping_dict(overrides: Union[WorkbookMapping, dict, None] = None) -> dict:
    """
    Deep-merge a partial mapping onto the compiled-in default.

    Every nested field merges independently, so patching one rate column of one
    segment keeps that segment's other columns. The result is the storable form:
    cleared fields keep the UNSET marker.
    """
    if overrides is None:
        partial: dict = {}
    elif isinstance(overrides, WorkbookMapping):
        partial = overrides.to_dict()
    else:
        partial = _normalize_keys(overrides)

    merged = _deep_merge(copy.deepcopy(DEFAULT_WORKBOOK_MAPPING_DICT), partial)

    # ongoing monthly total cell: explicit total → top-level cell → default
    explicit_total = (partial.get("totals") or {}).get("ongoingMonthly")
    if not explicit_total and partial.get("ongoingMonthlyCell"):
        merged["totals"]["ongoingMonthly"] = partial["ongoingMonthlyCell"]

    return merged


def merge_workbook_mapping(
    overrides: Union[WorkbookMapping, dict, None] = None
) -> WorkbookMapping:
    """Merged mapping with cleared fields resolved to None."""
    return WorkbookMapping.from_dict(_strip_unset(merge_workbook_mapping_dict(overrides)))


def mapping_key(mapping: WorkbookMapping) -> str:
    """Stable short hash of a mapping, used in cache keys."""
    payload = json.dumps(mapping.to_dict(), sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:12]

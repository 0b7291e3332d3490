"""
Catalog builder - turns a merged blueprint (or, without one, the workbook
mapping itself) into PricingMetadata.

Mode is structural:
- blueprint with column bindings → calculator (lines carry cell references)
- blueprint without bindings     → pricing-table (pure rate-band lookup)
- no blueprint (mapping-derived) → calculator
"""
import io
import logging
from typing import Optional

from openpyxl import load_workbook

from ..blueprint.classify import resolve_charge_type, slugify, type_label_for
from ..blueprint.models import Blueprint, ServiceBlueprint, copy_rate_bands
from ..blueprint.overrides import map_services_by_row
from ..errors import CriticalColumnMissingError, MappingIncompleteError, SnapshotExtractionError
from ..workbook.cells import make_cell
from ..workbook.mapping import SEGMENT_KEYS, SEGMENT_LABELS, WorkbookMapping
from ..workbook.values import as_string, parse_bool, parse_number
from .models import (
    DEFAULT_CLIENT_SEGMENTS,
    DEFAULT_PRICE_TIERS,
    MODE_CALCULATOR,
    MODE_PRICING_TABLE,
    CellRefs,
    LineMetadata,
    LineOverride,
    PricingMetadata,
)
from .rates import merge_band

logger = logging.getLogger(__name__)


def price_tiers_for(price_points: Optional[list[str]]) -> list[str]:
    """Blueprint price points, with Midpoint offered when both Low and High exist."""
    if not price_points:
        return list(DEFAULT_PRICE_TIERS)
    tiers = list(price_points)
    lowered = [p.lower() for p in tiers]
    if "low" in lowered and "high" in lowered and "midpoint" not in lowered:
        tiers.insert(lowered.index("high"), "Midpoint")
    return tiers


def _rate_cells(mapping: WorkbookMapping, row: int) -> dict[str, dict[str, str]]:
    cells = {}
    for key in SEGMENT_KEYS:
        column_set = mapping.columns.rate_columns.get(key)
        if column_set is None:
            continue
        cells[SEGMENT_LABELS[key]] = {point: make_cell(column, row) for point, column in column_set.items()}
    return cells


def _cell_refs(mapping: WorkbookMapping, row: int, bindings: Optional[dict] = None) -> CellRefs:
    """Cell references for a row; explicit bindings win over the mapping's columns."""
    bindings = bindings or {}
    columns = mapping.columns

    def column(name: str) -> Optional[str]:
        return bindings.get(name) or getattr(columns, name)

    def cell(name: str) -> Optional[str]:
        letter = column(name)
        return make_cell(letter, row) if letter else None

    return CellRefs(
        select=cell("select"),
        quantity=cell("quantity"),
        unit_price=cell("unit_price"),
        line_total=cell("line_total"),
        type=cell("type"),
        maintenance_toggle=make_cell(columns.maintenance_toggle, row) if columns.maintenance_toggle else None,
        maintenance_total=make_cell(columns.maintenance_total, row) if columns.maintenance_total else None,
        rate_cells=_rate_cells(mapping, row),
    )


def apply_line_override(line: LineMetadata, override: Optional[LineOverride]) -> LineMetadata:
    """Administrator defaults sit between per-call selections and blueprint defaults."""
    if override is None:
        return line
    if override.default_selected is not None:
        line.default_selected = bool(override.default_selected)
    if override.default_quantity is not None:
        line.default_quantity = override.default_quantity
    if override.default_maintenance is not None:
        line.default_maintenance = bool(override.default_maintenance)
    if override.custom_rates:
        line.custom_rates = copy_rate_bands(override.custom_rates)
    if override.notes:
        line.notes = override.notes
    return line


def _service_line(service: ServiceBlueprint, row: int, cell_refs: Optional[CellRefs]) -> LineMetadata:
    charge_type = resolve_charge_type(explicit=service.charge_type, billing=service.billing_cadence)
    return LineMetadata(
        id=service.id,
        row=row,
        tier=service.tier or "",
        service=service.name,
        billing=service.billing_cadence or "",
        description=service.description,
        type=type_label_for(charge_type),
        charge_type=charge_type,
        default_selected=bool(service.default_selected),
        default_quantity=service.default_quantity if service.default_quantity is not None else 1,
        rate_bands=copy_rate_bands(service.rate_bands),
        cell_refs=cell_refs,
    )


def build_metadata_from_blueprint(
    blueprint: Blueprint,
    mapping: WorkbookMapping,
    line_overrides: Optional[dict[str, LineOverride]] = None,
    workbook_filename: Optional[str] = None,
    uploaded_at: Optional[str] = None,
) -> PricingMetadata:
    """
    Catalog from a merged blueprint.

    Raises CriticalColumnMissingError when the blueprint declares calculator
    bindings without unit price, line total or quantity columns.
    """
    line_overrides = line_overrides or {}
    bindings = blueprint.metadata.column_mapping
    mode = MODE_CALCULATOR if bindings else MODE_PRICING_TABLE

    binding_columns = {}
    if bindings:
        binding_columns = {
            "select": bindings.select,
            "quantity": bindings.quantity,
            "unit_price": bindings.unit_price,
            "line_total": bindings.line_total,
            "type": bindings.type,
        }
        missing = [
            label for label, value in (
                ("unitPrice", bindings.unit_price),
                ("lineTotal", bindings.line_total),
                ("quantity", bindings.quantity),
            ) if not value
        ]
        if missing:
            raise CriticalColumnMissingError(missing)

    first_row = blueprint.metadata.data_start_row or mapping.line_items_range.start_row
    lines = []
    for index, service in enumerate(blueprint.services):
        row = service.source_row or first_row + index
        refs = _cell_refs(mapping, row, binding_columns) if bindings else None
        line = _service_line(service, row, refs)
        lines.append(apply_line_override(line, line_overrides.get(line.id)))

    logger.info("Catalog built from blueprint %s: %d lines (%s mode)", blueprint.id, len(lines), mode)
    return PricingMetadata(
        client_segments=list(blueprint.client_segments) or list(DEFAULT_CLIENT_SEGMENTS),
        price_tiers=price_tiers_for(blueprint.price_points),
        line_items=lines,
        totals=mapping.totals,
        mode=mode,
        workbook_mapping=mapping,
        workbook_filename=workbook_filename or blueprint.metadata.workbook_filename,
        workbook_uploaded_at=uploaded_at,
        blueprint_id=blueprint.id,
    )


def _apply_service_to_line(line: LineMetadata, service: ServiceBlueprint) -> None:
    if service.tier:
        line.tier = service.tier
    if service.name:
        line.service = service.name
    if service.billing_cadence:
        line.billing = service.billing_cadence
    if service.description:
        line.description = service.description
    if service.default_selected is not None:
        line.default_selected = service.default_selected
    if service.default_quantity is not None:
        line.default_quantity = service.default_quantity
    for segment, band in service.rate_bands.items():
        line.rate_bands[segment] = merge_band(line.rate_bands.get(segment), band)


def build_metadata_from_mapping(
    workbook_bytes: bytes,
    mapping: WorkbookMapping,
    blueprint: Optional[Blueprint] = None,
    line_overrides: Optional[dict[str, LineOverride]] = None,
    workbook_filename: Optional[str] = None,
    uploaded_at: Optional[str] = None,
) -> PricingMetadata:
    """
    Catalog read straight from the calculator sheet using the mapping.

    A (merged) blueprint, when given, patches lines by source row. Always
    calculator mode.
    """
    line_overrides = line_overrides or {}
    try:
        workbook = load_workbook(io.BytesIO(workbook_bytes), data_only=True)
    except Exception as e:
        raise SnapshotExtractionError(f"Failed to read pricing workbook: {e}") from e
    if mapping.calculator_sheet not in workbook.sheetnames:
        raise MappingIncompleteError(
            "calculator_sheet", detail=f"Sheet '{mapping.calculator_sheet}' was not found in the workbook."
        )
    sheet = workbook[mapping.calculator_sheet]
    services_by_row = map_services_by_row(blueprint)

    line_range = mapping.line_items_range
    start = max(1, line_range.start_row)
    end = max(start, line_range.end_row)
    max_empty = line_range.max_empty_rows or 0

    lines = []
    empty_rows = 0
    for row in range(start, end + 1):
        def read(name: str):
            return sheet[make_cell(mapping.require_column(name, row), row)].value

        tier = as_string(read("tier")) or ""
        service = as_string(read("service")) or ""
        billing = as_string(read("billing")) or ""
        type_label = as_string(read("type"))

        if not (service or tier or billing):
            empty_rows += 1
            if max_empty and empty_rows >= max_empty:
                break
            continue
        empty_rows = 0

        for name in ("select", "quantity", "unit_price", "line_total"):
            mapping.require_column(name, row)

        rate_bands = {}
        for key in SEGMENT_KEYS:
            column_set = mapping.columns.rate_columns.get(key)
            if column_set is None:
                continue
            points = {point: parse_number(sheet[make_cell(column, row)].value) for point, column in column_set.items()}
            rate_bands[SEGMENT_LABELS[key]] = points

        charge_type = resolve_charge_type(type_label=type_label, billing=billing, fallback="one-time")
        description = None
        if mapping.columns.description:
            description = as_string(sheet[make_cell(mapping.columns.description, row)].value)
        maintenance = None
        if mapping.columns.maintenance_toggle:
            maintenance = parse_bool(sheet[make_cell(mapping.columns.maintenance_toggle, row)].value)
        quantity = parse_number(read("quantity"))

        line = LineMetadata(
            id=f"{slugify(service or tier or f'row-{row}')}-{row}",
            row=row,
            tier=tier,
            service=service,
            billing=billing,
            description=description,
            type=type_label or type_label_for(charge_type),
            charge_type=charge_type,
            default_selected=bool(parse_bool(read("select"))),
            default_quantity=1 if quantity is None else quantity,
            default_maintenance=bool(maintenance),
            rate_bands=rate_bands,
            cell_refs=_cell_refs(mapping, row),
        )
        if row in services_by_row:
            _apply_service_to_line(line, services_by_row[row])
        lines.append(apply_line_override(line, line_overrides.get(line.id)))

    logger.info("Catalog built from mapping: %d lines (calculator mode)", len(lines))
    return PricingMetadata(
        client_segments=list(DEFAULT_CLIENT_SEGMENTS),
        price_tiers=list(DEFAULT_PRICE_TIERS),
        line_items=lines,
        totals=mapping.totals,
        mode=MODE_CALCULATOR,
        workbook_mapping=mapping,
        workbook_filename=workbook_filename,
        workbook_uploaded_at=uploaded_at,
        blueprint_id=blueprint.id if blueprint else None,
    )

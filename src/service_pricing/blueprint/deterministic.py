"""
Deterministic blueprint generation from a snapshot plus a workbook mapping.

Used when no AI credential is configured and as the fallback when AI analysis
fails. Service ids are row based (row-<n>) so administrator overrides survive
a re-upload of the same layout.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from ..workbook.mapping import (
    DEFAULT_WORKBOOK_MAPPING,
    SEGMENT_KEYS,
    SEGMENT_LABELS,
    WorkbookMapping,
)
from ..workbook.snapshot import SnapshotRow, WorkbookSnapshot, WorksheetSnapshot
from ..workbook.values import as_string, parse_bool, parse_number
from .classify import normalize_billing, resolve_charge_type
from .models import Blueprint, BlueprintMetadata, ColumnBindings, ServiceBlueprint

logger = logging.getLogger(__name__)

GENERATED_BY = "deterministic-summary"


class DeterministicBlueprintGenerator:
    """Walks the calculator sheet inside the mapping's line range."""

    name = GENERATED_BY

    def __init__(self, mapping: Optional[WorkbookMapping] = None):
        self.mapping = mapping or DEFAULT_WORKBOOK_MAPPING

    def generate(
        self,
        snapshot: WorkbookSnapshot,
        mapping: Optional[WorkbookMapping] = None,
        workbook_filename: Optional[str] = None,
    ) -> Blueprint:
        mapping = mapping or self.mapping
        sheet = snapshot.sheet(mapping.calculator_sheet)
        if sheet is None and snapshot.sheets:
            sheet = snapshot.sheets[0]

        services = self._build_services(sheet, mapping) if sheet else []

        if sheet is None:
            notes = "No calculator sheet found in workbook snapshot."
        elif services:
            notes = f"Detected {len(services)} services from {sheet.name} using deterministic analysis."
        else:
            notes = f"No services detected in {sheet.name} with the current mapping."
        logger.info(notes)

        columns = mapping.columns
        return Blueprint(
            id=f"deterministic-{int(time.time() * 1000)}",
            metadata=BlueprintMetadata(
                workbook_filename=workbook_filename or snapshot.workbook_filename,
                generated_at=datetime.now(timezone.utc).isoformat(),
                generated_by=GENERATED_BY,
                notes=notes,
                column_mapping=ColumnBindings(
                    select=columns.select,
                    quantity=columns.quantity,
                    tier=columns.tier,
                    service=columns.service,
                    billing=columns.billing,
                    unit_price=columns.unit_price,
                    line_total=columns.line_total,
                    type=columns.type,
                ),
                header_row=mapping.line_items_range.start_row - 1,
                data_start_row=mapping.line_items_range.start_row,
                data_end_row=mapping.line_items_range.end_row,
            ),
            client_segments=[SEGMENT_LABELS[key] for key in SEGMENT_KEYS],
            price_points=["Low", "High"],
            services=services,
        )

    def _build_services(self, sheet: WorksheetSnapshot, mapping: WorkbookMapping) -> list[ServiceBlueprint]:
        line_range = mapping.line_items_range
        start = max(line_range.start_row - 1, 0)
        end = max(line_range.end_row - 1, start)
        max_empty = line_range.max_empty_rows or 0
        service_column = mapping.require_column("service")

        services = []
        empty_run = 0
        for row in sheet.rows:
            if row.row_index < start:
                continue
            if row.row_index > end:
                break

            name = as_string(row.value(service_column))
            if not name:
                empty_run += 1
                if max_empty and empty_run >= max_empty:
                    break
                continue
            empty_run = 0
            services.append(self._build_service(row, name, mapping))

        return services

    def _build_service(self, row: SnapshotRow, name: str, mapping: WorkbookMapping) -> ServiceBlueprint:
        columns = mapping.columns
        billing = normalize_billing(as_string(row.value(columns.billing)))

        rate_bands = {}
        for key in SEGMENT_KEYS:
            column_set = columns.rate_columns.get(key)
            if column_set is None:
                continue
            points = {}
            for point, column in column_set.items():
                value = parse_number(row.value(column))
                if value is not None:
                    points[point] = value
            if points:
                rate_bands[SEGMENT_LABELS[key]] = points

        return ServiceBlueprint(
            id=f"row-{row.excel_row}",
            source_row=row.excel_row,
            tier=as_string(row.value(columns.tier)),
            name=name,
            billing_cadence=billing,
            charge_type=resolve_charge_type(billing=billing),
            description=as_string(row.value(columns.description)) if columns.description else None,
            default_selected=parse_bool(row.value(columns.select)),
            default_quantity=parse_number(row.value(columns.quantity)),
            rate_bands=rate_bands,
        )

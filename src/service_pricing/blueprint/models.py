"""
Blueprint data models.

A blueprint is the stable, queryable catalog extracted from a workbook:
services with per-segment rate bands, plus metadata about how it was produced.
Rate bands are open maps so any price point names the workbook uses survive
(low/high/maintenance, bronze/silver/gold, ...).
"""
from dataclasses import dataclass, field
from typing import Any, Optional

RateBand = dict[str, Optional[float]]

CHARGE_RECURRING = "recurring"
CHARGE_ONE_TIME = "one-time"
CHARGE_TYPES = (CHARGE_RECURRING, CHARGE_ONE_TIME)


def _drop_none(data: dict) -> dict:
    return {key: value for key, value in data.items() if value is not None}


def copy_rate_bands(rate_bands: Optional[dict]) -> dict[str, RateBand]:
    return {segment: dict(band or {}) for segment, band in (rate_bands or {}).items()}


@dataclass
class Component:
    id: str
    label: str
    description: Optional[str] = None
    coverage: Optional[list[str]] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "id": self.id,
            "label": self.label,
            "description": self.description,
            "coverage": list(self.coverage) if self.coverage else None,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "Component":
        return cls(
            id=data["id"],
            label=data["label"],
            description=data.get("description"),
            coverage=list(data["coverage"]) if data.get("coverage") else None,
        )


@dataclass
class Modifier:
    """A quote-level input the workbook exposes (e.g. entity count, rush toggle)."""
    id: str
    label: str
    input_type: str  # number | boolean | select | multiselect
    description: Optional[str] = None
    default_value: Any = None
    options: Optional[list[dict]] = None
    affects: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return _drop_none({
            "id": self.id,
            "label": self.label,
            "description": self.description,
            "inputType": self.input_type,
            "defaultValue": self.default_value,
            "options": [dict(o) for o in self.options] if self.options else None,
            "affects": list(self.affects),
        })

    @classmethod
    def from_dict(cls, data: dict) -> "Modifier":
        return cls(
            id=data["id"],
            label=data["label"],
            input_type=data.get("inputType", "number"),
            description=data.get("description"),
            default_value=data.get("defaultValue"),
            options=[dict(o) for o in data["options"]] if data.get("options") else None,
            affects=list(data.get("affects") or []),
        )


@dataclass
class ServiceBlueprint:
    """One sellable service line."""
    id: str
    name: str
    billing_cadence: str
    charge_type: str = CHARGE_RECURRING
    source_row: Optional[int] = None
    tier: Optional[str] = None
    description: Optional[str] = None
    default_selected: Optional[bool] = None
    default_quantity: Optional[float] = None
    rate_bands: dict[str, RateBand] = field(default_factory=dict)
    estimated_effort_notes: Optional[str] = None
    components: Optional[list[Component]] = None
    tags: Optional[list[str]] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "id": self.id,
            "sourceRow": self.source_row,
            "tier": self.tier,
            "name": self.name,
            "billingCadence": self.billing_cadence,
            "chargeType": self.charge_type,
            "description": self.description,
            "defaultSelected": self.default_selected,
            "defaultQuantity": self.default_quantity,
            "rateBands": copy_rate_bands(self.rate_bands),
            "estimatedEffortNotes": self.estimated_effort_notes,
            "components": [c.to_dict() for c in self.components] if self.components else None,
            "tags": list(self.tags) if self.tags else None,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "ServiceBlueprint":
        return cls(
            id=data["id"],
            source_row=data.get("sourceRow"),
            tier=data.get("tier"),
            name=data.get("name", ""),
            billing_cadence=data.get("billingCadence", ""),
            charge_type=data.get("chargeType") or CHARGE_RECURRING,
            description=data.get("description"),
            default_selected=data.get("defaultSelected"),
            default_quantity=data.get("defaultQuantity"),
            rate_bands=copy_rate_bands(data.get("rateBands")),
            estimated_effort_notes=data.get("estimatedEffortNotes"),
            components=[Component.from_dict(c) for c in data["components"]] if data.get("components") else None,
            tags=list(data["tags"]) if data.get("tags") else None,
        )


@dataclass
class ColumnBindings:
    """Calculator-sheet column letters discovered for a blueprint."""
    select: Optional[str] = None
    quantity: Optional[str] = None
    tier: Optional[str] = None
    service: Optional[str] = None
    billing: Optional[str] = None
    unit_price: Optional[str] = None
    line_total: Optional[str] = None
    type: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "select": self.select,
            "quantity": self.quantity,
            "tier": self.tier,
            "service": self.service,
            "billing": self.billing,
            "unitPrice": self.unit_price,
            "lineTotal": self.line_total,
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ColumnBindings":
        return cls(
            select=data.get("select"),
            quantity=data.get("quantity"),
            tier=data.get("tier"),
            service=data.get("service"),
            billing=data.get("billing"),
            unit_price=data.get("unitPrice"),
            line_total=data.get("lineTotal"),
            type=data.get("type"),
        )


@dataclass
class BlueprintMetadata:
    generated_at: str
    generated_by: Optional[str] = None
    workbook_filename: Optional[str] = None
    workbook_version: Optional[str] = None
    notes: Optional[str] = None
    column_mapping: Optional[ColumnBindings] = None
    header_row: Optional[int] = None
    data_start_row: Optional[int] = None
    data_end_row: Optional[int] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "workbookFilename": self.workbook_filename,
            "workbookVersion": self.workbook_version,
            "generatedAt": self.generated_at,
            "generatedBy": self.generated_by,
            "notes": self.notes,
            "columnMapping": self.column_mapping.to_dict() if self.column_mapping else None,
            "headerRow": self.header_row,
            "dataStartRow": self.data_start_row,
            "dataEndRow": self.data_end_row,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "BlueprintMetadata":
        column_mapping = data.get("columnMapping")
        return cls(
            workbook_filename=data.get("workbookFilename"),
            workbook_version=data.get("workbookVersion"),
            generated_at=data.get("generatedAt", ""),
            generated_by=data.get("generatedBy"),
            notes=data.get("notes"),
            column_mapping=ColumnBindings.from_dict(column_mapping) if column_mapping else None,
            header_row=data.get("headerRow"),
            data_start_row=data.get("dataStartRow"),
            data_end_row=data.get("dataEndRow"),
        )


@dataclass
class Blueprint:
    """Output contract shared by every blueprint generation strategy."""
    id: str
    metadata: BlueprintMetadata
    client_segments: list[str] = field(default_factory=list)
    price_points: list[str] = field(default_factory=list)
    services: list[ServiceBlueprint] = field(default_factory=list)
    modifiers: Optional[list[Modifier]] = None

    def service(self, service_id: str) -> Optional[ServiceBlueprint]:
        for candidate in self.services:
            if candidate.id == service_id:
                return candidate
        return None

    def to_dict(self) -> dict:
        return _drop_none({
            "id": self.id,
            "metadata": self.metadata.to_dict(),
            "clientSegments": list(self.client_segments),
            "pricePoints": list(self.price_points),
            "services": [s.to_dict() for s in self.services],
            "modifiers": [m.to_dict() for m in self.modifiers] if self.modifiers else None,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "Blueprint":
        return cls(
            id=data.get("id", "pricing-blueprint"),
            metadata=BlueprintMetadata.from_dict(data.get("metadata") or {}),
            client_segments=list(data.get("clientSegments") or []),
            price_points=list(data.get("pricePoints") or []),
            services=[ServiceBlueprint.from_dict(s) for s in data.get("services") or []],
            modifiers=[Modifier.from_dict(m) for m in data["modifiers"]] if data.get("modifiers") else None,
        )


@dataclass
class ServiceOverride:
    """Administrator patch for one service. Only non-None fields apply."""
    service_id: str
    name: Optional[str] = None
    tier: Optional[str] = None
    billing_cadence: Optional[str] = None
    description: Optional[str] = None
    default_selected: Optional[bool] = None
    default_quantity: Optional[float] = None
    rate_bands: Optional[dict[str, RateBand]] = None
    estimated_effort_notes: Optional[str] = None
    tags: Optional[list[str]] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "serviceId": self.service_id,
            "name": self.name,
            "tier": self.tier,
            "billingCadence": self.billing_cadence,
            "description": self.description,
            "defaultSelected": self.default_selected,
            "defaultQuantity": self.default_quantity,
            "rateBands": copy_rate_bands(self.rate_bands) if self.rate_bands else None,
            "estimatedEffortNotes": self.estimated_effort_notes,
            "tags": list(self.tags) if self.tags is not None else None,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "ServiceOverride":
        return cls(
            service_id=data.get("serviceId") or data.get("service_id") or "",
            name=data.get("name"),
            tier=data.get("tier"),
            billing_cadence=data.get("billingCadence", data.get("billing_cadence")),
            description=data.get("description"),
            default_selected=data.get("defaultSelected", data.get("default_selected")),
            default_quantity=data.get("defaultQuantity", data.get("default_quantity")),
            rate_bands=data.get("rateBands", data.get("rate_bands")),
            estimated_effort_notes=data.get("estimatedEffortNotes", data.get("estimated_effort_notes")),
            tags=data.get("tags"),
        )


@dataclass
class BlueprintOverrides:
    services: list[ServiceOverride] = field(default_factory=list)
    metadata_notes: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "services": [s.to_dict() for s in self.services] or None,
            "metadataNotes": self.metadata_notes,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "BlueprintOverrides":
        return cls(
            services=[ServiceOverride.from_dict(s) for s in data.get("services") or []],
            metadata_notes=data.get("metadataNotes", data.get("metadata_notes")),
        )

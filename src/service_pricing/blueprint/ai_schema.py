"""
Structured-output schema for AI blueprint generation.

Two halves:
- build_response_schema(era): the JSON schema sent with the request
- AIBlueprint (pydantic): the lenient boundary parser for the response

The parser never raises on individual fields: malformed values become None and
unknown shapes are dropped. Only a non-object payload is rejected.

Schema eras:
- "flexible": rate band entries carry a pricePoints map (any point names)
- "legacy":   rate band entries carry fixed low/high/maintenance fields
Legacy entries are adapted into the flexible map on ingestion.
"""
import json
import math
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import BlueprintGenerationError
from .classify import normalize_segment, resolve_charge_type
from .models import (
    CHARGE_RECURRING,
    Blueprint,
    BlueprintMetadata,
    ColumnBindings,
    Component,
    Modifier,
    ServiceBlueprint,
)

SCHEMA_ERA_FLEXIBLE = "flexible"
SCHEMA_ERA_LEGACY = "legacy"
SCHEMA_ERAS = (SCHEMA_ERA_FLEXIBLE, SCHEMA_ERA_LEGACY)

INPUT_TYPES = ("number", "boolean", "select", "multiselect")


def _text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def _objects(value: Any) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _texts(value: Any) -> Optional[list[str]]:
    if not isinstance(value, list):
        return None
    collected = [text for text in (_text(item) for item in value) if text]
    return collected or None


class _Lenient(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AIRateBandEntry(_Lenient):
    segment: Optional[str] = None
    price_points: Optional[dict[str, Optional[float]]] = Field(default=None, alias="pricePoints")
    low: Optional[float] = None
    high: Optional[float] = None
    maintenance: Optional[float] = None

    @field_validator("segment", mode="before")
    @classmethod
    def _segment(cls, value):
        return normalize_segment(_text(value))

    @field_validator("price_points", mode="before")
    @classmethod
    def _points(cls, value):
        if not isinstance(value, dict):
            return None
        return {str(key): _number(point) for key, point in value.items()}

    @field_validator("low", "high", "maintenance", mode="before")
    @classmethod
    def _legacy_point(cls, value):
        return _number(value)

    def to_price_points(self) -> dict[str, Optional[float]]:
        """Flexible map; legacy low/high/maintenance entries are adapted here."""
        if self.price_points is not None:
            return dict(self.price_points)
        legacy = {"low": self.low, "high": self.high, "maintenance": self.maintenance}
        return {key: value for key, value in legacy.items() if value is not None}


class AIComponent(_Lenient):
    id: Optional[str] = None
    label: Optional[str] = None
    description: Optional[str] = None
    coverage: Optional[list[str]] = None

    @field_validator("id", "label", "description", mode="before")
    @classmethod
    def _strings(cls, value):
        return _text(value)

    @field_validator("coverage", mode="before")
    @classmethod
    def _coverage(cls, value):
        return _texts(value)


class AIService(_Lenient):
    id: Optional[str] = None
    source_row: Optional[int] = Field(default=None, alias="sourceRow")
    tier: Optional[str] = None
    name: Optional[str] = None
    billing_cadence: Optional[str] = Field(default=None, alias="billingCadence")
    charge_type: Optional[str] = Field(default=None, alias="chargeType")
    description: Optional[str] = None
    default_selected: Optional[bool] = Field(default=None, alias="defaultSelected")
    default_quantity: Optional[float] = Field(default=None, alias="defaultQuantity")
    rate_bands: list[AIRateBandEntry] = Field(default_factory=list, alias="rateBands")
    components: list[AIComponent] = Field(default_factory=list)
    tags: Optional[list[str]] = None

    @field_validator("id", "tier", "name", "billing_cadence", "charge_type", "description", mode="before")
    @classmethod
    def _strings(cls, value):
        return _text(value)

    @field_validator("source_row", mode="before")
    @classmethod
    def _row(cls, value):
        number = _number(value)
        return int(number) if number is not None else None

    @field_validator("default_quantity", mode="before")
    @classmethod
    def _quantity(cls, value):
        return _number(value)

    @field_validator("default_selected", mode="before")
    @classmethod
    def _selected(cls, value):
        return value if isinstance(value, bool) else None

    @field_validator("rate_bands", "components", mode="before")
    @classmethod
    def _entries(cls, value):
        return _objects(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, value):
        return _texts(value)

    def to_service(self, index: int) -> ServiceBlueprint:
        rate_bands = {}
        for entry in self.rate_bands:
            if entry.segment:
                rate_bands[entry.segment] = entry.to_price_points()

        components = [
            Component(id=c.id, label=c.label, description=c.description, coverage=c.coverage)
            for c in self.components
            if c.id and c.label
        ]

        return ServiceBlueprint(
            id=self.id or f"service-{index}",
            source_row=self.source_row,
            tier=self.tier,
            name=self.name or f"Service {index + 1}",
            billing_cadence=self.billing_cadence or "Monthly",
            charge_type=resolve_charge_type(explicit=self.charge_type, fallback=CHARGE_RECURRING),
            description=self.description,
            default_selected=self.default_selected,
            default_quantity=self.default_quantity,
            rate_bands=rate_bands,
            components=components or None,
            tags=self.tags,
        )


class AIColumnMapping(_Lenient):
    select: Optional[str] = None
    quantity: Optional[str] = None
    tier: Optional[str] = None
    service: Optional[str] = None
    billing: Optional[str] = None
    unit_price: Optional[str] = Field(default=None, alias="unitPrice")
    line_total: Optional[str] = Field(default=None, alias="lineTotal")
    type: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _letters(cls, value):
        text = _text(value)
        return text.upper() if text else None

    def to_bindings(self) -> Optional[ColumnBindings]:
        values = self.model_dump()
        if not any(values.values()):
            return None
        return ColumnBindings(**values)


class AIMetadata(_Lenient):
    workbook_filename: Optional[str] = Field(default=None, alias="workbookFilename")
    workbook_version: Optional[str] = Field(default=None, alias="workbookVersion")
    generated_at: Optional[str] = Field(default=None, alias="generatedAt")
    generated_by: Optional[str] = Field(default=None, alias="generatedBy")
    notes: Optional[str] = None
    column_mapping: Optional[AIColumnMapping] = Field(default=None, alias="columnMapping")
    header_row: Optional[int] = Field(default=None, alias="headerRow")
    data_start_row: Optional[int] = Field(default=None, alias="dataStartRow")
    data_end_row: Optional[int] = Field(default=None, alias="dataEndRow")

    @field_validator("workbook_filename", "workbook_version", "generated_at", "generated_by", "notes", mode="before")
    @classmethod
    def _strings(cls, value):
        return _text(value)

    @field_validator("column_mapping", mode="before")
    @classmethod
    def _mapping(cls, value):
        return value if isinstance(value, dict) else None

    @field_validator("header_row", "data_start_row", "data_end_row", mode="before")
    @classmethod
    def _rows(cls, value):
        number = _number(value)
        return int(number) if number is not None else None


class AIModifierOption(_Lenient):
    value: Optional[str] = None
    label: Optional[str] = None
    description: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _strings(cls, value):
        return _text(value)


class AIModifier(_Lenient):
    id: Optional[str] = None
    label: Optional[str] = None
    description: Optional[str] = None
    input_type: Optional[str] = Field(default=None, alias="inputType")
    default_value: Any = Field(default=None, alias="defaultValue")
    options: list[AIModifierOption] = Field(default_factory=list)
    affects: Optional[list[str]] = None

    @field_validator("id", "label", "description", mode="before")
    @classmethod
    def _strings(cls, value):
        return _text(value)

    @field_validator("input_type", mode="before")
    @classmethod
    def _input_type(cls, value):
        text = _text(value)
        return text if text in INPUT_TYPES else None

    @field_validator("default_value", mode="before")
    @classmethod
    def _default(cls, value):
        if isinstance(value, list):
            return _texts(value)
        if isinstance(value, str):
            return _text(value)
        if isinstance(value, (bool, int, float)):
            return value
        return None

    @field_validator("options", mode="before")
    @classmethod
    def _options(cls, value):
        return _objects(value)

    @field_validator("affects", mode="before")
    @classmethod
    def _affects(cls, value):
        return _texts(value)

    def to_modifier(self) -> Optional[Modifier]:
        if not (self.id and self.label and self.input_type):
            return None
        options = [
            {"value": o.value, "label": o.label, "description": o.description}
            for o in self.options
            if o.value and o.label
        ]
        return Modifier(
            id=self.id,
            label=self.label,
            input_type=self.input_type,
            description=self.description,
            default_value=self.default_value,
            options=options or None,
            affects=self.affects or [],
        )


class AIBlueprint(_Lenient):
    id: Optional[str] = None
    metadata: AIMetadata = Field(default_factory=AIMetadata)
    client_segments: Optional[list[str]] = Field(default=None, alias="clientSegments")
    price_points: Optional[list[str]] = Field(default=None, alias="pricePoints")
    services: list[AIService] = Field(default_factory=list)
    modifiers: list[AIModifier] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, value):
        return _text(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, value):
        return value if isinstance(value, dict) else {}

    @field_validator("client_segments", mode="before")
    @classmethod
    def _segments(cls, value):
        segments = _texts(value) or []
        return [normalize_segment(s) for s in segments]

    @field_validator("price_points", mode="before")
    @classmethod
    def _points(cls, value):
        return _texts(value) or []

    @field_validator("services", "modifiers", mode="before")
    @classmethod
    def _entries(cls, value):
        return _objects(value)

    def to_blueprint(self, generated_by: str, workbook_filename: Optional[str] = None) -> Blueprint:
        meta = self.metadata
        modifiers = [m for m in (mod.to_modifier() for mod in self.modifiers) if m]
        return Blueprint(
            id=self.id or "pricing-blueprint",
            metadata=BlueprintMetadata(
                workbook_filename=workbook_filename or meta.workbook_filename,
                workbook_version=meta.workbook_version,
                generated_at=meta.generated_at or datetime.now(timezone.utc).isoformat(),
                generated_by=generated_by,
                notes=meta.notes,
                column_mapping=meta.column_mapping.to_bindings() if meta.column_mapping else None,
                header_row=meta.header_row,
                data_start_row=meta.data_start_row,
                data_end_row=meta.data_end_row,
            ),
            client_segments=list(self.client_segments or []),
            price_points=list(self.price_points or []),
            services=[service.to_service(index) for index, service in enumerate(self.services)],
            modifiers=modifiers or None,
        )


def parse_ai_blueprint(payload: str) -> AIBlueprint:
    """Parse the model's output text. Rejects anything that is not a JSON object."""
    try:
        raw = json.loads(payload)
    except json.JSONDecodeError as e:
        raise BlueprintGenerationError(f"AI blueprint response is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise BlueprintGenerationError("AI blueprint response must be a JSON object.")
    try:
        return AIBlueprint.model_validate(raw)
    except ValidationError as e:
        raise BlueprintGenerationError(f"AI blueprint response could not be parsed: {e}") from e


# ---------------------------------------------------------------------------
# Request schema
# ---------------------------------------------------------------------------

def _nullable(type_name: str) -> dict:
    return {"type": [type_name, "null"]}


def _rate_band_schema(era: str) -> dict:
    if era == SCHEMA_ERA_LEGACY:
        return {
            "type": "object",
            "additionalProperties": False,
            "required": ["segment", "low", "high", "maintenance"],
            "properties": {
                "segment": {"type": "string"},
                "low": _nullable("number"),
                "high": _nullable("number"),
                "maintenance": _nullable("number"),
            },
        }
    return {
        "type": "object",
        "additionalProperties": False,
        "required": ["segment", "pricePoints"],
        "properties": {
            "segment": {"type": "string"},
            "pricePoints": {"type": "object", "additionalProperties": _nullable("number")},
        },
    }


def build_response_schema(era: str = SCHEMA_ERA_FLEXIBLE) -> dict:
    """JSON schema for the pricing_blueprint structured output."""
    if era not in SCHEMA_ERAS:
        raise ValueError(f"Unknown schema era {era!r}; expected one of {SCHEMA_ERAS}")

    column_fields = ["select", "quantity", "tier", "service", "billing", "unitPrice", "lineTotal", "type"]
    metadata_fields = {
        "workbookFilename": _nullable("string"),
        "workbookVersion": _nullable("string"),
        "generatedAt": {"type": "string"},
        "generatedBy": _nullable("string"),
        "notes": _nullable("string"),
        "columnMapping": {
            "type": ["object", "null"],
            "additionalProperties": False,
            "required": column_fields,
            "properties": {name: _nullable("string") for name in column_fields},
        },
        "headerRow": _nullable("number"),
        "dataStartRow": _nullable("number"),
        "dataEndRow": _nullable("number"),
    }
    service_fields = {
        "id": {"type": "string"},
        "sourceRow": _nullable("number"),
        "tier": _nullable("string"),
        "name": {"type": "string"},
        "billingCadence": {"type": "string"},
        "chargeType": {"type": "string", "enum": ["recurring", "one-time"]},
        "description": _nullable("string"),
        "defaultSelected": _nullable("boolean"),
        "defaultQuantity": _nullable("number"),
        "rateBands": {"type": "array", "items": _rate_band_schema(era)},
        "components": {
            "type": ["array", "null"],
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["id", "label", "description", "coverage"],
                "properties": {
                    "id": {"type": "string"},
                    "label": {"type": "string"},
                    "description": _nullable("string"),
                    "coverage": {"type": ["array", "null"], "items": {"type": "string"}},
                },
            },
        },
        "tags": {"type": ["array", "null"], "items": {"type": "string"}},
    }
    modifier_fields = {
        "id": {"type": "string"},
        "label": {"type": "string"},
        "description": _nullable("string"),
        "inputType": {"type": "string", "enum": list(INPUT_TYPES)},
        "defaultValue": {
            "anyOf": [
                {"type": "number"},
                {"type": "boolean"},
                {"type": "string"},
                {"type": "array", "items": {"type": "string"}},
                {"type": "null"},
            ]
        },
        "options": {
            "type": ["array", "null"],
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["value", "label", "description"],
                "properties": {
                    "value": {"type": "string"},
                    "label": {"type": "string"},
                    "description": _nullable("string"),
                },
            },
        },
        "affects": {"type": "array", "items": {"type": "string"}},
    }

    return {
        "type": "object",
        "additionalProperties": False,
        "required": ["id", "metadata", "clientSegments", "pricePoints", "services", "modifiers"],
        "properties": {
            "id": {"type": "string"},
            "metadata": {
                "type": "object",
                "additionalProperties": False,
                "required": list(metadata_fields),
                "properties": metadata_fields,
            },
            "clientSegments": {"type": "array", "items": {"type": "string"}},
            "pricePoints": {"type": "array", "items": {"type": "string"}},
            "services": {
                "type": "array",
                "items": {
                    "type": "object",
                    "additionalProperties": False,
                    "required": list(service_fields),
                    "properties": service_fields,
                },
            },
            "modifiers": {
                "type": ["array", "null"],
                "items": {
                    "type": "object",
                    "additionalProperties": False,
                    "required": list(modifier_fields),
                    "properties": modifier_fields,
                },
            },
        },
    }

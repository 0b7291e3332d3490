"""
Administrator override layer for blueprints.

Overrides are stored separately from the generated blueprint and merged on
read, so re-running analysis never destroys manual edits and merging never
mutates the stored blueprint.
"""
import copy
from typing import Any, Optional, Union

from ..workbook.values import parse_bool, parse_number
from .models import Blueprint, BlueprintOverrides, RateBand, ServiceBlueprint, ServiceOverride

OverridesInput = Union[BlueprintOverrides, dict, None]

_TEXT_FIELDS = ("name", "tier", "billing_cadence", "description", "estimated_effort_notes")


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _clean_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    return parse_number(value)


def sanitize_rate_band(band: Optional[dict]) -> Optional[RateBand]:
    """Keep every named point that coerces to a finite number."""
    if not isinstance(band, dict):
        return None
    cleaned = {}
    for point, value in band.items():
        name = _clean_text(point)
        number = _clean_number(value)
        if name and number is not None:
            cleaned[name] = number
    return cleaned or None


def sanitize_service_override(override: Union[ServiceOverride, dict]) -> ServiceOverride:
    if isinstance(override, dict):
        override = ServiceOverride.from_dict(override)

    cleaned = ServiceOverride(service_id=_clean_text(override.service_id) or "")
    for name in _TEXT_FIELDS:
        setattr(cleaned, name, _clean_text(getattr(override, name)))

    if override.tags:
        tags = [tag for tag in (_clean_text(t) for t in override.tags) if tag]
        cleaned.tags = tags or None
    if override.default_selected is not None:
        cleaned.default_selected = parse_bool(override.default_selected)
    cleaned.default_quantity = _clean_number(override.default_quantity)

    if override.rate_bands:
        bands = {}
        for segment, band in override.rate_bands.items():
            name = _clean_text(segment)
            sanitized = sanitize_rate_band(band)
            if name and sanitized:
                bands[name] = sanitized
        cleaned.rate_bands = bands or None

    return cleaned


def sanitize_overrides(overrides: OverridesInput) -> Optional[BlueprintOverrides]:
    """
    Normalize an override payload.

    Trims strings, drops empty optional fields, coerces numbers and drops
    service overrides without an id. Returns None when nothing remains.
    """
    if overrides is None:
        return None
    if isinstance(overrides, dict):
        overrides = BlueprintOverrides.from_dict(overrides)

    services = [sanitize_service_override(s) for s in overrides.services or []]
    services = [s for s in services if s.service_id]
    notes = _clean_text(overrides.metadata_notes)

    if not services and not notes:
        return None
    return BlueprintOverrides(services=services, metadata_notes=notes)


def apply_service_override(service: ServiceBlueprint, override: ServiceOverride) -> ServiceBlueprint:
    """Return a patched copy of service; only fields present in the override apply."""
    updated = copy.deepcopy(service)
    for name in _TEXT_FIELDS:
        value = getattr(override, name)
        if value:
            setattr(updated, name, value)
    if override.tags is not None:
        updated.tags = list(override.tags)
    if override.default_selected is not None:
        updated.default_selected = override.default_selected
    if override.default_quantity is not None:
        updated.default_quantity = override.default_quantity

    for segment, band in (override.rate_bands or {}).items():
        merged = dict(updated.rate_bands.get(segment) or {})
        merged.update(band)
        updated.rate_bands[segment] = merged

    return updated


def merge_blueprint_with_overrides(
    blueprint: Optional[Blueprint],
    overrides: OverridesInput,
) -> Optional[Blueprint]:
    """
    Apply an override layer to a blueprint.

    The input is never mutated and merging twice equals merging once.
    Services without an override are copied unchanged.
    """
    if blueprint is None:
        return None
    merged = copy.deepcopy(blueprint)
    layer = sanitize_overrides(overrides)
    if layer is None:
        return merged

    by_id = {override.service_id: override for override in layer.services}
    merged.services = [
        apply_service_override(service, by_id[service.id]) if service.id in by_id else service
        for service in merged.services
    ]
    if layer.metadata_notes:
        merged.metadata.notes = layer.metadata_notes
    return merged


def _bands_equal(left: Optional[dict], right: Optional[dict]) -> bool:
    left, right = left or {}, right or {}
    return all(left.get(point) == right.get(point) for point in set(left) | set(right))


def diff_service(
    service_id: str,
    base: ServiceBlueprint,
    draft: ServiceBlueprint,
) -> Optional[ServiceOverride]:
    """
    Minimal override turning base into draft, or None when nothing changed.

    Changed segments carry the draft's full band so merging restores every point.
    """
    override = ServiceOverride(service_id=service_id)
    changed = False

    for name in _TEXT_FIELDS + ("default_selected", "default_quantity"):
        draft_value = getattr(draft, name)
        if draft_value != getattr(base, name) and draft_value is not None:
            setattr(override, name, draft_value)
            changed = True

    if (draft.tags or None) != (base.tags or None):
        override.tags = list(draft.tags or [])
        changed = True

    bands = {}
    for segment in set(base.rate_bands) | set(draft.rate_bands):
        draft_band = draft.rate_bands.get(segment)
        if not _bands_equal(base.rate_bands.get(segment), draft_band):
            values = {point: value for point, value in (draft_band or {}).items() if value is not None}
            if values:
                bands[segment] = values
    if bands:
        override.rate_bands = bands
        changed = True

    return override if changed else None


def map_services_by_row(blueprint: Optional[Blueprint]) -> dict[int, ServiceBlueprint]:
    """Source row → service, for services that carry a source row."""
    if blueprint is None:
        return {}
    return {
        service.source_row: service
        for service in blueprint.services
        if isinstance(service.source_row, int)
    }

"""
Tests for the administrator override layer.
"""
import copy

import pytest

from service_pricing.blueprint.models import Blueprint, BlueprintMetadata, ServiceBlueprint
from service_pricing.blueprint.overrides import (
    diff_service,
    map_services_by_row,
    merge_blueprint_with_overrides,
    sanitize_overrides,
)


@pytest.fixture
def blueprint():
    return Blueprint(
        id="bp-1",
        metadata=BlueprintMetadata(generated_at="2026-01-01T00:00:00+00:00", notes="generated"),
        client_segments=["Small Business"],
        price_points=["Low", "High"],
        services=[
            ServiceBlueprint(
                id="row-10", source_row=10, name="Bookkeeping", billing_cadence="Monthly",
                rate_bands={"Small Business": {"low": 100.0, "high": 200.0, "maintenance": 20.0}},
            ),
            ServiceBlueprint(
                id="row-11", source_row=11, name="Payroll Setup", billing_cadence="One-Time",
                charge_type="one-time", rate_bands={"Small Business": {"low": 400.0, "high": 600.0}},
            ),
        ],
    )


def test_no_overrides_is_a_copy(blueprint):
    merged = merge_blueprint_with_overrides(blueprint, None)
    assert merged.to_dict() == blueprint.to_dict()
    assert merged is not blueprint
    assert merge_blueprint_with_overrides(None, {"services": []}) is None


def test_rate_patch_keeps_sibling_points(blueprint):
    overrides = {"services": [{"serviceId": "row-10", "rateBands": {"Small Business": {"low": 150}}}]}
    merged = merge_blueprint_with_overrides(blueprint, overrides)
    assert merged.service("row-10").rate_bands["Small Business"] == {"low": 150.0, "high": 200.0, "maintenance": 20.0}
    assert merged.service("row-11").to_dict() == blueprint.service("row-11").to_dict()


def test_input_not_mutated(blueprint):
    before = blueprint.to_dict()
    merge_blueprint_with_overrides(blueprint, {
        "services": [{"serviceId": "row-10", "name": "Monthly Bookkeeping",
                      "rateBands": {"Small Business": {"high": 999}}}],
        "metadataNotes": "edited",
    })
    assert blueprint.to_dict() == before


def test_idempotent(blueprint):
    overrides = {
        "services": [{"serviceId": "row-10", "name": "Monthly Bookkeeping", "tags": ["core"],
                      "rateBands": {"Small Business": {"high": "$250"}}}],
        "metadataNotes": "edited",
    }
    once = merge_blueprint_with_overrides(blueprint, overrides)
    twice = merge_blueprint_with_overrides(once, overrides)
    assert once.to_dict() == twice.to_dict()
    assert once.metadata.notes == "edited"
    assert once.service("row-10").rate_bands["Small Business"]["high"] == 250.0


def test_unknown_service_ignored(blueprint):
    merged = merge_blueprint_with_overrides(blueprint, {"services": [{"serviceId": "row-99", "name": "Ghost"}]})
    assert [s.name for s in merged.services] == ["Bookkeeping", "Payroll Setup"]


def test_sanitize():
    cleaned = sanitize_overrides({
        "services": [
            {"serviceId": "  row-10 ", "name": "  ", "description": " Monthly close ",
             "defaultQuantity": "2", "tags": ["  ", "core"],
             "rateBands": {"Small Business": {"low": "abc", "high": "(10)"}, "Mid-Market": {"low": None}}},
            {"serviceId": "", "name": "dropped"},
        ],
        "metadataNotes": "   ",
    })
    assert len(cleaned.services) == 1
    service = cleaned.services[0]
    assert service.service_id == "row-10"
    assert service.name is None
    assert service.description == "Monthly close"
    assert service.default_quantity == 2.0
    assert service.tags == ["core"]
    assert service.rate_bands == {"Small Business": {"high": -10.0}}
    assert cleaned.metadata_notes is None


def test_sanitize_empty_is_none():
    assert sanitize_overrides(None) is None
    assert sanitize_overrides({"services": [{"serviceId": ""}], "metadataNotes": ""}) is None


def test_diff_then_merge_restores_draft(blueprint):
    base = blueprint.service("row-10")
    draft = copy.deepcopy(base)
    draft.name = "Monthly Bookkeeping"
    draft.default_quantity = 3.0
    draft.rate_bands["Small Business"]["high"] = 260.0

    override = diff_service("row-10", base, draft)
    assert override.name == "Monthly Bookkeeping"
    assert override.rate_bands == {"Small Business": {"low": 100.0, "high": 260.0, "maintenance": 20.0}}

    merged = merge_blueprint_with_overrides(blueprint, {"services": [override.to_dict()]})
    assert merged.service("row-10").to_dict() == draft.to_dict()


def test_diff_without_changes(blueprint):
    base = blueprint.service("row-10")
    assert diff_service("row-10", base, copy.deepcopy(base)) is None


def test_services_by_row(blueprint):
    assert sorted(map_services_by_row(blueprint)) == [10, 11]
    assert map_services_by_row(None) == {}


@pytest.mark.parametrize("raw, expected", [("false", False), ("no", False), ("TRUE", True), (0, False), ("maybe", None)])
def test_sanitize_default_selected_parses_flags(raw, expected):
    cleaned = sanitize_overrides({"services": [{"serviceId": "row-10", "defaultSelected": raw}]})
    assert cleaned.services[0].default_selected is expected

"""
Tests for blueprint generation (deterministic and AI-assisted) and charge-type classification.
"""
import copy
import json

import pytest
from openai import OpenAIError

from service_pricing.blueprint.ai_generator import AIBlueprintGenerator
from service_pricing.blueprint.ai_schema import (
    SCHEMA_ERA_FLEXIBLE,
    SCHEMA_ERA_LEGACY,
    build_response_schema,
    parse_ai_blueprint,
)
from service_pricing.blueprint.classify import (
    charge_type_from_billing,
    normalize_billing,
    normalize_segment,
    resolve_charge_type,
    slugify,
)
from service_pricing.blueprint.deterministic import GENERATED_BY, DeterministicBlueprintGenerator
from service_pricing.errors import BlueprintGenerationError
from service_pricing.workbook.mapping import DEFAULT_WORKBOOK_MAPPING, merge_workbook_mapping
from service_pricing.workbook.snapshot import extract_workbook_snapshot


@pytest.fixture(scope="module")
def snapshot(workbook_bytes):
    return extract_workbook_snapshot(workbook_bytes, filename="pricing.xlsx")


class TestClassification:
    @pytest.mark.parametrize("raw,expected", [
        (None, "Recurring"),
        ("", "Recurring"),
        ("One-time", "One-Time"),
        ("annually", "Annual"),
        ("per year", "Annual"),
        ("Quarterly", "Quarterly"),
        ("hourly", "Hourly"),
        ("per project", "Project"),
        ("monthly", "Monthly"),
        ("as needed", "As Needed"),
    ])
    def test_normalize_billing(self, raw, expected):
        assert normalize_billing(raw) == expected

    @pytest.mark.parametrize("billing,expected", [
        ("Monthly", "recurring"),
        ("Quarterly", "recurring"),
        ("Annual retainer", "recurring"),
        ("Ongoing", "recurring"),
        ("Project", "one-time"),
        ("Session", "one-time"),
    ])
    def test_charge_type_from_billing(self, billing, expected):
        assert charge_type_from_billing(billing) == expected

    def test_precedence(self):
        assert resolve_charge_type(explicit="ONE-TIME", billing="Monthly") == "one-time"
        assert resolve_charge_type(type_label="One-time/Non-monthly", billing="Monthly") == "one-time"
        assert resolve_charge_type(type_label="Monthly", billing="Project") == "recurring"
        assert resolve_charge_type(explicit="bogus", billing="Project") == "one-time"
        assert resolve_charge_type(fallback="one-time") == "one-time"

    def test_segments_and_slugs(self):
        assert normalize_segment(" solo ") == "Solo/Startup"
        assert normalize_segment("Mid") == "Mid-Market"
        assert normalize_segment("Enterprise") == "Enterprise"
        assert slugify("Payroll Setup (Annual)") == "payroll-setup-annual"


class TestDeterministic:
    def test_services_from_calculator_rows(self, snapshot):
        blueprint = DeterministicBlueprintGenerator().generate(snapshot)

        assert [s.id for s in blueprint.services] == ["row-10", "row-11", "row-12"]
        bookkeeping = blueprint.service("row-10")
        assert bookkeeping.name == "Bookkeeping"
        assert bookkeeping.tier == "Essentials"
        assert bookkeeping.source_row == 10
        assert bookkeeping.billing_cadence == "Monthly"
        assert bookkeeping.charge_type == "recurring"
        assert bookkeeping.default_selected is True
        assert bookkeeping.default_quantity == 1.0
        assert bookkeeping.rate_bands["Solo/Startup"] == {"low": 100.0, "high": 200.0, "maintenance": 20.0}
        assert bookkeeping.rate_bands["Small Business"]["high"] == 250.0

    def test_missing_points_are_dropped(self, snapshot):
        payroll = DeterministicBlueprintGenerator().generate(snapshot).service("row-11")
        assert payroll.billing_cadence == "One-Time"
        assert payroll.charge_type == "one-time"
        assert payroll.default_selected is False
        assert payroll.rate_bands["Solo/Startup"] == {"low": 300.0, "high": 500.0}

    def test_metadata(self, snapshot):
        blueprint = DeterministicBlueprintGenerator().generate(snapshot, workbook_filename="book.xlsx")
        meta = blueprint.metadata
        assert meta.generated_by == GENERATED_BY
        assert meta.workbook_filename == "book.xlsx"
        assert meta.column_mapping.unit_price == "R"
        assert meta.data_start_row == 10
        assert "Detected 3 services" in meta.notes
        assert blueprint.client_segments == ["Solo/Startup", "Small Business", "Mid-Market"]
        assert blueprint.price_points == ["Low", "High"]

    def test_single_row(self, make_workbook):
        rows = [(False, 1, False, "Core", "Bookkeeping", "Monthly",
                 (100, 200, None), (None, None, None), (None, None, None), "Monthly")]
        snapshot = extract_workbook_snapshot(make_workbook(rows))
        blueprint = DeterministicBlueprintGenerator().generate(snapshot)
        assert len(blueprint.services) == 1
        service = blueprint.services[0]
        assert service.id == "row-10"
        assert service.charge_type == "recurring"
        assert service.rate_bands == {"Solo/Startup": {"low": 100.0, "high": 200.0}}

    def test_empty_run_stops_scan(self, make_workbook):
        row = (False, 1, False, "Core", "Bookkeeping", "Monthly",
               (100, 200, None), (None, None, None), (None, None, None), "Monthly")
        blank = (None, None, None, None, None, None, (None,) * 3, (None,) * 3, (None,) * 3, None)
        snapshot = extract_workbook_snapshot(make_workbook([row, blank, blank, blank, row]))
        blueprint = DeterministicBlueprintGenerator().generate(snapshot)
        assert [s.id for s in blueprint.services] == ["row-10"]

    def test_unknown_sheet_uses_first(self, snapshot):
        mapping = merge_workbook_mapping({"calculatorSheet": "Nope"})
        blueprint = DeterministicBlueprintGenerator(mapping).generate(snapshot)
        assert len(blueprint.services) == 3

    def test_mapping_moves_service_column(self, snapshot):
        mapping = copy.deepcopy(DEFAULT_WORKBOOK_MAPPING)
        mapping.columns.service = "D"
        blueprint = DeterministicBlueprintGenerator().generate(snapshot, mapping)
        assert [s.name for s in blueprint.services] == ["Essentials", "Essentials", "Growth"]


AI_FLEXIBLE = {
    "id": "bp-1",
    "metadata": {
        "generatedAt": "2026-01-01T00:00:00+00:00",
        "notes": "Analyzed Calculator",
        "columnMapping": {"select": "a", "quantity": "B", "unitPrice": "R", "lineTotal": "S",
                          "tier": "D", "service": "E", "billing": "F", "type": "T"},
        "dataStartRow": 10,
    },
    "clientSegments": ["Solo", "Small", "Mid"],
    "pricePoints": ["Low", "High"],
    "services": [
        {
            "id": "bookkeeping",
            "sourceRow": 10,
            "tier": "Essentials",
            "name": "Bookkeeping",
            "billingCadence": "Monthly",
            "chargeType": "recurring",
            "defaultSelected": True,
            "defaultQuantity": "lots",
            "rateBands": [
                {"segment": "Small", "pricePoints": {"low": 150, "high": 250, "rush": None}},
                {"segment": "  ", "pricePoints": {"low": 1}},
                "garbage",
            ],
            "components": [{"id": "recon", "label": "Reconciliation"}, {"label": "no id"}],
        },
        {"sourceRow": 11, "name": "Payroll Setup", "chargeType": "one-time", "rateBands": []},
    ],
    "modifiers": [
        {"id": "entities", "label": "Entities", "inputType": "number", "defaultValue": 1},
        {"id": "bad", "label": "Bad", "inputType": "slider"},
    ],
}

AI_LEGACY = {
    "id": "bp-legacy",
    "metadata": {"generatedAt": "2026-01-01T00:00:00+00:00"},
    "clientSegments": ["Solo/Startup"],
    "pricePoints": ["Low", "High"],
    "services": [
        {
            "id": "row-10",
            "name": "Bookkeeping",
            "billingCadence": "Monthly",
            "chargeType": "recurring",
            "rateBands": [{"segment": "Solo", "low": 100, "high": 200, "maintenance": None}],
        }
    ],
    "modifiers": None,
}


class TestAIGenerator:
    def test_flexible_response(self, snapshot, fake_openai):
        client = fake_openai(output_text=json.dumps(AI_FLEXIBLE))
        generator = AIBlueprintGenerator(client=client, model="test-model")
        blueprint = generator.generate(snapshot, workbook_filename="pricing.xlsx")

        assert blueprint.metadata.generated_by == "test-model"
        assert blueprint.metadata.workbook_filename == "pricing.xlsx"
        assert blueprint.metadata.column_mapping.select == "A"
        assert blueprint.client_segments == ["Solo/Startup", "Small Business", "Mid-Market"]

        bookkeeping = blueprint.service("bookkeeping")
        assert bookkeeping.rate_bands == {"Small Business": {"low": 150.0, "high": 250.0, "rush": None}}
        assert bookkeeping.default_quantity is None
        assert [c.id for c in bookkeeping.components] == ["recon"]

        payroll = blueprint.services[1]
        assert payroll.id == "service-1"
        assert payroll.charge_type == "one-time"
        assert payroll.billing_cadence == "Monthly"
        assert [m.id for m in blueprint.modifiers] == ["entities"]

    def test_request_payload(self, snapshot, fake_openai):
        client = fake_openai(output_text=json.dumps(AI_FLEXIBLE))
        AIBlueprintGenerator(client=client, model="test-model", temperature=0.2).generate(snapshot)

        payload = client.responses.calls[0]
        assert payload["model"] == "test-model"
        assert payload["temperature"] == 0.2
        assert payload["text"]["format"]["name"] == "pricing_blueprint"
        user_parts = payload["input"][1]["content"]
        assert json.loads(user_parts[1]["text"])["sheets"][0]["name"] == "Calculator"

    def test_legacy_response_adapted(self, snapshot, fake_openai):
        client = fake_openai(output_text=json.dumps(AI_LEGACY))
        generator = AIBlueprintGenerator(client=client, schema_era=SCHEMA_ERA_LEGACY)
        blueprint = generator.generate(snapshot)
        assert blueprint.services[0].rate_bands == {"Solo/Startup": {"low": 100.0, "high": 200.0}}
        assert blueprint.metadata.column_mapping is None
        assert blueprint.modifiers is None

    @pytest.mark.parametrize("output", ["", "   ", None])
    def test_empty_output(self, snapshot, fake_openai, output):
        generator = AIBlueprintGenerator(client=fake_openai(output_text=output))
        with pytest.raises(BlueprintGenerationError, match="empty response payload"):
            generator.generate(snapshot)

    @pytest.mark.parametrize("output", ["{not json", "[1, 2]"])
    def test_unparseable_output(self, snapshot, fake_openai, output):
        generator = AIBlueprintGenerator(client=fake_openai(output_text=output))
        with pytest.raises(BlueprintGenerationError):
            generator.generate(snapshot)

    def test_client_error_wrapped(self, snapshot, fake_openai):
        generator = AIBlueprintGenerator(client=fake_openai(error=OpenAIError("rate limited")))
        with pytest.raises(BlueprintGenerationError, match="rate limited"):
            generator.generate(snapshot)

    def test_transport_error_wrapped(self, snapshot, fake_openai):
        generator = AIBlueprintGenerator(client=fake_openai(error=RuntimeError("connection reset")))
        with pytest.raises(BlueprintGenerationError, match="connection reset") as exc:
            generator.generate(snapshot)
        assert isinstance(exc.value.__cause__, RuntimeError)

    def test_missing_key(self, snapshot):
        with pytest.raises(BlueprintGenerationError, match="OPENAI_API_KEY is not configured"):
            AIBlueprintGenerator(api_key=None).generate(snapshot)

    def test_lenient_fields(self):
        parsed = parse_ai_blueprint(json.dumps({
            "services": [{"name": 5, "sourceRow": "12", "defaultSelected": "yes", "tags": ["a", 3, " "]}],
            "clientSegments": "Solo",
        }))
        service = parsed.to_blueprint(generated_by="m").services[0]
        assert service.name == "Service 1"
        assert service.source_row is None
        assert service.default_selected is None
        assert service.tags == ["a"]
        assert parsed.client_segments == []


class TestResponseSchema:
    def test_flexible_rate_bands(self):
        schema = build_response_schema(SCHEMA_ERA_FLEXIBLE)
        band = schema["properties"]["services"]["items"]["properties"]["rateBands"]["items"]
        assert band["required"] == ["segment", "pricePoints"]

    def test_legacy_rate_bands(self):
        schema = build_response_schema(SCHEMA_ERA_LEGACY)
        band = schema["properties"]["services"]["items"]["properties"]["rateBands"]["items"]
        assert band["required"] == ["segment", "low", "high", "maintenance"]

    def test_unknown_era(self):
        with pytest.raises(ValueError):
            build_response_schema("future")

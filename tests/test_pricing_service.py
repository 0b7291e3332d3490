"""
Tests for the pricing service: analysis with fallback, bootstrap,
calculation, export and administration writes.
"""
import io
import json

import pytest
from openpyxl import load_workbook

from service_pricing.blueprint.ai_generator import AIBlueprintGenerator
from service_pricing.errors import PricingError, WorkbookNotFoundError
from service_pricing.services.pricing_service import NO_WORKBOOK_MESSAGE, PricingService
from service_pricing.services.store import (
    FileSettingsStore,
    FileWorkbookStore,
    InMemorySettingsStore,
    InMemoryWorkbookStore,
)

AI_BLUEPRINT = {
    "id": "bp-ai",
    "metadata": {"generatedAt": "2026-01-01T00:00:00+00:00", "notes": "AI analysis"},
    "clientSegments": ["Solo", "Small", "Mid"],
    "pricePoints": ["Low", "High"],
    "services": [
        {
            "id": "bookkeeping",
            "sourceRow": 10,
            "name": "Bookkeeping",
            "billingCadence": "Monthly",
            "chargeType": "recurring",
            "defaultSelected": True,
            "defaultQuantity": 1,
            "rateBands": [{"segment": "Small", "pricePoints": {"low": 150, "high": 250}}],
        }
    ],
    "modifiers": [],
}


def ai_service(config, client):
    generator = AIBlueprintGenerator(client=client, model="test-model")
    return PricingService(InMemoryWorkbookStore(), InMemorySettingsStore(), config=config, ai_generator=generator)


class TestAnalysis:
    def test_deterministic_without_ai(self, service, workbook_bytes):
        outcome = service.upload_workbook(workbook_bytes, filename="pricing.xlsx")
        record = outcome.record
        assert outcome.error is None
        assert record.blueprint_model == "deterministic-summary"
        assert record.blueprint_error is None
        assert [s.id for s in record.blueprint.services] == ["row-10", "row-11", "row-12"]
        assert record.snapshot is not None

    def test_ai_success(self, config, fake_openai, workbook_bytes):
        service = ai_service(config, fake_openai(output_text=json.dumps(AI_BLUEPRINT)))
        outcome = service.upload_workbook(workbook_bytes, filename="pricing.xlsx")
        assert outcome.error is None
        assert outcome.record.blueprint_model == "test-model"
        assert outcome.record.blueprint.id == "bp-ai"

        metadata = service.get_metadata()
        assert metadata.mode == "pricing-table"
        assert [line.id for line in metadata.line_items] == ["bookkeeping"]

    def test_ai_failure_falls_back(self, config, fake_openai, workbook_bytes):
        service = ai_service(config, fake_openai(output_text=""))
        outcome = service.upload_workbook(workbook_bytes, filename="pricing.xlsx")
        record = outcome.record

        assert "empty response payload" in outcome.error
        assert record.blueprint_error == outcome.error
        assert record.blueprint_model == "test-model (fallback)"
        assert record.blueprint.metadata.generated_by == "deterministic-summary"
        assert len(record.blueprint.services) == 3

        boot = service.bootstrap()
        assert boot.setup_required is False
        assert boot.metadata.mode == "calculator"
        assert boot.workbook_info["blueprintError"] == outcome.error

    def test_unexpected_client_error_falls_back(self, config, fake_openai, workbook_bytes):
        service = ai_service(config, fake_openai(error=RuntimeError("connection reset")))
        outcome = service.upload_workbook(workbook_bytes, filename="pricing.xlsx")
        record = outcome.record

        assert "connection reset" in outcome.error
        assert record.blueprint_error == outcome.error
        assert record.blueprint_model == "test-model (fallback)"
        assert [s.id for s in record.blueprint.services] == ["row-10", "row-11", "row-12"]
        assert service.bootstrap().setup_required is False

    def test_unreadable_workbook_recorded(self, service):
        outcome = service.upload_workbook(b"not a workbook", filename="broken.xlsx")
        assert outcome.record.blueprint is None
        assert "Failed to read" in outcome.record.blueprint_error

    def test_empty_upload_rejected(self, service):
        with pytest.raises(PricingError):
            service.upload_workbook(b"")


class TestBootstrap:
    def test_without_workbook(self, service):
        boot = service.bootstrap()
        assert boot.setup_required is True
        assert boot.metadata is None
        assert boot.message == NO_WORKBOOK_MESSAGE
        assert boot.to_dict()["mapping"]["calculatorSheet"] == "Calculator"

    def test_with_workbook(self, service, workbook_bytes):
        service.upload_workbook(workbook_bytes, filename="pricing.xlsx")
        boot = service.bootstrap()
        assert boot.setup_required is False
        assert boot.metadata.mode == "calculator"
        assert boot.defaults.segment == "Solo/Startup"
        assert boot.defaults.price_tier == "Midpoint"
        data = boot.to_dict()
        assert data["defaults"] == {"clientSize": "Solo/Startup", "pricePoint": "Midpoint"}
        assert data["workbook"]["blueprintMerged"]["id"] == data["workbook"]["blueprint"]["id"]

    def test_metadata_is_cached(self, service, workbook_bytes):
        service.upload_workbook(workbook_bytes, filename="pricing.xlsx")
        assert service.get_metadata() is service.get_metadata()


class TestCalculateAndExport:
    @pytest.fixture
    def loaded(self, service, workbook_bytes):
        service.upload_workbook(workbook_bytes, filename="pricing.xlsx")
        return service

    def test_calculate_requires_workbook(self, service):
        with pytest.raises(WorkbookNotFoundError):
            service.calculate({})

    def test_calculate_coerces_unknown_segment(self, loaded):
        result = loaded.calculate({"clientSize": "Enterprise", "pricePoint": "High"})
        assert result.segment == "Solo/Startup"
        assert result.price_tier == "High"
        assert result.lines[0].unit_price == 200.0

    def test_calculate_with_selections(self, loaded):
        result = loaded.calculate({
            "clientSize": "Small Business",
            "pricePoint": "Midpoint",
            "selections": [{"lineId": "row-11", "selected": True, "quantity": 2}],
        })
        assert result.totals.monthly_subtotal == 200.0
        assert result.totals.one_time_subtotal == 1000.0
        assert result.totals.grand_total_month_one == 1200.0
        assert result.workbook is None

    def test_xlsx_export_writes_back(self, loaded):
        exported = loaded.export({
            "clientSize": "Small Business",
            "pricePoint": "Low",
            "quoteDetails": {"clientName": "Dana Reyes", "companyName": "Reyes Dental"},
        }, fmt="xlsx")
        assert exported.filename.startswith("quote-small-business-low-")
        assert exported.filename.endswith(".xlsx")

        wb = load_workbook(io.BytesIO(exported.data))
        calc = wb["Calculator"]
        assert calc["R10"].value == 150.0
        assert calc["S10"].value == 150.0
        assert calc["B32"].value == 150.0
        assert calc["B35"].value == 150.0
        quote = wb["Quote Builder"]
        assert quote["B5"].value == "Dana Reyes"
        assert quote["B6"].value == "Reyes Dental"
        assert quote["E5"].value == "Small Business"
        assert quote["E6"].value == "Low"

    def test_csv_export(self, loaded):
        exported = loaded.export({"clientSize": "Small Business", "pricePoint": "Low"}, fmt="csv")
        assert exported.content_type == "text/csv"
        text = exported.data.decode("utf-8")
        assert "Bookkeeping" in text
        assert "=IF" not in text
        assert exported.to_dict()["filename"].endswith(".csv")

    def test_unknown_format(self, loaded):
        with pytest.raises(PricingError):
            loaded.export({}, fmt="pdf")


class TestAdministration:
    def test_save_mapping_without_workbook(self, service):
        settings = service.save_mapping({"columns": {"rateColumns": {"smallBusiness": {"high": "Z"}}}})
        mapping = service.mapping_for(settings)
        assert mapping.columns.rate_columns["smallBusiness"].high == "Z"
        assert mapping.columns.rate_columns["smallBusiness"].low == "J"

    def test_save_settings_requires_workbook(self, service):
        with pytest.raises(WorkbookNotFoundError):
            service.save_settings({"defaultClientSize": "Small Business"})

    def test_save_settings_coerces_defaults(self, service, workbook_bytes):
        service.upload_workbook(workbook_bytes, filename="pricing.xlsx")
        settings = service.save_settings({
            "defaultClientSize": "Small Business",
            "defaultPricePoint": "Premium",
            "lineOverrides": [{"lineId": "row-12", "defaultSelected": True}, {"notes": "no id"}],
            "exportedEmailRecipients": ["ops@example.com", 7],
        }, updated_by="admin")
        assert settings.default_segment == "Small Business"
        assert settings.default_price_tier == "Midpoint"
        assert [o.line_id for o in settings.line_overrides] == ["row-12"]
        assert settings.export_recipients == ["ops@example.com"]

        metadata = service.get_metadata(service.load_settings())
        assert metadata.line("row-12").default_selected is True
        boot = service.bootstrap()
        assert boot.defaults.segment == "Small Business"

    def test_blueprint_overrides_flow_into_catalog(self, service, workbook_bytes):
        service.upload_workbook(workbook_bytes, filename="pricing.xlsx")
        overrides, merged = service.save_blueprint_overrides({
            "services": [{"serviceId": "row-10", "name": "Monthly Bookkeeping",
                          "rateBands": {"Small Business": {"low": 175}}}],
        })
        assert overrides.services[0].service_id == "row-10"
        assert merged.service("row-10").rate_bands["Small Business"]["high"] == 250.0

        metadata = service.get_metadata(service.load_settings())
        assert metadata.line("row-10").service == "Monthly Bookkeeping"

        stored = service.get_blueprint()
        assert stored["blueprint"]["services"][0]["name"] == "Bookkeeping"
        assert stored["merged"]["services"][0]["name"] == "Monthly Bookkeeping"

    def test_cleared_maintenance_subtotal_drops_maintenance(self, service, workbook_bytes):
        service.upload_workbook(workbook_bytes, filename="pricing.xlsx")
        service.save_mapping({"totals": {"maintenanceSubtotal": "unset"}})

        result = service.calculate({
            "clientSize": "Small Business",
            "pricePoint": "Midpoint",
            "selections": [{"lineId": "row-10", "includeMaintenance": True}],
        })
        assert result.totals.maintenance_subtotal is None
        assert result.totals.grand_total_month_one == 200.0
        assert result.lines[0].maintenance_total == 0.0

    def test_overrides_survive_reupload(self, service, workbook_bytes):
        service.upload_workbook(workbook_bytes, filename="pricing.xlsx")
        service.save_blueprint_overrides({"services": [{"serviceId": "row-10", "name": "Renamed"}]})
        service.upload_workbook(workbook_bytes, filename="pricing-v2.xlsx")
        assert service.get_metadata().line("row-10").service == "Renamed"

    def test_reanalyze(self, service, workbook_bytes):
        service.upload_workbook(workbook_bytes, filename="pricing.xlsx")
        first = service.workbook_store.load_latest().blueprint_generated_at
        outcome = service.reanalyze()
        assert outcome.error is None
        assert outcome.record.blueprint_generated_at >= first

    def test_file_stores_round_trip(self, config, workbook_bytes):
        stores = (FileWorkbookStore(config.workbook_dir), FileSettingsStore(config.settings_file))
        service = PricingService(*stores, config=config)
        service.upload_workbook(workbook_bytes, filename="pricing.xlsx")
        service.save_mapping({"quoteSheet": "Quote Builder"})

        reopened = PricingService(FileWorkbookStore(config.workbook_dir), FileSettingsStore(config.settings_file),
                                  config=config)
        record = reopened.workbook_store.load_latest()
        assert record.data == workbook_bytes
        assert record.blueprint.service("row-10").name == "Bookkeeping"
        assert reopened.calculate({"clientSize": "Small Business", "pricePoint": "High"}).lines[0].unit_price == 250.0

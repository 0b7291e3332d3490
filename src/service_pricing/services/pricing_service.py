"""
Pricing Service - orchestration for the quote builder.

Ties stores, blueprint analysis, the override layer, the metadata cache and
the pricing engine together:
- analyze_workbook: snapshot → AI blueprint (when configured) → deterministic fallback
- bootstrap: everything the quote builder needs on first load
- calculate / export: resolve a quote, optionally serialize the workbook copy
- upload_workbook / save_settings / save_blueprint_overrides / reanalyze: admin writes
"""
import base64
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from ..blueprint.ai_generator import AIBlueprintGenerator
from ..blueprint.deterministic import GENERATED_BY, DeterministicBlueprintGenerator
from ..blueprint.models import Blueprint, BlueprintOverrides
from ..blueprint.overrides import merge_blueprint_with_overrides, sanitize_overrides
from ..config.settings import Settings, get_settings
from ..engine.catalog import build_metadata_from_blueprint, build_metadata_from_mapping
from ..engine.export import CSV_MIME, XLSX_MIME, export_filename, workbook_to_bytes, workbook_to_csv
from ..engine.models import CalculationResult, LineOverride, PricingMetadata, QuoteRequest
from ..engine.pricing_engine import PricingEngine
from ..errors import PricingError, SnapshotExtractionError, WorkbookNotFoundError
from ..workbook.mapping import WorkbookMapping, merge_workbook_mapping, merge_workbook_mapping_dict
from ..workbook.snapshot import extract_workbook_snapshot
from .cache import MetadataCache, metadata_cache_key
from .store import PricingSettings, SettingsStore, WorkbookRecord, WorkbookStore, utc_now

logger = logging.getLogger(__name__)

NO_WORKBOOK_MESSAGE = "No pricing workbook found. Upload a workbook to enable the calculator."
EMPTY_WORKBOOK_MESSAGE = "Stored pricing workbook is empty. Upload a fresh workbook to enable the calculator."


@dataclass
class AnalysisOutcome:
    record: Optional[WorkbookRecord]
    error: Optional[str] = None


@dataclass
class Bootstrap:
    """Initial state for the quote builder."""
    metadata: Optional[PricingMetadata]
    settings: Optional[PricingSettings]
    defaults: Optional[QuoteRequest]
    workbook_info: Optional[dict]
    mapping: WorkbookMapping
    setup_required: bool
    message: Optional[str] = None

    def to_dict(self) -> dict:
        defaults = None
        if self.defaults is not None:
            defaults = {"clientSize": self.defaults.segment, "pricePoint": self.defaults.price_tier}
        return {
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "settings": self.settings.to_dict() if self.settings else None,
            "defaults": defaults,
            "workbook": self.workbook_info,
            "mapping": self.mapping.to_dict(),
            "setupRequired": self.setup_required,
            "message": self.message,
        }


@dataclass
class ExportResult:
    filename: str
    content_type: str
    data: bytes
    result: CalculationResult

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "contentType": self.content_type,
            "data": base64.b64encode(self.data).decode("ascii"),
            "result": self.result.to_dict(),
        }


class PricingService:
    """Service for workbook analysis and quote resolution."""

    def __init__(
        self,
        workbook_store: WorkbookStore,
        settings_store: SettingsStore,
        config: Optional[Settings] = None,
        ai_generator: Optional[Any] = None,
        deterministic_generator: Optional[DeterministicBlueprintGenerator] = None,
        engine: Optional[PricingEngine] = None,
        cache: Optional[MetadataCache] = None,
    ):
        self.workbook_store = workbook_store
        self.settings_store = settings_store
        self.config = config or get_settings()
        if ai_generator is None and self.config.ai_enabled:
            ai_generator = AIBlueprintGenerator(
                api_key=self.config.openai_api_key,
                model=self.config.openai_model,
                timeout=self.config.openai_timeout,
                schema_era=self.config.schema_era,
            )
        self.ai_generator = ai_generator
        self.deterministic_generator = deterministic_generator or DeterministicBlueprintGenerator()
        self.engine = engine or PricingEngine()
        self.cache = cache or MetadataCache()

    @property
    def ai_enabled(self) -> bool:
        return self.ai_generator is not None

    @property
    def attempted_model(self) -> str:
        return getattr(self.ai_generator, "name", None) or self.config.openai_model

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load_settings(self) -> Optional[PricingSettings]:
        return self.settings_store.load()

    def mapping_for(self, settings: Optional[PricingSettings]) -> WorkbookMapping:
        return merge_workbook_mapping(settings.workbook_mapping if settings else None)

    def _require_workbook(self, message: str = NO_WORKBOOK_MESSAGE) -> WorkbookRecord:
        record = self.workbook_store.load_latest()
        if record is None or not record.has_binary:
            raise WorkbookNotFoundError(message)
        return record

    def workbook_bytes(self, record: WorkbookRecord) -> Optional[bytes]:
        return self.cache.binary(record.uploaded_at, lambda: record.data)

    def merged_blueprint(self, record: Optional[WorkbookRecord]) -> Optional[Blueprint]:
        if record is None:
            return None
        return merge_blueprint_with_overrides(record.blueprint, record.blueprint_overrides)

    def workbook_info(self, record: Optional[WorkbookRecord]) -> Optional[dict]:
        if record is None:
            return None
        info = record.to_dict()
        merged = self.merged_blueprint(record)
        info["blueprintMerged"] = merged.to_dict() if merged else None
        return info

    def get_metadata(
        self,
        settings: Optional[PricingSettings] = None,
        record: Optional[WorkbookRecord] = None,
    ) -> PricingMetadata:
        """
        Catalog for the latest workbook, built once per cache key.

        Blueprints with services drive the catalog; otherwise lines are read
        straight from the calculator sheet through the mapping.
        """
        record = record or self._require_workbook()
        if not record.has_binary:
            raise WorkbookNotFoundError(EMPTY_WORKBOOK_MESSAGE)
        mapping = self.mapping_for(settings)
        line_overrides = settings.line_overrides if settings else []
        key = metadata_cache_key(record.uploaded_at, mapping, record.blueprint_overrides, line_overrides)

        def build() -> PricingMetadata:
            merged = self.merged_blueprint(record)
            overrides = settings.overrides_by_line() if settings else {}
            if merged is not None and merged.services:
                return build_metadata_from_blueprint(
                    merged, mapping,
                    line_overrides=overrides,
                    workbook_filename=record.filename,
                    uploaded_at=record.uploaded_at,
                )
            return build_metadata_from_mapping(
                self.workbook_bytes(record), mapping,
                blueprint=merged,
                line_overrides=overrides,
                workbook_filename=record.filename,
                uploaded_at=record.uploaded_at,
            )

        return self.cache.get_or_build(key, build)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze_workbook(
        self,
        record: Optional[WorkbookRecord],
        mapping: Optional[WorkbookMapping] = None,
    ) -> AnalysisOutcome:
        """
        Generate and store a blueprint for the record.

        AI runs only when configured; any AI failure falls back to the
        deterministic generator and is recorded as blueprint_error. A snapshot
        failure leaves the record without a blueprint.
        """
        if record is None or not record.has_binary:
            return AnalysisOutcome(record, "Workbook data is not available for analysis.")
        mapping = mapping or self.mapping_for(self.load_settings())
        attempted_model = self.attempted_model

        try:
            snapshot = extract_workbook_snapshot(
                record.data,
                max_rows=self.config.snapshot_max_rows,
                max_columns=self.config.snapshot_max_columns,
                filename=record.filename,
            )
        except SnapshotExtractionError as e:
            logger.error("Workbook snapshot extraction failed: %s", e)
            record.blueprint = None
            record.blueprint_model = attempted_model
            record.blueprint_generated_at = utc_now()
            record.blueprint_error = str(e)
            self._save_record(record)
            return AnalysisOutcome(record, str(e))

        record.snapshot = snapshot
        ai_error = None

        if self.ai_enabled:
            logger.info("Analyzing %s with AI model %s", record.filename, attempted_model)
            try:
                blueprint = self.ai_generator.generate(snapshot, mapping, workbook_filename=record.filename)
                record.blueprint = blueprint
                record.blueprint_model = attempted_model
                record.blueprint_generated_at = utc_now()
                record.blueprint_error = None
                self._save_record(record)
                return AnalysisOutcome(record)
            except PricingError as e:
                ai_error = str(e) or "Failed to generate pricing blueprint."
                logger.warning("AI blueprint generation failed, using deterministic fallback: %s", ai_error)

        logger.info("Analyzing %s with the deterministic generator", record.filename)
        record.blueprint = self.deterministic_generator.generate(snapshot, mapping, workbook_filename=record.filename)
        record.blueprint_model = f"{attempted_model} (fallback)" if self.ai_enabled else GENERATED_BY
        record.blueprint_generated_at = utc_now()
        record.blueprint_error = ai_error if self.ai_enabled else None
        self._save_record(record)
        return AnalysisOutcome(record, ai_error)

    def needs_analysis(self, record: WorkbookRecord) -> bool:
        if not record.blueprint_generated_at:
            return True
        if record.blueprint is None and self.ai_enabled:
            return True
        if record.blueprint_generated_at < record.uploaded_at:
            return True
        return bool(record.blueprint_error and self.ai_enabled)

    def _save_record(self, record: WorkbookRecord) -> None:
        self.workbook_store.save(record)
        self.cache.invalidate()

    # ------------------------------------------------------------------
    # Quote builder
    # ------------------------------------------------------------------

    def build_request(
        self,
        metadata: PricingMetadata,
        payload: Union[QuoteRequest, dict, None],
        settings: Optional[PricingSettings],
    ) -> QuoteRequest:
        """Fill segment/tier from settings defaults and coerce them onto the catalog."""
        if isinstance(payload, QuoteRequest):
            request = payload
        else:
            request = QuoteRequest.from_dict(payload or {})

        default_segment = metadata.client_segments[0] if metadata.client_segments else ""
        tiers = metadata.price_tiers
        default_tier = tiers[1] if len(tiers) > 1 else (tiers[0] if tiers else "")

        segment = request.segment or (settings.default_segment if settings else None) or default_segment
        if segment not in metadata.client_segments:
            segment = default_segment
        price_tier = request.price_tier or (settings.default_price_tier if settings else None) or default_tier
        if price_tier not in tiers:
            price_tier = default_tier

        return QuoteRequest(
            segment=segment,
            price_tier=price_tier,
            selections=list(request.selections),
            quote_details=request.quote_details,
        )

    def bootstrap(self) -> Bootstrap:
        settings = self.load_settings()
        mapping = self.mapping_for(settings)
        record = self.workbook_store.load_latest()

        metadata = None
        defaults = None
        message = None
        setup_required = record is None or not record.has_binary

        if record is not None and record.has_binary:
            if self.needs_analysis(record):
                outcome = self.analyze_workbook(record, mapping)
                if outcome.error:
                    logger.warning("Workbook analysis warning: %s", outcome.error)
                record = outcome.record
            try:
                metadata = self.get_metadata(settings, record)
                defaults = self.build_request(metadata, None, settings)
            except PricingError as e:
                logger.warning("Unable to load pricing metadata: %s", e)
                message = str(e)
                setup_required = True
        elif record is not None:
            message = EMPTY_WORKBOOK_MESSAGE
        else:
            message = NO_WORKBOOK_MESSAGE

        return Bootstrap(
            metadata=metadata,
            settings=settings,
            defaults=defaults,
            workbook_info=self.workbook_info(record),
            mapping=mapping,
            setup_required=setup_required,
            message=message,
        )

    def calculate(self, payload: Union[QuoteRequest, dict, None] = None, export: bool = False) -> CalculationResult:
        settings = self.load_settings()
        record = self._require_workbook("Upload a pricing workbook before calculating.")
        metadata = self.get_metadata(settings, record)
        request = self.build_request(metadata, payload, settings)
        return self.engine.calculate(
            metadata,
            request.segment,
            request.price_tier,
            request.selections,
            quote_details=request.quote_details,
            workbook_bytes=self.workbook_bytes(record),
            export=export,
        )

    def export(self, payload: Union[QuoteRequest, dict, None] = None, fmt: str = "xlsx") -> ExportResult:
        fmt = (fmt or "xlsx").lower()
        if fmt not in ("xlsx", "csv"):
            raise PricingError(f"Unsupported export format '{fmt}'. Use 'xlsx' or 'csv'.")

        result = self.calculate(payload, export=True)
        if result.workbook is None:
            raise WorkbookNotFoundError("Upload a pricing workbook before exporting quotes.")

        if fmt == "csv":
            sheet_name = result.workbook.active.title
            settings = self.load_settings()
            calculator_sheet = self.mapping_for(settings).calculator_sheet
            if calculator_sheet in result.workbook.sheetnames:
                sheet_name = calculator_sheet
            data, content_type = workbook_to_csv(result.workbook, sheet_name), CSV_MIME
        else:
            data, content_type = workbook_to_bytes(result.workbook), XLSX_MIME

        filename = export_filename(result.segment, result.price_tier, fmt)
        logger.info("Exported %s (%d bytes)", filename, len(data))
        return ExportResult(filename=filename, content_type=content_type, data=data, result=result)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def upload_workbook(
        self,
        data: bytes,
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
        mapping: Optional[dict] = None,
        uploaded_by: Optional[str] = None,
    ) -> AnalysisOutcome:
        """Replace the stored workbook, optionally save a mapping, then analyze."""
        if not data:
            raise PricingError("Workbook file is empty.")

        settings = self.save_mapping(mapping, uploaded_by) if mapping is not None else self.load_settings()

        previous = self.workbook_store.load_latest()
        record = WorkbookRecord(
            filename=(filename or "").strip() or "pricing-workbook.xlsx",
            data=data,
            uploaded_by=uploaded_by,
            blueprint_overrides=previous.blueprint_overrides if previous else None,
        )
        if mime_type and mime_type.strip():
            record.mime_type = mime_type.strip()
        self._save_record(record)
        logger.info("Stored workbook %s (%d bytes)", record.filename, record.size)

        outcome = self.analyze_workbook(record, self.mapping_for(settings))
        if outcome.error:
            logger.warning("Workbook analysis completed with warnings: %s", outcome.error)
        return outcome

    def save_mapping(self, mapping: Union[WorkbookMapping, dict], updated_by: Optional[str] = None) -> PricingSettings:
        """Merge a partial mapping onto the defaults and store it in settings."""
        settings = self.load_settings() or PricingSettings()
        settings.workbook_mapping = merge_workbook_mapping_dict(mapping)
        settings.last_updated_by = updated_by
        settings.updated_at = utc_now()
        self.settings_store.save(settings)
        self.cache.invalidate()
        return settings

    def save_settings(self, payload: dict, updated_by: Optional[str] = None) -> PricingSettings:
        current = self.load_settings()
        metadata = self.get_metadata(current)

        segments = metadata.client_segments
        tiers = metadata.price_tiers
        segment = payload.get("defaultClientSize")
        price_tier = payload.get("defaultPricePoint")

        workbook_mapping = current.workbook_mapping if current else None
        if payload.get("workbookMapping"):
            workbook_mapping = merge_workbook_mapping_dict(payload["workbookMapping"])

        settings = PricingSettings(
            default_segment=segment if segment in segments else (segments[0] if segments else None),
            default_price_tier=price_tier if price_tier in tiers else (tiers[1] if len(tiers) > 1 else None),
            line_overrides=[
                LineOverride.from_dict(item)
                for item in payload.get("lineOverrides") or []
                if isinstance(item, dict) and (item.get("lineId") or item.get("line_id"))
            ],
            export_recipients=[
                r for r in payload.get("exportedEmailRecipients") or [] if isinstance(r, str) and r
            ],
            workbook_mapping=workbook_mapping,
            last_updated_by=updated_by,
            updated_at=utc_now(),
        )
        self.settings_store.save(settings)
        self.cache.invalidate()
        return settings

    def get_blueprint(self) -> dict:
        record = self._require_workbook("No pricing workbook has been uploaded.")
        if not record.blueprint_generated_at or record.blueprint is None:
            record = self.analyze_workbook(record).record
        merged = self.merged_blueprint(record)
        return {
            "workbook": self.workbook_info(record),
            "blueprint": record.blueprint.to_dict() if record.blueprint else None,
            "overrides": record.blueprint_overrides.to_dict() if record.blueprint_overrides else None,
            "merged": merged.to_dict() if merged else None,
        }

    def save_blueprint_overrides(
        self,
        overrides: Union[BlueprintOverrides, dict, None],
    ) -> tuple[Optional[BlueprintOverrides], Optional[Blueprint]]:
        """Store the sanitized override layer; returns (overrides, merged blueprint)."""
        record = self._require_workbook("Upload a pricing workbook before saving rules.")
        record.blueprint_overrides = sanitize_overrides(overrides)
        self._save_record(record)
        return record.blueprint_overrides, self.merged_blueprint(record)

    def reanalyze(self) -> AnalysisOutcome:
        record = self._require_workbook("Upload a pricing workbook before running analysis.")
        outcome = self.analyze_workbook(record)
        self.cache.invalidate()
        return outcome

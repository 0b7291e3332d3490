"""
Pricing API - FastAPI router for the quote builder and its administration.
"""
import base64
import binascii
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from ..errors import PricingError, WorkbookNotFoundError
from ..services.pricing_service import PricingService
from .state import get_service

router = APIRouter(prefix="/api/pricing", tags=["pricing"])


# Pydantic models for API
class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SelectionModel(_CamelModel):
    """One per-line choice."""
    line_id: str = Field(alias="lineId")
    selected: Optional[bool] = None
    quantity: Optional[float] = None
    include_maintenance: Optional[bool] = Field(default=None, alias="includeMaintenance")
    rate_overrides: Optional[dict[str, dict[str, Any]]] = Field(default=None, alias="rateOverrides")
    override_price: Optional[float] = Field(default=None, alias="overridePrice")


class QuoteDetailsModel(_CamelModel):
    client_name: Optional[str] = Field(default=None, alias="clientName")
    company_name: Optional[str] = Field(default=None, alias="companyName")
    prepared_by: Optional[str] = Field(default=None, alias="preparedBy")
    prepared_for_email: Optional[str] = Field(default=None, alias="preparedForEmail")
    notes: Optional[str] = None


class CalculateRequest(_CamelModel):
    """Request model for calculate and export."""
    client_size: Optional[str] = Field(default=None, alias="clientSize")
    price_point: Optional[str] = Field(default=None, alias="pricePoint")
    selections: list[SelectionModel] = Field(default_factory=list)
    quote_details: Optional[QuoteDetailsModel] = Field(default=None, alias="quoteDetails")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ExportRequest(CalculateRequest):
    format: str = "xlsx"


class WorkbookUpload(_CamelModel):
    filename: Optional[str] = None
    content_type: Optional[str] = Field(default=None, alias="contentType")
    data: str  # base64


class WorkbookRequest(_CamelModel):
    """Request model for saving a mapping, optionally with a new workbook."""
    workbook_mapping: dict[str, Any] = Field(alias="workbookMapping")
    workbook: Optional[WorkbookUpload] = None


class BlueprintOverridesRequest(_CamelModel):
    overrides: Optional[dict[str, Any]] = None


def _http_error(e: PricingError) -> HTTPException:
    status = 404 if isinstance(e, WorkbookNotFoundError) else 400
    return HTTPException(status_code=status, detail=str(e))


# Endpoints

@router.get("")
def bootstrap(service: PricingService = Depends(get_service)):
    """Everything the quote builder needs on first load."""
    return service.bootstrap().to_dict()


@router.post("/calculate")
def calculate(req: CalculateRequest, service: PricingService = Depends(get_service)):
    """Resolve a quote."""
    try:
        result = service.calculate(req.to_payload())
    except PricingError as e:
        raise _http_error(e) from e
    return {
        "input": {"clientSize": result.segment, "pricePoint": result.price_tier},
        "result": result.to_dict(),
    }


@router.post("/export")
def export_quote(req: ExportRequest, service: PricingService = Depends(get_service)):
    """Resolve a quote and return the workbook copy (base64) as xlsx or csv."""
    payload = req.to_payload()
    payload.pop("format", None)
    try:
        exported = service.export(payload, fmt=req.format)
    except PricingError as e:
        raise _http_error(e) from e
    return exported.to_dict()


@router.put("/workbook")
def save_workbook(req: WorkbookRequest, service: PricingService = Depends(get_service)):
    """Save the workbook mapping and, when provided, upload a new workbook."""
    try:
        if req.workbook is not None and req.workbook.data:
            try:
                data = base64.b64decode(req.workbook.data, validate=True)
            except (binascii.Error, ValueError) as e:
                raise HTTPException(status_code=400, detail="Invalid workbook data payload.") from e
            outcome = service.upload_workbook(
                data,
                filename=req.workbook.filename,
                mime_type=req.workbook.content_type,
                mapping=req.workbook_mapping,
            )
            record, error = outcome.record, outcome.error
        else:
            service.save_mapping(req.workbook_mapping)
            record, error = service.workbook_store.load_latest(), None
            if record is not None and record.has_binary:
                outcome = service.analyze_workbook(record)
                record, error = outcome.record, outcome.error
    except PricingError as e:
        raise _http_error(e) from e

    settings = service.load_settings()
    workbook_info = service.workbook_info(record)
    return {
        "mapping": service.mapping_for(settings).to_dict(),
        "workbook": workbook_info,
        "settings": settings.to_dict() if settings else None,
        "analysisError": (workbook_info or {}).get("blueprintError") or error,
    }


@router.put("/settings")
def save_settings(payload: dict[str, Any], service: PricingService = Depends(get_service)):
    """Save administrator defaults and line overrides."""
    try:
        settings = service.save_settings(payload)
    except PricingError as e:
        raise _http_error(e) from e
    return {"settings": settings.to_dict()}


@router.get("/blueprint")
def get_blueprint(service: PricingService = Depends(get_service)):
    """Stored blueprint, its override layer and the merged view."""
    try:
        return service.get_blueprint()
    except PricingError as e:
        raise _http_error(e) from e


@router.put("/blueprint")
def save_blueprint(req: BlueprintOverridesRequest, service: PricingService = Depends(get_service)):
    """Replace the blueprint override layer."""
    try:
        overrides, merged = service.save_blueprint_overrides(req.overrides)
    except PricingError as e:
        raise _http_error(e) from e
    return {
        "overrides": overrides.to_dict() if overrides else None,
        "mergedBlueprint": merged.to_dict() if merged else None,
    }


@router.post("/blueprint/reanalyze")
def reanalyze(service: PricingService = Depends(get_service)):
    """Regenerate the blueprint from the stored workbook."""
    try:
        outcome = service.reanalyze()
    except PricingError as e:
        raise _http_error(e) from e
    return {
        "workbook": service.workbook_info(outcome.record),
        "error": outcome.error,
    }

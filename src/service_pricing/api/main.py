from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from service_pricing import __version__
from service_pricing.api.pricing_api import router as pricing_router
from service_pricing.api.state import get_service
from service_pricing.config.logging import configure_logging

configure_logging()

app = FastAPI(
    title="Service Pricing API",
    description="Workbook-driven quote builder for consultation services",
    version=__version__,
)

# Enable CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include pricing API
app.include_router(pricing_router)


@app.get("/")
def root():
    return {"status": "online", "message": "Service Pricing API Active"}


@app.get("/system/status")
def get_status(service=Depends(get_service)):
    record = service.workbook_store.load_latest()
    return {
        "engine_active": True,
        "ai_enabled": service.ai_enabled,
        "workbook_loaded": bool(record and record.has_binary),
        "workbook_filename": record.filename if record else None,
        "workbook_uploaded_at": record.uploaded_at if record else None,
        "blueprint_model": record.blueprint_model if record else None,
        "blueprint_error": record.blueprint_error if record else None,
    }

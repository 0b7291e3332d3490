"""
Shared service instance for the API routers.
"""
import threading
from typing import Optional

from ..config.settings import get_settings
from ..services.pricing_service import PricingService
from ..services.store import FileSettingsStore, FileWorkbookStore

_service: Optional[PricingService] = None
_service_lock = threading.Lock()


def build_service() -> PricingService:
    settings = get_settings()
    return PricingService(
        workbook_store=FileWorkbookStore(settings.workbook_dir),
        settings_store=FileSettingsStore(settings.settings_file),
        config=settings,
    )


def get_service() -> PricingService:
    """Get the global pricing service (FastAPI dependency)."""
    global _service
    with _service_lock:
        if _service is None:
            _service = build_service()
    return _service

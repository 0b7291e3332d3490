"""
Logging setup shared by the API, the Streamlit UI and the scripts.
"""
import logging
import sys
from typing import Optional

from .settings import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """Attach one console handler to the package logger. Safe to call repeatedly."""
    global _configured
    level_name = (level or get_settings().log_level or "INFO").upper()
    logger = logging.getLogger("service_pricing")
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    if _configured:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    _configured = True

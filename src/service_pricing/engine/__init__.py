"""Engine subpackage - catalog building and quote resolution."""
from .catalog import build_metadata_from_blueprint, build_metadata_from_mapping
from .models import CalculationResult, LineResult, LineSelection, PricingMetadata, QuoteRequest, Totals
from .pricing_engine import PricingEngine

__all__ = [
    'PricingEngine',
    'build_metadata_from_blueprint',
    'build_metadata_from_mapping',
    'CalculationResult',
    'LineResult',
    'LineSelection',
    'PricingMetadata',
    'QuoteRequest',
    'Totals',
]

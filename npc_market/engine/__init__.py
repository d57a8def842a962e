"""Engine module: per-item price pipeline and the periodic scheduler."""

from .pricing_service import PricingService, CycleScope
from .scheduler import PriceRecomputationScheduler

__all__ = [
    "PricingService",
    "CycleScope",
    "PriceRecomputationScheduler",
]

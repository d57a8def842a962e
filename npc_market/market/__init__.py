"""Market module: trade volume window, correction factors and pressure."""

from .volume_window import VolumeWindowStore
from .correction import CorrectionFactorCalculator
from .pressure import MarketPressureEngine

__all__ = [
    "VolumeWindowStore",
    "CorrectionFactorCalculator",
    "MarketPressureEngine",
]

"""Risk module: limits applied to prices before they are published."""

from .price_limiter import PriceLimiter

__all__ = [
    "PriceLimiter",
]

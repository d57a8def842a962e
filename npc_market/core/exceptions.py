"""Exception hierarchy for the NPC market.

This module defines all custom exceptions used throughout the pricing engine.
All exceptions inherit from EconomySystemError for easy catching and handling.
"""

from typing import Any, Dict


class EconomySystemError(Exception):
    """Base exception for all NPC market errors.

    All custom exceptions inherit from this class, allowing for easy
    catching of any pricing engine related errors.
    """

    def __init__(self, message: str, **context: Any):
        """Initialize the exception with a message and optional context.

        Args:
            message: Error message describing what went wrong
            **context: Additional context information for logging and debugging
        """
        super().__init__(message)
        self.context: Dict[str, Any] = context

    def __str__(self) -> str:
        """Return string representation including context."""
        if self.context:
            ctx = ', '.join(f'{k}={v}' for k, v in self.context.items())
            return f"{super().__str__()} [{ctx}]"
        return super().__str__()


# ============================================================================
# Configuration Exceptions
# ============================================================================

class InvalidConfigError(EconomySystemError):
    """Raised when configuration contains invalid values.

    This exception is raised when configuration values fail validation,
    such as negative intervals or ratios outside acceptable ranges.
    """


class MissingConfigError(EconomySystemError):
    """Raised when required configuration is missing.

    This exception is raised when the configuration file cannot be found
    or a mandatory section is absent.
    """


# ============================================================================
# Storage Exceptions
# ============================================================================

class StoreError(EconomySystemError):
    """Base class for cache store errors."""


class StoreUnavailableError(StoreError):
    """Raised when the cache store cannot be reached.

    Concrete stores translate driver-level connection and timeout errors
    into this exception so callers never depend on a specific client.
    """


class StoreDataError(StoreError):
    """Raised when a value under a known key cannot be decoded."""


# ============================================================================
# Catalog Exceptions
# ============================================================================

class ItemNotFoundError(EconomySystemError):
    """Raised when an item identifier is not present in the catalog."""


class InactiveItemError(EconomySystemError):
    """Raised when an operation requires an active item."""


# ============================================================================
# Pricing Exceptions
# ============================================================================

class InvalidPriceError(EconomySystemError):
    """Raised when a price input is non-finite, negative, or zero.

    The price limiter never lets this escape; it falls back to the last
    known good price instead.
    """


# ============================================================================
# Scheduler Exceptions
# ============================================================================

class CycleAbortedError(EconomySystemError):
    """Raised when a recomputation cycle cannot start.

    This exception is raised when the pre-flight health check keeps failing
    after every retry. It is fatal for the cycle only; the scheduler logs it
    and waits for the next scheduled cycle.
    """


class SchedulerStateError(EconomySystemError):
    """Raised when the scheduler is driven from an invalid state."""

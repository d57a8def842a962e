"""Monitoring module for logging and market snapshots."""

from .logger import get_logger, setup_logger, EconomyLogger

__all__ = [
    "get_logger",
    "setup_logger",
    "EconomyLogger",
]

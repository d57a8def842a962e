"""Structured logging for the NPC market."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Dict, Optional, Union


_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
_DATEFMT = '%Y-%m-%d %H:%M:%S'

_log_file: Optional[str] = None
_level: int = logging.INFO


class EconomyLogger:
    """
    Structured logger with keyword argument support.

    Keyword arguments are rendered after the message as ``k=v`` pairs so
    item ids, cycle ids and stages are grep-able in the log file.
    """

    def __init__(self, name: str, level: int = logging.INFO, log_file: Optional[str] = None):
        """
        Initialize logger.

        Args:
            name: Logger name (typically __name__)
            level: Logging level
            log_file: Rotating log file path, None for console only
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        # Add handlers if not already configured
        if not self.logger.handlers:
            formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)

            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

            if log_file:
                log_dir = os.path.dirname(log_file)
                if log_dir and not os.path.exists(log_dir):
                    os.makedirs(log_dir, exist_ok=True)

                file_handler = RotatingFileHandler(
                    log_file,
                    maxBytes=10 * 1024 * 1024,  # 10MB
                    backupCount=5
                )
                file_handler.setLevel(level)
                file_handler.setFormatter(formatter)
                self.logger.addHandler(file_handler)

    def _format_message(self, msg: str, **kwargs) -> str:
        """Format message with keyword arguments."""
        if kwargs:
            extra = ' | '.join(f'{k}={v}' for k, v in kwargs.items())
            return f"{msg} | {extra}"
        return msg

    def debug(self, msg: str, **kwargs) -> None:
        """Log debug message."""
        self.logger.debug(self._format_message(msg, **kwargs))

    def info(self, msg: str, **kwargs) -> None:
        """Log info message."""
        self.logger.info(self._format_message(msg, **kwargs))

    def warning(self, msg: str, **kwargs) -> None:
        """Log warning message."""
        self.logger.warning(self._format_message(msg, **kwargs))

    def error(self, msg: str, exc_info: bool = False, **kwargs) -> None:
        """Log error message."""
        self.logger.error(self._format_message(msg, **kwargs), exc_info=exc_info)

    def critical(self, msg: str, **kwargs) -> None:
        """Log critical message."""
        self.logger.critical(self._format_message(msg, **kwargs))


_loggers: Dict[str, EconomyLogger] = {}


def setup_logger(log_file: Optional[str] = None, level: Union[int, str] = logging.INFO) -> None:
    """
    Configure file path and level of every logger, existing and future.

    Call once at start-up, before components are built.

    Args:
        log_file: Rotating log file path, None for console only
        level: Logging level name or number
    """
    global _log_file, _level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    _log_file = log_file
    _level = level

    for name, wrapper in list(_loggers.items()):
        for handler in list(wrapper.logger.handlers):
            wrapper.logger.removeHandler(handler)
            handler.close()
        _loggers[name] = EconomyLogger(name, level=_level, log_file=_log_file)


def get_logger(name: str) -> EconomyLogger:
    """
    Get or create a logger.

    Args:
        name: Logger name (typically __name__)

    Returns:
        EconomyLogger instance
    """
    if name not in _loggers:
        _loggers[name] = EconomyLogger(name, level=_level, log_file=_log_file)
    return _loggers[name]

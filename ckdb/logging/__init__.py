"""Logging helpers: JSON formatter with redaction and a lazy get_logger."""

from .json import CustomJsonFormatter, SensitiveDataFilter, configure_logging
from .logger import get_logger

__all__ = [
    "CustomJsonFormatter",
    "SensitiveDataFilter",
    "configure_logging",
    "get_logger",
]

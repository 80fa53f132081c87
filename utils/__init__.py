"""
Utility modules for the valuation engine.
"""

from .formatting import format_currency, format_percent, format_sqm, format_distance
from .config import Config
from .logging_config import configure_logging

__all__ = [
    "format_currency",
    "format_percent",
    "format_sqm",
    "format_distance",
    "Config",
    "configure_logging",
]

"""
Comparable Store

Validated comparable records behind the ComparableStore interface,
with an in-memory implementation for development and tests.
"""

from .schema import ImportReport, RowError, generate_comparable_id, parse_comparable
from .base import ComparableStore
from .repository import InMemoryComparableStore, get_comparable_store, reset_comparable_store

__all__ = [
    "ComparableStore",
    "InMemoryComparableStore",
    "ImportReport",
    "RowError",
    "generate_comparable_id",
    "parse_comparable",
    "get_comparable_store",
    "reset_comparable_store",
]

"""
Comparable Repository - In-Memory Comparable Store

Keeps every version of every comparable, indexed by a coarse lat/lng grid
so radius searches only visit nearby cells. Optional JSON file persistence
for development; production can swap in any ComparableStore.
"""

from __future__ import annotations

import json
import logging
import math
import threading
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Final, Optional

from avm.comp_engine.errors import ValidationError
from avm.comp_engine.geo import bounding_box
from avm.comp_engine.models import Comparable, SearchFilters
from avm.store.base import ComparableStore
from avm.store.schema import generate_comparable_id, parse_comparable


logger = logging.getLogger(__name__)


# Grid cell edge in degrees (about 1.1 km of latitude)
GRID_CELL_DEGREES: Final[float] = 0.01

# Columns around the globe; column indices wrap at the antimeridian
GRID_COLUMNS: Final[int] = round(360 / GRID_CELL_DEGREES)

_Cell = tuple[int, int]


def _wrap_column(column: int) -> int:
    half = GRID_COLUMNS // 2
    return (column + half) % GRID_COLUMNS - half


def _cell_for(latitude: float, longitude: float) -> _Cell:
    return (
        math.floor(latitude / GRID_CELL_DEGREES),
        _wrap_column(math.floor(longitude / GRID_CELL_DEGREES)),
    )


# =============================================================================
# Repository
# =============================================================================


class InMemoryComparableStore(ComparableStore):
    """
    Thread-safe in-memory comparable store.

    Records are append-mostly: re-importing a known ref (or an identical
    unreferenced record) stores a new version under the same id, and
    reads always return the latest version.
    """

    def __init__(self, persist_path: Optional[str] = None):
        """
        Initialise store.

        Args:
            persist_path: Optional path to persist data to a JSON file
        """
        self._versions: dict[str, list[Comparable]] = {}
        self._grid: dict[_Cell, set[str]] = defaultdict(set)
        self._lock = threading.Lock()
        self._persist_path = Path(persist_path) if persist_path else None

        if self._persist_path and self._persist_path.exists():
            self._load_from_file()

    def _save_to_file(self) -> None:
        """Persist data to file. Caller holds the lock."""
        if not self._persist_path:
            return

        data = {
            "comparables": {
                comp_id: [c.to_dict() for c in versions]
                for comp_id, versions in self._versions.items()
            },
            "saved_at": datetime.utcnow().isoformat(),
        }

        self._persist_path.parent.mkdir(parents=True, exist_ok=True)
        self._persist_path.write_text(json.dumps(data, indent=2))

    def _load_from_file(self) -> None:
        """Load data from file."""
        try:
            data = json.loads(self._persist_path.read_text())
            for comp_id, versions in data.get("comparables", {}).items():
                loaded = [Comparable.from_dict(v) for v in versions]
                if loaded:
                    self._versions[comp_id] = loaded
                    latest = loaded[-1]
                    self._grid[_cell_for(latest.latitude, latest.longitude)].add(comp_id)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Could not load comparable store from %s: %s", self._persist_path, e)
            return

        logger.info("Loaded %d comparables from %s", len(self._versions), self._persist_path)

    # =========================================================================
    # Write Operations
    # =========================================================================

    def import_comparable(self, record: dict[str, Any]) -> Comparable:
        """
        Validate and store one raw record.

        Returns:
            The stored Comparable (version 1, or the next version of a known record)

        Raises:
            ValidationError: if the record violates the import schema
        """
        if not isinstance(record, dict):
            raise ValidationError("record", "must be an object")

        comp_id = generate_comparable_id(record)
        with self._lock:
            history = self._versions.get(comp_id)
            version = history[-1].version + 1 if history else 1
            comp = parse_comparable(record, comp_id, version)

            if history:
                previous = history[-1]
                self._grid[_cell_for(previous.latitude, previous.longitude)].discard(comp_id)
                history.append(comp)
            else:
                self._versions[comp_id] = [comp]
            self._grid[_cell_for(comp.latitude, comp.longitude)].add(comp_id)

            self._save_to_file()

        logger.debug("Stored %s version %d", comp.id, comp.version)
        return comp

    # =========================================================================
    # Query Operations
    # =========================================================================

    def query_comparables(self, filters: SearchFilters) -> list[Comparable]:
        """
        Coarse retrieval: grid cells covering the search circle when a
        radius is set, otherwise every comparable.
        """
        with self._lock:
            if filters.radius_km is None or not filters.has_center:
                return [versions[-1] for versions in self._versions.values()]

            min_lat, max_lat, min_lng, max_lng = bounding_box(
                filters.latitude, filters.longitude, filters.radius_km
            )
            rows = range(
                math.floor(min_lat / GRID_CELL_DEGREES),
                math.floor(max_lat / GRID_CELL_DEGREES) + 1,
            )
            # Unwrapped column span; may run past +/-180 near the antimeridian
            first_column = math.floor(min_lng / GRID_CELL_DEGREES)
            last_column = math.floor(max_lng / GRID_CELL_DEGREES)
            columns = {
                _wrap_column(j)
                for j in range(first_column, min(last_column, first_column + GRID_COLUMNS - 1) + 1)
            }

            ids: set[str] = set()
            for i in rows:
                for j in columns:
                    ids.update(self._grid.get((i, j), ()))
            return [self._versions[comp_id][-1] for comp_id in ids]

    def get_comparable(self, comp_id: str) -> Optional[Comparable]:
        with self._lock:
            versions = self._versions.get(comp_id)
            return versions[-1] if versions else None

    def get_history(self, comp_id: str) -> list[Comparable]:
        """All stored versions of a comparable, oldest first."""
        with self._lock:
            return list(self._versions.get(comp_id, ()))

    def list_all(self) -> list[Comparable]:
        """Latest version of every comparable."""
        with self._lock:
            return [versions[-1] for versions in self._versions.values()]

    def count(self) -> int:
        with self._lock:
            return len(self._versions)


# =============================================================================
# Singleton Instance
# =============================================================================

_store_instance: Optional[InMemoryComparableStore] = None


def get_comparable_store(persist_path: Optional[str] = None) -> InMemoryComparableStore:
    """
    Get the comparable store singleton.

    Args:
        persist_path: Optional path for persistence (only used on first call)

    Returns:
        InMemoryComparableStore instance
    """
    global _store_instance
    if _store_instance is None:
        _store_instance = InMemoryComparableStore(persist_path)
    return _store_instance


def reset_comparable_store() -> None:
    """Drop the singleton so the next get_comparable_store() starts fresh."""
    global _store_instance
    _store_instance = None

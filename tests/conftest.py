"""
Shared fixtures for the valuation engine tests.
"""

import math
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import Optional

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from avm.comp_engine import Comparable, SearchFilters, SubjectRef
from avm.comp_engine.geo import EARTH_RADIUS_KM
from avm.store.base import ComparableStore


# Madrid, Puerta del Sol
BASE_LAT = 40.4168
BASE_LNG = -3.7038

METRES_PER_DEGREE_LAT = EARTH_RADIUS_KM * 1000 * math.pi / 180


def north_of(metres: float, lat: float = BASE_LAT) -> float:
    """Latitude `metres` due north of `lat` (haversine-exact along a meridian)."""
    return lat + metres / METRES_PER_DEGREE_LAT


class ListStore(ComparableStore):
    """Comparable store over a fixed list, for pipeline tests."""

    def __init__(self, comparables=()):
        self._comparables = {c.id: c for c in comparables}
        self.queries = 0

    def add(self, comp: Comparable) -> Comparable:
        self._comparables[comp.id] = comp
        return comp

    def query_comparables(self, filters: SearchFilters) -> list[Comparable]:
        self.queries += 1
        return list(self._comparables.values())

    def get_comparable(self, comp_id: str) -> Optional[Comparable]:
        return self._comparables.get(comp_id)

    def import_comparable(self, record):
        raise NotImplementedError("ListStore is read-only")


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def reference_date():
    """Fixed reference date for deterministic tests."""
    return date(2024, 6, 1)


@pytest.fixture
def create_comp(reference_date):
    """Factory fixture for creating comparables."""
    def _create(
        comp_id: str,
        price: float = 300000,
        sqm: float = 90,
        months_ago: int = 2,
        metres_north: float = 100.0,
        **extra,
    ) -> Comparable:
        sale_date = extra.pop("date", None) or (reference_date - timedelta(days=30 * months_ago))
        return Comparable(
            id=comp_id,
            date=sale_date,
            latitude=extra.pop("latitude", north_of(metres_north)),
            longitude=extra.pop("longitude", BASE_LNG),
            price=price,
            sqm=sqm,
            **extra,
        )
    return _create


@pytest.fixture
def subject():
    """Standard subject: 90 sqm second floor flat with elevator, in good condition."""
    return SubjectRef(
        sqm=90,
        rooms=3,
        baths=2,
        floor=2,
        elevator=True,
        condition="GOOD",
        latitude=BASE_LAT,
        longitude=BASE_LNG,
    )


@pytest.fixture
def list_store():
    return ListStore()

"""
Candidate Filter for the Comp Engine

Narrows the comparable store to geographically and structurally plausible
candidates. Every active SearchFilters predicate must hold (AND):
- Geographic radius (haversine from the search center)
- Date window
- Property type (exact match)
- sqm / rooms / baths / floor ranges
- Elevator, parking, condition equality
- Price bounds and source equality
- Free-text match on address/ref
"""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from .errors import InvalidFilter
from .geo import haversine_km
from .models import Comparable, SearchFilters, SubjectRef

if TYPE_CHECKING:
    from avm.store.base import ComparableStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """A comparable that passed the filter, with its distance to the center."""

    comparable: Comparable
    distance_m: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        data = self.comparable.to_dict()
        data["distance"] = round(self.distance_m, 1) if self.distance_m is not None else None
        return data


@dataclass
class CandidatePage:
    """One page of search results plus totals for the whole match set."""

    items: list[Candidate]
    total: int
    page: int
    size: int
    density: Optional[float] = None  # matches per km² of the search circle

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.size) if self.size else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": [c.to_dict() for c in self.items],
            "total": self.total,
            "page": self.page,
            "size": self.size,
            "pages": self.pages,
            "density": self.density,
        }


class CandidateFilter:
    """
    Applies SearchFilters to the comparable store.

    Pure read: the store is queried once per call and nothing is mutated.
    """

    def __init__(self, store: "ComparableStore"):
        """
        Initialize filter over a comparable store.

        Args:
            store: Source of validated comparables
        """
        self._store = store

    def search(
        self,
        filters: SearchFilters,
        subject: Optional[SubjectRef] = None,
    ) -> CandidatePage:
        """
        Return one sorted page of matching comparables.

        Args:
            filters: Validated search envelope
            subject: Subject property, used as center when filters have none

        Returns:
            CandidatePage with the requested page and overall totals
        """
        matches = self.select(filters, subject)
        start = filters.page * filters.size
        items = matches[start:start + filters.size]

        density = None
        if filters.radius_km:
            area = math.pi * filters.radius_km ** 2
            density = round(len(matches) / area, 1)

        return CandidatePage(
            items=items,
            total=len(matches),
            page=filters.page,
            size=filters.size,
            density=density,
        )

    def select(
        self,
        filters: SearchFilters,
        subject: Optional[SubjectRef] = None,
    ) -> list[Candidate]:
        """
        Return every matching comparable, sorted, without pagination.

        Raises:
            InvalidFilter: if a radius is requested without any center
        """
        effective = self._resolve_center(filters, subject)

        raw = self._store.query_comparables(effective)
        result = []
        for comp in raw:
            distance_km = None
            if effective.has_center:
                distance_km = haversine_km(
                    effective.latitude, effective.longitude,
                    comp.latitude, comp.longitude,
                )
            if self.matches(comp, effective, distance_km):
                result.append(Candidate(
                    comparable=comp,
                    distance_m=distance_km * 1000.0 if distance_km is not None else None,
                ))

        logger.debug(
            "Candidate filter kept %d of %d store records", len(result), len(raw)
        )
        return self._sort(result, effective)

    def _resolve_center(
        self,
        filters: SearchFilters,
        subject: Optional[SubjectRef],
    ) -> SearchFilters:
        """Fill the search center from the subject when the filters have none."""
        if not filters.has_center and subject is not None and subject.has_coordinates:
            filters = dataclasses.replace(
                filters, latitude=subject.latitude, longitude=subject.longitude
            )
        if filters.radius_km is not None and not filters.has_center:
            raise InvalidFilter("radius_km", "requires a center or subject coordinates")
        return filters

    @staticmethod
    def matches(
        comp: Comparable,
        filters: SearchFilters,
        distance_km: Optional[float] = None,
    ) -> bool:
        """
        Check every active predicate. A comparable missing a value that an
        active predicate needs does not match.
        """
        if filters.radius_km is not None:
            if distance_km is None or distance_km > filters.radius_km:
                return False

        if filters.date_from and comp.date < filters.date_from:
            return False
        if filters.date_to and comp.date > filters.date_to:
            return False

        if filters.property_type and comp.property_type != filters.property_type:
            return False

        if not _in_range(comp.sqm, filters.sqm_min, filters.sqm_max):
            return False
        if not _in_range(comp.rooms, filters.rooms_min, filters.rooms_max):
            return False
        if not _in_range(comp.baths, filters.baths_min, filters.baths_max):
            return False
        if not _in_range(comp.floor, filters.floor_min, filters.floor_max):
            return False
        if not _in_range(comp.price, filters.price_min, filters.price_max):
            return False

        if filters.elevator is not None and comp.elevator != filters.elevator:
            return False
        if filters.parking is not None and comp.parking != filters.parking:
            return False
        if filters.condition and comp.condition != filters.condition:
            return False
        if filters.source and comp.source != filters.source:
            return False

        if filters.q:
            needle = filters.q.strip().lower()
            haystack = " ".join(filter(None, (comp.address, comp.ref))).lower()
            if needle not in haystack:
                return False

        return True

    @staticmethod
    def _sort(candidates: list[Candidate], filters: SearchFilters) -> list[Candidate]:
        """
        Sort by the requested field. Default: distance ascending when a
        center is known, otherwise date descending. Ties break on id.
        """
        if filters.sort:
            sort_field, _, direction = filters.sort.partition("-")
        elif filters.has_center:
            sort_field, direction = "distance", "asc"
        else:
            sort_field, direction = "date", "desc"

        def key(candidate: Candidate):
            comp = candidate.comparable
            if sort_field == "distance":
                return candidate.distance_m if candidate.distance_m is not None else math.inf
            if sort_field == "date":
                return comp.date.toordinal()
            if sort_field == "ppsqm":
                return comp.ppsqm
            return getattr(comp, sort_field)

        ordered = sorted(candidates, key=lambda c: c.comparable.id)
        return sorted(ordered, key=key, reverse=direction == "desc")


def _in_range(value: Optional[float], low: Optional[float], high: Optional[float]) -> bool:
    if low is None and high is None:
        return True
    if value is None:
        return False
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True

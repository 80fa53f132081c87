"""
Quality analysis for comparables.

Grades evidence quality (A/B/C), flags price outliers and detects likely
duplicate records. Nothing here removes a comparable; findings surface
as grades and warnings on the valuation result.
"""

import math
import re
from collections import defaultdict
from datetime import date
from typing import Final, Mapping, Optional

from .models import Comparable
from .recency import months_between


# =============================================================================
# Configuration Constants
# =============================================================================

GRADE_A_MAX_MONTHS: Final[float] = 6
GRADE_A_MAX_DISTANCE_M: Final[float] = 500
GRADE_B_MAX_MONTHS: Final[float] = 12
GRADE_B_MAX_DISTANCE_M: Final[float] = 1000

OUTLIER_Z_THRESHOLD: Final[float] = 2.0
OUTLIER_MIN_VALUES: Final[int] = 3

DEDUP_SQM_MARGIN: Final[int] = 5
DEDUP_DAYS_DELTA: Final[int] = 30

_EPOCH = date(1970, 1, 1)
_NUMBER_PATTERN = re.compile(r"\d+")


def has_full_data(comp: Comparable) -> bool:
    """True when every structural attribute a grade A needs is present."""
    return (
        comp.rooms is not None
        and comp.baths is not None
        and comp.floor is not None
        and comp.condition is not None
    )


def quality_grade(
    comp: Comparable,
    distance_m: Optional[float],
    reference_date: Optional[date] = None,
) -> str:
    """
    Grade a comparable as evidence.

    A: at most 6 months old, within 500 m, full structural data
    B: at most 12 months old, within 1000 m
    C: everything else (including unknown distance)
    """
    age = months_between(comp.date, reference_date or date.today())

    if distance_m is None:
        return "C"
    if age <= GRADE_A_MAX_MONTHS and distance_m <= GRADE_A_MAX_DISTANCE_M and has_full_data(comp):
        return "A"
    if age <= GRADE_B_MAX_MONTHS and distance_m <= GRADE_B_MAX_DISTANCE_M:
        return "B"
    return "C"


def flag_outliers(values: Mapping[str, float], threshold: float = OUTLIER_Z_THRESHOLD) -> list[str]:
    """
    Ids whose value lies more than `threshold` standard deviations from the mean.

    Needs at least three values; returns ids in sorted order.
    """
    if len(values) < OUTLIER_MIN_VALUES:
        return []

    mean = sum(values.values()) / len(values)
    std = math.sqrt(sum((v - mean) ** 2 for v in values.values()) / len(values))
    if std == 0:
        return []

    return sorted(key for key, v in values.items() if abs(v - mean) / std > threshold)


def dedup_key(
    comp: Comparable,
    sqm_margin: int = DEDUP_SQM_MARGIN,
    days_delta: int = DEDUP_DAYS_DELTA,
) -> str:
    """
    Bucket key for duplicate detection: street, street number, floor,
    sqm bucket and date bucket.
    """
    address = comp.address or ""
    street = address.split(",")[0].strip().lower()
    number_match = _NUMBER_PATTERN.search(address)
    number = number_match.group(0) if number_match else ""
    floor = str(comp.floor) if comp.floor is not None else ""
    sqm_bucket = int(comp.sqm // sqm_margin) * sqm_margin
    date_bucket = (comp.date - _EPOCH).days // days_delta
    return f"{street}-{number}-{floor}-{sqm_bucket}-{date_bucket}"


def find_duplicates(comps: list[Comparable]) -> list[list[Comparable]]:
    """
    Group likely-duplicate records. Comparables without an address are
    never grouped. Groups are ordered by their first id.
    """
    buckets: dict[str, list[Comparable]] = defaultdict(list)
    for comp in sorted(comps, key=lambda c: c.id):
        if comp.address:
            buckets[dedup_key(comp)].append(comp)
    groups = [group for group in buckets.values() if len(group) > 1]
    return sorted(groups, key=lambda group: group[0].id)

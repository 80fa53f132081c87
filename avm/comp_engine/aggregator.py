"""
Aggregator for the Comp Engine

Combines weighted normalized prices into a point estimate and a
confidence band. The band is the weighted interquartile range, which
holds up better than a normal-theory interval on small skewed pools.
"""

from dataclasses import dataclass
from typing import Final, Sequence

from .errors import NoComparablesFound
from .models import AggregationMethod


# Pools at or below this size are returned flagged low_confidence
LOW_CONFIDENCE_MAX: Final[int] = 2

BAND_LOW_QUANTILE: Final[float] = 0.25
BAND_HIGH_QUANTILE: Final[float] = 0.75


@dataclass(frozen=True)
class Aggregate:
    point_estimate: float
    low: float
    high: float
    low_confidence: bool


def weighted_quantile(values: Sequence[float], weights: Sequence[float], q: float) -> float:
    """
    Weighted quantile with midpoint cumulative-weight interpolation.

    Each value sits at the midpoint of its cumulative weight share;
    quantiles between two midpoints are interpolated linearly and
    quantiles outside the first/last midpoint clamp to the extremes.
    """
    if not values:
        raise ValueError("weighted_quantile needs at least one value")
    if len(values) != len(weights):
        raise ValueError("values and weights must have the same length")

    pairs = sorted(zip(values, weights))
    total = sum(w for _, w in pairs)
    if total <= 0:
        raise ValueError("weights must sum to a positive number")

    positions = []
    running = 0.0
    for _, weight in pairs:
        positions.append((running + weight / 2) / total)
        running += weight

    if q <= positions[0]:
        return pairs[0][0]
    if q >= positions[-1]:
        return pairs[-1][0]

    for i in range(1, len(pairs)):
        if q <= positions[i]:
            lo_pos, hi_pos = positions[i - 1], positions[i]
            lo_val, hi_val = pairs[i - 1][0], pairs[i][0]
            if hi_pos == lo_pos:
                return hi_val
            return lo_val + (hi_val - lo_val) * (q - lo_pos) / (hi_pos - lo_pos)
    return pairs[-1][0]


def weighted_median(values: Sequence[float], weights: Sequence[float]) -> float:
    return weighted_quantile(values, weights, 0.5)


def weighted_mean(values: Sequence[float], weights: Sequence[float]) -> float:
    total = sum(weights)
    if total <= 0:
        raise ValueError("weights must sum to a positive number")
    return sum(v * w for v, w in zip(values, weights)) / total


def aggregate(
    weighted: Sequence[tuple[float, float]],
    method: AggregationMethod = AggregationMethod.WEIGHTED_MEDIAN,
) -> Aggregate:
    """
    Aggregate (normalized_price, weight) pairs.

    Args:
        weighted: Normalized prices with their similarity weights
        method: Weighted median (default) or weighted mean

    Returns:
        Aggregate with point estimate and band (low <= estimate <= high)

    Raises:
        NoComparablesFound: if there is nothing to aggregate
    """
    pairs = [(price, weight) for price, weight in weighted if weight > 0]
    if not pairs:
        raise NoComparablesFound("aggregation")

    values = [p for p, _ in pairs]
    weights = [w for _, w in pairs]

    if method == AggregationMethod.WEIGHTED_MEAN:
        estimate = weighted_mean(values, weights)
    else:
        estimate = weighted_median(values, weights)

    low = weighted_quantile(values, weights, BAND_LOW_QUANTILE)
    high = weighted_quantile(values, weights, BAND_HIGH_QUANTILE)

    return Aggregate(
        point_estimate=estimate,
        low=min(low, estimate),
        high=max(high, estimate),
        low_confidence=len(pairs) <= LOW_CONFIDENCE_MAX,
    )

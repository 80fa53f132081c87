"""
Similarity Scorer for the Comp Engine

Assigns each normalized candidate a relevance weight in (0, 1].
Two strategies, dispatched on ScoreParams.method:

COSINE:
    Weighted feature vectors for the subject (distance 0) and each candidate
    over the features both sides know; weight = cosine similarity.

KNN:
    Candidates beyond the distance cap are discarded. Survivors are ranked
    by weighted Euclidean distance over z-scored features and the k nearest
    are kept; weight = (1 + d_nearest) / (1 + d_i).

Weights need not sum to 1; the aggregator normalizes.
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Final, Optional

from .errors import ValuationCancelled, ValuationWarning
from .models import (
    MIN_KNN_K,
    SCORING_FEATURES,
    ExcludedComparable,
    ScoreMethod,
    ScoreParams,
    SubjectRef,
)
from .normalizer import NormalizedComparable


logger = logging.getLogger(__name__)


# Distances enter feature vectors in kilometres so they sit on a scale
# comparable to rooms and floors
METRES_PER_KM: Final[float] = 1000.0


@dataclass
class ScoreOutcome:
    """Weights by comparable id, plus anything excluded or flagged while scoring."""

    weights: dict[str, float] = field(default_factory=dict)
    warnings: list[ValuationWarning] = field(default_factory=list)
    excluded: list[ExcludedComparable] = field(default_factory=list)


# =============================================================================
# Feature extraction
# =============================================================================


def subject_features(subject: SubjectRef, reference_date: date) -> dict[str, Optional[float]]:
    """Feature values for the subject; distance to itself is zero."""
    return {
        "sqm": subject.sqm,
        "rooms": subject.rooms,
        "baths": subject.baths,
        "floor": subject.floor,
        "age": _building_age(subject.building_year, reference_date),
        "terrace": subject.terrace_sqm if subject.terrace_sqm is not None else 0.0,
        "distance": 0.0 if subject.has_coordinates else None,
    }


def candidate_features(
    candidate: NormalizedComparable,
    reference_date: date,
) -> dict[str, Optional[float]]:
    """Feature values for one candidate. Unknown values stay None."""
    comp = candidate.comparable
    return {
        "sqm": comp.sqm,
        "rooms": comp.rooms,
        "baths": comp.baths,
        "floor": comp.floor,
        "age": _building_age(comp.building_year, reference_date),
        "terrace": comp.terrace_sqm if comp.terrace_sqm is not None else 0.0,
        "distance": (
            candidate.distance_m / METRES_PER_KM
            if candidate.distance_m is not None else None
        ),
    }


def _building_age(building_year: Optional[int], reference_date: date) -> Optional[float]:
    if building_year is None:
        return None
    return float(max(reference_date.year - building_year, 0))


def cosine_similarity(a: list[float], b: list[float]) -> Optional[float]:
    """
    Cosine of the angle between two vectors.

    Returns None when either vector has zero magnitude.
    """
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if norm_a == 0 or norm_b == 0:
        return None
    dot = sum(x * y for x, y in zip(a, b))
    return dot / (norm_a * norm_b)


# =============================================================================
# Strategies
# =============================================================================


def _score_cosine(
    candidates: list[NormalizedComparable],
    subject: SubjectRef,
    params: ScoreParams,
    reference_date: date,
    checkpoint: Callable[[], None],
) -> ScoreOutcome:
    outcome = ScoreOutcome()
    subject_values = subject_features(subject, reference_date)

    for candidate in candidates:
        checkpoint()
        comp_id = candidate.comparable.id
        comp_values = candidate_features(candidate, reference_date)

        subject_vector = []
        comp_vector = []
        for feature in SCORING_FEATURES:
            s, c = subject_values[feature], comp_values[feature]
            if s is None or c is None:
                continue
            weight = params.weight_for(feature)
            subject_vector.append(s * weight)
            comp_vector.append(c * weight)

        similarity = cosine_similarity(subject_vector, comp_vector)
        if similarity is None:
            outcome.excluded.append(ExcludedComparable(comp_id, "ZERO_MAGNITUDE"))
            outcome.warnings.append(ValuationWarning.create("ZERO_MAGNITUDE", comparable_id=comp_id))
            continue
        if similarity <= 0:
            outcome.excluded.append(ExcludedComparable(comp_id, "NON_POSITIVE_SIMILARITY"))
            outcome.warnings.append(ValuationWarning.create(
                "NON_POSITIVE_SIMILARITY",
                f"Cosine similarity {similarity:.4f}",
                comparable_id=comp_id,
            ))
            continue

        outcome.weights[comp_id] = min(similarity, 1.0)

    return outcome


def _score_knn(
    candidates: list[NormalizedComparable],
    subject: SubjectRef,
    params: ScoreParams,
    reference_date: date,
    checkpoint: Callable[[], None],
) -> ScoreOutcome:
    outcome = ScoreOutcome()

    # Distance cap
    if subject.has_coordinates:
        pool = []
        for candidate in candidates:
            checkpoint()
            if candidate.distance_m is not None and candidate.distance_m > params.dist_cap_m:
                outcome.excluded.append(
                    ExcludedComparable(candidate.comparable.id, "BEYOND_DISTANCE_CAP")
                )
            else:
                pool.append(candidate)
    else:
        outcome.warnings.append(ValuationWarning.create("NO_SUBJECT_COORDINATES"))
        pool = list(candidates)

    if pool:
        distances = _knn_distances(pool, subject, params, reference_date, checkpoint)
        ranked = sorted(pool, key=lambda c: (distances[c.comparable.id], c.comparable.id))

        nearest = distances[ranked[0].comparable.id]
        for candidate in ranked[:params.k]:
            comp_id = candidate.comparable.id
            outcome.weights[comp_id] = (1 + nearest) / (1 + distances[comp_id])
        for candidate in ranked[params.k:]:
            outcome.excluded.append(ExcludedComparable(candidate.comparable.id, "BEYOND_K"))

    if len(outcome.weights) < MIN_KNN_K:
        outcome.warnings.append(ValuationWarning.create(
            "INSUFFICIENT_COMPARABLES",
            f"Only {len(outcome.weights)} comparables within the distance cap",
        ))
    return outcome


def _knn_distances(
    pool: list[NormalizedComparable],
    subject: SubjectRef,
    params: ScoreParams,
    reference_date: date,
    checkpoint: Callable[[], None],
) -> dict[str, float]:
    """Weighted Euclidean distance from the subject in z-score space."""
    subject_values = subject_features(subject, reference_date)
    pool_values = {c.comparable.id: candidate_features(c, reference_date) for c in pool}

    # Pool statistics per usable feature
    stats = {}
    for feature in SCORING_FEATURES:
        if subject_values[feature] is None or params.weight_for(feature) == 0:
            continue
        known = [v[feature] for v in pool_values.values() if v[feature] is not None]
        if not known:
            continue
        mean = sum(known) / len(known)
        std = math.sqrt(sum((x - mean) ** 2 for x in known) / len(known))
        if std == 0:
            continue
        stats[feature] = (mean, std)

    distances = {}
    for comp_id, values in pool_values.items():
        checkpoint()
        total = 0.0
        for feature, (mean, std) in stats.items():
            subject_z = (subject_values[feature] - mean) / std
            value = values[feature]
            comp_z = (value - mean) / std if value is not None else 0.0
            total += params.weight_for(feature) * (comp_z - subject_z) ** 2
        distances[comp_id] = math.sqrt(total)
    return distances


_STRATEGIES: Final = {
    ScoreMethod.COSINE: _score_cosine,
    ScoreMethod.KNN: _score_knn,
}


def score(
    candidates: list[NormalizedComparable],
    subject: SubjectRef,
    params: ScoreParams,
    reference_date: Optional[date] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ScoreOutcome:
    """
    Weight normalized candidates by similarity to the subject.

    Args:
        candidates: Normalized comparables
        subject: Property being valued
        params: Method, k, distance cap and feature weights
        reference_date: Date building ages are measured at (default: today)
        cancel_event: Set to abandon the run

    Returns:
        ScoreOutcome with weights keyed by comparable id

    Raises:
        ValuationCancelled: if cancel_event is set while scoring
    """
    def checkpoint() -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ValuationCancelled("Cancelled during scoring")

    ordered = sorted(candidates, key=lambda c: c.comparable.id)
    strategy = _STRATEGIES[params.method]
    outcome = strategy(ordered, subject, params, reference_date or date.today(), checkpoint)

    logger.debug(
        "%s scoring weighted %d of %d candidates",
        params.method.value,
        len(outcome.weights),
        len(candidates),
    )
    return outcome

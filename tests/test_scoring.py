"""
Tests for the Similarity Scorer

Verifies:
- Cosine weights are scale invariant and excluded when not positive
- KNN keeps at most k, never beyond the distance cap
- The nearest KNN neighbour gets weight 1
- Results do not depend on candidate order
"""

import threading

import pytest

from avm.comp_engine import (
    ScoreMethod,
    ScoreParams,
    SubjectRef,
    ValidationError,
    ValuationCancelled,
)
from avm.comp_engine.normalizer import NormalizedComparable
from avm.comp_engine.scoring import cosine_similarity, score


def normalized(comp, distance_m=None) -> NormalizedComparable:
    return NormalizedComparable(comparable=comp, normalized_price=comp.price, distance_m=distance_m)


@pytest.fixture
def knn_params():
    return ScoreParams(method=ScoreMethod.KNN, k=3, dist_cap_m=2000)


@pytest.fixture
def spread(create_comp):
    """Identical flats at increasing distance from the subject."""
    metres = [100, 300, 500, 700, 900, 2500, 3000]
    return [normalized(create_comp(f"d{m:04d}", metres_north=m), distance_m=m) for m in metres]


# =============================================================================
# Test: Cosine
# =============================================================================


class TestCosineSimilarity:
    """Raw vector helper."""

    def test_parallel_vectors(self):
        assert cosine_similarity([1, 2, 3], [2, 4, 6]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1, 0], [0, 1]) == 0

    def test_zero_magnitude_is_undefined(self):
        assert cosine_similarity([0, 0], [1, 2]) is None


class TestCosineScoring:
    """COSINE strategy over the features both sides know."""

    def test_scale_invariance(self, create_comp, reference_date):
        subject = SubjectRef(sqm=90, rooms=3, baths=1)
        double = create_comp("double", sqm=180, rooms=6, baths=2)

        outcome = score([normalized(double)], subject, ScoreParams(), reference_date)

        assert outcome.weights["double"] == pytest.approx(1.0)

    def test_weights_in_unit_interval(self, create_comp, subject, reference_date):
        comps = [
            normalized(create_comp("a", sqm=60, rooms=1, floor=0), distance_m=100),
            normalized(create_comp("b", sqm=140, rooms=5, floor=7), distance_m=1500),
        ]

        outcome = score(comps, subject, ScoreParams(), reference_date)

        assert set(outcome.weights) == {"a", "b"}
        assert all(0 < w <= 1 for w in outcome.weights.values())

    def test_zero_magnitude_excluded(self, create_comp, reference_date):
        weights = {feature: 0 for feature in ("sqm", "rooms", "baths", "floor", "age", "terrace", "distance")}

        outcome = score(
            [normalized(create_comp("c"))],
            SubjectRef(sqm=90),
            ScoreParams(weights=weights),
            reference_date,
        )

        assert outcome.weights == {}
        assert [(e.comparable_id, e.reason) for e in outcome.excluded] == [("c", "ZERO_MAGNITUDE")]
        assert outcome.warnings[0].code == "ZERO_MAGNITUDE"

    def test_non_positive_similarity_excluded(self, create_comp, reference_date):
        basement = create_comp("basement", floor=-1)

        outcome = score(
            [normalized(basement)],
            SubjectRef(sqm=90, floor=2),
            ScoreParams(weights={"sqm": 0}),
            reference_date,
        )

        assert outcome.weights == {}
        assert outcome.excluded[0].reason == "NON_POSITIVE_SIMILARITY"

    def test_closer_comparable_scores_higher(self, create_comp, subject, reference_date):
        near = normalized(create_comp("near", rooms=3, baths=2, floor=2), distance_m=50)
        far = normalized(create_comp("far", rooms=3, baths=2, floor=2), distance_m=4000)

        outcome = score([near, far], subject, ScoreParams(), reference_date)

        assert outcome.weights["near"] > outcome.weights["far"]


# =============================================================================
# Test: KNN
# =============================================================================


class TestKnnScoring:
    """KNN strategy: cap, rank, keep k."""

    def test_keeps_at_most_k_within_cap(self, spread, subject, knn_params, reference_date):
        outcome = score(spread, subject, knn_params, reference_date)

        assert sorted(outcome.weights) == ["d0100", "d0300", "d0500"]
        reasons = {e.comparable_id: e.reason for e in outcome.excluded}
        assert reasons == {
            "d0700": "BEYOND_K",
            "d0900": "BEYOND_K",
            "d2500": "BEYOND_DISTANCE_CAP",
            "d3000": "BEYOND_DISTANCE_CAP",
        }

    def test_never_exceeds_cap_even_when_short(self, spread, subject, reference_date):
        params = ScoreParams(method=ScoreMethod.KNN, k=10, dist_cap_m=2000)

        outcome = score(spread, subject, params, reference_date)

        assert len(outcome.weights) == 5
        assert "d2500" not in outcome.weights

    def test_nearest_neighbour_weight_is_one(self, spread, subject, knn_params, reference_date):
        outcome = score(spread, subject, knn_params, reference_date)

        assert outcome.weights["d0100"] == 1.0
        assert outcome.weights["d0100"] > outcome.weights["d0300"] > outcome.weights["d0500"] > 0

    def test_insufficient_comparables_warning(self, create_comp, subject, knn_params, reference_date):
        comps = [
            normalized(create_comp("a", metres_north=100), distance_m=100),
            normalized(create_comp("b", metres_north=200), distance_m=200),
        ]

        outcome = score(comps, subject, knn_params, reference_date)

        assert len(outcome.weights) == 2
        assert [w.code for w in outcome.warnings] == ["INSUFFICIENT_COMPARABLES"]

    def test_subject_without_coordinates_skips_cap(self, create_comp, knn_params, reference_date):
        comps = [normalized(create_comp(f"c{i}", sqm=80 + 10 * i)) for i in range(4)]

        outcome = score(comps, SubjectRef(sqm=100), knn_params, reference_date)

        assert len(outcome.weights) == 3
        assert "NO_SUBJECT_COORDINATES" in [w.code for w in outcome.warnings]
        # c2 (100 sqm) matches the subject exactly
        assert outcome.weights["c2"] == 1.0

    def test_k_below_minimum_rejected(self):
        with pytest.raises(ValidationError):
            ScoreParams(method=ScoreMethod.KNN, k=2)

    @pytest.mark.parametrize("kwargs,field", [
        ({"method": None}, "method"),
        ({"method": "COSINE"}, "method"),
        ({"aggregation": None}, "aggregation"),
        ({"aggregation": "WEIGHTED_MEAN"}, "aggregation"),
    ])
    def test_method_and_aggregation_must_be_enum_members(self, kwargs, field):
        with pytest.raises(ValidationError) as exc_info:
            ScoreParams(**kwargs)

        assert exc_info.value.field == field
        assert "must be one of" in exc_info.value.constraint


# =============================================================================
# Test: Run Control
# =============================================================================


class TestScoringDeterminism:
    """Output depends only on the candidate set, not its order."""

    @pytest.mark.parametrize("method,k", [(ScoreMethod.COSINE, None), (ScoreMethod.KNN, 4)])
    def test_order_independent(self, spread, subject, reference_date, method, k):
        params = ScoreParams(method=method, k=k)

        forward = score(spread, subject, params, reference_date)
        backward = score(list(reversed(spread)), subject, params, reference_date)

        assert forward.weights == backward.weights
        assert forward.excluded == backward.excluded

    def test_cancel_event_aborts(self, spread, subject, knn_params, reference_date):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(ValuationCancelled):
            score(spread, subject, knn_params, reference_date, cancel_event=cancel)

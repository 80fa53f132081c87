"""
Valuation Engine for the Comp Engine

Pipeline order:
1. FILTER - Candidate search against the comparable store
2. RECENCY - Exclude stale and future-dated comparables, warn on ageing ones
3. NORMALIZE - Adjust each price to the subject's characteristics
4. SCORE - Weight candidates by similarity (COSINE or KNN)
5. AGGREGATE - Weighted median/mean with a weighted IQR band
6. QUALITY - Grade evidence, flag outliers and possible duplicates

Each run is a single pass over an immutable candidate snapshot. Nothing
is stored; the caller owns the returned ValuationResult.
"""

from __future__ import annotations

import logging
import threading
from datetime import date
from typing import TYPE_CHECKING, Optional

from .aggregator import aggregate
from .errors import NoComparablesFound, ValidationError, ValuationCancelled, ValuationWarning
from .filters import Candidate, CandidateFilter
from .geo import haversine_m
from .models import (
    ExcludedComparable,
    NormalizeRules,
    RecencyCheck,
    ScoredComparable,
    ScoreParams,
    SearchFilters,
    SubjectRef,
    ValuationResult,
)
from .normalizer import NormalizedComparable, Normalizer
from .quality import find_duplicates, flag_outliers, quality_grade
from .recency import DEFAULT_WARN_MONTHS, RecencyChecker, validate_comp_recency
from .scoring import score

if TYPE_CHECKING:
    from avm.compsets.schema import CompSet
    from avm.store.base import ComparableStore


logger = logging.getLogger(__name__)


class ValuationEngine:
    """
    Complete comparable-based valuation pipeline.

    The store is the only I/O; everything after candidate selection is
    pure computation over the selected snapshot.
    """

    def __init__(
        self,
        store: "ComparableStore",
        reference_date: Optional[date] = None,
        warn_months: float = DEFAULT_WARN_MONTHS,
        strict: bool = False,
    ):
        """
        Initialize valuation engine.

        Args:
            store: Comparable store to search
            reference_date: Reference date for ageing (default: today, per run)
            warn_months: Recency warning threshold in months
            strict: Raise on missing normalization parameters
        """
        self._store = store
        self._reference_date = reference_date
        self._warn_months = warn_months
        self._strict = strict
        self._filter = CandidateFilter(store)

    @property
    def reference_date(self) -> date:
        return self._reference_date or date.today()

    def score_comparables(
        self,
        subject: SubjectRef,
        filters: SearchFilters,
        rules: NormalizeRules,
        params: ScoreParams,
        cancel_event: Optional[threading.Event] = None,
    ) -> ValuationResult:
        """
        Value a subject against every comparable matching the filters.

        Pagination in the filters does not limit the valuation pool.

        Args:
            subject: Property being valued
            filters: Candidate search envelope
            rules: Normalization rules
            params: Scoring configuration
            cancel_event: Set from another thread to abandon the run

        Returns:
            ValuationResult with estimate, band, weighted comparables and warnings

        Raises:
            InvalidFilter: if filters are inconsistent with the subject
            NoComparablesFound: if no comparable survives
            ValuationCancelled: if cancel_event is set
        """
        _checkpoint(cancel_event, "before candidate search")
        candidates = self._filter.select(filters, subject)
        _checkpoint(cancel_event, "after candidate search")

        logger.info("Valuation run: %d candidates from store", len(candidates))
        return self._run(subject, candidates, rules, params, cancel_event)

    def score_comp_set(
        self,
        subject: SubjectRef,
        comp_set: "CompSet",
        rules: NormalizeRules,
        params: ScoreParams,
        cancel_event: Optional[threading.Event] = None,
    ) -> ValuationResult:
        """
        Value a subject against a curated comp set.

        The recency check still applies to every member.

        Raises:
            ValidationError: if a member id is no longer in the store
            NoComparablesFound: if no member survives
        """
        _checkpoint(cancel_event, "before loading comp set")
        candidates = []
        missing = []
        for comp_id in comp_set.comp_ids:
            comp = self._store.get_comparable(comp_id)
            if comp is None:
                missing.append(comp_id)
                continue
            distance_m = None
            if subject.has_coordinates:
                distance_m = haversine_m(
                    subject.latitude, subject.longitude, comp.latitude, comp.longitude
                )
            candidates.append(Candidate(comparable=comp, distance_m=distance_m))

        if missing:
            raise ValidationError("comp_ids", f"unknown comparables: {', '.join(missing)}")

        logger.info(
            "Valuation run: comp set %s with %d comparables", comp_set.id, len(candidates)
        )
        return self._run(subject, candidates, rules, params, cancel_event)

    def validate_comp_recency(
        self,
        comp_date: date,
        warn_months: Optional[float] = None,
    ) -> RecencyCheck:
        """Freshness verdict for one date, at this engine's reference date."""
        if warn_months is None:
            warn_months = self._warn_months
        return validate_comp_recency(comp_date, warn_months, self.reference_date)

    def _run(
        self,
        subject: SubjectRef,
        candidates: list[Candidate],
        rules: NormalizeRules,
        params: ScoreParams,
        cancel_event: Optional[threading.Event],
    ) -> ValuationResult:
        reference_date = self.reference_date
        considered = len(candidates)
        excluded: list[ExcludedComparable] = []
        warnings: list[ValuationWarning] = []

        # Step 1: Recency
        recency = RecencyChecker(reference_date, self._warn_months).check(candidates)
        excluded.extend(recency.excluded)
        warnings.extend(recency.warnings)
        if not recency.retained:
            raise NoComparablesFound("recency check", considered, recency.stale_count)

        # Step 2: Normalization
        normalizer = Normalizer(rules, reference_date=reference_date, strict=self._strict)
        normalized: dict[str, NormalizedComparable] = {}
        for candidate in recency.retained:
            _checkpoint(cancel_event, "during normalization")
            result = normalizer.normalize(candidate.comparable, subject)
            warnings.extend(result.warnings)
            if result.normalized_price <= 0:
                comp_id = candidate.comparable.id
                logger.warning(
                    "Excluding %s: normalized price %.2f", comp_id, result.normalized_price
                )
                excluded.append(ExcludedComparable(comp_id, "NON_POSITIVE_PRICE"))
                warnings.append(ValuationWarning.create(
                    "NON_POSITIVE_PRICE",
                    f"Normalized price {result.normalized_price:.2f}",
                    comparable_id=comp_id,
                ))
                continue
            normalized[candidate.comparable.id] = result

        if not normalized:
            raise NoComparablesFound("normalization", considered, recency.stale_count)

        # Step 3: Scoring
        outcome = score(
            list(normalized.values()), subject, params,
            reference_date=reference_date, cancel_event=cancel_event,
        )
        excluded.extend(outcome.excluded)
        warnings.extend(outcome.warnings)
        if not outcome.weights:
            raise NoComparablesFound("scoring", considered, recency.stale_count)

        # Step 4: Aggregation
        weighted = [(normalized[i].normalized_price, w) for i, w in outcome.weights.items()]
        summary = aggregate(weighted, params.aggregation)

        # Step 5: Quality
        prices = {i: normalized[i].normalized_price for i in outcome.weights}
        outliers = set(flag_outliers(prices))
        for comp_id in sorted(outliers):
            warnings.append(ValuationWarning.create(
                "OUTLIER",
                f"Normalized price {prices[comp_id]:.2f} is a statistical outlier",
                comparable_id=comp_id,
            ))
        warnings.extend(_duplicate_warnings([normalized[i].comparable for i in outcome.weights]))

        scored = [
            ScoredComparable(
                comparable=normalized[comp_id].comparable,
                normalized_price=normalized[comp_id].normalized_price,
                weight=weight,
                distance_m=normalized[comp_id].distance_m,
                steps=normalized[comp_id].steps,
                outlier=comp_id in outliers,
                quality=quality_grade(
                    normalized[comp_id].comparable,
                    normalized[comp_id].distance_m,
                    reference_date,
                ),
            )
            for comp_id, weight in outcome.weights.items()
        ]
        scored.sort(key=lambda s: (-s.weight, s.comparable.id))

        logger.info(
            "Valuation complete: estimate %.2f [%.2f, %.2f] from %d comparables "
            "(%d considered, %d stale, %d warnings)",
            summary.point_estimate,
            summary.low,
            summary.high,
            len(scored),
            considered,
            recency.stale_count,
            len(warnings),
        )

        return ValuationResult(
            point_estimate=summary.point_estimate,
            confidence_low=summary.low,
            confidence_high=summary.high,
            method=params.method,
            aggregation=params.aggregation,
            low_confidence=summary.low_confidence,
            comparables=scored,
            excluded=excluded,
            warnings=warnings,
            candidates_considered=considered,
            stale_excluded=recency.stale_count,
            rules_id=rules.rules_id,
        )


def _checkpoint(cancel_event: Optional[threading.Event], stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        logger.info("Valuation cancelled %s", stage)
        raise ValuationCancelled(f"Cancelled {stage}")


def _duplicate_warnings(comps) -> list[ValuationWarning]:
    warnings = []
    for group in find_duplicates(comps):
        ids = [c.id for c in group]
        for comp in group:
            others = ", ".join(i for i in ids if i != comp.id)
            warnings.append(ValuationWarning.create(
                "POSSIBLE_DUPLICATE",
                f"Possible duplicate of {others}",
                comparable_id=comp.id,
            ))
    return warnings

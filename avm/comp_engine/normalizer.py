"""
Normalizer for the Comp Engine

Turns a comparable's price into what it would have sold for with the
subject's characteristics. Adjustments compound on a running price, in order:

1. Size (LINEAR ratio or SQRT ratio)
2. Condition (ratio of state factors)
3. Floor (flat premium per level, additive)
4. Elevator (factor on mismatch)
5. Terrace (price per terrace sqm, additive)
6. Parking (fixed value on mismatch, additive)
7. Building age depreciation (compound, per year of age difference)
8. Micro-location bonus (small premium close to the subject)

Every step is recorded so the final figure can be audited.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Final, Optional

from .errors import MissingRuleParameter, ValuationWarning
from .geo import haversine_m
from .models import AdjustmentStep, Comparable, NormalizeRules, SqmRule, SubjectRef


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Constants
# =============================================================================

# Premium at zero distance; decays linearly to nothing at the bonus radius
MICRO_LOCATION_MAX_PREMIUM: Final[float] = 0.05


@dataclass(frozen=True)
class NormalizedComparable:
    """A comparable with its like-for-like price and the audit trail behind it."""

    comparable: Comparable
    normalized_price: float
    steps: tuple[AdjustmentStep, ...] = ()
    warnings: tuple[ValuationWarning, ...] = ()
    distance_m: Optional[float] = None

    @property
    def total_adjustment(self) -> float:
        return self.normalized_price - self.comparable.price


@dataclass
class _Run:
    """Mutable state for one comparable while its steps are applied."""

    comparable: Comparable
    price: float
    steps: list[AdjustmentStep] = field(default_factory=list)
    warnings: list[ValuationWarning] = field(default_factory=list)

    def scale(self, name: str, factor: float, note: str = "") -> None:
        before = self.price
        self.price = before * factor
        self.steps.append(AdjustmentStep(name, before, self.price, factor=factor, note=note))

    def add(self, name: str, amount: float, note: str = "") -> None:
        before = self.price
        self.price = before + amount
        self.steps.append(AdjustmentStep(name, before, self.price, note=note))

    def neutral(self, name: str, note: str = "") -> None:
        self.steps.append(AdjustmentStep(name, self.price, self.price, factor=1.0, note=note))


class Normalizer:
    """
    Applies NormalizeRules to comparables against one subject.

    A rule parameter that is needed for an encountered difference but is
    not configured degrades to a neutral step plus a warning. With
    strict=True it raises MissingRuleParameter instead.
    """

    def __init__(
        self,
        rules: NormalizeRules,
        reference_date: Optional[date] = None,
        strict: bool = False,
    ):
        """
        Initialize normalizer.

        Args:
            rules: Normalization configuration
            reference_date: Date building ages are measured at (default: today)
            strict: Raise on missing rule parameters instead of warning
        """
        self._rules = rules
        self._reference_date = reference_date or date.today()
        self._strict = strict

    @property
    def rules(self) -> NormalizeRules:
        return self._rules

    def normalize(self, comp: Comparable, subject: SubjectRef) -> NormalizedComparable:
        """
        Normalize one comparable to the subject's characteristics.

        Args:
            comp: Comparable to adjust
            subject: Property being valued

        Returns:
            NormalizedComparable with price, step breakdown and warnings

        Raises:
            MissingRuleParameter: only in strict mode
        """
        run = _Run(comparable=comp, price=float(comp.price))

        distance_m = None
        if subject.has_coordinates:
            distance_m = haversine_m(
                subject.latitude, subject.longitude, comp.latitude, comp.longitude
            )

        self._adjust_size(run, subject)
        self._adjust_condition(run, subject)
        self._adjust_floor(run, subject)
        self._adjust_elevator(run, subject)
        self._adjust_terrace(run, subject)
        self._adjust_parking(run, subject)
        self._adjust_building_age(run, subject)
        self._adjust_micro_location(run, distance_m)

        logger.debug(
            "Normalized %s: %.2f -> %.2f", comp.id, comp.price, run.price
        )
        return NormalizedComparable(
            comparable=comp,
            normalized_price=run.price,
            steps=tuple(run.steps),
            warnings=tuple(run.warnings),
            distance_m=distance_m,
        )

    def _missing(self, run: _Run, parameter: str, feature: str) -> None:
        if self._strict:
            raise MissingRuleParameter(parameter, feature)
        run.warnings.append(ValuationWarning.create(
            "MISSING_RULE_PARAMETER",
            f"'{parameter}' not configured, {feature} left unadjusted",
            comparable_id=run.comparable.id,
        ))
        run.neutral(feature, note=f"missing {parameter}")

    # =========================================================================
    # Steps
    # =========================================================================

    def _adjust_size(self, run: _Run, subject: SubjectRef) -> None:
        ratio = subject.sqm / run.comparable.sqm
        if ratio == 1:
            run.neutral("size", note="same area")
            return

        rule = self._rules.sqm_rule
        if rule is None:
            self._missing(run, "sqm_rule", "size")
        elif rule == SqmRule.LINEAR:
            run.scale("size", ratio, note="linear")
        else:
            run.scale("size", math.sqrt(ratio), note="sqrt")

    def _adjust_condition(self, run: _Run, subject: SubjectRef) -> None:
        subject_condition = subject.condition
        comp_condition = run.comparable.condition
        if subject_condition is None or comp_condition is None:
            run.neutral("condition", note="condition unknown")
            return
        if subject_condition == comp_condition:
            run.neutral("condition", note="same condition")
            return

        factors = self._rules.state_factors
        missing = [c for c in (subject_condition, comp_condition) if c not in factors]
        if missing and self._strict:
            raise MissingRuleParameter(f"state_factors[{missing[0]}]", "condition")
        for condition in missing:
            run.warnings.append(ValuationWarning.create(
                "MISSING_RULE_PARAMETER",
                f"No state factor for condition '{condition}', using 1",
                comparable_id=run.comparable.id,
            ))

        factor = factors.get(subject_condition, 1.0) / factors.get(comp_condition, 1.0)
        run.scale("condition", factor, note=f"{comp_condition} -> {subject_condition}")

    def _adjust_floor(self, run: _Run, subject: SubjectRef) -> None:
        comp_floor = run.comparable.floor
        if subject.floor is None or comp_floor is None or subject.floor == comp_floor:
            run.neutral("floor")
            return
        if self._rules.floor_bonus is None:
            self._missing(run, "floor_bonus", "floor")
            return
        levels = subject.floor - comp_floor
        run.add("floor", self._rules.floor_bonus * levels, note=f"{levels:+d} levels")

    def _adjust_elevator(self, run: _Run, subject: SubjectRef) -> None:
        comp_elevator = run.comparable.elevator
        if subject.elevator is None or comp_elevator is None or subject.elevator == comp_elevator:
            run.neutral("elevator")
            return
        factor = self._rules.elevator_factor
        if factor is None:
            self._missing(run, "elevator_factor", "elevator")
            return
        if subject.elevator:
            run.scale("elevator", factor, note="subject has elevator")
        else:
            run.scale("elevator", 1 / factor, note="comparable has elevator")

    def _adjust_terrace(self, run: _Run, subject: SubjectRef) -> None:
        subject_terrace = subject.terrace_sqm or 0.0
        comp_terrace = run.comparable.terrace_sqm or 0.0
        if subject_terrace == comp_terrace:
            run.neutral("terrace")
            return
        if self._rules.terrace_ppsqm is None:
            self._missing(run, "terrace_ppsqm", "terrace")
            return
        difference = subject_terrace - comp_terrace
        run.add(
            "terrace",
            self._rules.terrace_ppsqm * difference,
            note=f"{difference:+g} sqm terrace",
        )

    def _adjust_parking(self, run: _Run, subject: SubjectRef) -> None:
        subject_parking = bool(subject.parking)
        comp_parking = bool(run.comparable.parking)
        if subject_parking == comp_parking:
            run.neutral("parking")
            return
        if self._rules.parking_value is None:
            self._missing(run, "parking_value", "parking")
            return
        if subject_parking:
            run.add("parking", self._rules.parking_value, note="subject has parking")
        else:
            run.add("parking", -self._rules.parking_value, note="comparable has parking")

    def _adjust_building_age(self, run: _Run, subject: SubjectRef) -> None:
        comp_year = run.comparable.building_year
        if subject.building_year is None or comp_year is None or subject.building_year == comp_year:
            run.neutral("age")
            return
        pct = self._rules.age_depreciation_pct
        if pct is None:
            self._missing(run, "age_depreciation_pct", "age")
            return

        subject_age = self._reference_date.year - subject.building_year
        comp_age = self._reference_date.year - comp_year
        exponent = subject_age - comp_age
        base = 1 - pct / 100
        if base == 0 and exponent < 0:
            run.warnings.append(ValuationWarning.create(
                "MISSING_RULE_PARAMETER",
                "age_depreciation_pct of 100 cannot be reversed, age left unadjusted",
                comparable_id=run.comparable.id,
            ))
            run.neutral("age", note="depreciation not invertible")
            return
        run.scale("age", base ** exponent, note=f"{exponent:+d} years of age")

    def _adjust_micro_location(self, run: _Run, distance_m: Optional[float]) -> None:
        radius = self._rules.micro_loc_bonus_m
        if radius is None or distance_m is None or distance_m >= radius:
            run.neutral("micro_location")
            return
        premium = MICRO_LOCATION_MAX_PREMIUM * (radius - distance_m) / radius
        run.scale("micro_location", 1 + premium, note=f"{distance_m:.0f} m from subject")

"""
Tests for the Normalizer

Verifies:
- Each adjustment step in isolation
- Steps compound in order on a running price
- Missing rule parameters degrade to neutral steps with warnings
- Normalization is a pure function of comparable, subject and rules
"""

import math

import pytest

from avm.comp_engine import (
    MissingRuleParameter,
    NormalizeRules,
    SqmRule,
    SubjectRef,
)
from avm.comp_engine.normalizer import Normalizer


STEP_ORDER = [
    "size",
    "condition",
    "floor",
    "elevator",
    "terrace",
    "parking",
    "age",
    "micro_location",
]


@pytest.fixture
def full_rules():
    return NormalizeRules(
        rules_id="madrid-2024",
        sqm_rule=SqmRule.LINEAR,
        state_factors={"GOOD": 1.0, "TO_REFORM": 0.85, "NEW": 1.1},
        floor_bonus=2000,
        elevator_factor=1.05,
        terrace_ppsqm=1500,
        parking_value=25000,
        age_depreciation_pct=1.0,
        micro_loc_bonus_m=500,
    )


@pytest.fixture
def normalizer(full_rules, reference_date):
    return Normalizer(full_rules, reference_date=reference_date)


def plain_subject(**kwargs) -> SubjectRef:
    """Subject without coordinates, so no micro-location premium applies."""
    kwargs.setdefault("sqm", 90)
    return SubjectRef(**kwargs)


# =============================================================================
# Test: Individual Steps
# =============================================================================


class TestSize:
    """Size adjustment scales by the area ratio."""

    def test_linear(self, normalizer, create_comp):
        result = normalizer.normalize(create_comp("c", price=200000, sqm=80), plain_subject())

        assert result.normalized_price == pytest.approx(225000)

    def test_sqrt_dampens(self, create_comp, reference_date):
        rules = NormalizeRules(sqm_rule=SqmRule.SQRT)
        result = Normalizer(rules, reference_date).normalize(
            create_comp("c", price=200000, sqm=80), plain_subject()
        )

        assert result.normalized_price == pytest.approx(200000 * math.sqrt(90 / 80))
        assert result.normalized_price < 225000

    def test_same_area_is_neutral_without_rule(self, create_comp, reference_date):
        result = Normalizer(NormalizeRules(), reference_date).normalize(
            create_comp("c", price=200000, sqm=90), plain_subject()
        )

        assert result.normalized_price == 200000
        assert result.warnings == ()


class TestCondition:
    """Condition uses the ratio of the two state factors."""

    def test_ratio_of_factors(self, normalizer, create_comp):
        comp = create_comp("c", price=170000, condition="to reform")

        result = normalizer.normalize(comp, plain_subject(condition="good"))

        assert result.normalized_price == pytest.approx(200000)

    def test_unknown_condition_on_either_side_is_neutral(self, normalizer, create_comp):
        result = normalizer.normalize(create_comp("c", price=170000), plain_subject(condition="GOOD"))

        assert result.normalized_price == 170000
        assert result.warnings == ()

    def test_missing_factor_uses_one_with_warning(self, normalizer, create_comp):
        comp = create_comp("c", price=200000, condition="RUINOUS")

        result = normalizer.normalize(comp, plain_subject(condition="NEW"))

        assert result.normalized_price == pytest.approx(220000)
        assert [w.code for w in result.warnings] == ["MISSING_RULE_PARAMETER"]


class TestAdditiveSteps:
    """Floor, terrace and parking add fixed amounts."""

    def test_floor_bonus_per_level(self, normalizer, create_comp):
        result = normalizer.normalize(create_comp("c", price=200000, floor=1), plain_subject(floor=4))

        assert result.normalized_price == pytest.approx(206000)

    def test_floor_bonus_negative_when_comp_higher(self, normalizer, create_comp):
        result = normalizer.normalize(create_comp("c", price=200000, floor=5), plain_subject(floor=2))

        assert result.normalized_price == pytest.approx(194000)

    def test_terrace_difference(self, normalizer, create_comp):
        comp = create_comp("c", price=200000, terrace_sqm=4)

        result = normalizer.normalize(comp, plain_subject(terrace_sqm=10))

        assert result.normalized_price == pytest.approx(209000)

    def test_absent_subject_terrace_counts_as_none(self, normalizer, create_comp):
        comp = create_comp("c", price=200000, terrace_sqm=10)

        result = normalizer.normalize(comp, plain_subject())

        assert result.normalized_price == pytest.approx(185000)

    def test_parking_mismatch(self, normalizer, create_comp):
        with_parking = create_comp("a", price=200000, parking=True)
        without_parking = create_comp("b", price=200000, parking=False)

        assert normalizer.normalize(with_parking, plain_subject()).normalized_price == pytest.approx(175000)
        assert normalizer.normalize(without_parking, plain_subject(parking=True)).normalized_price == pytest.approx(225000)


class TestFactorSteps:
    """Elevator and building age multiply the running price."""

    def test_elevator_factor_when_subject_has_one(self, normalizer, create_comp):
        result = normalizer.normalize(create_comp("c", price=200000, elevator=False), plain_subject(elevator=True))

        assert result.normalized_price == pytest.approx(210000)

    def test_elevator_inverse_when_comp_has_one(self, normalizer, create_comp):
        result = normalizer.normalize(create_comp("c", price=210000, elevator=True), plain_subject(elevator=False))

        assert result.normalized_price == pytest.approx(200000)

    def test_older_subject_depreciates(self, normalizer, create_comp):
        comp = create_comp("c", price=200000, building_year=2004)

        result = normalizer.normalize(comp, plain_subject(building_year=1994))

        assert result.normalized_price == pytest.approx(200000 * 0.99 ** 10)

    def test_newer_subject_appreciates(self, normalizer, create_comp):
        comp = create_comp("c", price=200000, building_year=1994)

        result = normalizer.normalize(comp, plain_subject(building_year=2004))

        assert result.normalized_price > 200000

    def test_total_depreciation_not_inverted(self, create_comp, reference_date):
        rules = NormalizeRules(age_depreciation_pct=100)
        comp = create_comp("c", price=200000, building_year=1990)

        result = Normalizer(rules, reference_date).normalize(comp, plain_subject(building_year=2000))

        assert result.normalized_price == 200000
        assert [w.code for w in result.warnings] == ["MISSING_RULE_PARAMETER"]


class TestMicroLocation:
    """Small premium decaying linearly to zero at the bonus radius."""

    def test_premium_near_subject(self, normalizer, create_comp, subject):
        comp = create_comp("c", price=200000, metres_north=250, floor=2, elevator=True, condition="GOOD")

        result = normalizer.normalize(comp, subject)

        assert result.distance_m == pytest.approx(250, abs=0.5)
        assert result.normalized_price == pytest.approx(205000, rel=1e-4)

    def test_no_premium_beyond_radius(self, normalizer, create_comp, subject):
        comp = create_comp("c", price=200000, metres_north=800, floor=2, elevator=True, condition="GOOD")

        result = normalizer.normalize(comp, subject)

        assert result.normalized_price == pytest.approx(200000)

    def test_no_premium_without_subject_coordinates(self, normalizer, create_comp):
        result = normalizer.normalize(create_comp("c", price=200000, metres_north=10), plain_subject())

        assert result.distance_m is None
        assert result.normalized_price == 200000


# =============================================================================
# Test: Pipeline Behaviour
# =============================================================================


class TestComposition:
    """Steps compound in a fixed order and are all recorded."""

    def test_every_step_recorded_in_order(self, normalizer, create_comp):
        result = normalizer.normalize(create_comp("c"), plain_subject())

        assert [s.name for s in result.steps] == STEP_ORDER

    def test_steps_chain_running_price(self, normalizer, create_comp):
        comp = create_comp("c", price=200000, sqm=80, floor=1, parking=True)

        result = normalizer.normalize(comp, plain_subject(floor=2))

        # 200000 * 90/80 = 225000, +2000 floor, -25000 parking
        assert result.normalized_price == pytest.approx(202000)
        for before, after in zip(result.steps, result.steps[1:]):
            assert after.price_before == before.price_after
        assert result.steps[0].price_before == 200000
        assert result.steps[-1].price_after == result.normalized_price
        assert result.total_adjustment == pytest.approx(2000)

    def test_order_matters_for_mixed_steps(self, normalizer, create_comp):
        # Size before floor: (200000 * 0.5) + 2000, not (200000 + 2000) * 0.5
        comp = create_comp("c", price=200000, sqm=180, floor=1)

        result = normalizer.normalize(comp, plain_subject(floor=2))

        assert result.normalized_price == pytest.approx(102000)

    def test_idempotent(self, normalizer, create_comp, subject):
        comp = create_comp("c", price=240000, sqm=100, floor=4, terrace_sqm=6, building_year=1980)

        first = normalizer.normalize(comp, subject)
        second = normalizer.normalize(comp, subject)

        assert first == second

    def test_comparable_not_mutated(self, normalizer, create_comp):
        comp = create_comp("c", price=200000, sqm=80)

        normalizer.normalize(comp, plain_subject())

        assert comp.price == 200000


class TestMissingRules:
    """An unset parameter only matters when the feature differs."""

    def test_missing_parameter_warns_and_stays_neutral(self, create_comp, reference_date):
        comp = create_comp("c", price=200000, sqm=100, floor=1)

        result = Normalizer(NormalizeRules(), reference_date).normalize(comp, plain_subject(floor=3))

        assert result.normalized_price == 200000
        assert [w.code for w in result.warnings] == ["MISSING_RULE_PARAMETER"] * 2
        assert all(w.comparable_id == "c" for w in result.warnings)
        assert [s.note for s in result.steps if s.note.startswith("missing")] == [
            "missing sqm_rule",
            "missing floor_bonus",
        ]

    def test_strict_mode_raises(self, create_comp, reference_date):
        normalizer = Normalizer(NormalizeRules(), reference_date, strict=True)

        with pytest.raises(MissingRuleParameter) as exc_info:
            normalizer.normalize(create_comp("c", sqm=100), plain_subject())

        assert exc_info.value.parameter == "sqm_rule"

    def test_strict_mode_missing_state_factor(self, create_comp, reference_date):
        normalizer = Normalizer(NormalizeRules(state_factors={"GOOD": 1.0}), reference_date, strict=True)

        with pytest.raises(MissingRuleParameter):
            normalizer.normalize(create_comp("c", condition="NEW"), plain_subject(condition="GOOD"))

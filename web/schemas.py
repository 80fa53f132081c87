"""
Request bodies for the valuation API.

Pydantic handles JSON shape and primitive types; the engine's own
dataclasses enforce the domain invariants when each body is converted.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, Field

from avm.comp_engine import (
    AggregationMethod,
    NormalizeRules,
    PropertyType,
    ScoreMethod,
    ScoreParams,
    SearchFilters,
    Source,
    SqmRule,
    SubjectRef,
    ValidationError,
)


E = TypeVar("E", bound=Enum)


def parse_enum(
    enum_cls: type[E],
    value: Optional[str],
    field: str,
    required: bool = False,
) -> Optional[E]:
    """
    Case-insensitive enum lookup that reports the field on failure.

    Blank values mean "not given" unless the field is required.
    """
    allowed = ", ".join(m.value for m in enum_cls)
    if value is None or not value.strip():
        if required:
            raise ValidationError(field, f"must be one of {allowed}")
        return None
    wanted = value.strip().lower()
    for member in enum_cls:
        if member.value.lower() == wanted or member.name.lower() == wanted:
            return member
    raise ValidationError(field, f"must be one of {allowed}")


# =============================================================================
# Valuation inputs
# =============================================================================


class SubjectIn(BaseModel):
    sqm: float
    property_type: Optional[str] = None
    rooms: Optional[int] = None
    baths: Optional[int] = None
    floor: Optional[int] = None
    elevator: Optional[bool] = None
    condition: Optional[str] = None
    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    building_year: Optional[int] = None
    terrace: Optional[float] = None
    parking: Optional[bool] = None
    property_id: Optional[str] = None

    def to_subject(self) -> SubjectRef:
        return SubjectRef(
            sqm=self.sqm,
            property_type=parse_enum(PropertyType, self.property_type, "property_type"),
            rooms=self.rooms,
            baths=self.baths,
            floor=self.floor,
            elevator=self.elevator,
            condition=self.condition,
            address=self.address,
            latitude=self.lat,
            longitude=self.lng,
            building_year=self.building_year,
            terrace_sqm=self.terrace,
            parking=self.parking,
            property_id=self.property_id,
        )


class FiltersIn(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    radius_km: Optional[float] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    property_type: Optional[str] = None
    sqm_min: Optional[float] = None
    sqm_max: Optional[float] = None
    rooms_min: Optional[int] = None
    rooms_max: Optional[int] = None
    baths_min: Optional[int] = None
    baths_max: Optional[int] = None
    floor_min: Optional[int] = None
    floor_max: Optional[int] = None
    elevator: Optional[bool] = None
    parking: Optional[bool] = None
    condition: Optional[str] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    source: Optional[str] = None
    q: Optional[str] = None
    page: int = 0
    size: int = 25
    sort: Optional[str] = None

    def to_filters(self, default_radius_km: Optional[float] = None) -> SearchFilters:
        radius_km = self.radius_km
        if radius_km is None and default_radius_km is not None:
            radius_km = default_radius_km
        return SearchFilters(
            latitude=self.lat,
            longitude=self.lng,
            radius_km=radius_km,
            date_from=self.date_from,
            date_to=self.date_to,
            property_type=parse_enum(PropertyType, self.property_type, "property_type"),
            sqm_min=self.sqm_min,
            sqm_max=self.sqm_max,
            rooms_min=self.rooms_min,
            rooms_max=self.rooms_max,
            baths_min=self.baths_min,
            baths_max=self.baths_max,
            floor_min=self.floor_min,
            floor_max=self.floor_max,
            elevator=self.elevator,
            parking=self.parking,
            condition=self.condition,
            price_min=self.price_min,
            price_max=self.price_max,
            source=parse_enum(Source, self.source, "source"),
            q=self.q,
            page=self.page,
            size=self.size,
            sort=self.sort,
        )


class RulesIn(BaseModel):
    rules_id: str = "default"
    version: int = 1
    sqm_rule: Optional[str] = None
    state_factors: dict[str, float] = Field(default_factory=dict)
    floor_bonus: Optional[float] = None
    elevator_factor: Optional[float] = None
    terrace_ppsqm: Optional[float] = None
    parking_value: Optional[float] = None
    age_depreciation_pct: Optional[float] = None
    micro_loc_bonus_m: Optional[float] = None

    def to_rules(self) -> NormalizeRules:
        return NormalizeRules(
            rules_id=self.rules_id,
            version=self.version,
            sqm_rule=parse_enum(SqmRule, self.sqm_rule, "sqm_rule"),
            state_factors=self.state_factors,
            floor_bonus=self.floor_bonus,
            elevator_factor=self.elevator_factor,
            terrace_ppsqm=self.terrace_ppsqm,
            parking_value=self.parking_value,
            age_depreciation_pct=self.age_depreciation_pct,
            micro_loc_bonus_m=self.micro_loc_bonus_m,
        )


class ParamsIn(BaseModel):
    method: str = "COSINE"
    k: Optional[int] = None
    dist_cap_m: float = 2000.0
    weights: dict[str, float] = Field(default_factory=dict)
    aggregation: str = "WEIGHTED_MEDIAN"

    def to_params(self) -> ScoreParams:
        return ScoreParams(
            method=parse_enum(ScoreMethod, self.method, "method", required=True),
            k=self.k,
            dist_cap_m=self.dist_cap_m,
            weights=self.weights,
            aggregation=parse_enum(AggregationMethod, self.aggregation, "aggregation", required=True),
        )


# =============================================================================
# Request envelopes
# =============================================================================


class SearchRequest(BaseModel):
    filters: FiltersIn = Field(default_factory=FiltersIn)
    subject: Optional[SubjectIn] = None


class ValuationRequest(BaseModel):
    """Subject inline, or property_id resolved through the subject lookup."""

    subject: Optional[SubjectIn] = None
    property_id: Optional[str] = None
    filters: FiltersIn = Field(default_factory=FiltersIn)
    rules: RulesIn = Field(default_factory=RulesIn)
    params: ParamsIn = Field(default_factory=ParamsIn)


class CompSetValuationRequest(BaseModel):
    subject: Optional[SubjectIn] = None
    property_id: Optional[str] = None
    rules: RulesIn = Field(default_factory=RulesIn)
    params: ParamsIn = Field(default_factory=ParamsIn)


class ImportRequest(BaseModel):
    records: list[dict[str, Any]]


class CompSetCreate(BaseModel):
    name: str
    comp_ids: list[str]
    client: Optional[str] = None
    notes: Optional[str] = None
    is_default_for_avm: bool = False


class CompSetUpdate(BaseModel):
    """Only the fields present in the body are changed."""

    expected_version: int
    name: Optional[str] = None
    comp_ids: Optional[list[str]] = None
    client: Optional[str] = None
    notes: Optional[str] = None
    is_default_for_avm: Optional[bool] = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"expected_version"})

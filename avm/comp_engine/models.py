"""
Data models for the Comp Engine.

Defines the subject reference, comparable records, query envelopes,
normalization/scoring configuration and valuation results. Query and
configuration structures validate their invariants at construction time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Final, Mapping, Optional

from .errors import InvalidFilter, ValidationError, ValuationWarning


# =============================================================================
# Constants
# =============================================================================

MAX_RADIUS_KM: Final[float] = 5.0
MAX_PAGE_SIZE: Final[int] = 500
DEFAULT_PAGE_SIZE: Final[int] = 25
DEFAULT_DIST_CAP_M: Final[float] = 2000.0
MIN_KNN_K: Final[int] = 3
MIN_BUILDING_YEAR: Final[int] = 1800

SORT_FIELDS: Final[tuple[str, ...]] = ("distance", "date", "price", "sqm", "ppsqm")

# Feature names understood by both scoring strategies
SCORING_FEATURES: Final[tuple[str, ...]] = (
    "sqm",
    "rooms",
    "baths",
    "floor",
    "age",
    "terrace",
    "distance",
)


def _require(condition: bool, field_name: str, constraint: str) -> None:
    if not condition:
        raise ValidationError(field_name, constraint)


def _check_coordinates(latitude: Optional[float], longitude: Optional[float]) -> None:
    if (latitude is None) != (longitude is None):
        raise ValidationError("latitude/longitude", "must be given together")
    if latitude is not None:
        _require(-90 <= latitude <= 90, "latitude", "must be between -90 and 90")
        _require(-180 <= longitude <= 180, "longitude", "must be between -180 and 180")


def normalise_condition(value: Optional[str]) -> Optional[str]:
    """Normalise a condition label to its upper-case key ('buen estado' -> 'BUEN_ESTADO')."""
    if value is None:
        return None
    cleaned = "_".join(str(value).strip().upper().replace("-", " ").split())
    return cleaned or None


# =============================================================================
# Enums
# =============================================================================


class PropertyType(Enum):
    """Property type classification. Filtering uses exact match."""

    APARTMENT = "apartment"
    HOUSE = "house"
    PENTHOUSE = "penthouse"
    STUDIO = "studio"
    DUPLEX = "duplex"

    @classmethod
    def from_string(cls, value: str) -> Optional["PropertyType"]:
        """Convert string to PropertyType, case-insensitive."""
        normalised = value.lower().strip()
        for member in cls:
            if member.value == normalised:
                return member
        return None


class Source(Enum):
    """Where a comparable record came from."""

    PORTAL = "PORTAL"
    REGISTRO = "REGISTRO"
    NOTARIA = "NOTARIA"
    INTERNO = "INTERNO"

    @classmethod
    def from_string(cls, value: str) -> Optional["Source"]:
        """Convert string to Source, case-insensitive."""
        normalised = value.upper().strip()
        for member in cls:
            if member.value == normalised:
                return member
        return None


class SqmRule(Enum):
    """How the size adjustment scales with the subject/comp area ratio."""

    LINEAR = "LINEAR"
    SQRT = "SQRT"


class ScoreMethod(Enum):
    """Similarity scoring strategy."""

    COSINE = "COSINE"
    KNN = "KNN"


class AggregationMethod(Enum):
    """How weighted normalized prices are combined into a point estimate."""

    WEIGHTED_MEDIAN = "WEIGHTED_MEDIAN"
    WEIGHTED_MEAN = "WEIGHTED_MEAN"


# =============================================================================
# Subject and Comparables
# =============================================================================


@dataclass(frozen=True)
class SubjectRef:
    """
    The property being valued.

    Immutable for the duration of a run. Terrace and parking are optional;
    when absent the normalizer treats the subject as having neither.
    """

    sqm: float
    property_type: Optional[PropertyType] = None
    rooms: Optional[int] = None
    baths: Optional[int] = None
    floor: Optional[int] = None
    elevator: Optional[bool] = None
    condition: Optional[str] = None

    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    building_year: Optional[int] = None
    terrace_sqm: Optional[float] = None
    parking: Optional[bool] = None
    property_id: Optional[str] = None

    def __post_init__(self) -> None:
        _require(self.sqm is not None and self.sqm > 0, "sqm", "must be positive")
        if self.rooms is not None:
            _require(self.rooms >= 0, "rooms", "cannot be negative")
        if self.baths is not None:
            _require(self.baths >= 0, "baths", "cannot be negative")
        if self.terrace_sqm is not None:
            _require(self.terrace_sqm >= 0, "terrace_sqm", "cannot be negative")
        if self.building_year is not None:
            _require(
                MIN_BUILDING_YEAR <= self.building_year <= date.today().year + 2,
                "building_year",
                f"must be between {MIN_BUILDING_YEAR} and {date.today().year + 2}",
            )
        _check_coordinates(self.latitude, self.longitude)
        object.__setattr__(self, "condition", normalise_condition(self.condition))

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class Comparable:
    """
    A past transaction or listing used as valuation evidence.

    Records are append-mostly: a correction is stored as a new version
    under the same id.
    """

    # Required fields
    id: str
    date: date
    latitude: float
    longitude: float
    price: float
    sqm: float

    # Optional structural attributes
    rooms: Optional[int] = None
    baths: Optional[int] = None
    floor: Optional[int] = None
    elevator: Optional[bool] = None
    terrace_sqm: Optional[float] = None
    parking: Optional[bool] = None
    condition: Optional[str] = None
    property_type: Optional[PropertyType] = None
    building_year: Optional[int] = None

    # Provenance
    source: Source = Source.PORTAL
    ref: Optional[str] = None
    address: Optional[str] = None
    photos: tuple[str, ...] = ()
    version: int = 1

    def __post_init__(self) -> None:
        _require(bool(self.id), "id", "is required")
        _require(self.price > 0, "price", "must be positive")
        _require(self.sqm > 0, "sqm", "must be positive")
        _check_coordinates(self.latitude, self.longitude)
        if self.rooms is not None:
            _require(self.rooms >= 0, "rooms", "cannot be negative")
        if self.baths is not None:
            _require(self.baths >= 0, "baths", "cannot be negative")
        if self.terrace_sqm is not None:
            _require(self.terrace_sqm >= 0, "terrace", "cannot be negative")
        if self.building_year is not None:
            _require(
                MIN_BUILDING_YEAR <= self.building_year <= date.today().year + 2,
                "building_year",
                f"must be between {MIN_BUILDING_YEAR} and {date.today().year + 2}",
            )
        _require(self.version >= 1, "version", "must be at least 1")
        object.__setattr__(self, "condition", normalise_condition(self.condition))
        object.__setattr__(self, "photos", tuple(self.photos))

    @property
    def ppsqm(self) -> float:
        """Price per square metre."""
        return self.price / self.sqm

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "id": self.id,
            "ref": self.ref,
            "date": self.date.isoformat(),
            "lat": self.latitude,
            "lng": self.longitude,
            "price": float(self.price),
            "sqm": float(self.sqm),
            "ppsqm": round(self.ppsqm, 2),
            "rooms": self.rooms,
            "baths": self.baths,
            "floor": self.floor,
            "elevator": self.elevator,
            "terrace": self.terrace_sqm,
            "parking": self.parking,
            "condition": self.condition,
            "property_type": self.property_type.value if self.property_type else None,
            "building_year": self.building_year,
            "source": self.source.value,
            "address": self.address,
            "photos": list(self.photos),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Comparable":
        """Rebuild a comparable written by to_dict."""
        property_type = data.get("property_type")
        return cls(
            id=data["id"],
            ref=data.get("ref"),
            date=date.fromisoformat(data["date"]),
            latitude=data["lat"],
            longitude=data["lng"],
            price=data["price"],
            sqm=data["sqm"],
            rooms=data.get("rooms"),
            baths=data.get("baths"),
            floor=data.get("floor"),
            elevator=data.get("elevator"),
            terrace_sqm=data.get("terrace"),
            parking=data.get("parking"),
            condition=data.get("condition"),
            property_type=PropertyType(property_type) if property_type else None,
            building_year=data.get("building_year"),
            source=Source(data.get("source", Source.PORTAL.value)),
            address=data.get("address"),
            photos=tuple(data.get("photos") or ()),
            version=data.get("version", 1),
        )


# =============================================================================
# Query Envelope
# =============================================================================


def _check_range(low: Optional[float], high: Optional[float], name: str) -> None:
    if low is not None and high is not None and low > high:
        raise InvalidFilter(f"{name}_min/{name}_max", f"{name}_min must not exceed {name}_max")


@dataclass(frozen=True)
class SearchFilters:
    """
    Candidate search envelope. Built per query, validated on construction.

    All active predicates are combined with AND.
    """

    # Geography
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius_km: Optional[float] = None

    # Date window
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    # Structure
    property_type: Optional[PropertyType] = None
    sqm_min: Optional[float] = None
    sqm_max: Optional[float] = None
    rooms_min: Optional[int] = None
    rooms_max: Optional[int] = None
    baths_min: Optional[int] = None
    baths_max: Optional[int] = None
    floor_min: Optional[int] = None
    floor_max: Optional[int] = None

    # Amenities and condition (equality when set)
    elevator: Optional[bool] = None
    parking: Optional[bool] = None
    condition: Optional[str] = None

    # Price and provenance
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    source: Optional[Source] = None
    q: Optional[str] = None

    # Pagination / sort
    page: int = 0
    size: int = DEFAULT_PAGE_SIZE
    sort: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.latitude is None) != (self.longitude is None):
            raise InvalidFilter("latitude/longitude", "center must give both coordinates")
        if self.latitude is not None:
            if not -90 <= self.latitude <= 90:
                raise InvalidFilter("latitude", "must be between -90 and 90")
            if not -180 <= self.longitude <= 180:
                raise InvalidFilter("longitude", "must be between -180 and 180")

        if self.radius_km is not None and not 0 < self.radius_km <= MAX_RADIUS_KM:
            raise InvalidFilter("radius_km", f"must be in (0, {MAX_RADIUS_KM:g}]")

        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise InvalidFilter("date_from/date_to", "date_from must not be after date_to")

        if self.sqm_min is not None and self.sqm_min < 0:
            raise InvalidFilter("sqm_min", "cannot be negative")
        _check_range(self.sqm_min, self.sqm_max, "sqm")
        _check_range(self.rooms_min, self.rooms_max, "rooms")
        _check_range(self.baths_min, self.baths_max, "baths")
        _check_range(self.floor_min, self.floor_max, "floor")
        _check_range(self.price_min, self.price_max, "price")

        if self.page < 0:
            raise InvalidFilter("page", "cannot be negative")
        if not 1 <= self.size <= MAX_PAGE_SIZE:
            raise InvalidFilter("size", f"must be between 1 and {MAX_PAGE_SIZE}")

        if self.sort is not None:
            sort_field, _, direction = self.sort.partition("-")
            if sort_field not in SORT_FIELDS or direction not in ("asc", "desc"):
                raise InvalidFilter(
                    "sort",
                    f"must be '<field>-<asc|desc>' with field in {', '.join(SORT_FIELDS)}",
                )

        object.__setattr__(self, "condition", normalise_condition(self.condition))

    @property
    def has_center(self) -> bool:
        return self.latitude is not None and self.longitude is not None


# =============================================================================
# Normalization and Scoring Configuration
# =============================================================================


@dataclass(frozen=True)
class NormalizeRules:
    """
    Versioned normalization configuration, referenced by id.

    Every parameter may be left unset. An unset parameter only matters when
    a comparable actually differs from the subject on that feature.
    """

    rules_id: str = "default"
    version: int = 1
    sqm_rule: Optional[SqmRule] = None
    state_factors: Mapping[str, float] = field(default_factory=dict)
    floor_bonus: Optional[float] = None
    elevator_factor: Optional[float] = None
    terrace_ppsqm: Optional[float] = None
    parking_value: Optional[float] = None
    age_depreciation_pct: Optional[float] = None
    micro_loc_bonus_m: Optional[float] = None

    def __post_init__(self) -> None:
        factors = {}
        for condition, factor in dict(self.state_factors).items():
            _require(factor > 0, f"state_factors[{condition}]", "must be positive")
            factors[normalise_condition(condition)] = float(factor)
        object.__setattr__(self, "state_factors", factors)

        if self.elevator_factor is not None:
            _require(self.elevator_factor > 0, "elevator_factor", "must be positive")
        if self.terrace_ppsqm is not None:
            _require(self.terrace_ppsqm >= 0, "terrace_ppsqm", "cannot be negative")
        if self.parking_value is not None:
            _require(self.parking_value >= 0, "parking_value", "cannot be negative")
        if self.age_depreciation_pct is not None:
            _require(
                0 <= self.age_depreciation_pct <= 100,
                "age_depreciation_pct",
                "must be between 0 and 100",
            )
        if self.micro_loc_bonus_m is not None:
            _require(self.micro_loc_bonus_m > 0, "micro_loc_bonus_m", "must be positive")

    def to_dict(self) -> dict[str, Any]:
        return {
            "rules_id": self.rules_id,
            "version": self.version,
            "sqm_rule": self.sqm_rule.value if self.sqm_rule else None,
            "state_factors": dict(self.state_factors),
            "floor_bonus": self.floor_bonus,
            "elevator_factor": self.elevator_factor,
            "terrace_ppsqm": self.terrace_ppsqm,
            "parking_value": self.parking_value,
            "age_depreciation_pct": self.age_depreciation_pct,
            "micro_loc_bonus_m": self.micro_loc_bonus_m,
        }


@dataclass(frozen=True)
class ScoreParams:
    """Similarity scoring configuration."""

    method: ScoreMethod = ScoreMethod.COSINE
    k: Optional[int] = None
    dist_cap_m: float = DEFAULT_DIST_CAP_M
    weights: Mapping[str, float] = field(default_factory=dict)
    aggregation: AggregationMethod = AggregationMethod.WEIGHTED_MEDIAN

    def __post_init__(self) -> None:
        _require(
            isinstance(self.method, ScoreMethod),
            "method",
            f"must be one of {', '.join(m.value for m in ScoreMethod)}",
        )
        _require(
            isinstance(self.aggregation, AggregationMethod),
            "aggregation",
            f"must be one of {', '.join(m.value for m in AggregationMethod)}",
        )
        if self.method == ScoreMethod.KNN:
            _require(self.k is not None, "k", "is required for KNN")
            _require(self.k >= MIN_KNN_K, "k", f"must be at least {MIN_KNN_K}")
        _require(self.dist_cap_m > 0, "dist_cap_m", "must be positive")
        for feature, weight in dict(self.weights).items():
            _require(
                feature in SCORING_FEATURES,
                f"weights[{feature}]",
                f"unknown feature, expected one of {', '.join(SCORING_FEATURES)}",
            )
            _require(0 <= weight <= 1, f"weights[{feature}]", "must be between 0 and 1")
        object.__setattr__(self, "weights", dict(self.weights))

    def weight_for(self, feature: str) -> float:
        """Per-feature weight, defaulting to 1."""
        return float(self.weights.get(feature, 1.0))


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class AdjustmentStep:
    """One normalization step, recorded for audit."""

    name: str
    price_before: float
    price_after: float
    factor: Optional[float] = None
    note: str = ""

    @property
    def delta(self) -> float:
        return self.price_after - self.price_before

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "price_before": round(self.price_before, 2),
            "price_after": round(self.price_after, 2),
            "delta": round(self.delta, 2),
            "factor": self.factor,
            "note": self.note,
        }


@dataclass(frozen=True)
class RecencyCheck:
    """Freshness verdict for a single comparable date."""

    valid: bool
    age_months: float
    warning: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"valid": self.valid, "age_months": round(self.age_months, 2)}
        if self.warning is not None:
            data["warning"] = self.warning
        return data


@dataclass(frozen=True)
class ScoredComparable:
    """A comparable as it enters the aggregate."""

    comparable: Comparable
    normalized_price: float
    weight: float
    distance_m: Optional[float] = None
    steps: tuple[AdjustmentStep, ...] = ()
    outlier: bool = False
    quality: str = "C"

    def to_dict(self) -> dict[str, Any]:
        return {
            "comparable": self.comparable.to_dict(),
            "normalized_price": round(self.normalized_price, 2),
            "weight": round(self.weight, 6),
            "distance_m": round(self.distance_m, 1) if self.distance_m is not None else None,
            "outlier": self.outlier,
            "quality": self.quality,
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass(frozen=True)
class ExcludedComparable:
    """A candidate that did not reach the aggregate, and why."""

    comparable_id: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"comparable_id": self.comparable_id, "reason": self.reason}


@dataclass
class ValuationResult:
    """
    Complete valuation result for a subject property.

    Derived per run and never stored by the engine.
    """

    point_estimate: float
    confidence_low: float
    confidence_high: float
    method: ScoreMethod
    aggregation: AggregationMethod
    low_confidence: bool

    comparables: list[ScoredComparable] = field(default_factory=list)
    excluded: list[ExcludedComparable] = field(default_factory=list)
    warnings: list[ValuationWarning] = field(default_factory=list)

    candidates_considered: int = 0
    stale_excluded: int = 0
    rules_id: Optional[str] = None

    @property
    def comps_used(self) -> int:
        return len(self.comparables)

    def warnings_for(self, comparable_id: str) -> list[ValuationWarning]:
        """Warnings attached to one comparable."""
        return [w for w in self.warnings if w.comparable_id == comparable_id]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "point_estimate": round(self.point_estimate, 2),
            "confidence_band": {
                "low": round(self.confidence_low, 2),
                "high": round(self.confidence_high, 2),
            },
            "method": self.method.value,
            "aggregation": self.aggregation.value,
            "low_confidence": self.low_confidence,
            "comps_used": self.comps_used,
            "candidates_considered": self.candidates_considered,
            "stale_excluded": self.stale_excluded,
            "rules_id": self.rules_id,
            "comparables": [c.to_dict() for c in self.comparables],
            "excluded": [e.to_dict() for e in self.excluded],
            "warnings": [w.to_dict() for w in self.warnings],
        }

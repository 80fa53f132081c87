"""
Errors and warnings for the Comp Engine.

Only ValidationError and NoComparablesFound abort a valuation run.
Everything else is either raised to the caller for retry (Conflict) or
accumulated as a ValuationWarning on the result.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final, Optional


# =============================================================================
# Exceptions
# =============================================================================


class CompEngineError(Exception):
    """Base class for all Comp Engine errors."""


class ValidationError(CompEngineError, ValueError):
    """
    Input violates a schema invariant.

    Always carries the offending field and the violated constraint.
    """

    def __init__(self, field: str, constraint: str):
        self.field = field
        self.constraint = constraint
        super().__init__(f"{field}: {constraint}")

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "constraint": self.constraint}


class InvalidFilter(ValidationError):
    """SearchFilters violate radius, date order or range invariants."""


class NoComparablesFound(CompEngineError):
    """Zero comparables survived the pipeline. Caller must relax filters."""

    def __init__(self, stage: str, candidates_considered: int = 0, stale_excluded: int = 0):
        self.stage = stage
        self.candidates_considered = candidates_considered
        self.stale_excluded = stale_excluded
        super().__init__(
            f"No comparables left after {stage} "
            f"({candidates_considered} considered, {stale_excluded} stale)"
        )


class MissingRuleParameter(CompEngineError):
    """A normalization rule needed for an encountered feature is absent."""

    def __init__(self, parameter: str, feature: str):
        self.parameter = parameter
        self.feature = feature
        super().__init__(f"Rule parameter '{parameter}' required for {feature}")


class Conflict(CompEngineError):
    """Optimistic concurrency check failed on a CompSet write."""

    def __init__(self, set_id: str, expected_version: int, actual_version: int):
        self.set_id = set_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"CompSet {set_id} is at version {actual_version}, "
            f"expected {expected_version}"
        )


class CompSetNotFound(CompEngineError, LookupError):
    """No CompSet with the given id."""

    def __init__(self, set_id: str):
        self.set_id = set_id
        super().__init__(f"CompSet {set_id} not found")


class SubjectNotFound(CompEngineError, LookupError):
    """Subject lookup could not resolve a property id."""

    def __init__(self, property_id: str):
        self.property_id = property_id
        super().__init__(f"Subject property {property_id} not found")


class ValuationCancelled(CompEngineError):
    """The caller cancelled the run before it completed."""


# =============================================================================
# Non-fatal warnings
# =============================================================================


WARNING_CODES: Final[dict[str, str]] = {
    "INSUFFICIENT_COMPARABLES": "Fewer comparables than the method's usable minimum",
    "MISSING_RULE_PARAMETER": "Normalization rule absent, neutral adjustment applied",
    "RECENCY": "Comparable older than the recency warning threshold",
    "FUTURE_DATE": "Comparable dated after the reference date",
    "ZERO_MAGNITUDE": "Feature vector has zero magnitude",
    "NON_POSITIVE_SIMILARITY": "Cosine similarity not positive",
    "NON_POSITIVE_PRICE": "Normalized price is not positive",
    "NO_SUBJECT_COORDINATES": "Subject has no coordinates, distance cap not applied",
    "POSSIBLE_DUPLICATE": "Comparable looks like a duplicate of another record",
    "OUTLIER": "Normalized price is a statistical outlier",
}


@dataclass(frozen=True)
class ValuationWarning:
    """A non-fatal condition recorded during a valuation run."""

    code: str
    message: str
    comparable_id: Optional[str] = None

    @classmethod
    def create(
        cls,
        code: str,
        detail: Optional[str] = None,
        comparable_id: Optional[str] = None,
    ) -> "ValuationWarning":
        """Create a warning, falling back to the code's standard message."""
        message = detail or WARNING_CODES.get(code, f"Unknown code: {code}")
        return cls(code=code, message=message, comparable_id=comparable_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "comparable_id": self.comparable_id,
        }

"""
Comp Engine

Comparable-based valuation pipeline: geospatial candidate search, feature
normalization, COSINE/KNN similarity scoring and weighted aggregation with
a confidence band.
"""

from .errors import (
    CompEngineError,
    ValidationError,
    InvalidFilter,
    NoComparablesFound,
    MissingRuleParameter,
    Conflict,
    CompSetNotFound,
    SubjectNotFound,
    ValuationCancelled,
    ValuationWarning,
    WARNING_CODES,
)
from .models import (
    SubjectRef,
    Comparable,
    PropertyType,
    Source,
    SearchFilters,
    NormalizeRules,
    SqmRule,
    ScoreParams,
    ScoreMethod,
    AggregationMethod,
    AdjustmentStep,
    RecencyCheck,
    ScoredComparable,
    ExcludedComparable,
    ValuationResult,
)
from .filters import Candidate, CandidateFilter, CandidatePage
from .recency import validate_comp_recency, months_between
from .normalizer import Normalizer, NormalizedComparable
from .scoring import score, ScoreOutcome
from .aggregator import aggregate, Aggregate
from .valuation import ValuationEngine

__all__ = [
    # Errors
    "CompEngineError",
    "ValidationError",
    "InvalidFilter",
    "NoComparablesFound",
    "MissingRuleParameter",
    "Conflict",
    "CompSetNotFound",
    "SubjectNotFound",
    "ValuationCancelled",
    "ValuationWarning",
    "WARNING_CODES",
    # Models
    "SubjectRef",
    "Comparable",
    "PropertyType",
    "Source",
    "SearchFilters",
    "NormalizeRules",
    "SqmRule",
    "ScoreParams",
    "ScoreMethod",
    "AggregationMethod",
    "AdjustmentStep",
    "RecencyCheck",
    "ScoredComparable",
    "ExcludedComparable",
    "ValuationResult",
    # Pipeline
    "Candidate",
    "CandidateFilter",
    "CandidatePage",
    "validate_comp_recency",
    "months_between",
    "Normalizer",
    "NormalizedComparable",
    "score",
    "ScoreOutcome",
    "aggregate",
    "Aggregate",
    "ValuationEngine",
]

__version__ = "1.0"

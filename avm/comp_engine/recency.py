"""
Recency / Integrity Checker for the Comp Engine

Ages each candidate in calendar months from its transaction date:
- age > 24 months: rejected outright (stale, silently excluded and counted)
- age > warn_months: kept, with a non-fatal warning
- otherwise: no annotation

Data recency is distinct from building age, which the normalizer handles.
"""

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Final, Optional

from .errors import ValidationError, ValuationWarning
from .filters import Candidate
from .models import ExcludedComparable, RecencyCheck


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Constants
# =============================================================================

MAX_AGE_MONTHS: Final[int] = 24
DEFAULT_WARN_MONTHS: Final[int] = 12


def months_between(start: date, end: date) -> float:
    """
    Calendar months from start to end: whole months plus the elapsed
    fraction of the following month. Negative when end precedes start.
    """
    if end < start:
        return -months_between(end, start)

    whole = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        whole -= 1

    anchor = _add_months(start, whole)
    following = _add_months(start, whole + 1)
    span = (following - anchor).days
    return whole + ((end - anchor).days / span if span else 0.0)


def _add_months(start: date, months: int) -> date:
    """Shift a date by whole months, clamping the day to the month length."""
    year_offset, month_index = divmod(start.month - 1 + months, 12)
    year = start.year + year_offset
    month = month_index + 1
    return date(year, month, min(start.day, calendar.monthrange(year, month)[1]))


def validate_comp_recency(
    comp_date: date,
    warn_months: Optional[float] = None,
    reference_date: Optional[date] = None,
) -> RecencyCheck:
    """
    Freshness verdict for a single comparable date.

    Args:
        comp_date: Transaction or listing date
        warn_months: Warning threshold in months (default 12, must be in (0, 24])
        reference_date: Date to age from (default: today)

    Returns:
        RecencyCheck with valid flag, age and optional warning

    Raises:
        ValidationError: if warn_months is out of range
    """
    if warn_months is None:
        warn_months = DEFAULT_WARN_MONTHS
    if not 0 < warn_months <= MAX_AGE_MONTHS:
        raise ValidationError("warn_months", f"must be in (0, {MAX_AGE_MONTHS}]")

    reference = reference_date or date.today()
    age = months_between(comp_date, reference)

    if age > MAX_AGE_MONTHS:
        return RecencyCheck(valid=False, age_months=age)
    if age > warn_months:
        return RecencyCheck(
            valid=True,
            age_months=age,
            warning=f"Comparable is {age:.1f} months old (warning threshold {warn_months:g})",
        )
    return RecencyCheck(valid=True, age_months=age)


@dataclass
class RecencyOutcome:
    """Candidates that survived the check, plus what was dropped and flagged."""

    retained: list[Candidate] = field(default_factory=list)
    excluded: list[ExcludedComparable] = field(default_factory=list)
    warnings: list[ValuationWarning] = field(default_factory=list)
    stale_count: int = 0


class RecencyChecker:
    """Runs the recency check once per candidate before normalization."""

    def __init__(
        self,
        reference_date: Optional[date] = None,
        warn_months: float = DEFAULT_WARN_MONTHS,
    ):
        if not 0 < warn_months <= MAX_AGE_MONTHS:
            raise ValidationError("warn_months", f"must be in (0, {MAX_AGE_MONTHS}]")
        self._reference_date = reference_date or date.today()
        self._warn_months = warn_months

    def check(self, candidates: list[Candidate]) -> RecencyOutcome:
        outcome = RecencyOutcome()

        for candidate in candidates:
            comp = candidate.comparable

            if comp.date > self._reference_date:
                outcome.excluded.append(ExcludedComparable(comp.id, "FUTURE_DATE"))
                outcome.warnings.append(ValuationWarning.create(
                    "FUTURE_DATE",
                    f"Dated {comp.date.isoformat()}, after {self._reference_date.isoformat()}",
                    comparable_id=comp.id,
                ))
                continue

            verdict = validate_comp_recency(
                comp.date, self._warn_months, self._reference_date
            )
            if not verdict.valid:
                outcome.stale_count += 1
                outcome.excluded.append(ExcludedComparable(comp.id, "STALE_COMPARABLE"))
                continue

            if verdict.warning:
                outcome.warnings.append(ValuationWarning.create(
                    "RECENCY", verdict.warning, comparable_id=comp.id
                ))
            outcome.retained.append(candidate)

        if outcome.stale_count:
            logger.info(
                "Excluded %d stale comparables (older than %d months)",
                outcome.stale_count,
                MAX_AGE_MONTHS,
            )
        return outcome

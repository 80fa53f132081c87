"""
Valuation Routes - Comparable search, import and valuation API

Errors raised by the engine (ValidationError, NoComparablesFound,
SubjectNotFound, ...) are mapped to HTTP responses by the handlers
registered in web.app.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from avm.comp_engine import CandidateFilter, SubjectRef, ValidationError, ValuationEngine
from avm.compsets import get_compset_repository
from avm.store import get_comparable_store
from avm.subject import get_subject_lookup
from utils.config import Config
from web.schemas import (
    CompSetValuationRequest,
    ImportRequest,
    SearchRequest,
    SubjectIn,
    ValuationRequest,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

router = APIRouter(prefix="/api", tags=["valuation"])


def _config(request: Request) -> Config:
    return request.app.state.config


def _engine(request: Request) -> ValuationEngine:
    return ValuationEngine(
        get_comparable_store(),
        warn_months=_config(request).recency_warn_months,
    )


def _resolve_subject(subject: Optional[SubjectIn], property_id: Optional[str]) -> SubjectRef:
    """Inline subject wins; otherwise look the property up."""
    if subject is not None:
        return subject.to_subject()
    if property_id:
        return get_subject_lookup().resolve_subject(property_id)
    raise ValidationError("subject", "provide either subject or property_id")


# =============================================================================
# Comparables
# =============================================================================


@router.post("/comparables/search")
async def search_comparables(body: SearchRequest):
    """One page of comparables matching the filters, nearest first when centred."""
    filters = body.filters.to_filters()
    subject = body.subject.to_subject() if body.subject else None
    page = CandidateFilter(get_comparable_store()).search(filters, subject)
    return page.to_dict()


@router.get("/comparables/{comp_id}")
async def get_comparable(comp_id: str):
    comp = get_comparable_store().get_comparable(comp_id)
    if comp is None:
        raise HTTPException(status_code=404, detail=f"Comparable {comp_id} not found")
    return comp.to_dict()


@router.post("/comparables/import")
async def import_comparables(body: ImportRequest):
    """Bulk import; rejected rows are reported, not fatal."""
    report = get_comparable_store().import_comparables(body.records)
    return report.to_dict()


# =============================================================================
# Valuations
# =============================================================================


@router.post("/valuations")
def value_subject(body: ValuationRequest, request: Request):
    """
    Value a subject against the comparable store.

    When the filters give no radius, the configured default radius is
    applied around the subject.
    """
    subject = _resolve_subject(body.subject, body.property_id)

    default_radius = None
    if body.filters.radius_km is None and (subject.has_coordinates or body.filters.lat is not None):
        default_radius = _config(request).default_radius_km

    result = _engine(request).score_comparables(
        subject,
        body.filters.to_filters(default_radius),
        body.rules.to_rules(),
        body.params.to_params(),
    )
    return result.to_dict()


@router.post("/valuations/compset/{set_id}")
def value_subject_with_compset(set_id: str, body: CompSetValuationRequest, request: Request):
    """Value a subject against a saved comp set."""
    subject = _resolve_subject(body.subject, body.property_id)
    comp_set = get_compset_repository(get_comparable_store()).get(set_id)

    result = _engine(request).score_comp_set(
        subject,
        comp_set,
        body.rules.to_rules(),
        body.params.to_params(),
    )
    return result.to_dict()


@router.get("/recency")
async def check_recency(
    request: Request,
    comp_date: date = Query(..., alias="date", description="Comparable date (YYYY-MM-DD)"),
    warn_months: Optional[float] = Query(None, description="Warning threshold in months"),
):
    """Freshness verdict for a single comparable date."""
    check = _engine(request).validate_comp_recency(comp_date, warn_months)
    return check.to_dict()

"""
CompSet Routes - Curated comp set API

Updates and deletes carry the version the client last read; a stale
version is answered with 409 and the current version, never overwritten.
Accepted writes land in the audit trail, attributed to the X-User header.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query

from avm.compsets import CompSetRepository, get_compset_repository
from avm.store import get_comparable_store
from web.schemas import CompSetCreate, CompSetUpdate


# =============================================================================
# Router Setup
# =============================================================================

router = APIRouter(prefix="/api/compsets", tags=["compsets"])


def _repository() -> CompSetRepository:
    return get_compset_repository(get_comparable_store())


@router.get("")
async def list_compsets(client: Optional[str] = Query(None, description="Only sets for this client")):
    repo = _repository()
    sets = repo.list_by_client(client) if client else repo.list_all()
    return {"data": [cs.to_dict() for cs in sets], "total": len(sets)}


@router.post("", status_code=201)
async def create_compset(body: CompSetCreate, x_user: Optional[str] = Header(None)):
    comp_set = _repository().create(
        name=body.name,
        comp_ids=body.comp_ids,
        client=body.client,
        notes=body.notes,
        is_default_for_avm=body.is_default_for_avm,
        user=x_user,
    )
    return comp_set.to_dict()


@router.get("/default")
async def get_default_compset(client: Optional[str] = Query(None)):
    """The set flagged as AVM default, optionally for one client."""
    comp_set = _repository().get_default_for_avm(client)
    if comp_set is None:
        raise HTTPException(status_code=404, detail="No default comp set")
    return comp_set.to_dict()


@router.get("/audit")
async def get_audit_trail(
    set_id: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
):
    """Recorded comp set writes, oldest first. Deleted sets keep their history."""
    events = _repository().get_audit_trail(set_id, date_from, date_to)
    return {"data": [e.to_dict() for e in events], "total": len(events)}


@router.get("/{set_id}")
async def get_compset(set_id: str):
    return _repository().get(set_id).to_dict()


@router.put("/{set_id}")
async def update_compset(set_id: str, body: CompSetUpdate, x_user: Optional[str] = Header(None)):
    comp_set = _repository().update(set_id, body.expected_version, user=x_user, **body.changes())
    return comp_set.to_dict()


@router.delete("/{set_id}")
async def delete_compset(
    set_id: str,
    expected_version: Optional[int] = Query(None, description="Version last read"),
    x_user: Optional[str] = Header(None),
):
    _repository().delete(set_id, expected_version, user=x_user)
    return {"deleted": set_id}

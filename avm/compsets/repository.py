"""
CompSet Repository - Versioned Storage for Curated Comp Sets

Every write is checked against the caller's expected version and the
version is incremented under the same lock, so concurrent edits surface
as Conflict instead of silently overwriting each other.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from avm.comp_engine.errors import CompSetNotFound, Conflict, ValidationError
from avm.compsets.schema import (
    UPDATABLE_FIELDS,
    AuditAction,
    AuditEvent,
    CompSet,
    generate_compset_id,
)
from avm.store.base import ComparableStore


logger = logging.getLogger(__name__)


# =============================================================================
# Repository
# =============================================================================


class CompSetRepository:
    """
    Repository for storing and retrieving comp sets.

    Uses in-memory storage with optional file persistence. Comp ids are
    checked against the comparable store on every write.
    """

    def __init__(self, store: ComparableStore, persist_path: Optional[str] = None):
        """
        Initialise repository.

        Args:
            store: Comparable store used to validate member ids
            persist_path: Optional path to persist data to a JSON file
        """
        self._store = store
        self._sets: dict[str, CompSet] = {}
        self._audit: list[AuditEvent] = []
        self._lock = threading.Lock()
        self._persist_path = Path(persist_path) if persist_path else None

        if self._persist_path and self._persist_path.exists():
            self._load_from_file()

    def _save_to_file(self) -> None:
        """Persist data to file. Caller holds the lock."""
        if not self._persist_path:
            return

        data = {
            "compsets": {set_id: cs.to_dict() for set_id, cs in self._sets.items()},
            "audit": [event.to_dict() for event in self._audit],
            "saved_at": datetime.utcnow().isoformat(),
        }

        self._persist_path.parent.mkdir(parents=True, exist_ok=True)
        self._persist_path.write_text(json.dumps(data, indent=2))

    def _load_from_file(self) -> None:
        """Load data from file."""
        try:
            data = json.loads(self._persist_path.read_text())
            for set_id, cs_data in data.get("compsets", {}).items():
                self._sets[set_id] = CompSet.from_dict(cs_data)
            self._audit = [AuditEvent.from_dict(e) for e in data.get("audit", [])]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Could not load comp sets from %s: %s", self._persist_path, e)

    def _record(
        self,
        action: AuditAction,
        comp_set: CompSet,
        user: Optional[str],
        payload: Optional[dict[str, Any]] = None,
    ) -> None:
        """Append an audit event. Caller holds the lock."""
        self._audit.append(AuditEvent(
            set_id=comp_set.id,
            action=action,
            version=comp_set.version,
            at=datetime.utcnow(),
            user=user,
            payload=payload or {},
        ))

    def _check_members(self, comp_ids: Iterable[str]) -> None:
        missing = [i for i in comp_ids if self._store.get_comparable(i) is None]
        if missing:
            raise ValidationError("comp_ids", f"unknown comparables: {', '.join(missing)}")

    # =========================================================================
    # CRUD Operations
    # =========================================================================

    def create(
        self,
        name: str,
        comp_ids: Iterable[str],
        client: Optional[str] = None,
        notes: Optional[str] = None,
        is_default_for_avm: bool = False,
        user: Optional[str] = None,
    ) -> CompSet:
        """
        Create a new comp set at version 1.

        Raises:
            ValidationError: if the set is invalid or references unknown comparables
        """
        draft = CompSet(
            name=name,
            comp_ids=tuple(comp_ids),
            client=client,
            notes=notes,
            is_default_for_avm=is_default_for_avm,
        )
        self._check_members(draft.comp_ids)

        now = datetime.utcnow()
        comp_set = dataclasses.replace(
            draft,
            id=generate_compset_id(),
            version=1,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._sets[comp_set.id] = comp_set
            self._record(AuditAction.CREATED, comp_set, user, {
                "name": comp_set.name,
                "comp_ids": list(comp_set.comp_ids),
                "client": comp_set.client,
            })
            self._save_to_file()

        logger.info("Created comp set %s with %d comparables", comp_set.id, comp_set.size)
        return comp_set

    def get(self, set_id: str) -> CompSet:
        """
        Get a comp set by id.

        Raises:
            CompSetNotFound: if the id is unknown
        """
        with self._lock:
            comp_set = self._sets.get(set_id)
        if comp_set is None:
            raise CompSetNotFound(set_id)
        return comp_set

    def update(
        self,
        set_id: str,
        expected_version: int,
        user: Optional[str] = None,
        **changes: Any,
    ) -> CompSet:
        """
        Apply changes if the stored version still matches.

        Args:
            set_id: Comp set id
            expected_version: Version the caller last read
            user: Who made the change, for the audit trail
            **changes: Any of name, comp_ids, client, notes, is_default_for_avm

        Returns:
            Updated CompSet at expected_version + 1

        Raises:
            CompSetNotFound: if the id is unknown
            Conflict: if the stored version differs from expected_version
            ValidationError: if the changes are invalid
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(", ".join(sorted(unknown)), "cannot be updated")
        if "comp_ids" in changes:
            changes["comp_ids"] = tuple(changes["comp_ids"] or ())
            self._check_members(changes["comp_ids"])

        with self._lock:
            current = self._sets.get(set_id)
            if current is None:
                raise CompSetNotFound(set_id)
            if current.version != expected_version:
                logger.warning(
                    "Rejected stale write to comp set %s (expected v%d, at v%d)",
                    set_id, expected_version, current.version,
                )
                raise Conflict(set_id, expected_version, current.version)

            updated = dataclasses.replace(
                current,
                **changes,
                version=current.version + 1,
                updated_at=datetime.utcnow(),
            )
            self._sets[set_id] = updated
            self._record(AuditAction.UPDATED, updated, user, _diff(current, updated))
            self._save_to_file()

        logger.info("Updated comp set %s to version %d", set_id, updated.version)
        return updated

    def save(self, comp_set: CompSet, user: Optional[str] = None) -> CompSet:
        """
        Create the set when it has no id, otherwise update it using its
        version as the expected version.
        """
        if comp_set.id is None:
            return self.create(
                name=comp_set.name,
                comp_ids=comp_set.comp_ids,
                client=comp_set.client,
                notes=comp_set.notes,
                is_default_for_avm=comp_set.is_default_for_avm,
                user=user,
            )
        return self.update(
            comp_set.id,
            comp_set.version,
            user=user,
            name=comp_set.name,
            comp_ids=comp_set.comp_ids,
            client=comp_set.client,
            notes=comp_set.notes,
            is_default_for_avm=comp_set.is_default_for_avm,
        )

    def save_comp_set(self, comp_set: CompSet, user: Optional[str] = None) -> str:
        """Save a comp set and return its id."""
        return self.save(comp_set, user).id

    def delete(
        self,
        set_id: str,
        expected_version: Optional[int] = None,
        user: Optional[str] = None,
    ) -> None:
        """
        Delete a comp set.

        Raises:
            CompSetNotFound: if the id is unknown
            Conflict: if expected_version is given and does not match
        """
        with self._lock:
            current = self._sets.get(set_id)
            if current is None:
                raise CompSetNotFound(set_id)
            if expected_version is not None and current.version != expected_version:
                raise Conflict(set_id, expected_version, current.version)
            del self._sets[set_id]
            self._record(AuditAction.DELETED, current, user)
            self._save_to_file()

        logger.info("Deleted comp set %s", set_id)

    # =========================================================================
    # Query Operations
    # =========================================================================

    def list_all(self) -> list[CompSet]:
        """All comp sets, most recently updated first."""
        with self._lock:
            sets = list(self._sets.values())
        return sorted(sets, key=lambda cs: (cs.updated_at or datetime.min, cs.id), reverse=True)

    def list_by_client(self, client: str) -> list[CompSet]:
        return [cs for cs in self.list_all() if cs.client == client]

    def get_default_for_avm(self, client: Optional[str] = None) -> Optional[CompSet]:
        """Most recently updated set flagged as AVM default, optionally for one client."""
        for comp_set in self.list_all():
            if comp_set.is_default_for_avm and (client is None or comp_set.client == client):
                return comp_set
        return None

    def count(self) -> int:
        with self._lock:
            return len(self._sets)

    def get_audit_trail(
        self,
        set_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[AuditEvent]:
        """
        Recorded writes, oldest first.

        Events of deleted sets are kept. Date bounds are inclusive and
        compare the event's calendar day.
        """
        with self._lock:
            events = list(self._audit)
        return [
            e for e in events
            if (set_id is None or e.set_id == set_id)
            and (date_from is None or e.at.date() >= date_from)
            and (date_to is None or e.at.date() <= date_to)
        ]


def _diff(before: CompSet, after: CompSet) -> dict[str, Any]:
    """Changed fields with their new values, plus added/removed members."""
    payload: dict[str, Any] = {}
    for name in sorted(UPDATABLE_FIELDS):
        old, new = getattr(before, name), getattr(after, name)
        if old != new:
            payload[name] = list(new) if name == "comp_ids" else new
    if "comp_ids" in payload:
        payload["added"] = [i for i in after.comp_ids if i not in before.comp_ids]
        payload["removed"] = [i for i in before.comp_ids if i not in after.comp_ids]
    return payload


# =============================================================================
# Singleton Instance
# =============================================================================

_repository_instance: Optional[CompSetRepository] = None


def get_compset_repository(
    store: ComparableStore,
    persist_path: Optional[str] = None,
) -> CompSetRepository:
    """
    Get the comp set repository singleton.

    Args:
        store: Comparable store (only used on first call)
        persist_path: Optional path for persistence (only used on first call)

    Returns:
        CompSetRepository instance
    """
    global _repository_instance
    if _repository_instance is None:
        _repository_instance = CompSetRepository(store, persist_path)
    return _repository_instance


def reset_compset_repository() -> None:
    """Drop the singleton so the next get_compset_repository() starts fresh."""
    global _repository_instance
    _repository_instance = None

"""
CompSet Schema - Named, Curated Collections of Comparables

A CompSet outlives any single valuation run. Sets are not required to be
disjoint; the same comparable may appear in many sets.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Final, Optional

from avm.comp_engine.errors import ValidationError


MAX_NAME_LENGTH: Final[int] = 200


def generate_compset_id() -> str:
    """Format: cs-{12 hex chars}"""
    return f"cs-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class CompSet:
    """
    A curated comp set.

    Invariants:
        - name is non-empty
        - comp_ids holds at least one id, without duplicates (first occurrence kept)
        - version starts at 1 and increases by one on every accepted write
    """

    name: str
    comp_ids: tuple[str, ...]
    client: Optional[str] = None
    notes: Optional[str] = None
    is_default_for_avm: bool = False

    id: Optional[str] = None
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        name = (self.name or "").strip()
        if not name:
            raise ValidationError("name", "is required")
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError("name", f"must be at most {MAX_NAME_LENGTH} characters")
        object.__setattr__(self, "name", name)

        ids = tuple(dict.fromkeys(str(i).strip() for i in self.comp_ids or ()))
        if not ids or any(not i for i in ids):
            raise ValidationError("comp_ids", "must contain at least one non-empty id")
        object.__setattr__(self, "comp_ids", ids)

        if self.version < 0:
            raise ValidationError("version", "cannot be negative")

    @property
    def size(self) -> int:
        return len(self.comp_ids)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialisation."""
        return {
            "id": self.id,
            "name": self.name,
            "comp_ids": list(self.comp_ids),
            "client": self.client,
            "notes": self.notes,
            "is_default_for_avm": self.is_default_for_avm,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompSet":
        """Create from dictionary."""
        created_at = data.get("created_at")
        updated_at = data.get("updated_at")
        return cls(
            id=data.get("id"),
            name=data["name"],
            comp_ids=tuple(data.get("comp_ids") or ()),
            client=data.get("client"),
            notes=data.get("notes"),
            is_default_for_avm=bool(data.get("is_default_for_avm", False)),
            version=data.get("version", 0),
            created_at=datetime.fromisoformat(created_at) if created_at else None,
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )


# Fields a versioned update may change
UPDATABLE_FIELDS: Final[frozenset[str]] = frozenset(
    {"name", "comp_ids", "client", "notes", "is_default_for_avm"}
)


# =============================================================================
# Audit Trail
# =============================================================================


class AuditAction(Enum):
    """Kinds of comp set writes recorded in the audit trail."""
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"


def generate_audit_id() -> str:
    """Format: audit-{12 hex chars}"""
    return f"audit-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class AuditEvent:
    """
    One accepted comp set write.

    payload holds the changed fields; when members change it also lists
    the comparables added and removed (excluded) by that write.
    """

    set_id: str
    action: AuditAction
    version: int
    at: datetime
    user: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=generate_audit_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "set_id": self.set_id,
            "action": self.action.value,
            "version": self.version,
            "at": self.at.isoformat(),
            "user": self.user,
            "payload": dict(self.payload),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditEvent":
        return cls(
            id=data["id"],
            set_id=data["set_id"],
            action=AuditAction(data["action"]),
            version=int(data["version"]),
            at=datetime.fromisoformat(data["at"]),
            user=data.get("user"),
            payload=dict(data.get("payload") or {}),
        )

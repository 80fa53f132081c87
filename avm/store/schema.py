"""
Comparable import schema.

Validates raw records (JSON objects from a portal feed, registry extract
or manual entry) into Comparable instances. Every rejection is a
ValidationError carrying the offending field and the violated constraint.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Final, Optional

from avm.comp_engine.errors import ValidationError
from avm.comp_engine.models import Comparable, PropertyType, Source


# Fields accepted on import; anything else in a record is ignored
IMPORT_FIELDS: Final[tuple[str, ...]] = (
    "ref",
    "date",
    "lat",
    "lng",
    "price",
    "sqm",
    "rooms",
    "baths",
    "floor",
    "elevator",
    "terrace",
    "parking",
    "condition",
    "property_type",
    "building_year",
    "source",
    "address",
    "photos",
)

REQUIRED_FIELDS: Final[tuple[str, ...]] = ("date", "lat", "lng", "price", "sqm")


def generate_comparable_id(record: dict[str, Any]) -> str:
    """
    Deterministic comparable id.

    Keyed on the external ref when present so re-imports of the same
    record land on the same id; otherwise on the transaction identity.

    Format: cmp-{hash}
    """
    ref = record.get("ref")
    if ref:
        identity = f"ref:{ref}"
    else:
        identity = "|".join(
            str(record.get(key)) for key in ("date", "lat", "lng", "price", "sqm", "address")
        )
    return f"cmp-{hashlib.sha256(identity.encode()).hexdigest()[:12]}"


def _number(record: dict[str, Any], key: str, required: bool = False) -> Optional[float]:
    value = record.get(key)
    if value is None:
        if required:
            raise ValidationError(key, "is required")
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(key, "must be a number")
    return float(value)


def _integer(record: dict[str, Any], key: str) -> Optional[int]:
    value = record.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise ValidationError(key, "must be an integer")
    return int(value)


def _boolean(record: dict[str, Any], key: str) -> Optional[bool]:
    value = record.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValidationError(key, "must be true or false")
    return value


def _text(record: dict[str, Any], key: str) -> Optional[str]:
    value = record.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(key, "must be a string")
    return value.strip() or None


def _parse_date(value: Any) -> date:
    if value is None:
        raise ValidationError("date", "is required")
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            pass
    raise ValidationError("date", "must be an ISO-8601 date (YYYY-MM-DD)")


def parse_comparable(record: dict[str, Any], comp_id: str, version: int = 1) -> Comparable:
    """
    Validate a raw import record into a Comparable.

    Args:
        record: Raw record with the IMPORT_FIELDS keys
        comp_id: Id to assign
        version: Version number to assign

    Returns:
        Validated Comparable

    Raises:
        ValidationError: on the first violated constraint
    """
    if not isinstance(record, dict):
        raise ValidationError("record", "must be an object")

    property_type = None
    raw_type = _text(record, "property_type")
    if raw_type:
        property_type = PropertyType.from_string(raw_type)
        if property_type is None:
            raise ValidationError(
                "property_type",
                f"must be one of {', '.join(t.value for t in PropertyType)}",
            )

    source = Source.PORTAL
    raw_source = _text(record, "source")
    if raw_source:
        source = Source.from_string(raw_source)
        if source is None:
            raise ValidationError(
                "source", f"must be one of {', '.join(s.value for s in Source)}"
            )

    photos = record.get("photos") or []
    if not isinstance(photos, list) or not all(isinstance(p, str) for p in photos):
        raise ValidationError("photos", "must be a list of strings")

    terrace_key = "terrace" if "terrace" in record else "terrace_sqm"

    return Comparable(
        id=comp_id,
        ref=_text(record, "ref"),
        date=_parse_date(record.get("date")),
        latitude=_number(record, "lat", required=True),
        longitude=_number(record, "lng", required=True),
        price=_number(record, "price", required=True),
        sqm=_number(record, "sqm", required=True),
        rooms=_integer(record, "rooms"),
        baths=_integer(record, "baths"),
        floor=_integer(record, "floor"),
        elevator=_boolean(record, "elevator"),
        terrace_sqm=_number(record, terrace_key),
        parking=_boolean(record, "parking"),
        condition=_text(record, "condition"),
        property_type=property_type,
        building_year=_integer(record, "building_year"),
        source=source,
        address=_text(record, "address"),
        photos=tuple(photos),
        version=version,
    )


# =============================================================================
# Bulk Import Reporting
# =============================================================================


@dataclass(frozen=True)
class RowError:
    """A rejected import row."""

    row: int
    message: str
    field: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row, "field": self.field, "message": self.message}


@dataclass
class ImportReport:
    """Outcome of a bulk import. Rows are 0-based positions in the input."""

    imported: list[Comparable] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)

    @property
    def imported_count(self) -> int:
        return len(self.imported)

    @property
    def rejected_count(self) -> int:
        return len(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "imported": self.imported_count,
            "rejected": self.rejected_count,
            "ids": [c.id for c in self.imported],
            "errors": [e.to_dict() for e in self.errors],
        }

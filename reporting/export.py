"""
Comparable export.

Renders comparables as CSV, JSON or GeoJSON. When a ValuationResult is
supplied, each row also carries the comparable's normalized price,
weight, quality grade and outlier flag from that run.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from enum import Enum
from typing import Any, Final, Iterable, Optional, Union

from avm.comp_engine import Comparable, ValidationError, ValuationResult


logger = logging.getLogger(__name__)


class ExportFormat(Enum):
    CSV = "CSV"
    JSON = "JSON"
    GEOJSON = "GEOJSON"

    @classmethod
    def from_string(cls, value: str) -> "ExportFormat":
        normalised = value.upper().strip()
        for member in cls:
            if member.value == normalised:
                return member
        raise ValidationError("format", f"must be one of {', '.join(m.value for m in cls)}")


CSV_COLUMNS: Final[tuple[str, ...]] = (
    "id",
    "ref",
    "date",
    "lat",
    "lng",
    "address",
    "price",
    "sqm",
    "ppsqm",
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
    "version",
)

VALUATION_COLUMNS: Final[tuple[str, ...]] = (
    "distance_m",
    "normalized_price",
    "weight",
    "quality",
    "outlier",
)


def _rows(comparables: Iterable[Comparable], result: Optional[ValuationResult]) -> list[dict[str, Any]]:
    scored = {s.comparable.id: s for s in result.comparables} if result else {}
    rows = []
    for comp in comparables:
        row = comp.to_dict()
        row.pop("photos", None)
        if result is not None:
            entry = scored.get(comp.id)
            row["distance_m"] = round(entry.distance_m, 1) if entry and entry.distance_m is not None else None
            row["normalized_price"] = round(entry.normalized_price, 2) if entry else None
            row["weight"] = round(entry.weight, 6) if entry else None
            row["quality"] = entry.quality if entry else None
            row["outlier"] = entry.outlier if entry else None
        rows.append(row)
    return rows


def _to_csv(rows: list[dict[str, Any]], with_valuation: bool) -> str:
    columns = CSV_COLUMNS + (VALUATION_COLUMNS if with_valuation else ())
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({k: "" if row.get(k) is None else row.get(k) for k in columns})
    return buffer.getvalue()


def _to_geojson(rows: list[dict[str, Any]]) -> str:
    features = []
    for row in rows:
        properties = {k: v for k, v in row.items() if k not in ("lat", "lng")}
        features.append({
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [row["lng"], row["lat"]]},
            "properties": properties,
        })
    return json.dumps({"type": "FeatureCollection", "features": features}, indent=2)


def export_comparables(
    comparables: Iterable[Comparable],
    fmt: Union[ExportFormat, str] = ExportFormat.CSV,
    result: Optional[ValuationResult] = None,
) -> str:
    """
    Render comparables in the requested format.

    Args:
        comparables: Comparables to export, in output order
        fmt: CSV, JSON or GEOJSON
        result: Optional valuation run whose per-comparable figures to include

    Returns:
        The rendered document as a string

    Raises:
        ValidationError: if the format is unknown
    """
    if isinstance(fmt, str):
        fmt = ExportFormat.from_string(fmt)

    rows = _rows(comparables, result)
    logger.debug("Exporting %d comparables as %s", len(rows), fmt.value)

    if fmt == ExportFormat.CSV:
        return _to_csv(rows, with_valuation=result is not None)
    if fmt == ExportFormat.GEOJSON:
        return _to_geojson(rows)
    return json.dumps(rows, indent=2)


def export_result(result: ValuationResult, fmt: Union[ExportFormat, str] = ExportFormat.CSV) -> str:
    """Export the comparables used in a valuation, with their run figures."""
    return export_comparables([s.comparable for s in result.comparables], fmt, result)

#!/usr/bin/env python3
"""
CLI for running valuations and exporting comparables.

Usage:
    python -m reporting.cli value <request_json> [--comparables FILE] [--json]
    python -m reporting.cli recency <YYYY-MM-DD> [--warn-months N]
    python -m reporting.cli export <comparables_json> --format csv|json|geojson

Examples:
    # Value a subject against comparables listed in the request file
    python -m reporting.cli value requests/flat_madrid.json

    # Check whether a comparable dated 2024-01-15 is still usable
    python -m reporting.cli recency 2024-01-15 --warn-months 6

    # Export a comparables file as GeoJSON
    python -m reporting.cli export data/comps.json --format geojson -o comps.geojson
"""

import argparse
import json
import sys
from datetime import date
from pathlib import Path
from typing import Optional

from avm.comp_engine import CompEngineError, ValuationEngine, ValuationResult
from avm.store import InMemoryComparableStore
from reporting.export import export_comparables, export_result
from utils.config import Config
from utils.formatting import format_currency, format_distance, format_percent, format_sqm
from utils.logging_config import configure_logging
from web.schemas import ValuationRequest


def _load_json(path_str: str):
    """Read a JSON file, printing the problem and returning None on failure."""
    path = Path(path_str)
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        return None
    try:
        with open(path, "r") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON: {e}", file=sys.stderr)
        return None


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def load_store(records: list, persist_path: Optional[str] = None) -> InMemoryComparableStore:
    """Build a store from raw records, reporting rejected rows on stderr."""
    store = InMemoryComparableStore(persist_path)
    report = store.import_comparables(records)
    for error in report.errors:
        print(f"Warning: row {error.row} rejected: {error.message}", file=sys.stderr)
    return store


def print_summary(result: ValuationResult) -> None:
    """Human-readable valuation summary."""
    print(f"Point estimate:   {format_currency(result.point_estimate)}")
    print(
        f"Confidence band:  {format_currency(result.confidence_low)} - "
        f"{format_currency(result.confidence_high)}"
    )
    print(f"Method:           {result.method.value} / {result.aggregation.value}")
    print(
        f"Comparables:      {result.comps_used} used, "
        f"{result.candidates_considered} considered, {result.stale_excluded} stale"
    )
    if result.low_confidence:
        print("Low confidence:   fewer than 3 comparables")

    total_weight = sum(s.weight for s in result.comparables) or 1.0
    print()
    for scored in result.comparables:
        comp = scored.comparable
        print(
            f"  {comp.id}  {format_sqm(comp.sqm):>7}  {format_currency(comp.price):>12} -> "
            f"{format_currency(scored.normalized_price):>12}  "
            f"weight {format_percent(100 * scored.weight / total_weight):>6}  "
            f"{format_distance(scored.distance_m):>8}  grade {scored.quality}"
            f"{'  OUTLIER' if scored.outlier else ''}"
        )

    if result.warnings:
        print()
        for warning in result.warnings:
            target = f" [{warning.comparable_id}]" if warning.comparable_id else ""
            print(f"  ! {warning.code}{target}: {warning.message}")


def cmd_value(args):
    """Run a valuation from a JSON request file."""
    data = _load_json(args.request_file)
    if data is None:
        return 1

    config = Config.load()
    records = data.pop("comparables", None)
    if args.comparables:
        records = _load_json(args.comparables)
        if records is None:
            return 1

    try:
        request = ValuationRequest.model_validate(data)
        if request.subject is None:
            print("Error: request must include an inline subject", file=sys.stderr)
            return 1

        if records is not None:
            store = load_store(records)
        else:
            store = InMemoryComparableStore(config.comparables_path)

        engine = ValuationEngine(
            store,
            reference_date=_parse_date(args.reference_date),
            warn_months=config.recency_warn_months,
        )
        result = engine.score_comparables(
            request.subject.to_subject(),
            request.filters.to_filters(),
            request.rules.to_rules(),
            request.params.to_params(),
        )
    except (CompEngineError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    elif args.format:
        print(export_result(result, args.format), end="")
    else:
        print_summary(result)
    return 0


def cmd_recency(args):
    """Check the freshness of one comparable date."""
    try:
        engine = ValuationEngine(
            InMemoryComparableStore(),
            reference_date=_parse_date(args.reference_date),
        )
        check = engine.validate_comp_recency(date.fromisoformat(args.date), args.warn_months)
    except (CompEngineError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(check.to_dict(), indent=2))
    return 0 if check.valid else 2


def cmd_export(args):
    """Export a comparables file as CSV, JSON or GeoJSON."""
    records = _load_json(args.comparables_file)
    if records is None:
        return 1
    if not isinstance(records, list):
        print("Error: comparables file must contain a JSON list", file=sys.stderr)
        return 1

    try:
        store = load_store(records)
        output = export_comparables(store.list_all(), args.format)
    except CompEngineError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.output:
        Path(args.output).write_text(output)
        print(f"Exported {store.count()} comparables to {args.output}")
    else:
        print(output, end="")
    return 0


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Comparable Valuation Engine - command line tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m reporting.cli value requests/flat_madrid.json
    python -m reporting.cli recency 2024-01-15 --warn-months 6
    python -m reporting.cli export data/comps.json --format geojson
        """,
    )
    parser.add_argument("--log-level", default=None, help="Override AVM_LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Value command
    value_parser = subparsers.add_parser(
        "value",
        help="Value a subject from a JSON request (subject, filters, rules, params)",
    )
    value_parser.add_argument("request_file", help="Path to JSON valuation request")
    value_parser.add_argument(
        "--comparables",
        help="JSON list of comparable records (default: request 'comparables' or the data store)",
    )
    value_parser.add_argument("--reference-date", help="Value as of this date (YYYY-MM-DD)")
    value_output = value_parser.add_mutually_exclusive_group()
    value_output.add_argument("--json", action="store_true", help="Print the full result as JSON")
    value_output.add_argument(
        "--format",
        choices=["csv", "json", "geojson"],
        help="Export the comparables used, with their normalized prices and weights",
    )
    value_parser.set_defaults(func=cmd_value)

    # Recency command
    recency_parser = subparsers.add_parser(
        "recency",
        help="Check whether a comparable date is still usable",
    )
    recency_parser.add_argument("date", help="Comparable date (YYYY-MM-DD)")
    recency_parser.add_argument("--warn-months", type=float, default=None, help="Warning threshold")
    recency_parser.add_argument("--reference-date", help="Age as of this date (YYYY-MM-DD)")
    recency_parser.set_defaults(func=cmd_recency)

    # Export command
    export_parser = subparsers.add_parser(
        "export",
        help="Export a comparables file",
    )
    export_parser.add_argument("comparables_file", help="JSON list of comparable records")
    export_parser.add_argument(
        "--format",
        choices=["csv", "json", "geojson"],
        default="csv",
        help="Output format (default: csv)",
    )
    export_parser.add_argument("-o", "--output", help="Write to file instead of stdout")
    export_parser.set_defaults(func=cmd_export)

    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

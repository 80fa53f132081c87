"""
Tests for the command line tools.
"""

import csv
import io
import json

import pytest

from conftest import BASE_LAT, BASE_LNG, north_of
from reporting.cli import main
from utils.formatting import format_currency, format_distance, format_sqm


def comparable_record(ref, metres_north, price):
    return {
        "ref": ref,
        "date": "2024-04-01",
        "lat": north_of(metres_north),
        "lng": BASE_LNG,
        "price": price,
        "sqm": 90,
        "rooms": 3,
        "floor": 2,
    }


@pytest.fixture
def records():
    return [
        comparable_record("a", 100, 300000),
        comparable_record("b", 200, 310000),
        comparable_record("c", 300, 320000),
    ]


@pytest.fixture
def request_file(tmp_path, records):
    path = tmp_path / "request.json"
    path.write_text(json.dumps({
        "subject": {"sqm": 90, "rooms": 3, "floor": 2, "lat": BASE_LAT, "lng": BASE_LNG},
        "rules": {"sqm_rule": "LINEAR"},
        "comparables": records,
    }))
    return path


class TestValueCommand:
    def test_json_output(self, request_file, capsys):
        exit_code = main(["value", str(request_file), "--reference-date", "2024-06-01", "--json"])

        assert exit_code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["comps_used"] == 3
        assert data["point_estimate"] == pytest.approx(310000, rel=0.01)

    def test_summary_output(self, request_file, capsys):
        exit_code = main(["value", str(request_file), "--reference-date", "2024-06-01"])

        out = capsys.readouterr().out
        assert exit_code == 0
        assert "Point estimate:" in out
        assert "3 used" in out

    def test_export_used_comparables(self, request_file, capsys):
        main(["value", str(request_file), "--reference-date", "2024-06-01", "--format", "csv"])

        rows = list(csv.DictReader(io.StringIO(capsys.readouterr().out)))
        assert len(rows) == 3
        assert all(row["weight"] for row in rows)

    def test_all_stale(self, request_file, capsys):
        exit_code = main(["value", str(request_file), "--reference-date", "2027-01-01"])

        assert exit_code == 1
        assert "No comparables left" in capsys.readouterr().err

    def test_missing_file(self, tmp_path, capsys):
        assert main(["value", str(tmp_path / "nope.json")]) == 1
        assert "File not found" in capsys.readouterr().err


class TestRecencyCommand:
    def test_valid(self, capsys):
        exit_code = main(["recency", "2023-05-01", "--reference-date", "2024-06-01"])

        data = json.loads(capsys.readouterr().out)
        assert exit_code == 0
        assert data["valid"] is True
        assert "warning" in data

    def test_stale_exit_code(self, capsys):
        assert main(["recency", "2022-05-01", "--reference-date", "2024-06-01"]) == 2

    def test_bad_threshold(self, capsys):
        assert main(["recency", "2024-01-01", "--warn-months", "40"]) == 1


class TestExportCommand:
    def test_geojson_to_file(self, tmp_path, records, capsys):
        source = tmp_path / "comps.json"
        source.write_text(json.dumps(records + [{"ref": "broken"}]))
        target = tmp_path / "comps.geojson"

        exit_code = main(["export", str(source), "--format", "geojson", "-o", str(target)])

        assert exit_code == 0
        data = json.loads(target.read_text())
        assert len(data["features"]) == 3
        assert "row 3 rejected" in capsys.readouterr().err


class TestFormatting:
    def test_currency(self):
        assert format_currency(234250.4) == "€234,250"
        assert format_currency(-1500, "GBP") == "-£1,500"

    def test_distance(self):
        assert format_distance(None) == "-"
        assert format_distance(420.4) == "420 m"
        assert format_distance(1530) == "1.5 km"

    def test_sqm(self):
        assert format_sqm(82.4) == "82 m²"

"""
API tests for the valuation service.

Runs the FastAPI app in-process with isolated singletons and a temporary
data directory.
"""

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from avm.comp_engine import SubjectRef
from avm.compsets import reset_compset_repository
from avm.store import reset_comparable_store
from avm.subject import get_subject_lookup, reset_subject_lookup
from conftest import BASE_LAT, BASE_LNG, north_of
from utils.config import Config
from web.app import create_app


def days_ago(days: int) -> str:
    return (date.today() - timedelta(days=days)).isoformat()


def record(ref: str, metres_north: float, price: float, **extra) -> dict:
    data = {
        "ref": ref,
        "date": days_ago(45),
        "lat": north_of(metres_north),
        "lng": BASE_LNG,
        "price": price,
        "sqm": 90,
        "rooms": 3,
        "baths": 2,
        "floor": 2,
        "elevator": True,
        "condition": "GOOD",
        "property_type": "apartment",
        "address": f"Calle {ref} 1",
    }
    data.update(extra)
    return data


SUBJECT = {
    "sqm": 90,
    "rooms": 3,
    "baths": 2,
    "floor": 2,
    "elevator": True,
    "condition": "GOOD",
    "lat": BASE_LAT,
    "lng": BASE_LNG,
}

RULES = {
    "sqm_rule": "linear",
    "state_factors": {"GOOD": 1.0, "TO_REFORM": 0.85},
    "floor_bonus": 2000,
    "elevator_factor": 1.05,
}


@pytest.fixture
def client(tmp_path):
    reset_comparable_store()
    reset_compset_repository()
    reset_subject_lookup()
    app = create_app(Config(data_dir=str(tmp_path)))
    yield TestClient(app)
    reset_comparable_store()
    reset_compset_repository()
    reset_subject_lookup()


@pytest.fixture
def seeded(client):
    """Four comparables within 1 km of the subject and one 30 km away."""
    records = [
        record("a", 100, 300000),
        record("b", 250, 306000),
        record("c", 400, 312000),
        record("d", 700, 318000),
        record("far", 30000, 150000),
    ]
    response = client.post("/api/comparables/import", json={"records": records})
    assert response.status_code == 200
    return response.json()["ids"]


# =============================================================================
# Test: Health and Import
# =============================================================================


class TestHealth:
    def test_endpoints(self, client):
        assert client.get("/").json() == {"status": "ok"}
        assert client.get("/health").json() == {"status": "healthy"}

        data = client.get("/api/health").json()
        assert data["status"] == "healthy"
        assert data["comparables"] == 0


class TestComparables:
    def test_import_reports_rejected_rows(self, client):
        response = client.post("/api/comparables/import", json={"records": [
            record("ok", 100, 300000),
            record("bad", 100, -1),
        ]})

        data = response.json()
        assert data["imported"] == 1
        assert data["rejected"] == 1
        assert data["errors"][0]["row"] == 1
        assert data["errors"][0]["field"] == "price"

    def test_get_comparable(self, client, seeded):
        response = client.get(f"/api/comparables/{seeded[0]}")

        assert response.status_code == 200
        assert response.json()["price"] == 300000

    def test_unknown_comparable(self, client):
        assert client.get("/api/comparables/cmp-missing").status_code == 404

    def test_search_sorted_by_distance(self, client, seeded):
        response = client.post("/api/comparables/search", json={
            "filters": {"lat": BASE_LAT, "lng": BASE_LNG, "radius_km": 1, "size": 3},
        })

        data = response.json()
        assert data["total"] == 4
        assert data["pages"] == 2
        assert [row["ref"] for row in data["data"]] == ["a", "b", "c"]

    def test_search_invalid_filter(self, client):
        response = client.post("/api/comparables/search", json={
            "filters": {"lat": BASE_LAT, "lng": BASE_LNG, "radius_km": 12},
        })

        assert response.status_code == 422
        assert response.json()["field"] == "radius_km"


# =============================================================================
# Test: Valuations
# =============================================================================


class TestValuations:
    def test_value_inline_subject(self, client, seeded):
        response = client.post("/api/valuations", json={"subject": SUBJECT, "rules": RULES})

        assert response.status_code == 200
        data = response.json()
        assert data["comps_used"] == 4
        assert data["method"] == "COSINE"
        band = data["confidence_band"]
        assert band["low"] <= data["point_estimate"] <= band["high"]
        assert 300000 <= data["point_estimate"] <= 320000

    def test_value_with_knn(self, client, seeded):
        response = client.post("/api/valuations", json={
            "subject": SUBJECT,
            "rules": RULES,
            "params": {"method": "knn", "k": 3, "aggregation": "weighted_mean"},
        })

        data = response.json()
        assert data["comps_used"] == 3
        assert {e["reason"] for e in data["excluded"]} == {"BEYOND_K"}

    def test_value_by_property_id(self, client, seeded):
        get_subject_lookup().register(
            "prop-1", SubjectRef(sqm=90, floor=2, latitude=BASE_LAT, longitude=BASE_LNG)
        )

        response = client.post("/api/valuations", json={"property_id": "prop-1", "rules": RULES})

        assert response.status_code == 200
        assert response.json()["comps_used"] == 4

    def test_unknown_property_id(self, client, seeded):
        response = client.post("/api/valuations", json={"property_id": "prop-missing"})

        assert response.status_code == 404

    def test_missing_subject(self, client, seeded):
        response = client.post("/api/valuations", json={"rules": RULES})

        assert response.status_code == 422
        assert response.json()["field"] == "subject"

    def test_no_comparables_asks_to_relax_filters(self, client, seeded):
        lonely = dict(SUBJECT, lat=41.3851, lng=2.1734)

        response = client.post("/api/valuations", json={"subject": lonely, "rules": RULES})

        assert response.status_code == 404
        data = response.json()
        assert "Relax the search filters" in data["detail"]
        assert data["candidates_considered"] == 0

    def test_invalid_score_params(self, client, seeded):
        response = client.post("/api/valuations", json={
            "subject": SUBJECT,
            "params": {"method": "KNN", "k": 1},
        })

        assert response.status_code == 422
        assert response.json()["field"] == "k"

    def test_unknown_method(self, client, seeded):
        response = client.post("/api/valuations", json={
            "subject": SUBJECT,
            "params": {"method": "random-forest"},
        })

        assert response.status_code == 422
        assert response.json()["field"] == "method"

    @pytest.mark.parametrize("field", ["method", "aggregation"])
    def test_blank_method_or_aggregation(self, client, seeded, field):
        response = client.post("/api/valuations", json={
            "subject": SUBJECT,
            "rules": RULES,
            "params": {field: ""},
        })

        assert response.status_code == 422
        assert response.json()["field"] == field

    def test_malformed_body(self, client):
        response = client.post("/api/valuations", json={"subject": {"rooms": 3}})

        assert response.status_code == 422


# =============================================================================
# Test: Comp Sets
# =============================================================================


class TestCompSets:
    def test_lifecycle(self, client, seeded):
        created = client.post("/api/compsets", json={
            "name": "Sol",
            "comp_ids": seeded[:2],
            "client": "bank-a",
            "is_default_for_avm": True,
        })
        assert created.status_code == 201
        comp_set = created.json()
        assert comp_set["version"] == 1

        updated = client.put(f"/api/compsets/{comp_set['id']}", json={
            "expected_version": 1,
            "comp_ids": seeded[:3],
        })
        assert updated.status_code == 200
        assert updated.json()["version"] == 2
        assert updated.json()["name"] == "Sol"

        stale = client.put(f"/api/compsets/{comp_set['id']}", json={
            "expected_version": 1,
            "name": "Lost",
        })
        assert stale.status_code == 409
        assert stale.json()["actual_version"] == 2

        default = client.get("/api/compsets/default", params={"client": "bank-a"})
        assert default.json()["id"] == comp_set["id"]

        listed = client.get("/api/compsets", params={"client": "bank-a"}).json()
        assert listed["total"] == 1

        deleted = client.delete(f"/api/compsets/{comp_set['id']}", params={"expected_version": 2})
        assert deleted.status_code == 200
        assert client.get(f"/api/compsets/{comp_set['id']}").status_code == 404

    def test_audit_trail(self, client, seeded):
        comp_set = client.post(
            "/api/compsets",
            json={"name": "Sol", "comp_ids": seeded[:2]},
            headers={"X-User": "ana@example.com"},
        ).json()
        client.put(f"/api/compsets/{comp_set['id']}", json={
            "expected_version": 1,
            "comp_ids": seeded[1:3],
        })
        client.delete(f"/api/compsets/{comp_set['id']}")

        response = client.get("/api/compsets/audit", params={"set_id": comp_set["id"]})

        assert response.status_code == 200
        events = response.json()["data"]
        assert [e["action"] for e in events] == ["CREATED", "UPDATED", "DELETED"]
        assert events[0]["user"] == "ana@example.com"
        assert events[1]["payload"]["removed"] == [seeded[0]]
        assert events[1]["payload"]["added"] == [seeded[2]]

    def test_create_with_unknown_member(self, client, seeded):
        response = client.post("/api/compsets", json={"name": "Bad", "comp_ids": ["cmp-ghost"]})

        assert response.status_code == 422
        assert response.json()["field"] == "comp_ids"

    def test_no_default(self, client):
        assert client.get("/api/compsets/default").status_code == 404

    def test_value_with_compset(self, client, seeded):
        comp_set = client.post("/api/compsets", json={"name": "Pair", "comp_ids": seeded[:2]}).json()

        response = client.post(
            f"/api/valuations/compset/{comp_set['id']}",
            json={"subject": SUBJECT, "rules": RULES},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["comps_used"] == 2
        assert data["low_confidence"] is True

    def test_value_with_unknown_compset(self, client):
        response = client.post("/api/valuations/compset/cs-missing", json={"subject": SUBJECT})

        assert response.status_code == 404


# =============================================================================
# Test: Recency
# =============================================================================


class TestRecencyEndpoint:
    def test_ageing_comparable_warns(self, client):
        data = client.get("/api/recency", params={"date": days_ago(400)}).json()

        assert data["valid"] is True
        assert "warning" in data

    def test_stale_comparable_invalid(self, client):
        data = client.get("/api/recency", params={"date": days_ago(920)}).json()

        assert data["valid"] is False

    def test_bad_threshold(self, client):
        response = client.get("/api/recency", params={"date": days_ago(10), "warn_months": 30})

        assert response.status_code == 422
        assert response.json()["field"] == "warn_months"

import json

import pytest
from fastapi.testclient import TestClient

from backend.main import create_app


@pytest.fixture
def catalog(make_group, opposite, make_member):
    return [
        make_group("g1", size=4, destination="Lima"),
        make_group("g2", members=[make_member("odd", **opposite)], destination="Oslo"),
    ]


@pytest.fixture
def client(settings, catalog):
    settings.catalog_file.write_text(json.dumps([g.model_dump(mode="json") for g in catalog]))
    with TestClient(create_app(settings)) as test_client:
        yield test_client


@pytest.fixture
def profile(make_profile):
    return make_profile("user").model_dump(mode="json")


def test_health_reports_in_process_cache(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["engine_ready"] is True
    assert body["status"] == "degraded"
    assert body["cache"]["remote"] == "disabled"


def test_recommendations_from_request_groups(client, profile, catalog):
    payload = {
        "profile": profile,
        "candidate_groups": [g.model_dump(mode="json") for g in catalog[:1]],
        "page_size": 5,
    }

    response = client.post("/api/recommendations", json=payload)

    assert response.status_code == 200
    body = response.json()
    assert [r["group"]["id"] for r in body["recommendations"]] == ["g1"]
    assert body["pagination"]["page_size"] == 5
    assert body["recommendations"][0]["compatibility"]["level"] == "excellent"
    assert body["recommendations"][0]["compatibility"]["display"]["label"] == "Excellent Match"


def test_recommendations_fall_back_to_catalog(client, profile):
    response = client.post("/api/recommendations", json={"profile": profile})

    assert response.status_code == 200
    body = response.json()
    assert body["total_compatible_groups"] == 1
    assert body["available_filters"]["destinations"] == ["Lima"]


def test_bad_requests(client, profile, catalog):
    duplicate = [catalog[0].model_dump(mode="json")] * 2

    assert client.post("/api/recommendations", json={"profile": profile, "candidate_groups": duplicate}).status_code == 422
    assert client.post("/api/recommendations", json={"profile": profile, "candidate_groups": []}).status_code == 422
    assert client.post("/api/recommendations", json={"profile": {"user_id": ""}}).status_code == 422
    assert client.post("/api/recommendations", json={"profile": profile, "page": -1}).status_code == 422


def test_missing_catalog_is_404(settings, profile):
    settings.catalog_file = settings.catalog_file.with_name("missing.json")
    with TestClient(create_app(settings)) as client:
        response = client.post("/api/recommendations", json={"profile": profile})

    assert response.status_code == 404


def test_cache_endpoints(client, profile):
    client.post("/api/recommendations", json={"profile": profile})

    stats = client.get("/api/cache/stats").json()
    assert stats["remote_enabled"] is False
    assert stats["pending_deletes"] == 0
    assert stats["batch"]["processed"] == 2

    score = client.get("/api/cache/scores/user/g1_m0", params={"group_id": "g1"})
    assert score.status_code == 200
    assert score.json()["overall_score"] == pytest.approx(94.5)
    assert client.get("/api/cache/scores/user/nobody").status_code == 404

    removed = client.delete("/api/cache", params={"user_id": "user"}).json()
    assert removed["removed"] >= 4
    assert client.get("/api/cache/scores/user/g1_m0", params={"group_id": "g1"}).status_code == 404

    assert client.delete("/api/cache").status_code == 422
    assert client.delete("/api/cache", params={"group_id": "g1"}).status_code == 200
    assert client.delete("/api/cache", params={"flush": "true"}).json()["message"] == "Cache flushed"

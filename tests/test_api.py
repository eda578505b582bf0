import pytest
from fastapi.testclient import TestClient

from whereto.db import get_db
from whereto.main import app


@pytest.fixture
def client(db):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_plan(client, **overrides):
    body = {
        "chat_id": -100123,
        "initiator_id": "u1",
        "date": "2026-10-24",
        "time": "19:30",
        "format": "dinner",
    }
    body.update(overrides)
    response = client.post("/api/plans", json=body)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_full_plan_flow(client, venues):
    plan = create_plan(client)
    plan_id = plan["id"]
    assert plan["chat_id"] == "-100123"
    assert plan["status"] == "open"

    response = client.post(
        f"/api/plans/{plan_id}/join",
        json={"user_id": "u2", "preferences": {"format": "dinner", "cuisine": "pizza"}},
    )
    assert response.json() == {"data": {"joined": True}}
    client.post(f"/api/plans/{plan_id}/join", json={"user_id": "u3", "location": {"lat": 47.02, "lng": 28.85}})

    options = client.get(f"/api/plans/{plan_id}/options").json()
    assert [o["venue_id"] for o in options["data"]] == [venues["a"], venues["b"], venues["c"]]
    assert options["meeting_point"]["source"] == "default"

    response = client.post(f"/api/plans/{plan_id}/vote", json={"duration_hours": 2})
    assert response.status_code == 200
    started = response.json()["data"]
    assert started["vote"]["status"] == "open"
    assert len(started["options"]) == 3

    for user, key in [("u1", "b"), ("u2", "a"), ("u3", "b")]:
        response = client.post(f"/api/plans/{plan_id}/vote/cast", json={"user_id": user, "venue_id": venues[key]})
        assert response.json() == {"data": {"voted": True}}

    assert client.get(f"/api/plans/{plan_id}/vote/user/u2").json()["data"] == [venues["a"]]
    results = client.get(f"/api/plans/{plan_id}/vote/results").json()["data"]
    assert [(r["venue_id"], r["vote_count"]) for r in results] == [(venues["b"], 2), (venues["a"], 1)]
    assert results[0]["venue"]["name"] == "Bravo"

    response = client.post(f"/api/plans/{plan_id}/close", json={"requester_id": "u1"})
    assert response.status_code == 200
    closed = response.json()["data"]
    assert closed["plan"]["status"] == "closed"
    assert closed["plan"]["winning_venue_id"] == venues["b"]
    assert closed["plan"]["voting_ends_at"] is None
    assert closed["winner"]["venue_id"] == venues["b"]
    assert closed["winner"]["vote_count"] == 2
    assert closed["winner"]["venue"]["name"] == "Bravo"

    details = client.get(f"/api/plans/{plan_id}").json()["data"]
    assert details["status"] == "closed"
    assert [p["user_id"] for p in details["participants"]] == ["u1", "u2", "u3"]
    assert details["participants"][1]["preferences"]["cuisine"] == ["pizza"]
    assert details["winning_venue"]["id"] == venues["b"]

    listed = client.get("/api/chats/-100123/plans").json()["data"]
    assert [p["id"] for p in listed] == [plan_id]


def test_start_voting_without_body(client, venues):
    plan_id = create_plan(client)["id"]
    response = client.post(f"/api/plans/{plan_id}/vote")
    assert response.status_code == 200
    assert response.json()["data"]["vote"]["plan_id"] == plan_id


def test_error_kinds_map_to_status_codes(client, venues):
    response = client.get("/api/plans/missing")
    assert response.status_code == 404
    assert response.json() == {
        "status": "error",
        "kind": "not_found",
        "detail": "Plan with id missing not found",
    }

    plan_id = create_plan(client)["id"]

    # close before voting
    response = client.post(f"/api/plans/{plan_id}/close", json={"requester_id": "u1"})
    assert response.status_code == 409
    assert response.json()["kind"] == "invalid_state"

    # not the initiator
    response = client.post(f"/api/plans/{plan_id}/close", json={"requester_id": "u2"})
    assert response.status_code == 403
    assert response.json()["kind"] == "forbidden"

    client.post(f"/api/plans/{plan_id}/vote")
    response = client.post(f"/api/plans/{plan_id}/vote/cast", json={"user_id": "stranger", "venue_id": venues["a"]})
    assert response.status_code == 403

    response = client.post(f"/api/plans/{plan_id}/vote/cast", json={"user_id": "u1", "venue_id": "no-such-venue"})
    assert response.status_code == 404

    response = client.post(f"/api/plans/{plan_id}/close", json={"requester_id": "u1"})
    assert response.status_code == 409
    assert "No votes cast" in response.json()["detail"]

    response = client.post(f"/api/plans/{plan_id}/vote")
    assert response.status_code == 409


def test_request_validation(client):
    response = client.post(
        "/api/plans",
        json={"chat_id": "c", "initiator_id": "u1", "date": "2026-10-24", "time": "25:00"},
    )
    assert response.status_code == 422

    response = client.post(
        "/api/plans",
        json={"chat_id": "c", "initiator_id": "u1", "date": "2026-10-24", "time": "19:00", "location": {"lat": 47.0}},
    )
    assert response.status_code == 422

    plan_id = create_plan(client)["id"]
    response = client.post(f"/api/plans/{plan_id}/join", json={"user_id": "u2", "preferences": {"mood": "loud"}})
    assert response.status_code == 422

    response = client.post(f"/api/plans/{plan_id}/vote", json={"duration_hours": 500})
    assert response.status_code == 422


def test_remove_vote_and_cancel(client, venues):
    plan_id = create_plan(client)["id"]
    client.post(f"/api/plans/{plan_id}/vote")
    client.post(f"/api/plans/{plan_id}/vote/cast", json={"user_id": "u1", "venue_id": venues["a"]})

    response = client.request(
        "DELETE", f"/api/plans/{plan_id}/vote/cast", json={"user_id": "u1", "venue_id": venues["a"]}
    )
    assert response.json() == {"data": {"removed": True}}
    assert client.get(f"/api/plans/{plan_id}/vote/user/u1").json()["data"] == []

    # older clients send initiator_id
    response = client.post(f"/api/plans/{plan_id}/cancel", json={"initiator_id": "u1"})
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "cancelled"


def test_close_expired_sweep(client, venues, db):
    plan_id = create_plan(client)["id"]
    client.post(f"/api/plans/{plan_id}/vote")

    response = client.post("/api/plans/close-expired")
    assert response.status_code == 200
    assert response.json()["data"] == {"closed": [], "skipped": []}

from __future__ import annotations

import sys
import uuid
from pathlib import Path

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base, get_db  # noqa: E402
from db.models import Episode  # noqa: E402
from main import app  # noqa: E402
from services.query_cache import query_cache  # noqa: E402
from services.rate_limit_service import reset_rate_limits  # noqa: E402


def _client_with_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def _get_test_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_test_db
    query_cache.clear()
    reset_rate_limits()
    return TestClient(app), engine


def _client() -> TestClient:
    return _client_with_engine()[0]


def _register(client: TestClient) -> dict:
    resp = client.post(
        "/api/auth/register",
        json={
            "username": f"patient_{uuid.uuid4().hex[:8]}",
            "password": "Migraine!Pass123",
            "display_name": "Patient",
        },
    )
    assert resp.status_code == 201
    return resp.json()


def test_health_sets_security_headers():
    client = _client()
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"


def test_endpoints_require_authentication():
    client = _client()
    assert client.get("/api/episodes").status_code == 401


def test_register_login_and_me():
    client = _client()
    username = f"patient_{uuid.uuid4().hex[:8]}"
    register = client.post(
        "/api/auth/register",
        json={"username": username, "password": "Migraine!Pass123", "display_name": "Patient"},
    )
    assert register.status_code == 201
    assert register.json()["access_token"]

    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["username"] == username

    bad = client.post("/api/auth/login", json={"username": username, "password": "wrong-password"})
    assert bad.status_code == 401

    fresh = TestClient(app)
    login = fresh.post("/api/auth/login", json={"username": username, "password": "Migraine!Pass123"})
    assert login.status_code == 200
    token = login.json()["access_token"]
    assert fresh.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"}).status_code == 200


def test_episode_lifecycle_over_http():
    client = _client()
    _register(client)

    created = client.post(
        "/api/episodes",
        json={"start_time": "2026-03-02T08:00:00Z", "intensity": 8, "symptoms": ["aura"], "triggers": ["stress"]},
    )
    assert created.status_code == 200
    episode = created.json()
    assert episode["end_time"] is None
    assert episode["status"] == "open"
    assert episode["start_time"] == "2026-03-02T08:00:00"

    closed = client.patch(f"/api/episodes/{episode['id']}", json={"end_time": "2026-03-02T11:00:00Z"})
    assert closed.status_code == 200
    assert closed.json()["status"] == "closed"
    assert closed.json()["duration_hours"] == 3.0

    reopen = client.patch(f"/api/episodes/{episode['id']}", json={"end_time": None})
    assert reopen.status_code == 400
    assert reopen.json()["errors"]["end_time"] == "a closed episode cannot be reopened"


def test_invalid_intensity_is_rejected_with_field_errors():
    client = _client()
    _register(client)

    resp = client.post("/api/episodes", json={"intensity": 11})
    assert resp.status_code == 400
    body = resp.json()
    assert body["errors"] == {"intensity": "must be between 1 and 10"}
    assert "intensity" in body["detail"]

    assert client.get("/api/episodes").json() == []


def test_malformed_request_body_is_400():
    client = _client()
    _register(client)

    resp = client.post("/api/episodes", json={"intensity": "severe"})
    assert resp.status_code == 400
    assert "intensity" in resp.json()["errors"]

    extra = client.patch("/api/episodes/1", json={"colour": "red"})
    assert extra.status_code == 400


def test_unknown_ids_are_404():
    client = _client()
    _register(client)

    assert client.patch("/api/episodes/999", json={"intensity": 3}).status_code == 404
    assert client.get("/api/medications/999/effectiveness").status_code == 404

    missing_med = client.post("/api/medication-logs", json={"medication_id": 999, "effectiveness": 5})
    assert missing_med.status_code == 404
    assert missing_med.json()["detail"] == "Medication 999 not found"


def test_records_are_scoped_to_their_owner():
    first = _client()
    _register(first)
    created = first.post("/api/episodes", json={"intensity": 4}).json()

    second = TestClient(app)
    _register(second)
    assert second.get("/api/episodes").json() == []
    assert second.patch(f"/api/episodes/{created['id']}", json={"intensity": 5}).status_code == 404


def test_effectiveness_stays_on_rating_scale():
    client = _client()
    _register(client)
    med = client.post("/api/medications", json={"name": "Sumatriptan", "dosage": "50mg", "frequency": "as-needed"})
    assert med.status_code == 200
    med_id = med.json()["id"]

    empty = client.get(f"/api/medications/{med_id}/effectiveness").json()
    assert empty["effectiveness"] == 0
    assert empty["rated_doses"] == 0

    for rating in (6, 8, 10):
        resp = client.post("/api/medication-logs", json={"medication_id": med_id, "effectiveness": rating})
        assert resp.status_code == 200

    body = client.get(f"/api/medications/{med_id}/effectiveness").json()
    assert body["effectiveness"] == 8
    assert body["rated_doses"] == 3

    adherence = client.get(f"/api/medications/{med_id}/adherence").json()
    assert adherence["can_take"] is False
    assert adherence["hours_remaining"] == 4


def test_list_reflects_writes_immediately():
    client = _client()
    _register(client)

    assert client.get("/api/triggers").json() == []
    created = client.post("/api/triggers", json={"name": "Red wine", "category": "food"})
    assert created.status_code == 200
    names = [t["name"] for t in client.get("/api/triggers").json()]
    assert names == ["Red wine"]

    client.post("/api/episodes", json={"intensity": 6, "triggers": ["red wine"]})
    triggers = client.get("/api/triggers").json()
    assert triggers[0]["frequency"] == 1


def test_latest_device_reading():
    client = _client()
    _register(client)

    assert client.get("/api/device-data/latest").json() is None

    resp = client.post("/api/device-data", json={"heart_rate": 74, "stress_level": "medium", "sleep_quality": "good"})
    assert resp.status_code == 200
    latest = client.get("/api/device-data/latest").json()
    assert latest["heart_rate"] == 74
    assert latest["stress_level"] == "medium"

    bad = client.post("/api/device-data", json={"heart_rate": 70, "sleep_quality": "great"})
    assert bad.status_code == 400


def test_status_and_weekly_analytics():
    client = _client()
    _register(client)

    idle = client.get("/api/status/current").json()
    assert idle["active_episode"] is False
    assert idle["level"] == "No Active Episode"

    client.post("/api/episodes", json={"intensity": 9, "triggers": ["stress"]})
    active = client.get("/api/status/current").json()
    assert active["active_episode"] is True
    assert active["severity"] == "high"
    assert active["refresh_interval_seconds"] == 30

    weekly = client.get("/api/analytics/weekly").json()
    assert weekly["episode_count"] == 1
    assert weekly["avg_intensity"] == 9
    assert weekly["trigger_counts"] == [{"name": "stress", "count": 1}]


def test_report_generation_and_listing():
    client = _client()
    _register(client)
    episode = client.post("/api/episodes", json={"start_time": "2026-03-02T08:00:00", "intensity": 6}).json()
    client.patch(f"/api/episodes/{episode['id']}", json={"end_time": "2026-03-02T10:00:00"})

    resp = client.post("/api/reports/generate", json={"start_date": "2026-03-01", "end_date": "2026-03-07"})
    assert resp.status_code == 200
    report = resp.json()
    assert report["report_type"] == "custom"
    assert report["start_date"] == "2026-03-01"
    assert report["report_data"]["summary"]["total_episodes"] == 1
    assert report["report_data"]["episodes"][0]["duration_hours"] == 2.0

    listed = client.get("/api/reports").json()
    assert [r["id"] for r in listed] == [report["id"]]

    reversed_range = client.post("/api/reports/generate", json={"start_date": "2026-03-07", "end_date": "2026-03-01"})
    assert reversed_range.status_code == 400

    weekly = client.post("/api/reports/generate", json={"report_type": "weekly"})
    assert weekly.status_code == 200
    assert weekly.json()["report_type"] == "weekly"


def test_episode_created_with_end_time_is_rejected():
    client = _client()
    _register(client)

    resp = client.post(
        "/api/episodes",
        json={"start_time": "2026-03-02T08:00:00", "end_time": "2026-03-02T11:00:00", "intensity": 5},
    )
    assert resp.status_code == 400
    assert resp.json()["errors"] == {"end_time": "must be empty when an episode is created"}
    assert client.get("/api/episodes").json() == []


def test_nulling_required_flags_is_400_not_500():
    client = _client()
    _register(client)
    trigger = client.post("/api/triggers", json={"name": "Bright light", "category": "environment"}).json()
    med = client.post("/api/medications", json={"name": "Naproxen", "dosage": "500mg", "frequency": "as-needed"}).json()
    episode = client.post("/api/episodes", json={"intensity": 4}).json()

    cases = [
        (f"/api/triggers/{trigger['id']}", "frequency"),
        (f"/api/medications/{med['id']}", "is_active"),
        (f"/api/episodes/{episode['id']}", "is_emergency"),
    ]
    for path, field in cases:
        resp = client.patch(path, json={field: None})
        assert resp.status_code == 400, path
        assert resp.json()["errors"] == {field: "cannot be null"}

    assert client.get("/api/medications").json()[0]["is_active"] is True


def test_storage_failure_is_reported_as_500():
    client, engine = _client_with_engine()
    _register(client)
    Episode.__table__.drop(bind=engine)

    resp = client.get("/api/episodes")
    assert resp.status_code == 500
    assert resp.json() == {"detail": "Storage is temporarily unavailable"}

    # Other kinds keep working.
    assert client.get("/api/triggers").status_code == 200

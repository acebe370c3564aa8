from __future__ import annotations

import json
import sys
from datetime import date, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base  # noqa: E402
from db.models import MedicalReport, User  # noqa: E402
from services.analytics_service import get_adherence, get_current_status, get_weekly_stats  # noqa: E402
from services.report_service import compute_report, default_report_range, generate_report  # noqa: E402
from store import EntityStore, NotFoundError, ValidationError  # noqa: E402
from store.base import as_date  # noqa: E402


def _new_db():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _new_user(db, username: str = "reporter") -> User:
    user = User(
        username=username,
        username_normalized=username.lower(),
        password_hash="hash",
        display_name="Reporter",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _seed(db, user_id: int) -> int:
    store = EntityStore(db)
    store.create("trigger", {"name": "Stress", "category": "lifestyle", "frequency": 4}, user_id)
    store.create("trigger", {"name": "Red wine", "category": "food", "correlation_score": 0.6}, user_id)
    first = store.create(
        "episode",
        {
            "start_time": datetime(2026, 3, 2, 9, 0),
            "intensity": 7,
            "symptoms": ["aura", "nausea"],
            "triggers": ["Red wine"],
        },
        user_id,
    )
    store.update("episode", first.id, {"end_time": datetime(2026, 3, 2, 12, 0)}, user_id)
    store.create("episode", {"start_time": datetime(2026, 3, 5, 18, 0), "intensity": 5}, user_id)
    store.create("episode", {"start_time": datetime(2026, 2, 20, 18, 0), "intensity": 9}, user_id)
    med = store.create("medication", {"name": "Sumatriptan", "dosage": "50mg", "frequency": "as-needed"}, user_id)
    store.create("medication_log", {"medication_id": med.id, "taken_at": datetime(2026, 3, 2, 9, 30), "effectiveness": 8}, user_id)
    return med.id


def test_compute_report_covers_inclusive_range():
    db = _new_db()
    user = _new_user(db)
    _seed(db, user.id)

    report = compute_report(db, user.id, date(2026, 3, 1), date(2026, 3, 5))

    assert report["summary"]["total_episodes"] == 2
    assert report["summary"]["avg_intensity"] == 6
    assert report["summary"]["total_medications"] == 1
    # Red wine was bumped to 1 by the episode that named it.
    assert report["summary"]["most_common_triggers"] == ["Stress", "Red wine"]
    assert report["episodes"][0]["duration_hours"] == 3.0
    assert report["episodes"][0]["symptoms"] == ["aura", "nausea"]


def test_compute_report_is_idempotent():
    db = _new_db()
    user = _new_user(db)
    _seed(db, user.id)

    first = compute_report(db, user.id, date(2026, 3, 1), date(2026, 3, 7))
    second = compute_report(db, user.id, date(2026, 3, 1), date(2026, 3, 7))
    assert first == second


def test_compute_report_rejects_reversed_range():
    db = _new_db()
    user = _new_user(db)

    with pytest.raises(ValidationError) as excinfo:
        compute_report(db, user.id, date(2026, 3, 7), date(2026, 3, 1))
    assert excinfo.value.fields == ["end_date"]


def test_generate_report_persists_snapshot():
    db = _new_db()
    user = _new_user(db)
    _seed(db, user.id)

    report = generate_report(db, user.id, start_date=date(2026, 3, 1), end_date=date(2026, 3, 7))

    stored = db.query(MedicalReport).filter(MedicalReport.id == report.id).one()
    assert stored.report_type == "custom"
    assert stored.start_date == "2026-03-01"
    assert stored.end_date == "2026-03-07"
    assert stored.generated_at is not None
    assert json.loads(stored.report_data)["summary"]["total_episodes"] == 2

    data = EntityStore(db).serialize("medical_report", stored)
    assert data["report_data"]["summary"]["total_medications"] == 1


def test_weekly_report_defaults_to_trailing_week():
    assert default_report_range("weekly", today=date(2026, 3, 9)) == (date(2026, 3, 3), date(2026, 3, 9))
    assert default_report_range("monthly", today=date(2026, 3, 30)) == (date(2026, 3, 1), date(2026, 3, 30))
    with pytest.raises(ValidationError):
        default_report_range("custom", today=date(2026, 3, 9))


def test_custom_report_names_the_missing_date():
    with pytest.raises(ValidationError) as excinfo:
        default_report_range("custom", start_date=date(2026, 3, 1))
    assert excinfo.value.errors == {"end_date": "is required for custom reports"}

    with pytest.raises(ValidationError) as excinfo:
        default_report_range("custom")
    assert set(excinfo.value.errors) == {"start_date", "end_date"}

    assert default_report_range("weekly", today=date(2026, 3, 9), start_date=date(2026, 3, 1)) == (
        date(2026, 3, 1),
        date(2026, 3, 9),
    )


def test_report_dates_are_parsed_strictly():
    assert as_date("2026-03-01") == date(2026, 3, 1)
    assert as_date("2026-03-01T23:30:00Z") == date(2026, 3, 1)
    with pytest.raises(ValueError):
        as_date("2026-03-01garbage")


def test_weekly_stats_from_store():
    db = _new_db()
    user = _new_user(db)
    _seed(db, user.id)

    stats = get_weekly_stats(db, user.id, now=datetime(2026, 3, 6, 0, 0))

    assert stats["episode_count"] == 2
    assert stats["total_doses"] == 1
    assert stats["trigger_counts"] == [{"name": "Red wine", "count": 1}]


def test_adherence_from_store():
    db = _new_db()
    user = _new_user(db)
    med_id = _seed(db, user.id)

    blocked = get_adherence(db, user.id, med_id, now=datetime(2026, 3, 2, 12, 30))
    assert blocked["can_take"] is False
    assert blocked["hours_remaining"] == 1
    assert blocked["last_dose_label"] == "3 hours ago"

    allowed = get_adherence(db, user.id, med_id, now=datetime(2026, 3, 2, 13, 30))
    assert allowed["can_take"] is True

    with pytest.raises(NotFoundError):
        get_adherence(db, user.id, med_id + 100)


def test_current_status_from_store():
    db = _new_db()
    user = _new_user(db)
    _seed(db, user.id)
    EntityStore(db).create("device_reading", {"timestamp": datetime(2026, 3, 5, 18, 30), "heart_rate": 91}, user.id)

    status = get_current_status(db, user.id, now=datetime(2026, 3, 5, 19, 0))
    assert status["active_episode"] is True
    assert status["level"] == "Active Episode - Level 5"
    assert status["severity"] == "moderate"
    assert status["latest_reading"]["heart_rate"] == 91

    later = get_current_status(db, user.id, now=datetime(2026, 3, 5, 18, 0) + timedelta(hours=2))
    assert later["active_episode"] is False

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from config import settings
from services.aggregation_service import (
    DeviceReadingSnapshot,
    EpisodeSnapshot,
    MedicationLogSnapshot,
    adherence_gate,
    current_status,
    last_dose_at,
    medication_effectiveness,
    weekly_stats,
)
from store import EntityFilter, EntityStore
from utils.datetime_utils import format_time_ago, utcnow

logger = logging.getLogger(__name__)


def _medication_logs(store: EntityStore, user_id: int, medication_id: int) -> list[MedicationLogSnapshot]:
    rows = [r for r in store.list("medication_log", user_id) if r.medication_id == medication_id]
    return [MedicationLogSnapshot.from_row(r) for r in rows]


def get_weekly_stats(db: Session, user_id: int, now: datetime | None = None) -> dict:
    now = now or utcnow()
    store = EntityStore(db)
    window = EntityFilter(start=now - timedelta(days=settings.WEEKLY_WINDOW_DAYS), end=now)
    episodes = [EpisodeSnapshot.from_row(r) for r in store.list("episode", user_id, window)]
    logs = [MedicationLogSnapshot.from_row(r) for r in store.list("medication_log", user_id, window)]
    return weekly_stats(episodes, logs, now, window_days=settings.WEEKLY_WINDOW_DAYS)


def get_medication_effectiveness(db: Session, user_id: int, medication_id: int) -> dict:
    store = EntityStore(db)
    store.get("medication", medication_id, user_id)
    logs = _medication_logs(store, user_id, medication_id)
    rated = [log for log in logs if log.effectiveness is not None]
    # Stays on the 1-10 scale the logs are recorded in.
    return {
        "medication_id": medication_id,
        "effectiveness": medication_effectiveness(logs, medication_id),
        "rated_doses": len(rated),
    }


def get_adherence(db: Session, user_id: int, medication_id: int, now: datetime | None = None) -> dict:
    now = now or utcnow()
    store = EntityStore(db)
    store.get("medication", medication_id, user_id)
    last = last_dose_at(_medication_logs(store, user_id, medication_id), medication_id)
    gate = adherence_gate(last, now, min_interval_hours=settings.MIN_DOSE_INTERVAL_HOURS)
    payload = gate.as_dict()
    payload["medication_id"] = medication_id
    payload["last_dose_label"] = format_time_ago(last, now) if last is not None else None
    return payload


def get_current_status(db: Session, user_id: int, now: datetime | None = None) -> dict:
    now = now or utcnow()
    store = EntityStore(db)
    recent = [EpisodeSnapshot.from_row(r) for r in store.list("episode", user_id, EntityFilter(limit=5))]
    latest_rows = store.list("device_reading", user_id, EntityFilter(limit=1))
    latest = DeviceReadingSnapshot.from_row(latest_rows[0]) if latest_rows else None
    return current_status(
        recent,
        latest,
        now,
        active_window_hours=settings.ACTIVE_EPISODE_WINDOW_HOURS,
        severe_threshold=settings.SEVERE_INTENSITY_THRESHOLD,
        refresh_interval_seconds=settings.DEVICE_POLL_INTERVAL_SECONDS,
    )

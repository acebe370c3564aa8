"""Derived views over entity snapshots.

Every function here is pure: inputs are immutable snapshots (built from ORM
rows with the ``from_row`` constructors), ``now`` is always passed in, and
nothing is written back. The same inputs always give the same output, so the
functions are safe to call from any number of requests at once.
"""
from __future__ import annotations

import json
import math
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Sequence

from utils.datetime_utils import end_of_day, hours_between, isoformat_or_none, start_of_day


def _load_names(raw) -> tuple[str, ...]:
    if isinstance(raw, (list, tuple)):
        return tuple(str(v) for v in raw)
    if not raw:
        return ()
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return ()
    return tuple(str(v) for v in parsed) if isinstance(parsed, list) else ()


@dataclass(frozen=True)
class EpisodeSnapshot:
    id: int
    start_time: datetime
    end_time: datetime | None
    intensity: int
    symptoms: tuple[str, ...] = ()
    triggers: tuple[str, ...] = ()

    @classmethod
    def from_row(cls, row) -> "EpisodeSnapshot":
        return cls(
            id=row.id,
            start_time=row.start_time,
            end_time=row.end_time,
            intensity=int(row.intensity),
            symptoms=_load_names(row.symptoms),
            triggers=_load_names(row.triggers),
        )

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def duration_hours(self) -> float | None:
        if self.end_time is None:
            return None
        return hours_between(self.start_time, self.end_time)


@dataclass(frozen=True)
class MedicationLogSnapshot:
    id: int
    medication_id: int | None
    taken_at: datetime
    effectiveness: int | None = None
    episode_id: int | None = None

    @classmethod
    def from_row(cls, row) -> "MedicationLogSnapshot":
        return cls(
            id=row.id,
            medication_id=row.medication_id,
            taken_at=row.taken_at,
            effectiveness=row.effectiveness,
            episode_id=row.episode_id,
        )


@dataclass(frozen=True)
class TriggerSnapshot:
    id: int
    name: str
    correlation_score: float | None = None
    frequency: int = 0

    @classmethod
    def from_row(cls, row) -> "TriggerSnapshot":
        return cls(
            id=row.id,
            name=row.name,
            correlation_score=row.correlation_score,
            frequency=int(row.frequency or 0),
        )


@dataclass(frozen=True)
class DeviceReadingSnapshot:
    id: int
    timestamp: datetime
    heart_rate: int | None = None
    stress_level: str | None = None
    sleep_quality: str | None = None

    @classmethod
    def from_row(cls, row) -> "DeviceReadingSnapshot":
        return cls(
            id=row.id,
            timestamp=row.timestamp,
            heart_rate=row.heart_rate,
            stress_level=row.stress_level,
            sleep_quality=row.sleep_quality,
        )


@dataclass(frozen=True)
class AdherenceGate:
    can_take: bool
    hours_remaining: int
    hours_since_last_dose: float | None
    last_dose_at: datetime | None
    min_interval_hours: int

    def as_dict(self) -> dict:
        return {
            "can_take": self.can_take,
            "hours_remaining": self.hours_remaining,
            "hours_since_last_dose": self.hours_since_last_dose,
            "last_dose_at": isoformat_or_none(self.last_dose_at),
            "min_interval_hours": self.min_interval_hours,
        }


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0


def _chronological(episodes: Iterable[EpisodeSnapshot]) -> list[EpisodeSnapshot]:
    return sorted(episodes, key=lambda e: (e.start_time, e.id))


def medication_effectiveness(logs: Iterable[MedicationLogSnapshot], medication_id: int) -> float:
    """Mean 1-10 effectiveness of a medication's rated doses, 0 with no ratings."""
    ratings = [
        log.effectiveness
        for log in logs
        if log.medication_id == medication_id and log.effectiveness is not None
    ]
    return _mean(ratings)


def last_dose_at(logs: Iterable[MedicationLogSnapshot], medication_id: int) -> datetime | None:
    taken = [log.taken_at for log in logs if log.medication_id == medication_id]
    return max(taken) if taken else None


def adherence_gate(last_dose: datetime | None, now: datetime, min_interval_hours: int = 4) -> AdherenceGate:
    if last_dose is None:
        return AdherenceGate(True, 0, None, None, min_interval_hours)
    hours_since = hours_between(last_dose, now)
    remaining = float(min_interval_hours) - hours_since
    if remaining <= 0:
        return AdherenceGate(True, 0, hours_since, last_dose, min_interval_hours)
    return AdherenceGate(False, max(math.ceil(remaining), 0), hours_since, last_dose, min_interval_hours)


def weekly_stats(
    episodes: Iterable[EpisodeSnapshot],
    logs: Iterable[MedicationLogSnapshot],
    now: datetime,
    window_days: int = 7,
) -> dict:
    window_start = now - timedelta(days=window_days)
    in_window = [e for e in _chronological(episodes) if window_start <= e.start_time <= now]
    doses = [log for log in logs if window_start <= log.taken_at <= now]

    counts: Counter[str] = Counter()
    for episode in in_window:
        counts.update(episode.triggers)
    # Counter keeps first-seen order; sorted() is stable, so ties keep it too.
    ranked = sorted(counts.items(), key=lambda item: -item[1])

    return {
        "window_start": window_start.isoformat(),
        "window_end": now.isoformat(),
        "episode_count": len(in_window),
        "avg_intensity": _mean([e.intensity for e in in_window]),
        "total_doses": len(doses),
        "trigger_counts": [{"name": name, "count": count} for name, count in ranked],
    }


def top_triggers(triggers: Iterable[TriggerSnapshot], limit: int = 3) -> list[TriggerSnapshot]:
    return sorted(triggers, key=lambda t: (-t.frequency, t.id))[:limit]


def build_report(
    episodes: Iterable[EpisodeSnapshot],
    logs: Iterable[MedicationLogSnapshot],
    triggers: Iterable[TriggerSnapshot],
    start_date: date,
    end_date: date,
    top_n: int = 3,
) -> dict:
    """Report payload for an inclusive ``[start_date, end_date]`` range."""
    range_start = start_of_day(start_date)
    range_end = end_of_day(end_date)

    in_range = [e for e in _chronological(episodes) if range_start <= e.start_time <= range_end]
    logs_in_range = sorted(
        (log for log in logs if range_start <= log.taken_at <= range_end),
        key=lambda log: (log.taken_at, log.id),
    )
    leading = top_triggers(triggers, top_n)

    return {
        "summary": {
            "total_episodes": len(in_range),
            "avg_intensity": _mean([e.intensity for e in in_range]),
            "total_medications": len(logs_in_range),
            "most_common_triggers": [t.name for t in leading],
        },
        "episodes": [
            {
                "date": e.start_time.isoformat(),
                "intensity": e.intensity,
                "duration_hours": e.duration_hours,
                "symptoms": list(e.symptoms),
                "triggers": list(e.triggers),
            }
            for e in in_range
        ],
        "medications": [
            {
                "date": log.taken_at.isoformat(),
                "medication_id": log.medication_id,
                "effectiveness": log.effectiveness,
            }
            for log in logs_in_range
        ],
        "triggers": [
            {"name": t.name, "correlation": t.correlation_score, "frequency": t.frequency}
            for t in leading
        ],
    }


def current_status(
    recent_episodes: Iterable[EpisodeSnapshot],
    latest_reading: DeviceReadingSnapshot | None,
    now: datetime,
    active_window_hours: int = 2,
    severe_threshold: int = 7,
    refresh_interval_seconds: int = 30,
) -> dict:
    episodes = _chronological(recent_episodes)
    last = episodes[-1] if episodes else None
    active = (
        last is not None
        and last.is_open
        and hours_between(last.start_time, now) < active_window_hours
    )

    if active:
        level = f"Active Episode - Level {last.intensity}"
        severity = "high" if last.intensity >= severe_threshold else "moderate"
    else:
        level = "No Active Episode"
        severity = "none"

    reading = None
    if latest_reading is not None:
        reading = {
            "heart_rate": latest_reading.heart_rate,
            "stress_level": latest_reading.stress_level,
            "sleep_quality": latest_reading.sleep_quality,
            "timestamp": latest_reading.timestamp.isoformat(),
        }

    return {
        "active_episode": active,
        "level": level,
        "severity": severity,
        "episode_id": last.id if active else None,
        "intensity": last.intensity if active else None,
        "started_at": last.start_time.isoformat() if active else None,
        "latest_reading": reading,
        "last_update": reading["timestamp"] if reading else None,
        "refresh_interval_seconds": refresh_interval_seconds,
    }

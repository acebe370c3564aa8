from __future__ import annotations

from typing import Any

from db.models import DeviceReading, Episode, MedicalReport, Medication, MedicationLog, Trigger
from services.trigger_service import record_added_trigger_occurrences, record_trigger_occurrences
from store.base import (
    FieldSpec,
    KindSpec,
    Reference,
    as_bool,
    as_choice,
    as_date,
    as_datetime,
    as_float,
    as_int,
    as_json_object,
    as_string_list,
    as_text,
    date_dumps,
    json_dumps,
    json_list_loads,
    json_object_loads,
    serialize_row,
)
from store.registry import KindRegistry
from utils.datetime_utils import hours_between


STRESS_LEVELS = ("low", "medium", "high")
SLEEP_QUALITIES = ("poor", "fair", "good", "excellent")
REPORT_TYPES = ("weekly", "monthly", "custom")
SCALE_MIN = 1
SCALE_MAX = 10


def _json_list_field(name: str) -> FieldSpec:
    return FieldSpec(
        name,
        as_string_list,
        default_factory=list,
        dump=json_dumps,
        load=json_list_loads,
    )


def _check_scale(values: dict[str, Any], field: str, errors: dict[str, str]) -> None:
    value = values.get(field)
    if value is not None and not SCALE_MIN <= value <= SCALE_MAX:
        errors[field] = f"must be between {SCALE_MIN} and {SCALE_MAX}"


def _check_non_empty(values: dict[str, Any], field: str, errors: dict[str, str]) -> None:
    value = values.get(field)
    if value is not None and not str(value).strip():
        errors[field] = "must be a non-empty string"


# --- Episodes ---

def validate_episode(values: dict[str, Any], previous: dict[str, Any] | None) -> dict[str, str]:
    errors: dict[str, str] = {}
    _check_scale(values, "intensity", errors)
    start, end = values.get("start_time"), values.get("end_time")
    if previous is None:
        # Episodes start open; closing happens through an update.
        if end is not None:
            errors["end_time"] = "must be empty when an episode is created"
        return errors
    if start is not None and end is not None and end < start:
        errors["end_time"] = "must not be earlier than start_time"
    if previous.get("end_time") is not None and end is None:
        # Closing is terminal.
        errors["end_time"] = "a closed episode cannot be reopened"
    return errors


def serialize_episode(row: Episode) -> dict:
    out = serialize_row(
        row,
        ("start_time", "end_time", "intensity", "symptoms", "triggers", "notes", "is_emergency", "created_at"),
        loaders={"symptoms": json_list_loads, "triggers": json_list_loads},
    )
    out["status"] = "closed" if row.end_time is not None else "open"
    out["duration_hours"] = hours_between(row.start_time, row.end_time) if row.end_time is not None else None
    return out


EPISODE = KindSpec(
    name="episode",
    model=Episode,
    fields=(
        FieldSpec("start_time", as_datetime, required=True),
        FieldSpec("end_time", as_datetime),
        FieldSpec("intensity", as_int, required=True),
        _json_list_field("symptoms"),
        _json_list_field("triggers"),
        FieldSpec("notes", as_text),
        FieldSpec("is_emergency", as_bool, nullable=False, default_factory=lambda: False),
    ),
    validator=validate_episode,
    serializer=serialize_episode,
    time_field="start_time",
    order_by=("-start_time", "-id"),
    invalidates=("episodes", "triggers"),
    on_create=record_trigger_occurrences,
    on_update=record_added_trigger_occurrences,
)


# --- Medications ---

def validate_medication(values: dict[str, Any], previous: dict[str, Any] | None) -> dict[str, str]:
    _ = previous
    errors: dict[str, str] = {}
    for field in ("name", "dosage", "frequency"):
        _check_non_empty(values, field, errors)
    return errors


def serialize_medication(row: Medication) -> dict:
    return serialize_row(
        row,
        ("name", "dosage", "frequency", "side_effects", "is_active", "created_at"),
        loaders={"side_effects": json_list_loads},
    )


MEDICATION = KindSpec(
    name="medication",
    model=Medication,
    fields=(
        FieldSpec("name", as_text, required=True),
        FieldSpec("dosage", as_text, required=True),
        FieldSpec("frequency", as_text, required=True),
        _json_list_field("side_effects"),
        FieldSpec("is_active", as_bool, nullable=False, default_factory=lambda: True),
    ),
    validator=validate_medication,
    serializer=serialize_medication,
    time_field="created_at",
    order_by=("-created_at", "-id"),
    invalidates=("medications", "effectiveness"),
)


# --- Medication logs ---

def validate_medication_log(values: dict[str, Any], previous: dict[str, Any] | None) -> dict[str, str]:
    _ = previous
    errors: dict[str, str] = {}
    _check_scale(values, "effectiveness", errors)
    return errors


def serialize_medication_log(row: MedicationLog) -> dict:
    return serialize_row(
        row,
        ("medication_id", "episode_id", "taken_at", "effectiveness", "notes", "created_at"),
    )


MEDICATION_LOG = KindSpec(
    name="medication_log",
    model=MedicationLog,
    fields=(
        FieldSpec("medication_id", as_int, patchable=False),
        FieldSpec("episode_id", as_int),
        FieldSpec("taken_at", as_datetime, required=True),
        FieldSpec("effectiveness", as_int),
        FieldSpec("notes", as_text),
    ),
    validator=validate_medication_log,
    serializer=serialize_medication_log,
    time_field="taken_at",
    order_by=("-taken_at", "-id"),
    references=(Reference("medication_id", "medication"), Reference("episode_id", "episode")),
    invalidates=("medication_logs", "effectiveness"),
)


# --- Triggers ---

def validate_trigger(values: dict[str, Any], previous: dict[str, Any] | None) -> dict[str, str]:
    _ = previous
    errors: dict[str, str] = {}
    for field in ("name", "category"):
        _check_non_empty(values, field, errors)
    score = values.get("correlation_score")
    if score is not None and not 0.0 <= score <= 1.0:
        errors["correlation_score"] = "must be between 0 and 1"
    frequency = values.get("frequency")
    if frequency is not None and frequency < 0:
        errors["frequency"] = "must not be negative"
    return errors


def serialize_trigger(row: Trigger) -> dict:
    return serialize_row(
        row,
        ("name", "category", "correlation_score", "frequency", "last_occurrence", "created_at"),
    )


TRIGGER = KindSpec(
    name="trigger",
    model=Trigger,
    fields=(
        FieldSpec("name", as_text, required=True),
        FieldSpec("category", as_text, required=True),
        FieldSpec("correlation_score", as_float),
        FieldSpec("frequency", as_int, nullable=False, default_factory=lambda: 0),
        FieldSpec("last_occurrence", as_datetime),
    ),
    validator=validate_trigger,
    serializer=serialize_trigger,
    time_field="last_occurrence",
    order_by=("-frequency", "name", "id"),
    invalidates=("triggers",),
)


# --- Device readings ---

def validate_device_reading(values: dict[str, Any], previous: dict[str, Any] | None) -> dict[str, str]:
    _ = previous
    errors: dict[str, str] = {}
    heart_rate = values.get("heart_rate")
    if heart_rate is not None and heart_rate <= 0:
        errors["heart_rate"] = "must be a positive integer"
    return errors


def serialize_device_reading(row: DeviceReading) -> dict:
    return serialize_row(row, ("heart_rate", "stress_level", "sleep_quality", "timestamp", "created_at"))


DEVICE_READING = KindSpec(
    name="device_reading",
    model=DeviceReading,
    fields=(
        FieldSpec("heart_rate", as_int, patchable=False),
        FieldSpec("stress_level", as_choice(*STRESS_LEVELS), patchable=False),
        FieldSpec("sleep_quality", as_choice(*SLEEP_QUALITIES), patchable=False),
        FieldSpec("timestamp", as_datetime, required=True, patchable=False),
    ),
    validator=validate_device_reading,
    serializer=serialize_device_reading,
    time_field="timestamp",
    order_by=("-timestamp", "-id"),
    invalidates=("device_data",),
)


# --- Medical reports ---

def validate_medical_report(values: dict[str, Any], previous: dict[str, Any] | None) -> dict[str, str]:
    _ = previous
    errors: dict[str, str] = {}
    start, end = values.get("start_date"), values.get("end_date")
    if start is not None and end is not None and end < start:
        errors["end_date"] = "must not be earlier than start_date"
    return errors


def serialize_medical_report(row: MedicalReport) -> dict:
    return serialize_row(
        row,
        ("report_type", "start_date", "end_date", "report_data", "generated_at"),
        loaders={"report_data": json_object_loads},
    )


MEDICAL_REPORT = KindSpec(
    name="medical_report",
    model=MedicalReport,
    fields=(
        FieldSpec("report_type", as_choice(*REPORT_TYPES), required=True, patchable=False),
        FieldSpec("start_date", as_date, required=True, patchable=False, dump=date_dumps, load=as_date),
        FieldSpec("end_date", as_date, required=True, patchable=False, dump=date_dumps, load=as_date),
        FieldSpec("report_data", as_json_object, required=True, patchable=False, dump=json_dumps, load=json_object_loads),
    ),
    validator=validate_medical_report,
    serializer=serialize_medical_report,
    time_field="generated_at",
    order_by=("-generated_at", "-id"),
    invalidates=("reports",),
)


def register_entity_kinds(registry: KindRegistry) -> None:
    for spec in (EPISODE, MEDICATION, MEDICATION_LOG, TRIGGER, DEVICE_READING, MEDICAL_REPORT):
        registry.register(spec)

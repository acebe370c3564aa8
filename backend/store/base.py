from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable

from sqlalchemy.orm import Session

from utils.datetime_utils import parse_date, parse_datetime


Coercer = Callable[[Any], Any]
# (merged values, previous values or None on create) -> {field: reason}
Validator = Callable[[dict[str, Any], "dict[str, Any] | None"], dict[str, str]]
Serializer = Callable[[Any], dict[str, Any]]
CreateHook = Callable[[Session, Any], None]
# (session, row after the patch, values before the patch)
UpdateHook = Callable[[Session, Any, dict[str, Any]], None]


@dataclass(frozen=True)
class FieldSpec:
    name: str
    coerce: Coercer
    required: bool = False
    patchable: bool = True
    nullable: bool = True  # False: an explicit null is rejected
    default_factory: Callable[[], Any] | None = None
    dump: Callable[[Any], Any] | None = None  # python value -> column value
    load: Callable[[Any], Any] | None = None  # column value -> python value


@dataclass(frozen=True)
class Reference:
    field: str
    kind: str


@dataclass(frozen=True)
class KindSpec:
    name: str
    model: type
    fields: tuple[FieldSpec, ...]
    validator: Validator
    serializer: Serializer
    time_field: str | None = None
    order_by: tuple[str, ...] = ("-id",)
    references: tuple[Reference, ...] = ()
    invalidates: tuple[str, ...] = field(default_factory=tuple)
    on_create: CreateHook | None = None
    on_update: UpdateHook | None = None

    def field_spec(self, name: str) -> FieldSpec | None:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def current_values(self, row) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for spec in self.fields:
            raw = getattr(row, spec.name, None)
            values[spec.name] = spec.load(raw) if spec.load and raw is not None else raw
        return values

    def column_values(self, values: dict[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name, value in values.items():
            spec = self.field_spec(name)
            if spec and spec.dump and value is not None:
                value = spec.dump(value)
            out[name] = value
        return out


@dataclass(frozen=True)
class EntityFilter:
    start: datetime | None = None
    end: datetime | None = None
    limit: int | None = None


# --- Coercers: raise ValueError with a human-readable reason ---

def as_int(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValueError("must be an integer")


def as_float(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("must be a number")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError("must be a number") from exc


def as_bool(value: Any) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    raise ValueError("must be a boolean")


def as_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("must be a string")
    return value.strip()


def as_datetime(value: Any) -> datetime | None:
    try:
        return parse_datetime(value)
    except (TypeError, ValueError) as exc:
        raise ValueError("must be an ISO-8601 timestamp") from exc


def as_date(value: Any) -> date | None:
    try:
        return parse_date(value)
    except (TypeError, ValueError) as exc:
        raise ValueError("must be an ISO-8601 date") from exc


def as_string_list(value: Any) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = [part for part in value.split(",")]
    if not isinstance(value, (list, tuple)):
        raise ValueError("must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError("must be a list of strings")
        text = " ".join(item.split())
        if text:
            out.append(text)
    return list(dict.fromkeys(out))


def as_json_object(value: Any) -> dict | None:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError("must be an object")
    return value


def as_choice(*choices: str) -> Coercer:
    allowed = tuple(choices)

    def _coerce(value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip().lower()
        if text not in allowed:
            raise ValueError(f"must be one of: {', '.join(allowed)}")
        return text

    return _coerce


# --- Column adapters ---

def json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True, sort_keys=True)


def json_list_loads(raw: str | None) -> list:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return parsed if isinstance(parsed, list) else []


def json_object_loads(raw: str | None) -> dict:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def date_dumps(value: date) -> str:
    return value.isoformat()


def serialize_row(row, fields: tuple[str, ...], loaders: dict[str, Callable[[Any], Any]] | None = None) -> dict:
    result = {"id": row.id}
    for f in fields:
        val = getattr(row, f, None)
        if loaders and f in loaders:
            val = loaders[f](val)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[f] = val
    return result

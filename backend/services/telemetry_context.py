from __future__ import annotations

import contextvars
from dataclasses import dataclass, field
from datetime import datetime, timezone


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RequestTelemetryScope:
    path: str
    method: str
    request_group: str
    started_at: datetime = field(default_factory=_now_utc)
    db_query_count: int = 0
    db_query_time_ms: float = 0.0


_request_scope_var: contextvars.ContextVar[RequestTelemetryScope | None] = contextvars.ContextVar(
    "request_telemetry_scope",
    default=None,
)

# First path segment after /api -> request group used in request logs.
REQUEST_GROUPS = {
    "episodes": "episodes",
    "medications": "medications",
    "medication-logs": "medications",
    "triggers": "triggers",
    "device-data": "device",
    "analytics": "analytics",
    "status": "analytics",
    "reports": "reports",
    "auth": "auth",
}


def classify_request_group(path: str) -> str | None:
    parts = [p for p in (path or "").split("/") if p]
    if len(parts) < 2 or parts[0] != "api":
        return None
    return REQUEST_GROUPS.get(parts[1])


def start_request_scope(path: str, method: str, request_group: str) -> RequestTelemetryScope:
    scope = RequestTelemetryScope(path=path, method=method, request_group=request_group)
    _request_scope_var.set(scope)
    return scope


def get_request_scope() -> RequestTelemetryScope | None:
    return _request_scope_var.get()


def consume_request_scope() -> RequestTelemetryScope | None:
    scope = _request_scope_var.get()
    _request_scope_var.set(None)
    return scope


def clear_request_scope() -> None:
    _request_scope_var.set(None)


def add_request_db_query(duration_ms: float) -> None:
    scope = _request_scope_var.get()
    if not scope:
        return
    scope.db_query_count += 1
    scope.db_query_time_ms += max(float(duration_ms), 0.0)

from datetime import datetime, date, timedelta, timezone


def utcnow() -> datetime:
    """Current time as naive UTC, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def to_naive_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_datetime(value) -> datetime | None:
    """Accept a datetime or ISO-8601 string (``Z`` suffix allowed)."""
    if value is None or isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(text))


def parse_date(value) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    if "T" in text or " " in text:
        # Full timestamp; the UTC calendar day is the date.
        return parse_datetime(text).date()
    return date.fromisoformat(text)


def start_of_day(d: date) -> datetime:
    """Return start of day as a naive UTC datetime."""
    return datetime(d.year, d.month, d.day)


def end_of_day(d: date) -> datetime:
    """Return the last representable instant of a day as naive UTC."""
    return start_of_day(d + timedelta(days=1)) - timedelta(microseconds=1)


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600.0


def isoformat_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def format_time_ago(then: datetime, now: datetime | None = None) -> str:
    """Human readable distance, e.g. ``"3 hours ago"`` or ``"Yesterday"``."""
    now = now or utcnow()
    diff_seconds = max((now - then).total_seconds(), 0.0)
    diff_hours = int(diff_seconds // 3600)
    diff_days = diff_hours // 24
    if diff_hours < 1:
        return f"{int(diff_seconds // 60)} minutes ago"
    if diff_hours < 24:
        return f"{diff_hours} hours ago"
    if diff_days == 1:
        return "Yesterday"
    return f"{diff_days} days ago"

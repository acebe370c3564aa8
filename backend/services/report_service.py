import logging
from datetime import date, timedelta

from sqlalchemy.orm import Session

from config import settings
from db.models import MedicalReport
from services.aggregation_service import (
    EpisodeSnapshot,
    MedicationLogSnapshot,
    TriggerSnapshot,
    build_report,
)
from store import EntityFilter, EntityStore, ValidationError
from utils.datetime_utils import end_of_day, start_of_day, today_utc

logger = logging.getLogger(__name__)

REPORT_WINDOW_DAYS = {"weekly": 7, "monthly": 30}


def default_report_range(
    report_type: str,
    today: date | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> tuple[date, date]:
    """Trailing range ending today for weekly/monthly reports.

    Dates already supplied are kept. A custom report without both dates is
    rejected, naming each missing one.
    """
    if start_date is not None and end_date is not None:
        return start_date, end_date
    days = REPORT_WINDOW_DAYS.get(report_type)
    if days is None:
        missing = [name for name, value in (("start_date", start_date), ("end_date", end_date)) if value is None]
        raise ValidationError({name: "is required for custom reports" for name in missing}, kind="medical_report")
    today = today or today_utc()
    return start_date or today - timedelta(days=days - 1), end_date or today


def compute_report(db: Session, user_id: int, start_date: date, end_date: date) -> dict:
    """Build the report payload for ``[start_date, end_date]`` without persisting it."""
    if end_date < start_date:
        raise ValidationError({"end_date": "must not be earlier than start_date"}, kind="medical_report")

    store = EntityStore(db)
    window = EntityFilter(start=start_of_day(start_date), end=end_of_day(end_date))
    episodes = [EpisodeSnapshot.from_row(r) for r in store.list("episode", user_id, window)]
    logs = [MedicationLogSnapshot.from_row(r) for r in store.list("medication_log", user_id, window)]
    triggers = [TriggerSnapshot.from_row(r) for r in store.list("trigger", user_id)]
    return build_report(episodes, logs, triggers, start_date, end_date, top_n=settings.REPORT_TOP_TRIGGERS)


def generate_report(
    db: Session,
    user_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
    report_type: str = "custom",
) -> MedicalReport:
    """Compute and persist a report. Weekly/monthly reports default to a trailing range."""
    start_date, end_date = default_report_range(report_type, start_date=start_date, end_date=end_date)
    report_data = compute_report(db, user_id, start_date, end_date)
    report = EntityStore(db).create(
        "medical_report",
        {
            "report_type": report_type,
            "start_date": start_date,
            "end_date": end_date,
            "report_data": report_data,
        },
        user_id,
    )
    logger.info(
        "Generated %s report %s for user %s (%s..%s, %s episodes)",
        report_type,
        report.id,
        user_id,
        start_date.isoformat(),
        end_date.isoformat(),
        report_data["summary"]["total_episodes"],
    )
    return report

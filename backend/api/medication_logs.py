from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.query_cache import query_cache
from store import EntityFilter, EntityStore
from utils.datetime_utils import isoformat_or_none, to_naive_utc, utcnow

router = APIRouter(prefix="/medication-logs", tags=["medication-logs"])


class MedicationLogCreate(BaseModel):
    medication_id: Optional[int] = None
    episode_id: Optional[int] = None
    taken_at: Optional[datetime] = None
    effectiveness: Optional[int] = None
    notes: Optional[str] = None


class MedicationLogUpdate(BaseModel):
    episode_id: Optional[int] = None
    taken_at: Optional[datetime] = None
    effectiveness: Optional[int] = None
    notes: Optional[str] = None

    model_config = {"extra": "forbid"}


@router.post("")
def create_medication_log(
    req: MedicationLogCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    payload = req.model_dump()
    if payload["taken_at"] is None:
        payload["taken_at"] = utcnow()
    store = EntityStore(db)
    log = store.create("medication_log", payload, user.id)
    return store.serialize("medication_log", log)


@router.get("")
def list_medication_logs(
    medication_id: Optional[int] = None,
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Dose logs, most recent first."""
    filters = EntityFilter(start=to_naive_utc(start), end=to_naive_utc(end))
    store = EntityStore(db)

    def _load():
        rows = store.list("medication_log", user.id, filters)
        if medication_id is not None:
            rows = [r for r in rows if r.medication_id == medication_id]
        if limit is not None:
            rows = rows[:limit]
        return store.serialize_many("medication_log", rows)

    return query_cache.get_or_load(
        "medication_logs",
        user.id,
        _load,
        params={
            "medication_id": medication_id,
            "limit": limit,
            "start": isoformat_or_none(filters.start),
            "end": isoformat_or_none(filters.end),
        },
    )


@router.patch("/{log_id}")
def update_medication_log(
    log_id: int,
    req: MedicationLogUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    store = EntityStore(db)
    log = store.update("medication_log", log_id, req.model_dump(exclude_unset=True), user.id)
    return store.serialize("medication_log", log)

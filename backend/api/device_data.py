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

router = APIRouter(prefix="/device-data", tags=["device-data"])


class DeviceReadingCreate(BaseModel):
    heart_rate: Optional[int] = None
    stress_level: Optional[str] = None  # low | medium | high
    sleep_quality: Optional[str] = None  # poor | fair | good | excellent
    timestamp: Optional[datetime] = None


@router.post("")
def create_device_reading(
    req: DeviceReadingCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    payload = req.model_dump()
    if payload["timestamp"] is None:
        payload["timestamp"] = utcnow()
    store = EntityStore(db)
    reading = store.create("device_reading", payload, user.id)
    return store.serialize("device_reading", reading)


@router.get("")
def list_device_readings(
    limit: Optional[int] = Query(default=50, ge=1, le=500),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    filters = EntityFilter(start=to_naive_utc(start), end=to_naive_utc(end), limit=limit)
    store = EntityStore(db)
    return query_cache.get_or_load(
        "device_data",
        user.id,
        lambda: store.serialize_many("device_reading", store.list("device_reading", user.id, filters)),
        params={"limit": limit, "start": isoformat_or_none(filters.start), "end": isoformat_or_none(filters.end)},
    )


@router.get("/latest")
def latest_device_reading(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Most recent reading, or ``null`` when the device has not reported yet."""
    store = EntityStore(db)

    def _load():
        rows = store.list("device_reading", user.id, EntityFilter(limit=1))
        return store.serialize("device_reading", rows[0]) if rows else None

    return query_cache.get_or_load("device_data", user.id, _load, params={"latest": True})

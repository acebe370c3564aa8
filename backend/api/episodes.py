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

router = APIRouter(prefix="/episodes", tags=["episodes"])


class EpisodeCreate(BaseModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    intensity: Optional[int] = None
    symptoms: list[str] = []
    triggers: list[str] = []
    notes: Optional[str] = None
    is_emergency: bool = False


class EpisodeUpdate(BaseModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    intensity: Optional[int] = None
    symptoms: Optional[list[str]] = None
    triggers: Optional[list[str]] = None
    notes: Optional[str] = None
    is_emergency: Optional[bool] = None

    model_config = {"extra": "forbid"}


@router.post("")
def create_episode(
    req: EpisodeCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    payload = req.model_dump()
    if payload["start_time"] is None:
        payload["start_time"] = utcnow()
    store = EntityStore(db)
    episode = store.create("episode", payload, user.id)
    return store.serialize("episode", episode)


@router.get("")
def list_episodes(
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Episodes, most recent first."""
    filters = EntityFilter(start=to_naive_utc(start), end=to_naive_utc(end), limit=limit)
    store = EntityStore(db)

    def _load():
        return store.serialize_many("episode", store.list("episode", user.id, filters))

    return query_cache.get_or_load(
        "episodes",
        user.id,
        _load,
        params={"limit": limit, "start": isoformat_or_none(filters.start), "end": isoformat_or_none(filters.end)},
    )


@router.patch("/{episode_id}")
def update_episode(
    episode_id: int,
    req: EpisodeUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Partial update; setting ``end_time`` closes the episode."""
    store = EntityStore(db)
    episode = store.update("episode", episode_id, req.model_dump(exclude_unset=True), user.id)
    return store.serialize("episode", episode)

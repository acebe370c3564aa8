from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.query_cache import query_cache
from store import EntityStore

router = APIRouter(prefix="/triggers", tags=["triggers"])


class TriggerCreate(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    correlation_score: Optional[float] = None
    frequency: int = 0
    last_occurrence: Optional[datetime] = None


class TriggerUpdate(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    correlation_score: Optional[float] = None
    frequency: Optional[int] = None
    last_occurrence: Optional[datetime] = None

    model_config = {"extra": "forbid"}


@router.post("")
def create_trigger(
    req: TriggerCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    store = EntityStore(db)
    trigger = store.create("trigger", req.model_dump(), user.id)
    return store.serialize("trigger", trigger)


@router.get("")
def list_triggers(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Triggers, most frequent first."""
    store = EntityStore(db)
    return query_cache.get_or_load(
        "triggers",
        user.id,
        lambda: store.serialize_many("trigger", store.list("trigger", user.id)),
    )


@router.patch("/{trigger_id}")
def update_trigger(
    trigger_id: int,
    req: TriggerUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    store = EntityStore(db)
    trigger = store.update("trigger", trigger_id, req.model_dump(exclude_unset=True), user.id)
    return store.serialize("trigger", trigger)

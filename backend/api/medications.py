from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.analytics_service import get_adherence, get_medication_effectiveness
from services.query_cache import query_cache
from store import EntityStore

router = APIRouter(prefix="/medications", tags=["medications"])


class MedicationCreate(BaseModel):
    name: Optional[str] = None
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    side_effects: list[str] = []
    is_active: bool = True


class MedicationUpdate(BaseModel):
    name: Optional[str] = None
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    side_effects: Optional[list[str]] = None
    is_active: Optional[bool] = None

    model_config = {"extra": "forbid"}


@router.post("")
def create_medication(
    req: MedicationCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    store = EntityStore(db)
    medication = store.create("medication", req.model_dump(), user.id)
    return store.serialize("medication", medication)


@router.get("")
def list_medications(
    active_only: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    store = EntityStore(db)

    def _load():
        rows = store.list("medication", user.id)
        if active_only:
            rows = [r for r in rows if r.is_active]
        return store.serialize_many("medication", rows)

    return query_cache.get_or_load("medications", user.id, _load, params={"active_only": active_only})


@router.patch("/{medication_id}")
def update_medication(
    medication_id: int,
    req: MedicationUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    store = EntityStore(db)
    medication = store.update("medication", medication_id, req.model_dump(exclude_unset=True), user.id)
    return store.serialize("medication", medication)


@router.get("/{medication_id}/effectiveness")
def medication_effectiveness(
    medication_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Mean effectiveness on the same 1-10 scale doses are rated on."""
    return query_cache.get_or_load(
        "effectiveness",
        user.id,
        lambda: get_medication_effectiveness(db, user.id, medication_id),
        params={"medication_id": medication_id},
    )


@router.get("/{medication_id}/adherence")
def medication_adherence(
    medication_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return get_adherence(db, user.id, medication_id)

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.analytics_service import get_current_status, get_weekly_stats

router = APIRouter(tags=["analytics"])


@router.get("/analytics/weekly")
def weekly_analytics(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Trailing seven-day episode, dose and trigger statistics."""
    return get_weekly_stats(db, user.id)


@router.get("/status/current")
def current_status(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return get_current_status(db, user.id)

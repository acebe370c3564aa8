from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.query_cache import query_cache
from services.report_service import generate_report
from store import EntityFilter, EntityStore

router = APIRouter(prefix="/reports", tags=["reports"])


class ReportGenerateRequest(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    report_type: str = "custom"  # weekly | monthly | custom


@router.post("/generate")
def generate(
    req: ReportGenerateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Compute a report for an inclusive date range and persist it."""
    report = generate_report(
        db,
        user.id,
        start_date=req.start_date,
        end_date=req.end_date,
        report_type=(req.report_type or "custom").strip().lower(),
    )
    return EntityStore(db).serialize("medical_report", report)


@router.get("")
def list_reports(
    limit: int = Query(default=20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    store = EntityStore(db)
    return query_cache.get_or_load(
        "reports",
        user.id,
        lambda: store.serialize_many("medical_report", store.list("medical_report", user.id, EntityFilter(limit=limit))),
        params={"limit": limit},
    )

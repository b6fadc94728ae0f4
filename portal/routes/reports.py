from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from portal.database.db import get_db
from portal.domain.actors import Registrant, Reviewer
from portal.routes.deps import get_actor
from portal.schemas.reports import EventStatsOut, ReportOut, SubjectStatsOut
from portal.services.reports import get_event_stats, get_overall_report, get_subject_stats

router = APIRouter(prefix="/report", tags=["reports"])


@router.get("", response_model=ReportOut)
def overall_report(db: Session = Depends(get_db)):
    """Aggregate report across all events."""
    return get_overall_report(db)


@router.get("/event/{event_id}", response_model=EventStatsOut)
def event_report(event_id: int, db: Session = Depends(get_db)):
    stats = get_event_stats(db, event_id)
    if not stats:
        raise HTTPException(status_code=404, detail="Event not found")
    return stats


@router.get("/me", response_model=SubjectStatsOut)
def my_report(actor: Registrant | Reviewer = Depends(get_actor), db: Session = Depends(get_db)):
    return get_subject_stats(db, actor.subject_id)

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from portal.domain.lifecycle import COUNTED_STATUSES
from portal.models.counters import CapacityCounter
from portal.models.events import Event
from portal.models.registrations import Registration, RegistrationStatus


def _status_breakdown(db: Session, *criteria) -> dict[str, int]:
    rows = db.execute(
        select(Registration.status, func.count(Registration.registration_id))
        .where(*criteria)
        .group_by(Registration.status)
    ).all()
    breakdown = {status.value: 0 for status in RegistrationStatus}
    for status, count in rows:
        breakdown[status] = int(count)
    return breakdown


def get_event_stats(db: Session, event_id: int) -> dict:
    event = db.get(Event, event_id)
    if not event:
        return {}

    admitted_count = db.scalar(
        select(CapacityCounter.admitted_count).where(CapacityCounter.event_id == event_id)
    )

    return {
        "event_id": event.id,
        "capacity": event.capacity,
        "admitted_count": int(admitted_count or 0),
        "total_registrations": event.total_registrations,
        "by_status": _status_breakdown(db, Registration.event_id == event_id),
    }


def get_overall_report(db: Session) -> dict:
    """Return aggregated totals across all events."""
    total_capacity = db.scalar(select(func.sum(Event.capacity)))
    unlimited_events = db.scalar(select(func.count(Event.id)).where(Event.capacity.is_(None)))
    total_admitted = db.scalar(select(func.sum(CapacityCounter.admitted_count)))

    return {
        "total_capacity": int(total_capacity or 0),
        "unlimited_events": int(unlimited_events or 0),
        "total_admitted": int(total_admitted or 0),
        "by_status": _status_breakdown(db),
    }


def get_subject_stats(db: Session, subject_id: int) -> dict:
    """Per-registrant breakdown, as shown on a student dashboard.

    Active registrations are the ones still holding capacity.
    """
    active = db.scalar(
        select(func.count(Registration.registration_id)).where(
            Registration.subject_id == subject_id,
            Registration.status.in_([status.value for status in COUNTED_STATUSES]),
        )
    )
    by_status = _status_breakdown(db, Registration.subject_id == subject_id)
    return {
        "subject_id": subject_id,
        "total_registrations": sum(by_status.values()),
        "active_registrations": int(active or 0),
        "by_status": by_status,
    }

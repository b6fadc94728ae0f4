"""Event eligibility, as consulted at admission time.

The event catalogue owns events; the registration engine only needs a
snapshot of the fields that decide whether someone may register.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from portal.core.time_helpers import as_utc
from portal.models.events import Event, EventRegistrationType, EventStatus
from portal.models.registrations import RegistrationKind


@dataclass(frozen=True)
class TeamSizeBounds:
    min: int
    max: int

    def __contains__(self, size: int) -> bool:
        return self.min <= size <= self.max


@dataclass(frozen=True)
class EventEligibility:
    """Point-in-time view of an event's admission fields."""

    event_id: int
    admission_status: EventStatus
    registration_deadline: datetime
    starts_at: datetime
    capacity: int | None
    team_size: TeamSizeBounds
    registration_type: EventRegistrationType
    is_active: bool

    @property
    def is_open(self) -> bool:
        return self.is_active and self.admission_status is EventStatus.UPCOMING

    def allows(self, kind: RegistrationKind) -> bool:
        if self.registration_type is EventRegistrationType.BOTH:
            return True
        return self.registration_type.value == kind.value


class EventDirectory(ABC):
    """Interface onto the event catalogue."""

    @abstractmethod
    def get_event_eligibility(self, db: Session, event_id: int) -> EventEligibility | None:
        """Return the current eligibility snapshot, or None if no such event."""
        ...


class SqlEventDirectory(EventDirectory):
    """Reads the ``events`` table shared with the catalogue."""

    def get_event_eligibility(self, db: Session, event_id: int) -> EventEligibility | None:
        event = db.get(Event, event_id, populate_existing=True)
        if event is None:
            return None
        return EventEligibility(
            event_id=event.id,
            admission_status=EventStatus(event.status),
            registration_deadline=as_utc(event.registration_deadline),
            starts_at=as_utc(event.starts_at),
            capacity=event.capacity,
            team_size=TeamSizeBounds(min=event.team_size_min, max=event.team_size_max),
            registration_type=EventRegistrationType(event.registration_type),
            is_active=event.is_active,
        )

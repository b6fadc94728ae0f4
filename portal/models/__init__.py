# Import models so that they register with Base.metadata
from portal.models.counters import CapacityCounter, SequenceCounter, SubjectEvent
from portal.models.events import Event, EventRegistrationType, EventStatus
from portal.models.registrations import PaymentStatus, Registration, RegistrationKind, RegistrationStatus

__all__ = [
    "CapacityCounter",
    "Event",
    "EventRegistrationType",
    "EventStatus",
    "PaymentStatus",
    "Registration",
    "RegistrationKind",
    "RegistrationStatus",
    "SequenceCounter",
    "SubjectEvent",
]

from pydantic import BaseModel


class ReportOut(BaseModel):
    total_capacity: int
    unlimited_events: int
    total_admitted: int
    by_status: dict[str, int]


class EventStatsOut(BaseModel):
    event_id: int
    capacity: int | None
    admitted_count: int
    total_registrations: int
    by_status: dict[str, int]


class SubjectStatsOut(BaseModel):
    subject_id: int
    total_registrations: int
    active_registrations: int
    by_status: dict[str, int]

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from portal.database.db import Base


class CapacityCounter(Base):
    """Registrations of an event in submitted, under_review or approved."""

    __tablename__ = "capacity_counters"

    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), primary_key=True)
    admitted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class SequenceCounter(Base):
    """Last registration sequence number issued on ``day``."""

    __tablename__ = "sequence_counters"

    day: Mapped[str] = mapped_column(String(10), primary_key=True)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class SubjectEvent(Base):
    """The set of events a subject currently holds a registration for."""

    __tablename__ = "subject_events"

    subject_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), primary_key=True)

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portal.database.db import Base


class EventStatus(str, enum.Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EventRegistrationType(str, enum.Enum):
    INDIVIDUAL = "individual"
    TEAM = "team"
    BOTH = "both"


class Event(Base):
    """Owned by the event catalogue; the registration engine only reads it
    and bumps ``total_registrations``."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    registration_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=EventStatus.UPCOMING.value)
    registration_type: Mapped[str] = mapped_column(
        String(16), nullable=False, default=EventRegistrationType.INDIVIDUAL.value
    )
    team_size_min: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    team_size_max: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    total_registrations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    registrations: Mapped[list["Registration"]] = relationship(back_populates="event")  # noqa: F821

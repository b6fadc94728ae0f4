import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, Numeric, String, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portal.database.db import Base
from portal.models.events import Event


class RegistrationStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class RegistrationKind(str, enum.Enum):
    INDIVIDUAL = "individual"
    TEAM = "team"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


_ACTIVE = text("status != 'cancelled'")


class Registration(Base):
    __tablename__ = "registrations"
    __table_args__ = (
        # One live registration per (event, subject); cancelled rows fall out of the index.
        Index(
            "uq_registrations_event_subject_active",
            "event_id",
            "subject_id",
            unique=True,
            sqlite_where=_ACTIVE,
            postgresql_where=_ACTIVE,
        ),
        Index("ix_registrations_event_status", "event_id", "status"),
    )

    registration_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), nullable=False)
    subject_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    team_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    team_members: Mapped[list | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=RegistrationStatus.SUBMITTED.value)

    payment_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payment_screenshot_ref: Mapped[str] = mapped_column(String(500), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(16), nullable=False, default=PaymentStatus.PENDING.value)

    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    admin_notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    reviewed_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    event: Mapped["Event"] = relationship(back_populates="registrations")

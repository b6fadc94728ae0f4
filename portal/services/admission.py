from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal.core.config import get_timezone_name
from portal.core.logger_factory import setup_logger
from portal.core.time_helpers import day_key, utcnow
from portal.database.db import unit_of_work, upsert_insert
from portal.domain.actors import Role
from portal.domain.errors import (
    AlreadyRegisteredError,
    DeadlinePassedError,
    EventFullError,
    EventNotFoundError,
    EventNotOpenError,
    InvalidRegistrationError,
    MissingPaymentProofError,
    RegistrationError,
)
from portal.models.counters import SubjectEvent
from portal.models.events import Event
from portal.models.registrations import PaymentStatus, Registration, RegistrationKind, RegistrationStatus
from portal.services.capacity import CapacityLedger
from portal.services.eligibility import EventDirectory, EventEligibility
from portal.services.fanout import BROADCAST, REGISTRATION_CREATED, FanoutNotifier, role_topic
from portal.services.sequence import SequenceAllocator, format_registration_id

logger = setup_logger(__name__)


@dataclass(frozen=True)
class PaymentClaim:
    """What the registrant says they paid; nothing here is verified."""

    amount: Decimal = Decimal("0")
    external_reference: str | None = None
    screenshot_ref: str | None = None


class AdmissionController:
    """Decides whether a registration attempt is accepted and records it."""

    def __init__(
        self,
        ledger: CapacityLedger,
        allocator: SequenceAllocator,
        directory: EventDirectory,
        notifier: FanoutNotifier,
        clock: Callable = utcnow,
        tz_name: str | None = None,
    ) -> None:
        self.ledger = ledger
        self.allocator = allocator
        self.directory = directory
        self.notifier = notifier
        self.clock = clock
        self.tz_name = tz_name or get_timezone_name()

    def submit(
        self,
        db: Session,
        *,
        event_id: int,
        subject_id: int,
        kind: RegistrationKind,
        payment: PaymentClaim,
        team_name: str | None = None,
        team_members: Sequence[dict] | None = None,
        details: dict[str, Any] | None = None,
    ) -> Registration:
        """Admit one registration or raise the first failing check's error.

        Checks run in a fixed order: event open, deadline, duplicate, team
        shape, capacity, payment proof. Capacity is reserved and committed
        before the registration row is written; any failure after that point
        hands the reservation back before the error propagates.
        """
        try:
            now = self.clock()
            eligibility = self._check_event(db, event_id, now)
            self._check_not_registered(db, event_id, subject_id)
            self._check_shape(eligibility, kind, team_name, team_members)

            with unit_of_work(db):
                reserved = self.ledger.try_reserve(db, event_id, eligibility.capacity)
            if not reserved:
                raise EventFullError(event_id)
        except Exception as e:
            db.rollback()
            if isinstance(e, RegistrationError):
                logger.info(f"Rejected registration of subject {subject_id} for event {event_id}: {e.code.value}")
            raise

        try:
            if not payment.screenshot_ref:
                raise MissingPaymentProofError()
            registration = self._persist(
                db,
                now=now,
                event_id=event_id,
                subject_id=subject_id,
                kind=kind,
                payment=payment,
                team_name=team_name,
                team_members=team_members,
                details=details,
            )
        except Exception as e:
            self._compensate(db, event_id)
            if isinstance(e, RegistrationError):
                logger.info(f"Rejected registration of subject {subject_id} for event {event_id}: {e.code.value}")
            raise

        logger.info(f"Admitted {registration.registration_id} (subject {subject_id}, event {event_id})")
        self.notifier.publish_registration(
            REGISTRATION_CREATED, registration, [BROADCAST, role_topic(Role.ADMIN)]
        )
        return registration

    def _check_event(self, db: Session, event_id: int, now) -> EventEligibility:
        eligibility = self.directory.get_event_eligibility(db, event_id)
        if eligibility is None:
            raise EventNotFoundError(event_id)
        if not eligibility.is_open:
            raise EventNotOpenError(event_id)
        if now > eligibility.registration_deadline:
            raise DeadlinePassedError(event_id)
        return eligibility

    def _check_not_registered(self, db: Session, event_id: int, subject_id: int) -> None:
        # Fast path only; the partial unique index is the real guard.
        existing = db.scalar(
            select(Registration.registration_id).where(
                Registration.event_id == event_id,
                Registration.subject_id == subject_id,
                Registration.status != RegistrationStatus.CANCELLED.value,
            )
        )
        if existing is not None:
            raise AlreadyRegisteredError(event_id, subject_id)

    def _check_shape(
        self,
        eligibility: EventEligibility,
        kind: RegistrationKind,
        team_name: str | None,
        team_members: Sequence[dict] | None,
    ) -> None:
        if not eligibility.allows(kind):
            raise InvalidRegistrationError(f"This event does not accept {kind.value} registrations")
        if kind is RegistrationKind.INDIVIDUAL:
            if team_members:
                raise InvalidRegistrationError("Team members are only allowed for team registration")
            return
        if not team_name or not team_name.strip():
            raise InvalidRegistrationError("Team name is required for team registration")
        size = len(team_members or [])
        if size not in eligibility.team_size:
            raise InvalidRegistrationError(
                f"Team size must be between {eligibility.team_size.min} and {eligibility.team_size.max} members"
            )

    def _persist(
        self,
        db: Session,
        *,
        now,
        event_id: int,
        subject_id: int,
        kind: RegistrationKind,
        payment: PaymentClaim,
        team_name: str | None,
        team_members: Sequence[dict] | None,
        details: dict[str, Any] | None,
    ) -> Registration:
        day = day_key(now, self.tz_name)
        registration_id = format_registration_id(day, self.allocator.allocate(day))
        is_team = kind is RegistrationKind.TEAM

        registration = Registration(
            registration_id=registration_id,
            event_id=event_id,
            subject_id=subject_id,
            kind=kind.value,
            team_name=team_name.strip() if is_team and team_name else None,
            team_members=list(team_members) if is_team else None,
            status=RegistrationStatus.SUBMITTED.value,
            payment_amount=payment.amount,
            payment_reference=payment.external_reference,
            payment_screenshot_ref=payment.screenshot_ref,
            payment_status=PaymentStatus.PENDING.value,
            details=dict(details or {}),
            submitted_at=now,
            updated_at=now,
            version=1,
        )
        try:
            with unit_of_work(db):
                db.add(registration)
                db.flush()
                db.execute(
                    update(Event)
                    .where(Event.id == event_id)
                    .values(total_registrations=Event.total_registrations + 1),
                    execution_options={"synchronize_session": False},
                )
                db.execute(
                    upsert_insert(db.get_bind(), SubjectEvent.__table__)
                    .values(subject_id=subject_id, event_id=event_id)
                    .on_conflict_do_nothing()
                )
        except IntegrityError as e:
            db.expunge_all()
            duplicate = db.scalar(
                select(Registration.registration_id).where(
                    Registration.event_id == event_id,
                    Registration.subject_id == subject_id,
                    Registration.status != RegistrationStatus.CANCELLED.value,
                )
            )
            if duplicate is not None:
                raise AlreadyRegisteredError(event_id, subject_id) from e
            raise
        return registration

    def _compensate(self, db: Session, event_id: int) -> None:
        db.rollback()
        try:
            with unit_of_work(db):
                self.ledger.release(db, event_id)
        except Exception:
            logger.exception(f"Could not release reserved capacity on event {event_id}")
            return
        logger.warning(f"Released reserved capacity on event {event_id} after failed admission")

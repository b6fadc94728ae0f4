from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from portal.core.config import TRANSITION_ATTEMPTS
from portal.core.logger_factory import setup_logger
from portal.core.time_helpers import utcnow
from portal.database.db import unit_of_work
from portal.domain.actors import Registrant, Reviewer, Role
from portal.domain.errors import (
    CancellationNotAllowedError,
    ConcurrentModificationError,
    EditNotAllowedError,
    InvalidRegistrationError,
    NotAuthorizedError,
    RegistrationNotFoundError,
)
from portal.domain.lifecycle import can_cancel, can_edit, check_review_transition, releases_capacity
from portal.models.counters import SubjectEvent
from portal.models.events import Event
from portal.models.registrations import Registration, RegistrationStatus
from portal.services.capacity import CapacityLedger
from portal.services.eligibility import EventDirectory
from portal.services.fanout import (
    BROADCAST,
    REGISTRATION_CANCELLED,
    REGISTRATION_STATUS_CHANGED,
    REGISTRATION_UPDATED,
    FanoutNotifier,
    role_topic,
    subject_topic,
)

logger = setup_logger(__name__)

# Sub-documents merged key by key on self-edit; other editable keys are replaced.
MERGED_DETAILS = ("contact_details", "location", "emergency_contact")
REPLACED_DETAILS = ("special_requirements", "custom_fields")


@dataclass
class _Change:
    values: dict[str, Any] = field(default_factory=dict)
    release_capacity: bool = False
    cancelled: bool = False


class _StaleVersion(Exception):
    pass


class LifecycleService:
    """Status transitions and registrant edits on existing registrations.

    Each change is a conditional UPDATE on (registration_id, version). When
    another request got there first the row is re-read and the guard checked
    again, so a decision is never made on a stale status.
    """

    def __init__(
        self,
        ledger: CapacityLedger,
        directory: EventDirectory,
        notifier: FanoutNotifier,
        clock: Callable = utcnow,
        max_attempts: int = TRANSITION_ATTEMPTS,
    ) -> None:
        self.ledger = ledger
        self.directory = directory
        self.notifier = notifier
        self.clock = clock
        self.max_attempts = max_attempts

    def get(self, db: Session, registration_id: str, actor: Registrant | Reviewer) -> Registration:
        registration = self._load(db, registration_id)
        if isinstance(actor, Registrant) and registration.subject_id != actor.subject_id:
            raise RegistrationNotFoundError(registration_id)
        return registration

    def transition(
        self,
        db: Session,
        registration_id: str,
        target: RegistrationStatus,
        actor: Reviewer,
        notes: str | None = None,
    ) -> Registration:
        """Move a registration to ``target`` on behalf of a reviewer."""
        if not isinstance(actor, Reviewer):
            raise NotAuthorizedError("review registrations")

        def plan(registration: Registration, now) -> _Change:
            current = RegistrationStatus(registration.status)
            check_review_transition(current, target)
            values = {
                "status": target.value,
                "reviewed_by": actor.subject_id,
                "reviewed_at": now,
            }
            if notes is not None:
                values["admin_notes"] = notes
            return _Change(values=values, release_capacity=releases_capacity(current, target))

        registration = self._apply(db, registration_id, plan)
        logger.info(f"{registration_id} moved to {target.value} by reviewer {actor.subject_id}")
        self.notifier.publish_registration(
            REGISTRATION_STATUS_CHANGED,
            registration,
            [role_topic(Role.ADMIN), subject_topic(registration.subject_id)],
        )
        return registration

    def cancel(self, db: Session, registration_id: str, actor: Registrant) -> Registration:
        """Registrant cancels an approved registration before the event starts."""
        if not isinstance(actor, Registrant):
            raise NotAuthorizedError("cancel registrations")

        def plan(registration: Registration, now) -> _Change:
            if registration.subject_id != actor.subject_id:
                raise RegistrationNotFoundError(registration_id)
            current = RegistrationStatus(registration.status)
            eligibility = self.directory.get_event_eligibility(db, registration.event_id)
            if eligibility is None or not can_cancel(current, eligibility.starts_at, now):
                raise CancellationNotAllowedError(registration_id)
            target = RegistrationStatus.CANCELLED
            return _Change(
                values={"status": target.value},
                release_capacity=releases_capacity(current, target),
                cancelled=True,
            )

        registration = self._apply(db, registration_id, plan)
        logger.info(f"{registration_id} cancelled by subject {actor.subject_id}")
        self.notifier.publish_registration(
            REGISTRATION_CANCELLED, registration, [BROADCAST, role_topic(Role.ADMIN)]
        )
        return registration

    def update_own(
        self,
        db: Session,
        registration_id: str,
        actor: Registrant,
        details: dict[str, Any] | None = None,
        screenshot_ref: str | None = None,
    ) -> Registration:
        """Registrant edits their own submission while it awaits review."""
        if not isinstance(actor, Registrant):
            raise NotAuthorizedError("edit registrations")
        details = details or {}
        unknown = set(details) - set(MERGED_DETAILS) - set(REPLACED_DETAILS)
        if unknown:
            raise InvalidRegistrationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        def plan(registration: Registration, now) -> _Change:
            if registration.subject_id != actor.subject_id:
                raise RegistrationNotFoundError(registration_id)
            if not can_edit(RegistrationStatus(registration.status)):
                raise EditNotAllowedError(registration_id)
            merged = dict(registration.details or {})
            for key, value in details.items():
                if key in MERGED_DETAILS and isinstance(value, dict):
                    merged[key] = {**(merged.get(key) or {}), **value}
                else:
                    merged[key] = value
            values: dict[str, Any] = {"details": merged}
            if screenshot_ref:
                values["payment_screenshot_ref"] = screenshot_ref
            return _Change(values=values)

        registration = self._apply(db, registration_id, plan)
        self.notifier.publish_registration(
            REGISTRATION_UPDATED,
            registration,
            [role_topic(Role.ADMIN), subject_topic(registration.subject_id)],
        )
        return registration

    def _load(self, db: Session, registration_id: str) -> Registration:
        registration = db.execute(
            select(Registration)
            .where(Registration.registration_id == registration_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if registration is None:
            raise RegistrationNotFoundError(registration_id)
        return registration

    def _apply(
        self,
        db: Session,
        registration_id: str,
        plan: Callable[[Registration, Any], _Change],
    ) -> Registration:
        for attempt in range(1, self.max_attempts + 1):
            try:
                registration = self._load(db, registration_id)
                now = self.clock()
                change = plan(registration, now)
                with unit_of_work(db):
                    self._write(db, registration, change, now)
                    registration = self._load(db, registration_id)
            except _StaleVersion:
                logger.info(f"{registration_id} changed underneath us (attempt {attempt}), retrying")
                continue
            except Exception:
                db.rollback()
                raise
            return registration
        raise ConcurrentModificationError(registration_id)

    def _write(self, db: Session, registration: Registration, change: _Change, now) -> None:
        res = db.execute(
            update(Registration)
            .where(
                Registration.registration_id == registration.registration_id,
                Registration.version == registration.version,
            )
            .values(**change.values, updated_at=now, version=registration.version + 1),
            execution_options={"synchronize_session": False},
        )
        if res.rowcount != 1:  # type: ignore
            raise _StaleVersion()

        if change.release_capacity:
            self.ledger.release(db, registration.event_id)
        if change.cancelled:
            db.execute(
                update(Event)
                .where(Event.id == registration.event_id, Event.total_registrations > 0)
                .values(total_registrations=Event.total_registrations - 1),
                execution_options={"synchronize_session": False},
            )
            db.execute(
                delete(SubjectEvent).where(
                    SubjectEvent.subject_id == registration.subject_id,
                    SubjectEvent.event_id == registration.event_id,
                )
            )

"""
Test registration status transitions, cancellation and self-edits.
"""
import pytest
from sqlalchemy import select, update

from portal.domain.actors import Registrant, Reviewer, Role
from portal.domain.errors import (
    CancellationNotAllowedError,
    ConcurrentModificationError,
    EditNotAllowedError,
    ErrorCode,
    InvalidRegistrationError,
    NotAuthorizedError,
    RegistrationNotFoundError,
    TransitionNotAllowedError,
)
from portal.domain.lifecycle import REVIEW_TRANSITIONS, check_review_transition, releases_capacity
from portal.models.counters import SubjectEvent
from portal.models.events import Event
from portal.models.registrations import Registration, RegistrationKind, RegistrationStatus
from portal.services.lifecycle import _StaleVersion

S = RegistrationStatus
ADMIN = Reviewer(subject_id=1)
OWNER = Registrant(subject_id=7)


@pytest.fixture
def submitted(db_session, controller, notifier, make_event, paid):
    """A fresh registration of subject 7 on a capacity-2 event."""
    event_id = make_event(capacity=2)
    registration = controller.submit(
        db_session,
        event_id=event_id,
        subject_id=OWNER.subject_id,
        kind=RegistrationKind.INDIVIDUAL,
        payment=paid,
        details={"contact_details": {"email": "s7@kongu.edu", "phone": "9000000007"}},
    )
    notifier.flush()
    return registration


def move(lifecycle, db, registration, *targets):
    for target in targets:
        registration = lifecycle.transition(db, registration.registration_id, target, ADMIN)
    return registration


class TestTransitionRules:
    @pytest.mark.parametrize(
        "current, target",
        [(current, target) for current, targets in REVIEW_TRANSITIONS.items() for target in targets],
    )
    def test_listed_pairs_pass(self, current, target):
        check_review_transition(current, target)

    @pytest.mark.parametrize("current", [S.SUBMITTED, S.UNDER_REVIEW, S.APPROVED])
    def test_nothing_returns_to_submitted(self, current):
        with pytest.raises(TransitionNotAllowedError):
            check_review_transition(current, S.SUBMITTED)

    def test_terminal_states_have_no_review_exits(self):
        assert S.REJECTED not in REVIEW_TRANSITIONS
        assert S.CANCELLED not in REVIEW_TRANSITIONS

    def test_capacity_is_released_only_when_leaving_counted_states(self):
        assert releases_capacity(S.SUBMITTED, S.REJECTED)
        assert releases_capacity(S.UNDER_REVIEW, S.REJECTED)
        assert releases_capacity(S.APPROVED, S.CANCELLED)
        assert not releases_capacity(S.SUBMITTED, S.APPROVED)
        assert not releases_capacity(S.APPROVED, S.UNDER_REVIEW)


class TestTransition:
    def test_approve_records_reviewer(self, db_session, lifecycle, clock, submitted):
        clock.advance(hours=2)

        registration = lifecycle.transition(
            db_session, submitted.registration_id, S.APPROVED, ADMIN, notes="Payment matched"
        )

        assert registration.status == S.APPROVED.value
        assert registration.reviewed_by == ADMIN.subject_id
        assert registration.admin_notes == "Payment matched"
        assert registration.version == 2
        assert registration.reviewed_at.replace(tzinfo=None) == clock.now.replace(tzinfo=None)

    def test_review_path(self, db_session, lifecycle, ledger, submitted):
        registration = move(lifecycle, db_session, submitted, S.UNDER_REVIEW, S.APPROVED, S.UNDER_REVIEW)

        assert registration.status == S.UNDER_REVIEW.value
        assert registration.version == 4
        assert ledger.admitted_count(db_session, submitted.event_id) == 1

    @pytest.mark.parametrize("path", [(S.REJECTED,), (S.UNDER_REVIEW, S.REJECTED)])
    def test_rejection_releases_capacity(self, db_session, lifecycle, ledger, submitted, path):
        registration = move(lifecycle, db_session, submitted, *path)

        assert registration.status == S.REJECTED.value
        assert ledger.admitted_count(db_session, submitted.event_id) == 0

    def test_rejected_is_terminal(self, db_session, lifecycle, submitted):
        move(lifecycle, db_session, submitted, S.REJECTED)

        for target in (S.SUBMITTED, S.UNDER_REVIEW, S.APPROVED):
            with pytest.raises(TransitionNotAllowedError) as excinfo:
                lifecycle.transition(db_session, submitted.registration_id, target, ADMIN)
            assert excinfo.value.code is ErrorCode.TRANSITION_NOT_ALLOWED

    def test_approved_cannot_be_rejected(self, db_session, lifecycle, ledger, submitted):
        move(lifecycle, db_session, submitted, S.APPROVED)

        with pytest.raises(TransitionNotAllowedError):
            lifecycle.transition(db_session, submitted.registration_id, S.REJECTED, ADMIN)

        stored = lifecycle.get(db_session, submitted.registration_id, ADMIN)
        assert stored.status == S.APPROVED.value
        assert stored.version == 2
        assert ledger.admitted_count(db_session, submitted.event_id) == 1

    def test_reviewer_cannot_cancel_through_transition(self, db_session, lifecycle, submitted):
        with pytest.raises(TransitionNotAllowedError):
            lifecycle.transition(db_session, submitted.registration_id, S.CANCELLED, ADMIN)

    def test_registrant_cannot_review(self, db_session, lifecycle, submitted):
        with pytest.raises(NotAuthorizedError) as excinfo:
            lifecycle.transition(db_session, submitted.registration_id, S.APPROVED, OWNER)
        assert excinfo.value.code is ErrorCode.NOT_AUTHORIZED

    def test_unknown_registration(self, db_session, lifecycle):
        with pytest.raises(RegistrationNotFoundError):
            lifecycle.transition(db_session, "EVT-2026-03-10-9999", S.APPROVED, ADMIN)

    def test_status_change_reaches_admins_and_owner(self, db_session, lifecycle, notifier, hub, submitted):
        owner = hub.subscribe(Role.STUDENT, subject_id=OWNER.subject_id)
        other = hub.subscribe(Role.STUDENT, subject_id=8)
        admin = hub.subscribe(Role.ADMIN, subject_id=ADMIN.subject_id)

        move(lifecycle, db_session, submitted, S.APPROVED)
        assert notifier.flush()

        assert [m["event"] for m in owner.drain()] == ["registration-status-changed"]
        assert [m["event"] for m in admin.drain()] == ["registration-status-changed"]
        assert other.drain() == []


class TestCancel:
    def test_owner_cancels_approved_registration(self, db_session, lifecycle, ledger, submitted):
        move(lifecycle, db_session, submitted, S.APPROVED)

        registration = lifecycle.cancel(db_session, submitted.registration_id, OWNER)

        assert registration.status == S.CANCELLED.value
        assert ledger.admitted_count(db_session, submitted.event_id) == 0
        event = db_session.get(Event, submitted.event_id, populate_existing=True)
        assert event.total_registrations == 0
        assert db_session.get(SubjectEvent, (OWNER.subject_id, submitted.event_id)) is None

    @pytest.mark.parametrize("status_path", [(), (S.UNDER_REVIEW,), (S.REJECTED,)])
    def test_only_approved_can_be_cancelled(self, db_session, lifecycle, ledger, submitted, status_path):
        move(lifecycle, db_session, submitted, *status_path)
        admitted = ledger.admitted_count(db_session, submitted.event_id)

        with pytest.raises(CancellationNotAllowedError) as excinfo:
            lifecycle.cancel(db_session, submitted.registration_id, OWNER)

        assert excinfo.value.code is ErrorCode.CANCELLATION_NOT_ALLOWED
        assert ledger.admitted_count(db_session, submitted.event_id) == admitted

    def test_cannot_cancel_after_event_started(self, db_session, lifecycle, clock, submitted):
        move(lifecycle, db_session, submitted, S.APPROVED)
        clock.advance(days=7)

        with pytest.raises(CancellationNotAllowedError):
            lifecycle.cancel(db_session, submitted.registration_id, OWNER)

    def test_cancelled_is_terminal(self, db_session, lifecycle, submitted):
        move(lifecycle, db_session, submitted, S.APPROVED)
        lifecycle.cancel(db_session, submitted.registration_id, OWNER)

        with pytest.raises(CancellationNotAllowedError):
            lifecycle.cancel(db_session, submitted.registration_id, OWNER)
        with pytest.raises(TransitionNotAllowedError):
            lifecycle.transition(db_session, submitted.registration_id, S.APPROVED, ADMIN)

    def test_other_subject_sees_not_found(self, db_session, lifecycle, submitted):
        move(lifecycle, db_session, submitted, S.APPROVED)

        with pytest.raises(RegistrationNotFoundError):
            lifecycle.cancel(db_session, submitted.registration_id, Registrant(subject_id=8))

    def test_reviewer_cannot_cancel(self, db_session, lifecycle, submitted):
        move(lifecycle, db_session, submitted, S.APPROVED)

        with pytest.raises(NotAuthorizedError):
            lifecycle.cancel(db_session, submitted.registration_id, ADMIN)


class TestUpdateOwn:
    def test_contact_details_are_merged(self, db_session, lifecycle, submitted):
        registration = lifecycle.update_own(
            db_session,
            submitted.registration_id,
            OWNER,
            details={
                "contact_details": {"phone": "9111111111"},
                "special_requirements": "Wheelchair access",
            },
        )

        assert registration.details["contact_details"] == {"email": "s7@kongu.edu", "phone": "9111111111"}
        assert registration.details["special_requirements"] == "Wheelchair access"
        assert registration.version == 2

    def test_payment_proof_can_be_replaced(self, db_session, lifecycle, submitted):
        registration = lifecycle.update_own(
            db_session, submitted.registration_id, OWNER, screenshot_ref="uploads/pay/0001-v2.png"
        )

        assert registration.payment_screenshot_ref == "uploads/pay/0001-v2.png"

    def test_locked_once_reviewed(self, db_session, lifecycle, submitted):
        move(lifecycle, db_session, submitted, S.UNDER_REVIEW)

        with pytest.raises(EditNotAllowedError) as excinfo:
            lifecycle.update_own(db_session, submitted.registration_id, OWNER, details={"location": {"city": "Erode"}})
        assert excinfo.value.code is ErrorCode.EDIT_NOT_ALLOWED

    def test_unknown_fields_rejected(self, db_session, lifecycle, submitted):
        with pytest.raises(InvalidRegistrationError, match="status"):
            lifecycle.update_own(db_session, submitted.registration_id, OWNER, details={"status": "approved"})

    def test_other_subject_sees_not_found(self, db_session, lifecycle, submitted):
        with pytest.raises(RegistrationNotFoundError):
            lifecycle.update_own(
                db_session, submitted.registration_id, Registrant(subject_id=8), details={"location": {}}
            )


class TestGet:
    def test_owner_and_reviewer_can_read(self, db_session, lifecycle, submitted):
        assert lifecycle.get(db_session, submitted.registration_id, OWNER).subject_id == OWNER.subject_id
        assert lifecycle.get(db_session, submitted.registration_id, ADMIN).subject_id == OWNER.subject_id

    def test_other_registrant_cannot_read(self, db_session, lifecycle, submitted):
        with pytest.raises(RegistrationNotFoundError):
            lifecycle.get(db_session, submitted.registration_id, Registrant(subject_id=8))


class TestOptimisticRetry:
    def test_stale_version_is_retried(self, db_session, lifecycle, submitted, monkeypatch):
        original_write = lifecycle._write
        calls = []

        def racing_write(db, registration, change, now):
            calls.append(registration.version)
            if len(calls) == 1:
                # Another writer commits between our read and our write.
                db.execute(
                    update(Registration)
                    .where(Registration.registration_id == registration.registration_id)
                    .values(version=Registration.version + 1, admin_notes="touched"),
                    execution_options={"synchronize_session": False},
                )
                db.commit()
            original_write(db, registration, change, now)

        monkeypatch.setattr(lifecycle, "_write", racing_write)

        registration = lifecycle.transition(db_session, submitted.registration_id, S.APPROVED, ADMIN)

        assert calls == [1, 2]
        assert registration.status == S.APPROVED.value
        assert registration.version == 3
        assert registration.admin_notes == "touched"

    def test_gives_up_after_max_attempts(self, db_session, lifecycle, ledger, submitted, monkeypatch):
        attempts = []

        def always_stale(db, registration, change, now):
            attempts.append(registration.version)
            raise _StaleVersion()

        monkeypatch.setattr(lifecycle, "_write", always_stale)

        with pytest.raises(ConcurrentModificationError) as excinfo:
            lifecycle.transition(db_session, submitted.registration_id, S.REJECTED, ADMIN)

        assert excinfo.value.code is ErrorCode.CONCURRENT_MODIFICATION
        assert len(attempts) == lifecycle.max_attempts
        assert ledger.admitted_count(db_session, submitted.event_id) == 1


class TestScenario:
    def test_submit_approve_cancel(self, db_session, controller, lifecycle, ledger, notifier, hub, make_event, paid):
        event_id = make_event(capacity=1)
        registration = controller.submit(
            db_session, event_id=event_id, subject_id=7, kind=RegistrationKind.INDIVIDUAL, payment=paid
        )
        assert notifier.flush()
        watcher = hub.subscribe(Role.STUDENT, subject_id=7)

        move(lifecycle, db_session, registration, S.APPROVED)
        lifecycle.cancel(db_session, registration.registration_id, OWNER)
        assert notifier.flush()

        messages = watcher.drain()
        assert [m["event"] for m in messages] == ["registration-status-changed", "registration-cancelled"]
        assert [m["data"]["version"] for m in messages] == [2, 3]
        assert ledger.admitted_count(db_session, event_id) == 0
        statuses = db_session.scalars(select(Registration.status)).all()
        assert statuses == [S.CANCELLED.value]

"""Registration status rules.

admitted_count covers every registration in a counted status; leaving that
set releases one unit of capacity.
"""

from datetime import datetime

from portal.domain.errors import TransitionNotAllowedError
from portal.models.registrations import RegistrationStatus

S = RegistrationStatus

COUNTED_STATUSES = frozenset({S.SUBMITTED, S.UNDER_REVIEW, S.APPROVED})
TERMINAL_STATUSES = frozenset({S.REJECTED, S.CANCELLED})

REVIEW_TRANSITIONS: dict[RegistrationStatus, frozenset[RegistrationStatus]] = {
    S.SUBMITTED: frozenset({S.UNDER_REVIEW, S.APPROVED, S.REJECTED}),
    S.UNDER_REVIEW: frozenset({S.APPROVED, S.REJECTED}),
    # re-flagging an approved registration for another look
    S.APPROVED: frozenset({S.UNDER_REVIEW}),
}


def check_review_transition(current: RegistrationStatus, target: RegistrationStatus) -> None:
    if target not in REVIEW_TRANSITIONS.get(current, frozenset()):
        raise TransitionNotAllowedError(current.value, target.value)


def releases_capacity(current: RegistrationStatus, target: RegistrationStatus) -> bool:
    return current in COUNTED_STATUSES and target not in COUNTED_STATUSES


def can_cancel(current: RegistrationStatus, event_starts_at: datetime, now: datetime) -> bool:
    return current is S.APPROVED and event_starts_at > now


def can_edit(current: RegistrationStatus) -> bool:
    return current is S.SUBMITTED

"""Reason codes for registration admission and lifecycle failures.

Every failure the engine reports carries a stable ``ErrorCode`` so callers
can branch on the code instead of the message.
"""

from enum import Enum


class ErrorCode(Enum):
    """Domain error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    EVENT_NOT_OPEN = "EVENT_NOT_OPEN"
    DEADLINE_PASSED = "DEADLINE_PASSED"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    EVENT_FULL = "EVENT_FULL"
    MISSING_PAYMENT_PROOF = "MISSING_PAYMENT_PROOF"
    ALLOCATION_UNAVAILABLE = "ALLOCATION_UNAVAILABLE"
    LEDGER_UNAVAILABLE = "LEDGER_UNAVAILABLE"
    REGISTRATION_NOT_FOUND = "REGISTRATION_NOT_FOUND"
    TRANSITION_NOT_ALLOWED = "TRANSITION_NOT_ALLOWED"
    CANCELLATION_NOT_ALLOWED = "CANCELLATION_NOT_ALLOWED"
    EDIT_NOT_ALLOWED = "EDIT_NOT_ALLOWED"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"


class RegistrationError(Exception):
    """Base domain error with code and user-safe message."""

    transient = False

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class InvalidRegistrationError(RegistrationError):
    """Malformed input such as a team outside the allowed size."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.VALIDATION_ERROR, message=message)


class EventNotFoundError(RegistrationError):
    def __init__(self, event_id: int) -> None:
        super().__init__(code=ErrorCode.EVENT_NOT_FOUND, message="Event not found")
        self.event_id = event_id


class EventNotOpenError(RegistrationError):
    def __init__(self, event_id: int) -> None:
        super().__init__(
            code=ErrorCode.EVENT_NOT_OPEN,
            message="Registration is not open for this event",
        )
        self.event_id = event_id


class DeadlinePassedError(RegistrationError):
    def __init__(self, event_id: int) -> None:
        super().__init__(
            code=ErrorCode.DEADLINE_PASSED,
            message="Registration deadline has passed",
        )
        self.event_id = event_id


class AlreadyRegisteredError(RegistrationError):
    def __init__(self, event_id: int, subject_id: int) -> None:
        super().__init__(
            code=ErrorCode.ALREADY_REGISTERED,
            message="You are already registered for this event",
        )
        self.event_id = event_id
        self.subject_id = subject_id


class EventFullError(RegistrationError):
    def __init__(self, event_id: int) -> None:
        super().__init__(
            code=ErrorCode.EVENT_FULL,
            message="Event is full. Registration closed.",
        )
        self.event_id = event_id


class MissingPaymentProofError(RegistrationError):
    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.MISSING_PAYMENT_PROOF,
            message="Payment screenshot is required",
        )


class AllocationUnavailableError(RegistrationError):
    """The sequence counter store could not be reached. Safe to retry."""

    transient = True

    def __init__(self, day: str) -> None:
        super().__init__(
            code=ErrorCode.ALLOCATION_UNAVAILABLE,
            message="Registration number could not be allocated, please try again",
        )
        self.day = day


class LedgerUnavailableError(RegistrationError):
    """The capacity counter store could not be reached. Safe to retry."""

    transient = True

    def __init__(self, event_id: int) -> None:
        super().__init__(
            code=ErrorCode.LEDGER_UNAVAILABLE,
            message="Capacity could not be checked, please try again",
        )
        self.event_id = event_id


class RegistrationNotFoundError(RegistrationError):
    def __init__(self, registration_id: str) -> None:
        super().__init__(code=ErrorCode.REGISTRATION_NOT_FOUND, message="Registration not found")
        self.registration_id = registration_id


class TransitionNotAllowedError(RegistrationError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            code=ErrorCode.TRANSITION_NOT_ALLOWED,
            message=f"Cannot move a registration from {current} to {target}",
        )
        self.current = current
        self.target = target


class CancellationNotAllowedError(RegistrationError):
    def __init__(self, registration_id: str) -> None:
        super().__init__(
            code=ErrorCode.CANCELLATION_NOT_ALLOWED,
            message="Registration cannot be cancelled at this time",
        )
        self.registration_id = registration_id


class EditNotAllowedError(RegistrationError):
    def __init__(self, registration_id: str) -> None:
        super().__init__(
            code=ErrorCode.EDIT_NOT_ALLOWED,
            message="Registration cannot be updated after review",
        )
        self.registration_id = registration_id


class NotAuthorizedError(RegistrationError):
    def __init__(self, action: str) -> None:
        super().__init__(
            code=ErrorCode.NOT_AUTHORIZED,
            message=f"Not allowed to {action}",
        )
        self.action = action


class ConcurrentModificationError(RegistrationError):
    """The registration kept changing underneath us. Safe to retry."""

    transient = True

    def __init__(self, registration_id: str) -> None:
        super().__init__(
            code=ErrorCode.CONCURRENT_MODIFICATION,
            message="Registration was modified concurrently, please try again",
        )
        self.registration_id = registration_id

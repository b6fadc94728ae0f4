"""Capability tokens handed to the lifecycle operations.

The identity layer decides who the caller is; the engine only checks which
token it was given.
"""

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    STUDENT = "student"


@dataclass(frozen=True)
class Registrant:
    """A student acting on their own registrations."""

    subject_id: int


@dataclass(frozen=True)
class Reviewer:
    """Staff with review authority over every registration."""

    subject_id: int


def actor_for(subject_id: int, role: Role) -> Registrant | Reviewer:
    if role is Role.ADMIN:
        return Reviewer(subject_id=subject_id)
    return Registrant(subject_id=subject_id)

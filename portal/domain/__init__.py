from portal.domain.actors import Registrant, Reviewer, Role, actor_for
from portal.domain.errors import ErrorCode, RegistrationError

__all__ = [
    "ErrorCode",
    "Registrant",
    "RegistrationError",
    "Reviewer",
    "Role",
    "actor_for",
]

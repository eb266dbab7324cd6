"""
Error taxonomy shared by the lifecycle engine, the contact rules and the chat coordinator.

Every rejected operation raises one of these with a machine-readable `code` and a
user-facing `message`. `foodlink.main` maps them onto HTTP responses; nothing below the
router layer turns them into booleans or swallows them.
"""


class DomainError(Exception):
    status_code = 400
    default_code = "ERROR"

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(DomainError):
    """Malformed input, rejected before any store access."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class GuardViolation(DomainError):
    """The action is not legal in the record's current state."""

    status_code = 409
    default_code = "GUARD_VIOLATION"


class ConflictError(DomainError):
    """A conditional write lost a race; re-fetch and try again."""

    status_code = 409
    default_code = "CONFLICT"

    def __init__(self, message: str = "please try again", *, code: str | None = None):
        super().__init__(message, code=code)


class NotFoundError(DomainError):
    status_code = 404
    default_code = "NOT_FOUND"


class AuthorizationError(DomainError):
    status_code = 403
    default_code = "FORBIDDEN"


class ChatArchivedError(AuthorizationError):
    default_code = "CHAT_ARCHIVED"

    def __init__(self, message: str = "chat archived: the linked delivery is complete", *, code: str | None = None):
        super().__init__(message, code=code)

"""
core/errors.py -- Error taxonomy shared by the identity core and the API shell.

Every failure the identity core can report is one of these exceptions. Each
carries the HTTP status it maps to, so the API layer needs a single exception
handler rather than per-route translation. None of them are retried: they are
terminal for the request that raised them.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations


class IdGateError(Exception):
    """Base class for all identity-core failures."""

    status_code: int = 500
    default_message: str = "Internal Server Error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(IdGateError):
    status_code = 404
    default_message = "Not Found"


class UnauthorizedError(IdGateError):
    """Missing or invalid credential, or a passcode that does not verify."""

    status_code = 401
    default_message = "Unauthorized"


class ConflictError(IdGateError):
    """A uniqueness violation on a named field (e.g. "Email", "Phone")."""

    status_code = 409

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"{field} already exists")


class ValidationError(IdGateError):
    # 404 matches the status existing clients already handle for this case.
    status_code = 404
    default_message = "Validation Error"


class FormatError(IdGateError):
    """Malformed input, e.g. a profile URL that does not use https."""

    status_code = 422
    default_message = "Format Error"


class DatabaseError(IdGateError):
    """Any store-access failure. Never downgraded to "not found" or "no conflict"."""

    status_code = 422
    default_message = "Database Error"

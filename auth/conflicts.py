"""
auth/conflicts.py -- Contact-field uniqueness check for registration and profile updates.

The check is advisory: it gives the client a precise "Email already exists" /
"Phone already exists" answer before any write. The store's unique
constraints remain the final arbiter when two requests race past the check.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from sqlalchemy.engine import Connection

from auth.models import ConflictCheckResult
from auth.store import IdentityStore
from core.errors import ConflictError

_FIELD_LABELS = {"email": "Email", "phone": "Phone"}


class RegistrationConflictCheck:
    def __init__(self, store: IdentityStore) -> None:
        self._store = store

    def check(
        self,
        email: str,
        phone: str | None,
        excluding_id: str,
        conn: Connection | None = None,
    ) -> ConflictCheckResult:
        """Report the first contact field another identity already uses.

        Email is checked before phone and wins when both collide. The identity
        `excluding_id` never conflicts with itself, so the same check serves
        profile updates. An absent phone is never checked. Store failures
        propagate as DatabaseError -- they must not read as "no conflict".
        """
        if self._store.email_taken(email, excluding_id, conn=conn):
            return ConflictCheckResult(field="email")
        if phone and self._store.phone_taken(phone, excluding_id, conn=conn):
            return ConflictCheckResult(field="phone")
        return ConflictCheckResult()


def raise_for_conflict(result: ConflictCheckResult) -> None:
    """Raise ConflictError naming the colliding field, if there is one."""
    if result.has_conflict:
        raise ConflictError(_FIELD_LABELS.get(result.field, "Unknown"))

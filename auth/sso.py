"""
auth/sso.py -- Reconcile federated-provider assertions into local identities.

The assertion arrives already verified by the provider (the client completed
the provider's flow); this module only decides which local account it maps
to. The upsert itself is delegated to IdentityStore.upsert_sso, which runs in
one transaction and leans on the store's unique constraints, so repeated or
concurrent sign-ins for the same external identity converge on one account.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.models import ReconcileResult, SsoAssertion
from auth.store import IdentityStore
from core.errors import FormatError, NotFoundError

logger = logging.getLogger("idgate.auth.sso")


def validate_profile_url(url: str | None) -> None:
    """Accept an empty URL or an https one; anything else is a FormatError."""
    if url and not url.startswith("https://"):
        raise FormatError("Profile URL must start with 'https://'")


class SsoReconciliation:
    def __init__(self, store: IdentityStore) -> None:
        self._store = store

    def reconcile(self, assertion: SsoAssertion) -> ReconcileResult:
        """Upsert the identity behind `assertion` and report whether it is new.

        Raises:
            FormatError:  photo is not an https URL.
            NotFoundError: the upsert produced no row.
            ConflictError: the provider now reports an email that a different
                local account already uses.
        """
        validate_profile_url(assertion.photo)
        result = self._store.upsert_sso(assertion)
        if result is None:
            logger.error("SSO upsert produced no row for provider=%s", assertion.provider)
            raise NotFoundError()
        logger.info(
            "SSO reconcile provider=%s identity=%s new=%s",
            assertion.provider,
            result.identity_id,
            result.is_new,
        )
        return result

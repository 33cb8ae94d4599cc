"""
auth/service.py -- AuthService: the public identity flows.

Composes TokenService, the OTP functions, RegistrationConflictCheck and
SsoReconciliation over one IdentityStore. Each call is an independent flow:
the service keeps no per-request or per-user state between calls, so one
instance is shared by every request.

Flows:
  sso_sign_in           reconcile -> fetch -> issue token
  register              [conflict check + insert] in one transaction ->
                        SMS + email challenges -> fetch -> issue token
  confirm_otp           verify passcode -> activate (pending -> active)
  self_lookup           verify token -> re-read current identity
  send_otp              fresh challenge for the bearer on one channel
  complete_registration activate by id
  update_profile        [conflict check (self excluded) + update] -> new token

Every failure is one of the core.errors exceptions; none are retried here.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from auth.conflicts import RegistrationConflictCheck, raise_for_conflict
from auth.models import AuthResult, Identity, ProfileUpdate, RegistrationRequest, SsoAssertion
from auth.notify import CHANNELS, LoggingNotifier, Notifier
from auth.otp import DEFAULT_OTP_LENGTH, generate_otp, verify_otp
from auth.sso import SsoReconciliation
from auth.store import IdentityStore
from auth.tokens import TokenService, hash_password
from core.errors import NotFoundError, UnauthorizedError, ValidationError

logger = logging.getLogger("idgate.auth.service")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    """Entry point for every identity flow.

    Usage:
        service = AuthService(store, TokenService(settings.secret_key))
        result, is_new = service.sso_sign_in(assertion)
    """

    def __init__(
        self,
        store: IdentityStore,
        tokens: TokenService,
        notifier: Notifier | None = None,
        otp_length: int = DEFAULT_OTP_LENGTH,
        otp_fixed_code: str = "",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._conflicts = RegistrationConflictCheck(store)
        self._sso = SsoReconciliation(store)
        self._notifier = notifier or LoggingNotifier()
        self._otp_length = otp_length
        self._otp_fixed_code = otp_fixed_code
        self._clock = clock

    @property
    def tokens(self) -> TokenService:
        return self._tokens

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, identity_id: str) -> Identity:
        identity = self._store.get_by_id(identity_id)
        if identity is None:
            raise NotFoundError()
        return identity

    def _issue_challenge(self, identity: Identity, channel: str) -> str:
        challenge = generate_otp(
            identity.id,
            now=self._clock(),
            code=self._otp_fixed_code or None,
            length=self._otp_length,
        )
        self._notifier.send_code(identity, channel, challenge.code)
        return challenge.hash

    def authenticate(self, token: str) -> Identity:
        """Return the snapshot embedded in a bearer token.

        The snapshot is as of issuance. Use self_lookup() for current state.
        """
        snapshot = self._tokens.verify(token)
        if not snapshot.id:
            raise UnauthorizedError("Token Data Not Valid")
        return snapshot

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def sso_sign_in(self, assertion: SsoAssertion) -> tuple[AuthResult, bool]:
        """Sign in (or sign up) through a federated provider.

        Returns the result and whether a new local account was created, which
        the transport layer reports as 201 vs 200.
        """
        reconciled = self._sso.reconcile(assertion)
        identity = self._load(reconciled.identity_id)
        return AuthResult(identity=identity, token=self._tokens.issue(identity)), reconciled.is_new

    def register(self, request: RegistrationRequest) -> AuthResult:
        """Create a pending local account and issue its SMS and email challenges.

        The conflict check and insert share one transaction: a failure at
        either step leaves no row behind. A request that races past the check
        is stopped by the store's unique constraints (ConflictError).
        """
        identity = Identity(
            id=request.id,
            email=request.email,
            first_name=request.first_name,
            last_name=request.last_name,
            phone=request.phone or None,
            hashed_password=hash_password(request.password) if request.password else None,
            is_active=False,
        )
        with self._store.transaction() as conn:
            result = self._conflicts.check(identity.email, identity.phone, identity.id, conn=conn)
            raise_for_conflict(result)
            self._store.insert_identity(identity, conn=conn)
        logger.info("Registered identity=%s (pending activation)", identity.id)

        sms_hash = self._issue_challenge(identity, "sms")
        email_hash = self._issue_challenge(identity, "email")

        stored = self._load(identity.id)
        return AuthResult(
            identity=stored,
            token=self._tokens.issue(stored),
            sms_hash=sms_hash,
            email_hash=email_hash,
        )

    def confirm_otp(self, code: str, user_id: str, hash_code: str) -> None:
        """Verify a passcode for `user_id` and activate the account.

        A pair issued in an earlier hour no longer verifies and is rejected
        with UnauthorizedError, like any wrong code or subject.
        """
        if not verify_otp(code, hash_code, str(user_id), now=self._clock()):
            logger.info("OTP rejected for identity=%s", user_id)
            raise UnauthorizedError("Invalid OTP Code")

        with self._store.transaction() as conn:
            identity = self._store.get_by_id(str(user_id), conn=conn)
            if identity is None:
                raise NotFoundError()
            self._store.activate(identity.id, conn=conn)
        if not identity.is_active:
            logger.info("Activated identity=%s", identity.id)

    def self_lookup(self, token: str) -> AuthResult:
        """Return the identity behind `token` as it is in the store now.

        Counts as an authentication, so last_login is refreshed. The presented
        token is handed back unchanged; no new token is issued.
        """
        snapshot = self.authenticate(token)
        self._store.touch_last_login(snapshot.id)
        return AuthResult(identity=self._load(snapshot.id), token=token)

    def send_otp(self, snapshot: Identity, channel: str) -> str:
        """Issue a fresh challenge for the bearer on `channel` and return its hash."""
        if channel not in CHANNELS:
            raise ValidationError(f"Unknown channel: {channel}")
        if not snapshot.id:
            raise UnauthorizedError("Token Data Not Valid")
        return self._issue_challenge(snapshot, channel)

    def complete_registration(self, user_id: str) -> None:
        """Mark the account active. Unknown ids are logged, not reported."""
        if not self._store.activate(str(user_id)):
            logger.warning("complete_registration: no identity %s", user_id)

    def update_profile(self, snapshot: Identity, update: ProfileUpdate) -> AuthResult:
        """Change the bearer's contact fields and issue a token with the new snapshot."""
        with self._store.transaction() as conn:
            result = self._conflicts.check(update.email, update.phone, snapshot.id, conn=conn)
            raise_for_conflict(result)
            updated = self._store.update_profile(
                snapshot.id,
                first_name=update.first_name,
                last_name=update.last_name,
                email=update.email,
                phone=update.phone,
                conn=conn,
            )
            if not updated:
                raise NotFoundError()
        identity = self._load(snapshot.id)
        return AuthResult(identity=identity, token=self._tokens.issue(identity))

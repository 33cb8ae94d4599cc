"""
auth/tokens.py -- Session token signing/verification and password hashing.

Security design decisions:
  JWT: python-jose with HS256. A token carries a full Identity snapshot
       (claim "data") rather than just an id, plus iat/exp as epoch seconds.
       Validity is signature + expiry only: there is no revocation list, and
       verification never consults the store. The snapshot can therefore go
       stale after issuance; callers that need current state re-read the store
       by the embedded id (see AuthService.self_lookup).

  Signing key: injected into TokenService once at startup from
       core.config.get_settings(). TokenService holds it as an immutable value;
       nothing regenerates it at runtime.

  Passwords: bcrypt directly (no passlib wrapper). Local registrations may
       carry a password; only its hash is stored and the hash never leaves the
       store (Identity.snapshot() drops it).

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.models import Identity
from core.errors import UnauthorizedError

logger = logging.getLogger("idgate.auth.tokens")

_ALGORITHM = "HS256"

DEFAULT_VALIDITY = timedelta(days=200)


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer caps
    password length well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


class TokenService:
    """Issues and verifies bearer tokens with an embedded identity snapshot.

    Usage:
        tokens = TokenService(settings.secret_key)
        token = tokens.issue(identity)
        snapshot = tokens.verify(token)   # raises UnauthorizedError
    """

    def __init__(self, secret_key: str, validity: timedelta = DEFAULT_VALIDITY) -> None:
        if not secret_key:
            raise ValueError("TokenService requires a signing key")
        self._secret_key = secret_key
        self._validity = validity

    def issue(self, identity: Identity, now: datetime | None = None) -> str:
        """Encode a signed JWT for the identity as of right now.

        now is injectable so tests can mint tokens that are already expired.
        """
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "data": identity.snapshot(),
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self._validity).timestamp()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def decode(self, token: str) -> dict:
        """Verify signature and expiry and return the raw claims.

        python-jose raises ExpiredSignatureError (a JWTError) once exp has
        passed; tokens without exp or iat are rejected outright.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"require_exp": True, "require_iat": True},
            )
        except JWTError as exc:
            logger.info("Rejected bearer token: %s", exc)
            raise UnauthorizedError("Invalid token") from exc
        if not isinstance(claims.get("data"), dict):
            raise UnauthorizedError("Invalid token")
        return claims

    def verify(self, token: str) -> Identity:
        """Return the identity snapshot embedded in a valid token."""
        claims = self.decode(token)
        try:
            return Identity.from_snapshot(claims["data"])
        except (KeyError, TypeError) as exc:
            raise UnauthorizedError("Invalid token") from exc

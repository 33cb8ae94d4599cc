"""
auth/otp.py -- Stateless one-time passcodes bound to a subject and an hour.

A challenge is (code, hash) where

    hash = sha256(code + time_bucket(now) + secret).hexdigest()

Nothing is stored. Verification recomputes the hash for the *current* bucket,
so a code is valid from the moment it is issued until the end of the UTC hour
it was issued in, and is rejected immediately after the hour rolls over. A
code issued at 10:59:59 therefore lives one second; one issued at 10:00:00
lives an hour. Both are accepted behavior.

secret is caller-supplied -- the account id as a string in every flow -- so a
code/hash pair issued for one subject does not verify for another.

Both functions take an optional `now` so tests can pin the clock.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timezone

from auth.models import OtpChallenge

DEFAULT_OTP_LENGTH = 6

# Hour truncation in UTC: 2026-10-17 14:37 -> "2026101714".
_BUCKET_FORMAT = "%Y%m%d%H"


def time_bucket(now: datetime | None = None) -> str:
    """Return the coarse time unit an OTP is bound to."""
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(_BUCKET_FORMAT)


def random_code(length: int = DEFAULT_OTP_LENGTH) -> str:
    """Return a uniformly random, zero-padded decimal string of `length` digits."""
    return f"{secrets.randbelow(10**length):0{length}d}"


def _digest(code: str, bucket: str, secret: str) -> str:
    return hashlib.sha256(f"{code}{bucket}{secret}".encode("utf-8")).hexdigest()


def generate_otp(
    secret: str,
    now: datetime | None = None,
    code: str | None = None,
    length: int = DEFAULT_OTP_LENGTH,
) -> OtpChallenge:
    """Create a challenge for `secret` in the current time bucket.

    code overrides the random draw (development and tests only).
    """
    otp = code if code else random_code(length)
    return OtpChallenge(code=otp, hash=_digest(otp, time_bucket(now), secret))


def verify_otp(code: str, hash_code: str, secret: str, now: datetime | None = None) -> bool:
    """Return True when the code/hash pair is valid for `secret` right now.

    Never raises. A wrong code, wrong secret, tampered hash or a rolled-over
    bucket all return False.
    """
    if not code or not hash_code:
        return False
    expected = _digest(code, time_bucket(now), secret)
    # Compare bytes: compare_digest raises on non-ASCII str input.
    return hmac.compare_digest(expected.encode("ascii"), hash_code.encode("utf-8"))

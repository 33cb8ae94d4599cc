"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
domain shape; the store, token service and orchestrator do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any


@dataclass
class Identity:
    """The durable account record.

    An identity is either SSO-bound (sso_provider + sso_id populated) or
    locally registered (hashed_password populated). The model does not enforce
    that exclusivity -- an SSO sign-in may link a provider to a local account
    that shares its email.

    id is a UUID string assigned once and never changed. is_staff and
    is_superuser are carried for the wider application; this core ignores them.
    created_at / last_login are ISO 8601 UTC strings set by the store.
    """

    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None
    hashed_password: str | None = None  # None = SSO-only account
    sso_provider: str | None = None  # "google", "apple", ...
    sso_id: str | None = None  # provider's stable subject id
    photo: str | None = None  # https URL from the provider assertion
    is_active: bool = False
    is_staff: bool = False
    is_superuser: bool = False
    created_at: str | None = None
    last_login: str | None = None

    def snapshot(self) -> dict[str, Any]:
        """Return the public view embedded in tokens and API responses.

        The password hash is left out: token payloads are only signed, not
        encrypted, so anything in them is readable by the bearer.
        """
        data = asdict(self)
        data.pop("hashed_password")
        return data

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> Identity:
        """Rebuild an Identity from a snapshot dict. Unknown keys are ignored.

        Raises KeyError/TypeError when required keys are missing, which the
        token service reports as an invalid credential.
        """
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class SsoAssertion:
    """Already-verified identity claims from a federated provider."""

    id: str  # provider-issued subject id
    email: str
    provider: str
    first_name: str = ""
    last_name: str = ""
    photo: str = ""


@dataclass(frozen=True)
class ReconcileResult:
    identity_id: str
    is_new: bool
    is_active: bool


@dataclass(frozen=True)
class ConflictCheckResult:
    """Which single contact field collides with another identity, if any.

    field is "email", "phone" or None. Email is reported before phone when
    both collide.
    """

    field: str | None = None

    @property
    def has_conflict(self) -> bool:
        return self.field is not None


@dataclass(frozen=True)
class OtpChallenge:
    """A one-time code and its verification hash. Never persisted.

    The hash binds the code to a subject secret and the time bucket it was
    generated in; see auth/otp.py.
    """

    code: str
    hash: str


@dataclass(frozen=True)
class RegistrationRequest:
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None
    password: str | None = None


@dataclass(frozen=True)
class ProfileUpdate:
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None


@dataclass
class AuthResult:
    """What a successful flow hands back to the transport layer.

    sms_hash / email_hash are empty strings for flows that issue no challenge.
    """

    identity: Identity
    token: str
    sms_hash: str = ""
    email_hash: str = ""

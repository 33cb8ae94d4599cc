"""
API request and response models for idgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Annotated, Optional
from uuid import UUID

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from auth.models import AuthResult, Identity, ProfileUpdate, RegistrationRequest, SsoAssertion

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt only reads the first 72 bytes of a password.
_MAX_PASSWORD_BYTES = 72


def _normalize_email(value: object) -> object:
    return value.strip().lower() if isinstance(value, str) else value


def _normalize_phone(value: object) -> object:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


# Annotated types: normalization runs before the pattern/length checks.
_Email = Annotated[str, BeforeValidator(_normalize_email), Field(pattern=EMAIL_PATTERN, max_length=254)]
_Phone = Annotated[Optional[str], BeforeValidator(_normalize_phone), Field(max_length=32)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SSORequest(BaseModel):
    """Request body for POST /auth/sso -- claims the provider already verified."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(min_length=1, max_length=255, description="Provider-issued subject id")
    first_name: str = Field(default="", max_length=150)
    last_name: str = Field(default="", max_length=150)
    photo: str = Field(default="", max_length=2048)
    email: _Email
    sso_provider: str = Field(min_length=1, max_length=30)

    def to_assertion(self) -> SsoAssertion:
        return SsoAssertion(
            id=self.id,
            email=self.email,
            provider=self.sso_provider,
            first_name=self.first_name,
            last_name=self.last_name,
            photo=self.photo,
        )


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register. The client chooses the account id."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID
    first_name: str = Field(default="", max_length=150)
    last_name: str = Field(default="", max_length=150)
    email: _Email
    phone: _Phone = None
    password: Optional[str] = Field(default=None, min_length=8)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and len(value.encode("utf-8")) > _MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {_MAX_PASSWORD_BYTES} bytes")
        return value

    def to_domain(self) -> RegistrationRequest:
        return RegistrationRequest(
            id=str(self.id),
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            phone=self.phone,
            password=self.password,
        )


class OtpCheckRequest(BaseModel):
    """Request body for POST /auth/check/otp."""

    model_config = ConfigDict(str_strip_whitespace=True)

    otp: str = Field(min_length=1, max_length=16)
    user_id: UUID
    hash_code: str = Field(min_length=1, max_length=128)


class ProfileUpdateRequest(BaseModel):
    """Request body for PUT /auth/user/detail."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(default="", max_length=150)
    last_name: str = Field(default="", max_length=150)
    email: _Email
    phone: _Phone = None

    def to_domain(self) -> ProfileUpdate:
        return ProfileUpdate(
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            phone=self.phone,
        )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class IdentityResponse(BaseModel):
    """Public view of an identity. The password hash is never part of it."""

    model_config = ConfigDict(frozen=True)

    id: str
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    sso_provider: Optional[str] = None
    sso_id: Optional[str] = None
    photo: Optional[str] = None
    is_active: bool
    is_staff: bool = False
    is_superuser: bool = False
    created_at: Optional[str] = None
    last_login: Optional[str] = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(**identity.snapshot())


class AuthResponse(BaseModel):
    """Envelope shared by sign-in, registration and self-lookup."""

    model_config = ConfigDict(frozen=True)

    data: IdentityResponse
    token: str
    sms_hash: str = ""
    email_hash: str = ""

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        """Factory Method: the domain -> wire mapping lives beside the wire model."""
        return cls(
            data=IdentityResponse.from_identity(result.identity),
            token=result.token,
            sms_hash=result.sms_hash,
            email_hash=result.email_hash,
        )


class SmsHashResponse(BaseModel):
    sms_hash: str


class EmailHashResponse(BaseModel):
    email_hash: str


class MessageResponse(BaseModel):
    """Body of every error response, and of a few bare acknowledgements."""

    message: str


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)

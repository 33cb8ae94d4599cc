"""
api/routes/auth.py -- Identity flow REST endpoints.

Routes:
  POST /auth/sso                          -- SSO sign-in / sign-up; 201 if new account
  POST /auth/register                     -- local registration; returns OTP hashes
  POST /auth/check/otp                    -- verify passcode, activate account
  GET  /auth/send/sms                     -- fresh SMS challenge (requires bearer)
  GET  /auth/send/email                   -- fresh email challenge (requires bearer)
  GET  /auth/register/complete/{user_id}  -- mark account active
  GET  /auth/user/detail                  -- current identity from the store (requires bearer)
  PUT  /auth/user/detail                  -- update own profile (requires bearer)

Security:
  Every route sits behind the per-client token bucket (router dependency),
  so OTP guessing and registration spraying are throttled before any flow runs.
  Responses carrying a token are sent with Cache-Control: no-store.
  Passcodes are delivered by the notifier and never appear in a response.

Handlers are plain `def`: the store is synchronous, so FastAPI runs them in
its thread pool.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import enforce_rate_limit
from api.models import (
    AuthResponse,
    EmailHashResponse,
    MessageResponse,
    OtpCheckRequest,
    ProfileUpdateRequest,
    RegisterRequest,
    SmsHashResponse,
    SSORequest,
)
from auth.dependencies import get_auth_service, get_bearer_token, get_current_identity
from auth.models import AuthResult, Identity

# Auth policy:
# - POST /auth/sso, /auth/register, /auth/check/otp:  public
# - GET  /auth/register/complete/{user_id}:            public, scoped by path id
# - GET  /auth/send/sms, /auth/send/email:             bearer (get_current_identity)
# - GET/PUT /auth/user/detail:                         bearer
router = APIRouter(prefix="/auth", dependencies=[Depends(enforce_rate_limit)])


def _token_response(result: AuthResult, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=AuthResponse.from_result(result).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/sso", response_model=AuthResponse, responses={201: {"model": AuthResponse}})
def sso(request: Request, body: SSORequest) -> JSONResponse:
    """Reconcile a provider assertion into a local account and issue a token.

    201 when this sign-in created the account, 200 when it matched an existing one.
    """
    result, is_new = get_auth_service(request).sso_sign_in(body.to_assertion())
    return _token_response(result, status_code=201 if is_new else 200)


@router.post("/register", response_model=AuthResponse)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a pending local account.

    409 names the first colliding field ("Email already exists" before
    "Phone already exists"). The response carries the SMS and email
    verification hashes; the codes go out through the notifier.
    """
    result = get_auth_service(request).register(body.to_domain())
    return _token_response(result)


@router.post("/check/otp")
def check_otp(request: Request, body: OtpCheckRequest) -> JSONResponse:
    """Verify a passcode and activate the account. 401 on any mismatch."""
    get_auth_service(request).confirm_otp(body.otp, str(body.user_id), body.hash_code)
    return JSONResponse(status_code=200, content="OK")


@router.get("/register/complete/{user_id}", response_model=MessageResponse)
def register_complete(request: Request, user_id: UUID) -> MessageResponse:
    get_auth_service(request).complete_registration(str(user_id))
    return MessageResponse(message="")


# ---------------------------------------------------------------------------
# Bearer endpoints
# ---------------------------------------------------------------------------


@router.get("/send/sms", response_model=SmsHashResponse)
def send_sms(request: Request, identity: Identity = Depends(get_current_identity)) -> SmsHashResponse:
    return SmsHashResponse(sms_hash=get_auth_service(request).send_otp(identity, "sms"))


@router.get("/send/email", response_model=EmailHashResponse)
def send_email(request: Request, identity: Identity = Depends(get_current_identity)) -> EmailHashResponse:
    return EmailHashResponse(email_hash=get_auth_service(request).send_otp(identity, "email"))


@router.get("/user/detail", response_model=AuthResponse)
def user_detail(request: Request, token: str = Depends(get_bearer_token)) -> JSONResponse:
    """Return the caller's identity as currently stored.

    The token's embedded snapshot may be stale; this re-reads the store by
    the embedded id. The presented token is echoed back, not reissued.
    """
    result = get_auth_service(request).self_lookup(token)
    return _token_response(result)


@router.put("/user/detail", response_model=AuthResponse)
def update_user_detail(
    request: Request,
    body: ProfileUpdateRequest,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Update the caller's name and contact fields; returns a token with the new snapshot."""
    result = get_auth_service(request).update_profile(identity, body.to_domain())
    return _token_response(result)

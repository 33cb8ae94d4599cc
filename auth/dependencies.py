"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer authentication.

Credentials arrive as `Authorization: Bearer <token>`. Every failure raises
UnauthorizedError, which the API's exception handler turns into
401 {"message": ...}:
  - no Authorization header        -> "Missing authorization header"
  - scheme other than Bearer       -> "Invalid authorization scheme"
  - bad signature / expired / junk -> "Invalid token"
  - snapshot without an id         -> "Token Data Not Valid"

get_current_identity() returns the token's embedded snapshot. It does not
consult the store; routes that need current state call
AuthService.self_lookup().

Layer rule: auth/dependencies.py may import from fastapi (for Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import Identity
from auth.service import AuthService
from core.errors import UnauthorizedError


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_bearer_token(request: Request) -> str:
    """Extract the raw token from the Authorization header.

    The scheme name is matched case-insensitively (RFC 7235).
    """
    header = request.headers.get("Authorization")
    if not header:
        raise UnauthorizedError("Missing authorization header")
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        raise UnauthorizedError("Invalid authorization scheme")
    token = token.strip()
    if not token:
        raise UnauthorizedError("Invalid token")
    return token


def get_current_identity(request: Request) -> Identity:
    """Require a valid bearer token and return its identity snapshot.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    return get_auth_service(request).authenticate(get_bearer_token(request))

#!/usr/bin/env python3
"""
idgate -- operator CLI for the identity core.

Usage:
  python main.py serve [--host 127.0.0.1] [--port 8000] [--reload]
  python main.py issue-token 3f2b...-uuid
  python main.py verify-token eyJhbGciOi...
  python main.py otp 3f2b...-uuid

Environment variables (see core/config.py):
  SECRET_KEY    Token signing key, at least 32 characters. Required unless DEBUG=true.
  DATABASE_URL  SQLAlchemy URL of the identity store (default: local SQLite file).
"""

import argparse
import json
import sys
from datetime import timedelta

from auth.otp import generate_otp
from auth.store import IdentityStore
from auth.tokens import TokenService
from core.config import get_settings
from core.errors import IdGateError


def _token_service() -> TokenService:
    settings = get_settings()
    return TokenService(settings.secret_key, validity=timedelta(days=settings.token_validity_days))


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _cmd_issue_token(args: argparse.Namespace) -> int:
    """Print a token for an identity that already exists in the store."""
    settings = get_settings()
    store = IdentityStore(settings.database_url)
    try:
        identity = store.get_by_id(args.user_id)
    finally:
        store.close()
    if identity is None:
        print(f"  [!] No identity with id {args.user_id}.", file=sys.stderr)
        return 1
    print(_token_service().issue(identity))
    return 0


def _cmd_verify_token(args: argparse.Namespace) -> int:
    """Print the snapshot embedded in a token, or why it was rejected."""
    try:
        snapshot = _token_service().verify(args.token)
    except IdGateError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1
    print(json.dumps(snapshot.snapshot(), indent=2))
    return 0


def _cmd_otp(args: argparse.Namespace) -> int:
    """Print a fresh code/hash pair for SECRET, valid until the end of the current UTC hour."""
    settings = get_settings()
    challenge = generate_otp(args.secret, code=settings.otp_fixed_code or None, length=settings.otp_length)
    print(f"code: {challenge.code}")
    print(f"hash: {challenge.hash}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="idgate",
        description="Operator tools for the idgate identity core.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py issue-token 0b7c1d4e-5f6a-4b3c-9d2e-1f0a9b8c7d6e
  python main.py verify-token "$TOKEN"
  DEBUG=true python main.py otp 0b7c1d4e-5f6a-4b3c-9d2e-1f0a9b8c7d6e
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    serve.set_defaults(func=_cmd_serve)

    issue = sub.add_parser("issue-token", help="Issue a token for a stored identity")
    issue.add_argument("user_id", metavar="USER_ID")
    issue.set_defaults(func=_cmd_issue_token)

    verify = sub.add_parser("verify-token", help="Verify a token and print its identity snapshot")
    verify.add_argument("token", metavar="TOKEN")
    verify.set_defaults(func=_cmd_verify_token)

    otp = sub.add_parser("otp", help="Generate a one-time passcode and its verification hash")
    otp.add_argument("secret", metavar="SECRET", help="Subject the code is bound to (normally the account id)")
    otp.set_defaults(func=_cmd_otp)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

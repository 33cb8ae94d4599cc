"""
auth/store.py -- SQLAlchemy Core persistence layer for identities.

Pattern: Repository + Data Mapper.
IdentityStore is the repository; _row_to_identity is the mapper. The service
layer never touches SQL directly.

Transactions:
  Every method takes an optional open connection. Without one, the method
  runs in its own short transaction (engine.begin()). With one, it joins the
  caller's transaction, so a multi-step write (conflict check + insert) can
  be committed or rolled back as a unit:

      with store.transaction() as conn:
          check(..., conn=conn)
          store.insert_identity(identity, conn=conn)

Error mapping:
  IntegrityError  -> ConflictError(<field>)   uniqueness is the final arbiter
  SQLAlchemyError -> DatabaseError             never masked, never retried

Uniqueness:
  email UNIQUE, phone UNIQUE (NULLs allowed, and distinct), and
  UNIQUE(sso_provider, sso_id). Unlinked local accounts have NULL provider
  columns; NULLs compare distinct so any number of them coexist.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import Identity, ReconcileResult, SsoAssertion
from core.errors import ConflictError, DatabaseError

logger = logging.getLogger("idgate.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("first_name", String(150), nullable=False, server_default=""),
    Column("last_name", String(150), nullable=False, server_default=""),
    Column("email", String(254), nullable=False),
    Column("phone", String(32)),  # NULL when not supplied
    Column("password", Text),  # bcrypt hash; NULL for SSO-only accounts
    Column("sso_provider", String(30)),
    Column("sso_id", String(255)),
    Column("photo", Text),
    Column("is_active", Boolean, nullable=False, server_default=text("0")),
    Column("is_staff", Boolean, nullable=False, server_default=text("0")),
    Column("is_superuser", Boolean, nullable=False, server_default=text("0")),
    Column("date_joined", String(32), nullable=False),
    Column("last_login", String(32)),
    UniqueConstraint("email", name="uq_users_email"),
    UniqueConstraint("phone", name="uq_users_phone"),
    UniqueConstraint("sso_provider", "sso_id", name="uq_users_sso"),
)

# Substring of the driver's uniqueness error -> field reported to the client.
# SQLite names columns ("users.email"); PostgreSQL names constraints.
_CONFLICT_FIELDS = (
    ("email", "Email"),
    ("phone", "Phone"),
    ("sso", "Account"),
    ("users.id", "Id"),
    ("pkey", "Id"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block on writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _conflict_field(exc: IntegrityError) -> str:
    message = str(exc.orig).lower()
    for needle, field in _CONFLICT_FIELDS:
        if needle in message:
            return field
    return "Account"


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        field = _conflict_field(exc)
        logger.warning("Uniqueness violation on %s", field)
        raise ConflictError(field) from exc
    except SQLAlchemyError as exc:
        logger.error("Identity store failure: %s", exc.__class__.__name__)
        raise DatabaseError() from exc


class _InsertRaced(Exception):
    """A concurrent sign-in inserted the same external identity first."""


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Identity records.

    Usage:
        store = IdentityStore("sqlite:///idgate.db")
        store.insert_identity(Identity(id=str(uuid4()), email="a@x.com"))
        identity = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str, pool_size: int = 5) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        else:
            engine_kwargs.update(pool_size=pool_size, pool_pre_ping=True)
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a connection inside one transaction.

        Commits when the block exits normally and rolls back on any exception.
        Store failures surface as DatabaseError / ConflictError.
        """
        with self._connection(None) as conn:
            yield conn

    @contextmanager
    def _connection(self, conn: Connection | None) -> Iterator[Connection]:
        with _translate_errors():
            if conn is not None:
                yield conn
            else:
                with self.engine.begin() as fresh:
                    yield fresh

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, identity_id: str, conn: Connection | None = None) -> Identity | None:
        """Look up an identity by primary key. Returns None if not found."""
        with self._connection(conn) as c:
            row = c.execute(_users.select().where(_users.c.id == identity_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_email(self, email: str, conn: Connection | None = None) -> Identity | None:
        with self._connection(conn) as c:
            row = c.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_sso(self, provider: str, sso_id: str, conn: Connection | None = None) -> Identity | None:
        """Look up an identity by its (provider, provider subject id) pair."""
        with self._connection(conn) as c:
            row = c.execute(
                _users.select().where((_users.c.sso_provider == provider) & (_users.c.sso_id == sso_id))
            ).fetchone()
        return _row_to_identity(row) if row is not None else None

    def email_taken(self, email: str, excluding_id: str, conn: Connection | None = None) -> bool:
        """True if an identity other than `excluding_id` uses this email."""
        with self._connection(conn) as c:
            row = c.execute(
                select(_users.c.id).where((_users.c.email == email) & (_users.c.id != excluding_id)).limit(1)
            ).fetchone()
        return row is not None

    def phone_taken(self, phone: str, excluding_id: str, conn: Connection | None = None) -> bool:
        """True if an identity other than `excluding_id` uses this phone."""
        with self._connection(conn) as c:
            row = c.execute(
                select(_users.c.id).where((_users.c.phone == phone) & (_users.c.id != excluding_id)).limit(1)
            ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_identity(self, identity: Identity, conn: Connection | None = None) -> None:
        """Insert a new identity. Raises ConflictError if id/email/phone/SSO pair is taken."""
        now = _now_iso()
        with self._connection(conn) as c:
            c.execute(
                _users.insert().values(
                    id=identity.id,
                    first_name=identity.first_name,
                    last_name=identity.last_name,
                    email=identity.email,
                    phone=identity.phone or None,
                    password=identity.hashed_password,
                    sso_provider=identity.sso_provider,
                    sso_id=identity.sso_id,
                    photo=identity.photo,
                    is_active=identity.is_active,
                    is_staff=identity.is_staff,
                    is_superuser=identity.is_superuser,
                    date_joined=now,
                    last_login=now,
                )
            )

    def update_profile(
        self,
        identity_id: str,
        first_name: str,
        last_name: str,
        email: str,
        phone: str | None,
        conn: Connection | None = None,
    ) -> bool:
        """Overwrite contact/profile fields and refresh last_login.

        Returns True if a row was updated, False if identity_id was not found.
        """
        with self._connection(conn) as c:
            result = c.execute(
                _users.update()
                .where(_users.c.id == identity_id)
                .values(
                    first_name=first_name,
                    last_name=last_name,
                    email=email,
                    phone=phone or None,
                    last_login=_now_iso(),
                )
            )
        return result.rowcount > 0

    def activate(self, identity_id: str, conn: Connection | None = None) -> bool:
        """Set is_active and refresh last_login. Returns False if identity_id is unknown.

        Activation is one-way: nothing in this store sets is_active back to false.
        """
        with self._connection(conn) as c:
            result = c.execute(
                _users.update().where(_users.c.id == identity_id).values(is_active=True, last_login=_now_iso())
            )
        return result.rowcount > 0

    def touch_last_login(self, identity_id: str, conn: Connection | None = None) -> None:
        with self._connection(conn) as c:
            c.execute(_users.update().where(_users.c.id == identity_id).values(last_login=_now_iso()))

    # ------------------------------------------------------------------
    # SSO upsert
    # ------------------------------------------------------------------

    def upsert_sso(self, assertion: SsoAssertion) -> ReconcileResult | None:
        """Insert-or-update an identity from a provider assertion, atomically.

        Matching order: (provider, subject id), then email. An email match
        links the provider identity to that account unless it is already
        bound to another one. No match inserts a new active identity.

        Two concurrent first sign-ins for the same person race on the unique
        constraints; the loser re-runs the match in a fresh transaction and
        reports the winner's row with is_new=False. Returns None only if that
        second pass still finds nothing.
        """
        try:
            return self._upsert_sso(assertion, allow_insert=True)
        except _InsertRaced:
            logger.info("SSO insert lost a race for provider=%s; re-reading", assertion.provider)
            return self._upsert_sso(assertion, allow_insert=False)

    def _upsert_sso(self, assertion: SsoAssertion, allow_insert: bool) -> ReconcileResult | None:
        with self.transaction() as conn:
            existing = self.get_by_sso(assertion.provider, assertion.id, conn=conn)
            if existing is None:
                existing = self.get_by_email(assertion.email, conn=conn)

            if existing is not None:
                values = {
                    "first_name": assertion.first_name,
                    "last_name": assertion.last_name,
                    "email": assertion.email,
                    "last_login": _now_iso(),
                }
                if assertion.photo:
                    values["photo"] = assertion.photo
                if existing.sso_id is None:
                    values.update(sso_provider=assertion.provider, sso_id=assertion.id)
                conn.execute(_users.update().where(_users.c.id == existing.id).values(**values))
                return ReconcileResult(identity_id=existing.id, is_new=False, is_active=existing.is_active)

            if not allow_insert:
                return None

            identity = Identity(
                id=str(uuid.uuid4()),
                email=assertion.email,
                first_name=assertion.first_name,
                last_name=assertion.last_name,
                sso_provider=assertion.provider,
                sso_id=assertion.id,
                photo=assertion.photo or None,
                is_active=True,
            )
            try:
                # On conflict the enclosing transaction rolls back before the re-read.
                self.insert_identity(identity, conn=conn)
            except ConflictError as exc:
                raise _InsertRaced() from exc
            return ReconcileResult(identity_id=identity.id, is_new=True, is_active=True)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        phone=row.phone,
        hashed_password=row.password,
        sso_provider=row.sso_provider,
        sso_id=row.sso_id,
        photo=row.photo,
        is_active=bool(row.is_active),
        is_staff=bool(row.is_staff),
        is_superuser=bool(row.is_superuser),
        created_at=row.date_joined,
        last_login=row.last_login,
    )

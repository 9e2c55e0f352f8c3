"""
auth/store.py -- SQLAlchemy Core persistence layer for credential entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_reset_token are the
mappers. CredentialService never touches SQL directly -- it depends on the
CredentialStore protocol below, which UserStore implements.

Security:
  All queries use bound parameters. No f-strings in SQL.

Atomicity:
  create_reset_token(), update_password() and consume_reset_token() each run
  in a single transaction (engine.begin()). consume_reset_token() deletes the
  presented token by value before touching the password, so a token that was
  superseded or spent while the new hash was being computed changes nothing.
  The password_reset_tokens table also carries
  UNIQUE(user_id), so the "at most one live reset token per user" rule holds
  at the DB level even when two reset requests for the same user race: the
  loser's INSERT fails, and it retries its purge+insert once, replacing the
  winner's token.

Email policy:
  Emails are case-insensitive. They are stripped and lowercased on write and
  on lookup, so "Ana@Example.com" and "ana@example.com" are the same account.

DB URL: DATABASE_URL setting (default sqlite file next to the project root).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    create_engine,
    event,
    func,
    or_,
    select,
    text,
    true,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import DEFAULT_ROLE, ResetToken, UserFilters, UserRecord

logger = logging.getLogger("credvault.store")


class DuplicateEmailError(Exception):
    """Raised by create() when the email is already registered."""


class CredentialStore(Protocol):
    """The persistence capabilities CredentialService needs.

    Any object providing these methods can back the service; UserStore is
    the SQLAlchemy implementation. Tests may substitute fakes.
    """

    def find_by_email(self, email: str) -> UserRecord | None: ...

    def find_by_id(self, user_id: str) -> UserRecord | None: ...

    def create(self, email: str, name: str, password_hash: str, role: str = DEFAULT_ROLE) -> UserRecord: ...

    def update_password(self, user_id: str, password_hash: str) -> bool: ...

    def find_reset_token(self, token: str) -> tuple[UserRecord, ResetToken] | None: ...

    def create_reset_token(self, user_id: str, token: str, expires_at: datetime) -> None: ...

    def consume_reset_token(self, token: str, user_id: str, password_hash: str) -> bool: ...

    def list_users(self, page: int, limit: int, filters: UserFilters | None = None) -> list[UserRecord]: ...

    def count_users(self, filters: UserFilters | None = None) -> int: ...

    def update_user(
        self,
        user_id: str,
        *,
        email: str | None = None,
        name: str | None = None,
        role: str | None = None,
        password_hash: str | None = None,
    ) -> UserRecord | None: ...

    def delete_user(self, user_id: str) -> bool: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),  # UUID4, opaque to callers
    Column("email", String(320), nullable=False, unique=True),  # stored lowercased
    Column("name", String(255), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("role", String(16), nullable=False, server_default=DEFAULT_ROLE),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_reset_tokens = Table(
    "password_reset_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(64), nullable=False, unique=True),
    # UNIQUE: one live token per user, enforced by the DB
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL mode and foreign key enforcement on each new connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys=ON makes the ON DELETE CASCADE on
    password_reset_tokens.user_id effective.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _filter_clause(filters: UserFilters | None):
    """Build the WHERE clause for list_users / count_users.

    Terms within one field are OR'ed (case-insensitive substring for name and
    email, exact match for role); the fields themselves are AND'ed. No
    filters matches every row.
    """
    conditions = []
    if filters is not None:
        if filters.names:
            conditions.append(or_(*(_users.c.name.ilike(f"%{term.strip()}%") for term in filters.names)))
        if filters.emails:
            conditions.append(or_(*(_users.c.email.ilike(f"%{term.strip()}%") for term in filters.emails)))
        if filters.roles:
            conditions.append(_users.c.role.in_(filters.roles))
    return and_(true(), *conditions)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for UserRecord and ResetToken entities.

    Usage:
        store = UserStore("sqlite:///credvault.db")
        user = store.create("ana@example.com", "Ana", hasher.hash("secret"))
        store.find_by_email("ANA@example.com")   # same record
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> UserRecord | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: str) -> UserRecord | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def create(self, email: str, name: str, password_hash: str, role: str = DEFAULT_ROLE) -> UserRecord:
        """Insert a new user and return the stored record.

        Raises DuplicateEmailError if the email is already registered. This
        also covers the race where two registrations for one email both pass
        the service-level existence check -- the UNIQUE index decides.
        """
        now = _now_iso()
        values = {
            "id": str(uuid.uuid4()),
            "email": normalize_email(email),
            "name": name,
            "password_hash": password_hash,
            "role": role,
            "created_at": now,
            "updated_at": now,
        }
        try:
            with self.engine.begin() as conn:
                conn.execute(_users.insert().values(**values))
        except IntegrityError as exc:
            raise DuplicateEmailError(values["email"]) from exc
        return UserRecord(
            id=values["id"],
            email=values["email"],
            name=name,
            password_hash=password_hash,
            role=role,
            created_at=_parse_iso(now),
            updated_at=_parse_iso(now),
        )

    def update_password(self, user_id: str, password_hash: str) -> bool:
        """Replace a user's password hash and purge all their reset tokens.

        Both writes share one transaction: a reset request racing this call
        either lands before (and is purged) or after (and survives as the
        single new live token). A consumed token is never resurrected.

        Returns True if the user existed.
        """
        with self.engine.begin() as conn:
            conn.execute(_reset_tokens.delete().where(_reset_tokens.c.user_id == user_id))
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_hash=password_hash, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def list_users(self, page: int, limit: int, filters: UserFilters | None = None) -> list[UserRecord]:
        """Return one page of users, newest first. page is 1-based."""
        query = (
            _users.select()
            .where(_filter_clause(filters))
            .order_by(_users.c.created_at.desc(), _users.c.id)
            .limit(limit)
            .offset((page - 1) * limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(row) for row in rows]

    def count_users(self, filters: UserFilters | None = None) -> int:
        query = select(func.count()).select_from(_users).where(_filter_clause(filters))
        with self.engine.connect() as conn:
            return conn.execute(query).scalar_one()

    def update_user(
        self,
        user_id: str,
        *,
        email: str | None = None,
        name: str | None = None,
        role: str | None = None,
        password_hash: str | None = None,
    ) -> UserRecord | None:
        """Apply the given field changes and return the updated record.

        Fields left as None are unchanged. A new password_hash also purges the
        user's reset tokens, in the same transaction, like update_password().

        Returns None if the user does not exist. Raises DuplicateEmailError if
        the new email belongs to another account.
        """
        values: dict = {"updated_at": _now_iso()}
        if email is not None:
            values["email"] = normalize_email(email)
        if name is not None:
            values["name"] = name
        if role is not None:
            values["role"] = role
        if password_hash is not None:
            values["password_hash"] = password_hash
        try:
            with self.engine.begin() as conn:
                if password_hash is not None:
                    conn.execute(_reset_tokens.delete().where(_reset_tokens.c.user_id == user_id))
                result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
        except IntegrityError as exc:
            raise DuplicateEmailError(values.get("email")) from exc
        if result.rowcount == 0:
            return None
        return self.find_by_id(user_id)

    def delete_user(self, user_id: str) -> bool:
        """Delete a user. Their reset tokens go with them (ON DELETE CASCADE).

        Returns True if the user existed.
        """
        with self.engine.begin() as conn:
            conn.execute(_reset_tokens.delete().where(_reset_tokens.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Reset token queries
    # ------------------------------------------------------------------

    def find_reset_token(self, token: str) -> tuple[UserRecord, ResetToken] | None:
        """Return (owner, reset_token) for a token value, or None if unknown.

        Expired tokens are still returned -- expiry is the service's decision.
        """
        with self.engine.connect() as conn:
            token_row = conn.execute(_reset_tokens.select().where(_reset_tokens.c.token == token)).fetchone()
            if token_row is None:
                return None
            user_row = conn.execute(_users.select().where(_users.c.id == token_row.user_id)).fetchone()
        if user_row is None:
            return None
        return _row_to_user(user_row), _row_to_reset_token(token_row)

    def create_reset_token(self, user_id: str, token: str, expires_at: datetime) -> None:
        """Persist a reset token, replacing any prior token for user_id.

        Purge and insert share one transaction. If a concurrent request for
        the same user commits first, our INSERT hits UNIQUE(user_id); we retry
        once, which purges the winner's token and leaves ours as the only one.
        """
        for attempt in range(2):
            try:
                with self.engine.begin() as conn:
                    conn.execute(_reset_tokens.delete().where(_reset_tokens.c.user_id == user_id))
                    conn.execute(
                        _reset_tokens.insert().values(
                            token=token,
                            user_id=user_id,
                            expires_at=_to_iso(expires_at),
                            created_at=_now_iso(),
                        )
                    )
                return
            except IntegrityError:
                if attempt:
                    raise
                logger.info("Reset token insert raced for user %s; retrying", user_id)

    def consume_reset_token(self, token: str, user_id: str, password_hash: str) -> bool:
        """Spend a reset token and set the new password hash, atomically.

        The token row is deleted first, matched on both its value and its
        owner. If nothing was deleted the token was superseded or already
        spent, and nothing is written. Otherwise the user's remaining tokens
        are purged and the hash replaced in the same transaction.

        Returns True if the token was live and the password was updated.
        """
        with self.engine.begin() as conn:
            spent = conn.execute(
                _reset_tokens.delete().where(
                    and_(_reset_tokens.c.token == token, _reset_tokens.c.user_id == user_id)
                )
            )
            if spent.rowcount == 0:
                return False
            conn.execute(_reset_tokens.delete().where(_reset_tokens.c.user_id == user_id))
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_hash=password_hash, updated_at=_now_iso())
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> UserRecord:
    return UserRecord(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=row.password_hash,
        role=row.role,
        created_at=_parse_iso(row.created_at),
        updated_at=_parse_iso(row.updated_at),
    )


def _row_to_reset_token(row) -> ResetToken:
    return ResetToken(
        token=row.token,
        user_id=row.user_id,
        expires_at=_parse_iso(row.expires_at),
        created_at=_parse_iso(row.created_at),
    )

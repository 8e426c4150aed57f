"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and RevokedTokenStore are the repositories; _row_to_user is the
mapper. Middleware and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Column names passed by callers (get_by, update_or_fail) are checked
  against the users table before any query is built.

  Revoked tokens are stored as SHA-256 digests, never in the clear. A
  leaked denylist therefore cannot be replayed.

Transactions:
  UserStore.transaction() yields a UserTransaction bound to one connection
  opened with engine.begin(). Every update made through it commits together
  when the block exits, or rolls back together if any step raises.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import RecordNotFound, StoreError
from auth.models import User

logger = logging.getLogger("tokengate.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), unique=True),
    Column("email", String(255), unique=True),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("password_hash", Text),
    Column("confirmation_token", String(64)),
    Column("confirmation_sent_at", String(32)),
    Column("confirmed_at", String(32)),
    Column("reset_token", String(64)),
    Column("reset_sent_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_revoked_tokens = Table(
    "revoked_tokens",
    _metadata,
    Column("token_hash", String(64), primary_key=True),  # SHA-256 hex
    Column("expires_at", Integer, nullable=False, index=True),  # epoch seconds
)

_USER_COLUMNS: frozenset[str] = frozenset(c.name for c in _users.columns)
# Lookup is only allowed on columns that identify a single user.
_LOOKUP_COLUMNS: frozenset[str] = frozenset({"id", "username", "email", "confirmation_token", "reset_token"})

# Columns AuthConfig may point at: unique_id names a login identifier,
# hash_name the column that stores the password hash.
LOGIN_ID_COLUMNS: frozenset[str] = frozenset({"username", "email"})
HASH_COLUMNS: frozenset[str] = frozenset({"password_hash"})


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _make_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_columns(names) -> None:
    unknown = set(names) - _USER_COLUMNS
    if unknown:
        raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")


# ---------------------------------------------------------------------------
# Transaction handle
# ---------------------------------------------------------------------------


class UserTransaction:
    """User writes bound to one open transaction. Obtain via UserStore.transaction()."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def get_by_id(self, user_id: int) -> User | None:
        row = self._conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def insert(self, user: User) -> int:
        values = {k: v for k, v in asdict(user).items() if k != "id"}
        values["created_at"] = user.created_at or _now_iso()
        result = self._conn.execute(_users.insert().values(**values))
        return result.inserted_primary_key[0]

    def update_or_fail(self, user: User, **fields) -> User:
        """Write fields to the user's row and return the refreshed record.

        Raises RecordNotFound if the user has no id or the row is gone, which
        aborts the enclosing transaction.
        """
        _check_columns(fields)
        if user.id is None:
            raise RecordNotFound("User has not been persisted")
        result = self._conn.execute(_users.update().where(_users.c.id == user.id).values(**fields))
        if result.rowcount == 0:
            raise RecordNotFound(f"User {user.id} not found")
        return self.get_by_id(user.id)


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        uid = store.create_user(User(username="fred", password_hash=hash_password("secret")))
        with store.transaction() as tx:
            tx.update_or_fail(store.get_by_id(uid), role="admin")
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///tokengate.db") -> None:
        self.engine: Engine = _make_engine(db_url)

    @contextmanager
    def transaction(self) -> Iterator[UserTransaction]:
        """Scope a group of writes. Commits on exit, rolls back on any exception.

        Database errors are re-raised as StoreError; RecordNotFound passes
        through unchanged.
        """
        try:
            with self.engine.begin() as conn:
                yield UserTransaction(conn)
        except SQLAlchemyError as exc:
            logger.warning("User transaction rolled back: %s", exc.__class__.__name__)
            raise StoreError(str(exc)) from exc

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises StoreError (wrapping IntegrityError) if the username or email
        already exists.
        """
        with self.transaction() as tx:
            return tx.insert(user)

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        return self.get_by("id", user_id)

    def get_by(self, field: str, value) -> User | None:
        """Look up a user by an identifying column (username, email, ...)."""
        if field not in _LOOKUP_COLUMNS:
            raise ValueError(f"Cannot look up users by {field!r}")
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c[field] == value)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_or_fail(self, user: User, **fields) -> User:
        """Update a single user in its own transaction. See UserTransaction.update_or_fail."""
        with self.transaction() as tx:
            return tx.update_or_fail(user, **fields)

    def close(self) -> None:
        self.engine.dispose()


class RevokedTokenStore:
    """Denylist of tokens invalidated before their expiry.

    Rows are keyed by the SHA-256 of the token. expires_at mirrors the
    token's exp claim so purge_expired() can drop rows that no longer matter:
    an expired token fails verification on its own.
    """

    def __init__(self, db_url: str = "sqlite:///tokengate.db") -> None:
        self.engine: Engine = _make_engine(db_url)

    @staticmethod
    def _digest(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    def add(self, token: str, expires_at: int) -> None:
        """Record a revoked token. Revoking the same token twice is a no-op."""
        digest = self._digest(token)
        with self.engine.begin() as conn:
            exists = conn.execute(
                _revoked_tokens.select().where(_revoked_tokens.c.token_hash == digest)
            ).fetchone()
            if exists is None:
                conn.execute(_revoked_tokens.insert().values(token_hash=digest, expires_at=expires_at))

    def contains(self, token: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                _revoked_tokens.select().where(_revoked_tokens.c.token_hash == self._digest(token))
            ).fetchone()
        return row is not None

    def purge_expired(self, now: int | None = None) -> int:
        """Delete rows whose token has expired. Returns the number removed."""
        cutoff = now if now is not None else int(datetime.now(timezone.utc).timestamp())
        with self.engine.begin() as conn:
            result = conn.execute(_revoked_tokens.delete().where(_revoked_tokens.c.expires_at < cutoff))
        if result.rowcount:
            logger.info("Purged %d expired revoked tokens", result.rowcount)
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        role=row.role,
        password_hash=row.password_hash,
        confirmation_token=row.confirmation_token,
        confirmation_sent_at=row.confirmation_sent_at,
        confirmed_at=row.confirmed_at,
        reset_token=row.reset_token,
        reset_sent_at=row.reset_sent_at,
        created_at=row.created_at,
    )

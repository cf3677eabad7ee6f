"""
auth/store.py -- SQLAlchemy Core persistence layer for user identities.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Service and route code never touches SQL directly.

Uniqueness:
  username, email and oauth_subject each carry a UNIQUE constraint. SQLite
  and PostgreSQL both treat NULLs as distinct, so any number of password-only
  accounts may leave oauth_subject empty. Emails are lowercased on the way in
  and on every lookup, which makes the email constraint case-insensitive.

  A constraint violation surfaces as ConflictError(field=...); a database
  that cannot be reached surfaces as DependencyError. Nothing here retries.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, or_, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError

from auth.errors import ConflictError, DependencyError
from auth.models import User

logger = logging.getLogger("taskforge.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),  # always lowercased
    Column("hashed_password", Text),  # NULL for OAuth-only users
    Column("first_name", String(50), nullable=False, server_default=""),
    Column("last_name", String(50), nullable=False, server_default=""),
    Column("oauth_subject", String(255), unique=True),  # Google `sub`
    Column("avatar", Text),
    Column("role", String(20), nullable=False, server_default="user"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Columns whose UNIQUE violation is reported back to the caller by name.
_UNIQUE_FIELDS = ("username", "email", "oauth_subject")


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _conflicting_field(exc: IntegrityError) -> str | None:
    """Best-effort extraction of the column name from a driver error message.

    SQLite: "UNIQUE constraint failed: users.email"
    PostgreSQL: 'duplicate key value violates unique constraint "users_email_key"'
    """
    message = str(exc.orig)
    for field in _UNIQUE_FIELDS:
        if f"users.{field}" in message or f"users_{field}_key" in message:
            return field
    return None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore()
        user_id = store.create_user(User(username="johndoe", email="john@x.com", hashed_password=h))
        user = store.get_by_email("John@X.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        """Yield a connection, translating driver failures into service errors."""
        try:
            with self.engine.connect() as conn:
                yield conn
        except IntegrityError as exc:
            field = _conflicting_field(exc)
            label = field.replace("_", " ") if field else "identity"
            raise ConflictError(f"A user with this {label} already exists.", field=field) from exc
        except OperationalError as exc:
            logger.error("User database unavailable: %s", exc)
            raise DependencyError("The user database is unavailable.") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises ConflictError if username, email or oauth_subject is taken.
        The caller is expected to have hashed the password already.
        """
        now = _now_iso()
        with self._connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email.lower(),
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    oauth_subject=user.oauth_subject,
                    avatar=user.avatar,
                    role=user.role,
                    is_active=1 if user.is_active else 0,
                    last_login=user.last_login,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update columns on an existing user and bump updated_at.

        Only the columns passed are written, so a profile edit never touches
        hashed_password unless the caller passes it explicitly.

        Returns True if a row was updated, False if user_id was not found.
        """
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if "email" in fields:
            fields["email"] = fields["email"].lower()
        fields["updated_at"] = _now_iso()
        with self._connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def link_oauth(self, user_id: int, subject: str) -> None:
        """Attach a Google subject id to an existing (password) account."""
        self.update_user(user_id, oauth_subject=subject)

    def update_last_login(self, user_id: int) -> str:
        """Stamp last_login with the current UTC time and return the stamp.

        A single-column update: no validation pass, and updated_at is left
        alone because a login is not a profile change.
        """
        stamp = _now_iso()
        with self._connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=stamp))
            conn.commit()
        return stamp

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Case-insensitive email lookup."""
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_oauth_subject(self, subject: str) -> User | None:
        """Look up a user by linked Google subject id."""
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.oauth_subject == subject)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_email_or_username(self, email: str, username: str) -> User | None:
        """Return any user holding either identifier (registration duplicate check)."""
        with self._connect() as conn:
            row = conn.execute(
                _users.select().where(or_(_users.c.email == email.lower(), _users.c.username == username))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def username_exists(self, username: str) -> bool:
        with self._connect() as conn:
            count = conn.execute(select(func.count()).where(_users.c.username == username)).scalar()
        return (count or 0) > 0

    def count_users(self) -> int:
        with self._connect() as conn:
            count = conn.execute(select(func.count()).select_from(_users)).scalar()
        return count or 0

    def list_users(self) -> list[User]:
        """Return all users ordered by username. Admin-only operation."""
        with self._connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

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
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        oauth_subject=row.oauth_subject,
        avatar=row.avatar,
        role=row.role,
        is_active=bool(row.is_active),
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )

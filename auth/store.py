"""
auth/store.py -- SQLAlchemy Core persistence layer for users and sessions.

Pattern: Repository + Data Mapper. UserStore is the repository;
_row_to_user / _row_to_session are the mappers. The service and route code
never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Uniqueness of username, email and refresh_token is enforced with UNIQUE
  constraints; username and email also carry unique indexes on lower(), and
  find_by_email_or_username() compares the same way. The service checks for
  duplicates before inserting, but two concurrent registrations can both pass
  that check -- the constraint is what actually guarantees one row per
  identity. create_user() converts the resulting IntegrityError into a
  DuplicateIdentityError.

Timestamps are stored as fixed-width ISO 8601 UTC text (microsecond
precision, +00:00 offset). Fixed width keeps string comparison in SQL
equivalent to chronological comparison, which the expiry checks rely on.

DB path: auth/authmodule.db unless a URL is passed in.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    or_,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import User, UserSession, UserType
from auth.passwords import PasswordPolicy, hash_password, verify_password

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'authmodule.db'}"

_USERNAME_RE = re.compile(r"^[A-Za-z0-9\-._@+]{1,256}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Column width of user_sessions.device_info. Longer User-Agent strings are cut.
DEVICE_INFO_MAX_LENGTH = 500

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(256), nullable=False, unique=True),
    Column("email", String(256), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("user_type", String(20), nullable=False, server_default=UserType.END_USER.value),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

_sessions = Table(
    "user_sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("session_token", Text, nullable=False),
    Column("refresh_token", String(500), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("device_info", String(DEVICE_INFO_MAX_LENGTH)),
    Column("ip_address", String(45)),
    Index("ix_user_sessions_user_id", "user_id"),
    Index("ix_user_sessions_session_token", "session_token"),
)

# Identities are unique regardless of case, so "Alice" cannot register next to "alice".
Index("ux_users_username_lower", func.lower(_users.c.username), unique=True)
Index("ux_users_email_lower", func.lower(_users.c.email), unique=True)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class UserValidationError(Exception):
    """The store refused to create a user. errors lists every reason."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(", ".join(errors))
        self.errors = errors


class DuplicateIdentityError(UserValidationError):
    """The username or email collides with an existing account, ignoring case."""


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and UserSession entities.

    Usage:
        store = UserStore()
        user_id = store.create_user(User(username="alice", email="a@x.com"), "S3cret!")
        user = store.find_by_email_or_username("alice")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, password_policy: PasswordPolicy | None = None) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        self.password_policy = password_policy or PasswordPolicy()
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, password: str) -> str:
        """Validate, hash the password, insert the user and return its new id.

        Raises UserValidationError listing every problem found: password
        policy violations or a malformed username or email. A username or
        email already taken (case-insensitively) raises DuplicateIdentityError.
        """
        errors: list[str] = []
        if not _USERNAME_RE.match(user.username or ""):
            errors.append(f"Username '{user.username}' is invalid, can only contain letters or digits.")
        if not _EMAIL_RE.match(user.email or "") or len(user.email) > 256:
            errors.append(f"Email '{user.email}' is invalid.")
        errors.extend(self.password_policy.validate(password))
        if errors:
            raise UserValidationError(errors)

        user_id = str(uuid.uuid4())
        created_at = user.created_at or _utcnow()
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        username=user.username,
                        email=user.email,
                        hashed_password=hash_password(password),
                        first_name=user.first_name,
                        last_name=user.last_name,
                        user_type=user.user_type.value,
                        is_active=1 if user.is_active else 0,
                        created_at=_to_iso(created_at),
                    )
                )
        except IntegrityError as exc:
            message = f"Username '{user.username}' or email '{user.email}' is already taken."
            raise DuplicateIdentityError([message]) from exc
        return user_id

    def find_by_email_or_username(self, identifier: str) -> User | None:
        """Return the user whose email OR username equals identifier, ignoring case."""
        key = func.lower(identifier)
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(or_(func.lower(_users.c.email) == key, func.lower(_users.c.username) == key))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: first_name, last_name, user_type, is_active,
        last_login_at. Enum and datetime values are converted for storage.

        Returns True if a row was updated, False if user_id was not found.
        """
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if isinstance(fields.get("user_type"), UserType):
            fields["user_type"] = fields["user_type"].value
        if isinstance(fields.get("last_login_at"), datetime):
            fields["last_login_at"] = _to_iso(fields["last_login_at"])
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def check_password(self, user: User, password: str) -> bool:
        """Return True if password matches the user's stored hash."""
        if not user.hashed_password:
            return False
        return verify_password(password, user.hashed_password)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_session(self, session: UserSession, login_at: datetime) -> int:
        """Insert a session and stamp the owner's last_login_at atomically.

        Both writes share one transaction: either the user has a new session
        AND an updated last login, or neither happened.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=session.user_id,
                    session_token=session.session_token,
                    refresh_token=session.refresh_token,
                    created_at=_to_iso(session.created_at or login_at),
                    expires_at=_to_iso(session.expires_at),
                    is_active=1 if session.is_active else 0,
                    device_info=session.device_info,
                    ip_address=session.ip_address,
                )
            )
            conn.execute(
                _users.update().where(_users.c.id == session.user_id).values(last_login_at=_to_iso(login_at))
            )
        return result.inserted_primary_key[0]

    def get_active_session_by_refresh_token(self, refresh_token: str, now: datetime) -> UserSession | None:
        """Return the active, unexpired session holding refresh_token, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where(
                    (_sessions.c.refresh_token == refresh_token)
                    & (_sessions.c.is_active == 1)
                    & (_sessions.c.expires_at > _to_iso(now))
                )
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_current_session(self, session_token: str, now: datetime) -> UserSession | None:
        """Return the active, unexpired session whose access token is session_token."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where(
                    (_sessions.c.session_token == session_token)
                    & (_sessions.c.is_active == 1)
                    & (_sessions.c.expires_at > _to_iso(now))
                )
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_sessions(self, user_id: str, active_only: bool = False, now: datetime | None = None) -> list[UserSession]:
        """Return a user's sessions, newest first.

        active_only restricts the result to current sessions: is_active and
        not yet expired relative to now (defaults to the current time).
        """
        query = _sessions.select().where(_sessions.c.user_id == user_id)
        if active_only:
            cutoff = _to_iso(now or _utcnow())
            query = query.where((_sessions.c.is_active == 1) & (_sessions.c.expires_at > cutoff))
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_sessions.c.created_at.desc(), _sessions.c.id.desc())).fetchall()
        return [_row_to_session(r) for r in rows]

    def deactivate_sessions(self, user_id: str) -> int:
        """Flip every active session of the user to inactive. Returns rows changed."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.is_active == 1))
                .values(is_active=0)
            )
        return result.rowcount

    def rotate_session(
        self,
        session_id: int,
        old_refresh_token: str,
        session_token: str,
        refresh_token: str,
        expires_at: datetime,
    ) -> bool:
        """Overwrite a session's token pair and expiry.

        The WHERE clause requires the stored refresh token to still equal
        old_refresh_token, so of two concurrent refreshes presenting the same
        token only the first UPDATE matches a row. Returns False for the loser.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where(
                    (_sessions.c.id == session_id)
                    & (_sessions.c.refresh_token == old_refresh_token)
                    & (_sessions.c.is_active == 1)
                )
                .values(
                    session_token=session_token,
                    refresh_token=refresh_token,
                    expires_at=_to_iso(expires_at),
                )
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        user_type=UserType(row.user_type),
        is_active=bool(row.is_active),
        created_at=_from_iso(row.created_at),
        last_login_at=_from_iso(row.last_login_at),
    )


def _row_to_session(row) -> UserSession:
    return UserSession(
        id=row.id,
        user_id=row.user_id,
        session_token=row.session_token,
        refresh_token=row.refresh_token,
        created_at=_from_iso(row.created_at),
        expires_at=_from_iso(row.expires_at),
        is_active=bool(row.is_active),
        device_info=row.device_info,
        ip_address=row.ip_address,
    )

"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost zero logic). Dataclasses own
the domain shape; the store persists them and the service does the work.

Timestamps are timezone-aware UTC datetimes. The store converts them to and
from ISO 8601 text at the persistence boundary.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class UserType(str, Enum):
    """Flat user classification. Not a permission system."""

    END_USER = "end_user"
    ADMIN = "admin"
    PARTNER = "partner"
    MODERATOR = "moderator"


class AuthError(str, Enum):
    """Failure codes carried by a failed AuthenticationResult.

    ACCOUNT_UNAVAILABLE deliberately covers both "no such account" and
    "account disabled" so login responses cannot be used to enumerate users.
    """

    ACCOUNT_UNAVAILABLE = "account_unavailable"
    INVALID_CREDENTIALS = "invalid_credentials"
    DUPLICATE_IDENTITY = "duplicate_identity"
    REGISTRATION_REJECTED = "registration_rejected"
    INVALID_OR_EXPIRED_REFRESH_TOKEN = "invalid_or_expired_refresh_token"
    OPERATION_FAILED = "operation_failed"


@dataclass
class User:
    """A registered identity.

    id is an opaque string assigned by the store at creation time.
    hashed_password is the bcrypt hash; it is None on objects built by the
    service before the store has hashed the password, and it is never
    serialized by the API layer.
    """

    username: str
    email: str
    first_name: str = ""
    last_name: str = ""
    user_type: UserType = UserType.END_USER
    id: str | None = None
    hashed_password: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    last_login_at: datetime | None = None


@dataclass
class UserSession:
    """One issued token pair and its validity window.

    Sessions are never deleted: logout flips is_active to False, refresh
    rotates the token fields in place. A session with expires_at in the past
    is expired even while is_active is still True.
    """

    user_id: str
    session_token: str
    refresh_token: str
    expires_at: datetime
    id: int | None = None
    created_at: datetime | None = None
    is_active: bool = True
    device_info: str | None = None  # usually the caller's User-Agent
    ip_address: str | None = None  # IPv4 or IPv6, max 45 chars


@dataclass
class Registration:
    """Input for AuthenticationService.register()."""

    email: str
    username: str
    password: str
    first_name: str = ""
    last_name: str = ""
    user_type: UserType = UserType.END_USER


@dataclass
class AuthenticationResult:
    """Outcome of a login, registration or refresh. Never persisted."""

    is_success: bool
    token: str | None = None
    refresh_token: str | None = None
    error: AuthError | None = None
    error_message: str | None = None
    user: User | None = None
    expires_at: datetime | None = None

    @classmethod
    def failure(cls, error: AuthError, message: str) -> AuthenticationResult:
        return cls(is_success=False, error=error, error_message=message)

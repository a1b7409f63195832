"""
auth/service.py -- The authentication workflow: login, register, logout, refresh.

AuthenticationService orchestrates two injected collaborators:
  store         -- UserStore (users, sessions, password verification)
  token_issuer  -- TokenIssuer (JWT access tokens, opaque refresh tokens)

Every public operation is a boundary: unexpected exceptions from either
collaborator are logged and converted into a failed AuthenticationResult
(or False / None for the boolean and lookup helpers). Callers never see a
raw store or issuer fault.

Security:
  [C1] Unknown and inactive accounts share one ACCOUNT_UNAVAILABLE result and
       still pay for a bcrypt comparison against DUMMY_HASH, so neither the
       response nor its timing tells the caller whether the account exists.
       The account's own password hash is never checked in that case.
  [C2] Refresh tokens are single-use. A successful refresh overwrites the
       stored token, and the overwrite only lands if the stored token is still
       the presented one (see UserStore.rotate_session).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from auth.models import AuthenticationResult, AuthError, Registration, User, UserSession
from auth.passwords import DUMMY_HASH, verify_password
from auth.store import DEVICE_INFO_MAX_LENGTH, DuplicateIdentityError, UserValidationError

if TYPE_CHECKING:
    from auth.store import UserStore
    from auth.tokens import TokenIssuer
    from core.config import Settings

logger = logging.getLogger("authmodule.auth")

_MESSAGES: dict[AuthError, str] = {
    AuthError.ACCOUNT_UNAVAILABLE: "The account does not exist or has been disabled.",
    AuthError.INVALID_CREDENTIALS: "Email/username or password is incorrect.",
    AuthError.DUPLICATE_IDENTITY: "Email or username is already in use.",
    AuthError.INVALID_OR_EXPIRED_REFRESH_TOKEN: "The refresh token is invalid or has expired.",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fail(error: AuthError) -> AuthenticationResult:
    return AuthenticationResult.failure(error, _MESSAGES[error])


class AuthenticationService:
    """Credential-based authentication over an injected store and token issuer.

    Usage:
        service = AuthenticationService(store, issuer)
        result = service.login("alice@example.com", "S3cret!", remember_me=True, ip_address="203.0.113.7")
        if result.is_success:
            ...  # result.token, result.refresh_token, result.expires_at
    """

    def __init__(
        self,
        store: UserStore,
        token_issuer: TokenIssuer,
        *,
        session_lifetime: timedelta = timedelta(hours=1),
        remember_me_lifetime: timedelta = timedelta(days=30),
        refresh_lifetime: timedelta = timedelta(days=30),
    ) -> None:
        self._store = store
        self._issuer = token_issuer
        self.session_lifetime = session_lifetime
        self.remember_me_lifetime = remember_me_lifetime
        self.refresh_lifetime = refresh_lifetime

    @classmethod
    def from_settings(cls, store: UserStore, token_issuer: TokenIssuer, settings: Settings) -> AuthenticationService:
        return cls(
            store,
            token_issuer,
            session_lifetime=timedelta(minutes=settings.session_expire_minutes),
            remember_me_lifetime=timedelta(days=settings.remember_me_days),
            refresh_lifetime=timedelta(days=settings.refresh_token_days),
        )

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(
        self,
        identifier: str,
        password: str,
        remember_me: bool = False,
        *,
        ip_address: str | None = None,
        device_info: str | None = None,
    ) -> AuthenticationResult:
        """Verify credentials and open a new session.

        On success the session row and the user's last_login_at are written
        in one transaction. The session lasts remember_me_lifetime when
        remember_me is set, session_lifetime otherwise.
        """
        try:
            user = self._find_usable_user(identifier, password)
            if user is None:
                logger.info("Login rejected: account unavailable")
                return _fail(AuthError.ACCOUNT_UNAVAILABLE)

            if not self._store.check_password(user, password):
                logger.info("Login rejected: bad password for user %s", user.id)
                return _fail(AuthError.INVALID_CREDENTIALS)

            now = _utcnow()
            token = self._issuer.issue_access_token(user)
            refresh_token = self._issuer.issue_refresh_token()
            expires_at = now + (self.remember_me_lifetime if remember_me else self.session_lifetime)

            session = UserSession(
                user_id=user.id,
                session_token=token,
                refresh_token=refresh_token,
                created_at=now,
                expires_at=expires_at,
                device_info=device_info[:DEVICE_INFO_MAX_LENGTH] if device_info else None,
                ip_address=ip_address,
            )
            session.id = self._store.start_session(session, login_at=now)
            user.last_login_at = now

            logger.info("User %s logged in (session=%s, remember_me=%s)", user.id, session.id, remember_me)
            return AuthenticationResult(
                is_success=True,
                token=token,
                refresh_token=refresh_token,
                user=user,
                expires_at=expires_at,
            )
        except Exception as exc:
            logger.exception("Login failed unexpectedly")
            return AuthenticationResult.failure(AuthError.OPERATION_FAILED, f"Login error: {exc}")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, registration: Registration) -> AuthenticationResult:
        """Create an active account. Does not log the new user in.

        Email and username are each checked against both the email and the
        username columns, so "bob" cannot register while another account
        uses "bob" as its email and vice versa.
        """
        try:
            if self._exists(registration.email) or self._exists(registration.username):
                logger.info("Registration rejected: duplicate identity")
                return _fail(AuthError.DUPLICATE_IDENTITY)

            user = User(
                username=registration.username,
                email=registration.email,
                first_name=registration.first_name,
                last_name=registration.last_name,
                user_type=registration.user_type,
                is_active=True,
                created_at=_utcnow(),
            )
            try:
                user.id = self._store.create_user(user, registration.password)
            except DuplicateIdentityError:
                logger.info("Registration rejected: identity taken concurrently")
                return _fail(AuthError.DUPLICATE_IDENTITY)
            except UserValidationError as exc:
                logger.info("Registration rejected by store: %d error(s)", len(exc.errors))
                return AuthenticationResult.failure(
                    AuthError.REGISTRATION_REJECTED,
                    f"Could not create account: {', '.join(exc.errors)}",
                )

            logger.info("Registered user %s (%s)", user.id, user.user_type.value)
            return AuthenticationResult(is_success=True, user=user)
        except Exception as exc:
            logger.exception("Registration failed unexpectedly")
            return AuthenticationResult.failure(AuthError.OPERATION_FAILED, f"Registration error: {exc}")

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, user_id: str) -> bool:
        """Deactivate every active session of the user.

        A user with no active sessions is a successful no-op. False means the
        store failed; the failure is logged.
        """
        try:
            count = self._store.deactivate_sessions(user_id)
        except Exception:
            logger.exception("Logout failed for user %s", user_id)
            return False
        logger.info("User %s logged out (%d session(s) closed)", user_id, count)
        return True

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh_token(self, refresh_token: str) -> AuthenticationResult:
        """Exchange a refresh token for a new token pair [C2]."""
        try:
            now = _utcnow()
            session = self._store.get_active_session_by_refresh_token(refresh_token, now) if refresh_token else None
            user = self._store.get_by_id(session.user_id) if session is not None else None
            if session is None or user is None or not user.is_active:
                logger.info("Refresh rejected: unknown, expired or orphaned refresh token")
                return _fail(AuthError.INVALID_OR_EXPIRED_REFRESH_TOKEN)

            new_token = self._issuer.issue_access_token(user)
            new_refresh_token = self._issuer.issue_refresh_token()
            expires_at = now + self.refresh_lifetime

            if not self._store.rotate_session(session.id, refresh_token, new_token, new_refresh_token, expires_at):
                logger.warning("Refresh rejected: session %s was rotated concurrently", session.id)
                return _fail(AuthError.INVALID_OR_EXPIRED_REFRESH_TOKEN)

            logger.info("Session %s refreshed for user %s", session.id, user.id)
            return AuthenticationResult(
                is_success=True,
                token=new_token,
                refresh_token=new_refresh_token,
                user=user,
                expires_at=expires_at,
            )
        except Exception as exc:
            logger.exception("Token refresh failed unexpectedly")
            return AuthenticationResult.failure(AuthError.OPERATION_FAILED, f"Refresh token error: {exc}")

    # ------------------------------------------------------------------
    # Account status
    # ------------------------------------------------------------------

    def set_user_active(self, user_id: str, is_active: bool) -> bool:
        """Enable or disable an account. Disabling also closes its sessions.

        Returns False if the user does not exist or the store failed.
        """
        try:
            if not self._store.update_user(user_id, is_active=is_active):
                return False
            if not is_active:
                self._store.deactivate_sessions(user_id)
        except Exception:
            logger.exception("Status change failed for user %s", user_id)
            return False
        logger.info("User %s %s", user_id, "enabled" if is_active else "disabled")
        return True

    # ------------------------------------------------------------------
    # Read-only helpers
    # ------------------------------------------------------------------

    def validate_user(self, identifier: str, password: str) -> bool:
        """Same checks as login(), read-only: no session, no last-login stamp."""
        try:
            user = self._find_usable_user(identifier, password)
            return user is not None and self._store.check_password(user, password)
        except Exception:
            logger.exception("Credential validation failed unexpectedly")
            return False

    def get_user_by_identifier(self, identifier: str) -> User | None:
        try:
            return self._store.find_by_email_or_username(identifier)
        except Exception:
            logger.exception("User lookup failed unexpectedly")
            return None

    def get_user_by_id(self, user_id: str) -> User | None:
        try:
            return self._store.get_by_id(user_id)
        except Exception:
            logger.exception("User lookup failed for %s", user_id)
            return None

    def is_user_active(self, user_id: str) -> bool:
        user = self.get_user_by_id(user_id)
        return user is not None and user.is_active

    def get_active_sessions(self, user_id: str) -> list[UserSession]:
        """Current (active, unexpired) sessions of the user, newest first."""
        try:
            return self._store.get_sessions(user_id, active_only=True, now=_utcnow())
        except Exception:
            logger.exception("Session listing failed for %s", user_id)
            return []

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_usable_user(self, identifier: str, password: str) -> User | None:
        """Return the active user for identifier, or None after a dummy bcrypt check [C1]."""
        user = self._store.find_by_email_or_username(identifier) if identifier else None
        if user is None or not user.is_active:
            verify_password(password or "", DUMMY_HASH)
            return None
        return user

    def _exists(self, identifier: str) -> bool:
        return bool(identifier) and self._store.find_by_email_or_username(identifier) is not None

"""Unit tests for auth/store.py -- UserStore user and session queries.

Covers:
- create_user() validation, hashing and uniqueness
- find_by_email_or_username() matches either column exactly
- start_session() writes the session and last_login_at together
- refresh-token and access-token lookups ignore inactive and expired rows
- deactivate_sessions() and rotate_session() (including the lost-race case)
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import User, UserSession, UserType
from auth.store import DuplicateIdentityError, UserStore, UserValidationError

PASSWORD = "Passw0rd!"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _create(store: UserStore, username: str = "bob", email: str = "bob@example.com", **kwargs) -> str:
    return store.create_user(User(username=username, email=email, **kwargs), PASSWORD)


def _session(user_id: str, refresh: str, expires_in: timedelta, token: str | None = None) -> UserSession:
    return UserSession(
        user_id=user_id,
        session_token=token or f"access-{refresh}",
        refresh_token=refresh,
        expires_at=datetime.now(timezone.utc) + expires_in,
        device_info="pytest",
        ip_address="198.51.100.4",
    )


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class TestCreateUser:
    def test_returns_id_and_persists_profile(self, store):
        user_id = _create(store, first_name="Bob", last_name="Builder", user_type=UserType.PARTNER)
        user = store.get_by_id(user_id)
        assert user is not None
        assert user.username == "bob"
        assert user.email == "bob@example.com"
        assert user.first_name == "Bob"
        assert user.last_name == "Builder"
        assert user.user_type == UserType.PARTNER
        assert user.is_active is True
        assert user.created_at is not None
        assert user.last_login_at is None

    def test_password_is_hashed(self, store):
        user = store.get_by_id(_create(store))
        assert user.hashed_password and user.hashed_password != PASSWORD
        assert store.check_password(user, PASSWORD) is True
        assert store.check_password(user, "wrong") is False

    def test_weak_password_rejected_with_all_reasons(self, store):
        with pytest.raises(UserValidationError) as excinfo:
            store.create_user(User(username="bob", email="bob@example.com"), "abc")
        assert len(excinfo.value.errors) == 4
        assert store.find_by_email_or_username("bob") is None

    def test_invalid_username_and_email(self, store):
        with pytest.raises(UserValidationError) as excinfo:
            store.create_user(User(username="bad name", email="not-an-email"), PASSWORD)
        messages = " ".join(excinfo.value.errors)
        assert "Username 'bad name' is invalid" in messages
        assert "Email 'not-an-email' is invalid" in messages

    def test_duplicate_username_is_validation_error(self, store):
        _create(store)
        with pytest.raises(DuplicateIdentityError, match="already taken"):
            _create(store, email="other@example.com")

    def test_duplicate_email_is_validation_error(self, store):
        _create(store)
        with pytest.raises(DuplicateIdentityError, match="already taken"):
            _create(store, username="bobby")

    @pytest.mark.parametrize(
        ("username", "email"),
        [("Bob", "other@example.com"), ("bobby", "BOB@Example.com")],
    )
    def test_case_variant_is_duplicate(self, store, username, email):
        _create(store)
        with pytest.raises(DuplicateIdentityError):
            _create(store, username=username, email=email)


class TestUserLookup:
    def test_find_by_email(self, store):
        user_id = _create(store)
        assert store.find_by_email_or_username("bob@example.com").id == user_id

    def test_find_by_username(self, store):
        user_id = _create(store)
        assert store.find_by_email_or_username("bob").id == user_id

    def test_find_ignores_case(self, store):
        user_id = _create(store)
        assert store.find_by_email_or_username("BOB").id == user_id
        assert store.find_by_email_or_username("Bob@Example.COM").id == user_id

    def test_find_is_not_a_prefix_match(self, store):
        _create(store)
        assert store.find_by_email_or_username("bo") is None
        assert store.find_by_email_or_username("nobody@example.com") is None

    def test_get_by_id_unknown(self, store):
        assert store.get_by_id("00000000-0000-0000-0000-000000000000") is None

    def test_update_user(self, store):
        user_id = _create(store)
        assert store.update_user(user_id, is_active=False, user_type=UserType.MODERATOR) is True
        user = store.get_by_id(user_id)
        assert user.is_active is False
        assert user.user_type == UserType.MODERATOR

    def test_update_unknown_user(self, store):
        assert store.update_user("missing", is_active=False) is False


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TestSessions:
    def test_start_session_stamps_last_login(self, store):
        user_id = _create(store)
        login_at = datetime.now(timezone.utc)
        session_id = store.start_session(_session(user_id, "r1", timedelta(hours=1)), login_at=login_at)
        assert isinstance(session_id, int)
        assert store.get_by_id(user_id).last_login_at == login_at

    def test_start_session_is_atomic(self, store):
        """A failing insert (duplicate refresh token) must not stamp last_login_at."""
        user_id = _create(store)
        first_login = datetime.now(timezone.utc) - timedelta(minutes=5)
        store.start_session(_session(user_id, "dup", timedelta(hours=1)), login_at=first_login)
        with pytest.raises(IntegrityError):
            store.start_session(_session(user_id, "dup", timedelta(hours=1)), login_at=datetime.now(timezone.utc))
        assert store.get_by_id(user_id).last_login_at == first_login

    def test_refresh_lookup_returns_active_unexpired(self, store):
        user_id = _create(store)
        store.start_session(_session(user_id, "r1", timedelta(hours=1)), login_at=datetime.now(timezone.utc))
        session = store.get_active_session_by_refresh_token("r1", datetime.now(timezone.utc))
        assert session is not None
        assert session.user_id == user_id
        assert session.ip_address == "198.51.100.4"
        assert session.device_info == "pytest"

    def test_refresh_lookup_ignores_expired(self, store):
        user_id = _create(store)
        store.start_session(_session(user_id, "old", timedelta(seconds=-1)), login_at=datetime.now(timezone.utc))
        assert store.get_active_session_by_refresh_token("old", datetime.now(timezone.utc)) is None

    def test_refresh_lookup_ignores_inactive(self, store):
        user_id = _create(store)
        store.start_session(_session(user_id, "r1", timedelta(hours=1)), login_at=datetime.now(timezone.utc))
        store.deactivate_sessions(user_id)
        assert store.get_active_session_by_refresh_token("r1", datetime.now(timezone.utc)) is None

    def test_current_session_by_access_token(self, store):
        user_id = _create(store)
        session = _session(user_id, "r1", timedelta(hours=1), token="tok")
        store.start_session(session, login_at=datetime.now(timezone.utc))
        now = datetime.now(timezone.utc)
        assert store.get_current_session("tok", now).refresh_token == "r1"
        assert store.get_current_session("tok", now + timedelta(hours=2)) is None
        assert store.get_current_session("other", now) is None

    def test_deactivate_sessions_counts_only_active(self, store):
        user_id = _create(store)
        now = datetime.now(timezone.utc)
        store.start_session(_session(user_id, "r1", timedelta(hours=1)), login_at=now)
        store.start_session(_session(user_id, "r2", timedelta(hours=1)), login_at=now)
        assert store.deactivate_sessions(user_id) == 2
        assert store.deactivate_sessions(user_id) == 0
        assert all(not s.is_active for s in store.get_sessions(user_id))

    def test_get_sessions_active_only_newest_first(self, store):
        user_id = _create(store)
        now = datetime.now(timezone.utc)
        older = _session(user_id, "r1", timedelta(hours=1))
        older.created_at = now - timedelta(minutes=10)
        store.start_session(older, login_at=now)
        store.start_session(_session(user_id, "r2", timedelta(hours=1)), login_at=now)
        store.start_session(_session(user_id, "r3", timedelta(seconds=-1)), login_at=now)

        active = store.get_sessions(user_id, active_only=True)
        assert [s.refresh_token for s in active] == ["r2", "r1"]
        assert len(store.get_sessions(user_id)) == 3

    def test_rotate_session(self, store):
        user_id = _create(store)
        now = datetime.now(timezone.utc)
        session_id = store.start_session(_session(user_id, "r1", timedelta(hours=1)), login_at=now)
        new_expiry = now + timedelta(days=30)

        assert store.rotate_session(session_id, "r1", "tok2", "r2", new_expiry) is True
        assert store.get_active_session_by_refresh_token("r1", now) is None
        rotated = store.get_active_session_by_refresh_token("r2", now)
        assert rotated.id == session_id
        assert rotated.session_token == "tok2"
        assert rotated.expires_at == new_expiry

    def test_rotate_session_loses_race(self, store):
        """A second rotation presenting the already-replaced token matches no row."""
        user_id = _create(store)
        now = datetime.now(timezone.utc)
        session_id = store.start_session(_session(user_id, "r1", timedelta(hours=1)), login_at=now)
        assert store.rotate_session(session_id, "r1", "tok2", "r2", now + timedelta(days=30)) is True
        assert store.rotate_session(session_id, "r1", "tok3", "r3", now + timedelta(days=30)) is False


def test_ping(store):
    assert store.ping() is True

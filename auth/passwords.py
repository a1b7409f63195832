"""
auth/passwords.py -- Password hashing and password policy.

Passwords: bcrypt, used directly rather than through passlib. passlib's
     internal wrap-bug detection creates a password longer than 72 bytes, which
     bcrypt 4.x rejects with an explicit error. The DUMMY_HASH constant enables
     timing equalization in AuthenticationService.login() so response time does
     not reveal whether an account exists [C1].

Policy: PasswordPolicy mirrors the defaults of common identity frameworks
     (6+ chars, digit, lowercase, uppercase, non-alphanumeric). validate()
     returns every violated rule so the caller can report them all at once.

Layer rule: no imports from api/. core/ is allowed for settings.
"""

from __future__ import annotations

import string
from dataclasses import dataclass
from typing import TYPE_CHECKING

import bcrypt

if TYPE_CHECKING:
    from core.config import Settings

# bcrypt only looks at the first 72 bytes of its input. Longer passwords are
# rejected at registration instead of being silently truncated.
BCRYPT_MAX_BYTES = 72

# Character classes are ASCII, matching the ranges the messages name.
_ASCII_ALNUM = frozenset(string.ascii_letters + string.digits)


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except Exception:
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
DUMMY_HASH: str = hash_password("authmodule_timing_dummy")


@dataclass(frozen=True)
class PasswordPolicy:
    min_length: int = 6
    require_digit: bool = True
    require_lowercase: bool = True
    require_uppercase: bool = True
    require_non_alphanumeric: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> PasswordPolicy:
        return cls(
            min_length=settings.password_min_length,
            require_digit=settings.password_require_digit,
            require_lowercase=settings.password_require_lowercase,
            require_uppercase=settings.password_require_uppercase,
            require_non_alphanumeric=settings.password_require_non_alphanumeric,
        )

    def validate(self, password: str) -> list[str]:
        """Return a list of human-readable violations; empty means acceptable."""
        errors: list[str] = []
        if len(password) < self.min_length:
            errors.append(f"Passwords must be at least {self.min_length} characters.")
        if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
            errors.append(f"Passwords must be at most {BCRYPT_MAX_BYTES} bytes.")
        if self.require_non_alphanumeric and all(c in _ASCII_ALNUM for c in password):
            errors.append("Passwords must have at least one non alphanumeric character.")
        if self.require_digit and not any(c in string.digits for c in password):
            errors.append("Passwords must have at least one digit ('0'-'9').")
        if self.require_lowercase and not any(c in string.ascii_lowercase for c in password):
            errors.append("Passwords must have at least one lowercase ('a'-'z').")
        if self.require_uppercase and not any(c in string.ascii_uppercase for c in password):
            errors.append("Passwords must have at least one uppercase ('A'-'Z').")
        return errors

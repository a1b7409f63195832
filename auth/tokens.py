"""
auth/tokens.py -- JWT access tokens, opaque refresh tokens, and the auth cookie.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry the
       user id (sub), profile claims, issuer, audience, a random jti and the
       expiry. Verification returns None on any failure -- the route layer
       turns that into a 401.

  jti: a random token id makes two access tokens issued for the same user in
       the same second distinct, so each session row holds a unique token.

  Refresh tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. They
       are opaque -- only the session store knows what they belong to.

TokenIssuer is a plain object constructed from settings so the
authentication service receives it as an injected collaborator instead of
reading module-level globals.

Layer rule: no imports from api/. Import from core/ is allowed -- core/ is the
kernel and has no reverse dependencies.
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

if TYPE_CHECKING:
    from auth.models import User
    from core.config import Settings

_ALGORITHM = "HS256"

# Name of the httpOnly cookie the browser flow uses.
AUTH_COOKIE = "access_token"


class TokenIssuer:
    """Issues and verifies tokens for one signing key / issuer / audience.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        token = issuer.issue_access_token(user)
        user_id = issuer.get_user_id(token)   # None if invalid or expired
    """

    def __init__(self, secret_key: str, issuer: str, audience: str, expire_minutes: int = 60) -> None:
        if not secret_key:
            raise ValueError("A signing key is required to issue tokens.")
        self._secret_key = secret_key
        self.issuer = issuer
        self.audience = audience
        self.expire_minutes = expire_minutes

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenIssuer:
        return cls(
            secret_key=settings.secret_key,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            expire_minutes=settings.jwt_expire_minutes,
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access_token(self, user: User) -> str:
        """Encode a signed JWT describing the user.

        Raises ValueError for a user without an id -- a token whose subject
        is missing could never be resolved back to an account.
        """
        if user is None or not user.id:
            raise ValueError("Cannot issue an access token for a user without an id.")
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user.id,
            "name": user.username,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "user_type": user.user_type.value,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": now + timedelta(minutes=self.expire_minutes),
            "iss": self.issuer,
            "aud": self.audience,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def issue_refresh_token(self) -> str:
        return secrets.token_urlsafe(32)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def decode(self, token: str | None) -> dict | None:
        """Decode and verify a JWT. Returns the payload dict or None on any failure.

        Checks signature, expiry, issuer and audience. Returning None (rather
        than raising) keeps callers simple: any invalid token is treated as
        unauthenticated.
        """
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
            )
        except JWTError:
            return None
        if not payload.get("sub"):
            return None
        return payload

    def validate(self, token: str | None) -> bool:
        return self.decode(token) is not None

    def get_user_id(self, token: str | None) -> str | None:
        payload = self.decode(token)
        return payload["sub"] if payload else None

    def get_expiration(self, token: str | None) -> datetime | None:
        """Return the token's exp claim as an aware UTC datetime.

        Reads the claim without verifying the signature so an expired token
        still reports when it expired. Returns None when the token cannot be
        parsed at all.
        """
        if not token:
            return None
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError:
            return None
        exp = claims.get("exp")
        if exp is None:
            return None
        return datetime.fromtimestamp(int(exp), tz=timezone.utc)


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expires_at: datetime, secure: bool = False) -> None:
    """Write the JWT access token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": CSRF mitigation for cross-site POSTs.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the session expiry so a "remember me" login survives a
        browser restart and a short session does not.
    """
    max_age = max(int((expires_at - datetime.now(timezone.utc)).total_seconds()), 0)
    response.set_cookie(
        AUTH_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
    )

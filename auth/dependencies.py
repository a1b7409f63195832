"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. JWT cookie ("access_token") -- set by the login and refresh routes.
  2. Authorization: Bearer <token> header -- API clients.

A token only authenticates a request when all three hold:
  - the JWT verifies (signature, expiry, issuer, audience),
  - a session row holding exactly that token is active and unexpired,
  - the user it names exists and is active.
The session check is what makes logout effective for tokens whose JWT expiry
has not passed yet.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_user() and raises HTTP 403 if not admin.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import HTTPException, Request

from auth.models import User, UserType
from auth.tokens import AUTH_COOKIE


def get_request_token(request: Request) -> str | None:
    """Return the raw access token from the cookie or Bearer header, if any."""
    token: str | None = request.cookies.get(AUTH_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def try_get_current_user(request: Request) -> User | None:
    """Attempt to authenticate the request. Never raises.

    Returns the authenticated User on success, None on any failure.
    """
    token = get_request_token(request)
    if token is None:
        return None

    user_id = request.app.state.token_issuer.get_user_id(token)
    if user_id is None:
        return None

    user_store = request.app.state.user_store
    session = user_store.get_current_session(token, datetime.now(timezone.utc))
    if session is None or session.user_id != user_id:
        return None

    user = user_store.get_by_id(user_id)
    if user is None or not user.is_active:
        return None
    return user


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_admin(request: Request) -> User:
    """Require the admin user type. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    user = get_current_user(request)
    if user.user_type != UserType.ADMIN:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user

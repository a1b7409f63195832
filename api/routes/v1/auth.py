"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST  /api/v1/auth/login             -- password login; returns tokens, sets JWT cookie
  POST  /api/v1/auth/register          -- self-registration; no tokens issued
  POST  /api/v1/auth/refresh           -- exchange a refresh token for a new pair
  POST  /api/v1/auth/logout            -- close the caller's sessions; clears cookie
  GET   /api/v1/auth/me                -- current user info (requires auth)
  GET   /api/v1/auth/sessions          -- caller's current sessions (requires auth)
  PATCH /api/v1/auth/users/{id}        -- enable/disable an account (admin only)

Security:
  [H2] POST /login and POST /register are rate-limited per IP.
  [C1] Unknown, disabled and wrong-password logins all return the same
       401 "bad_credentials" body. The service keeps the finer-grained codes
       for logging; the HTTP layer does not expose them.
  [M5] Cache-Control: no-store on every response that carries a token.
  The caller's IP and User-Agent are recorded on the session row.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit, register_limit
from api.models import (
    LoginRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    SessionResponse,
    TokenResponse,
    UserPatch,
    UserResponse,
    UserTypeEnum,
)
from auth.dependencies import get_current_user, get_request_token, require_admin, try_get_current_user
from auth.models import AuthenticationResult, AuthError, Registration, User, UserType
from auth.service import AuthenticationService
from auth.tokens import AUTH_COOKIE, set_auth_cookie
from core.config import get_settings

# Auth policy:
# - POST  /api/v1/auth/login:        public -- login endpoint must be unauthenticated
# - POST  /api/v1/auth/register:     public -- unless SELF_REGISTRATION_ENABLED=false
# - POST  /api/v1/auth/refresh:      public -- the refresh token is the credential
# - POST  /api/v1/auth/logout:       soft auth -- clearing a cookie needs no prior auth
# - GET   /api/v1/auth/me:           requires auth (get_current_user)
# - GET   /api/v1/auth/sessions:     requires auth (get_current_user)
# - PATCH /api/v1/auth/users/{id}:   requires admin (require_admin)
router = APIRouter()

# AuthError -> (HTTP status, public code, public message). Login failures are
# collapsed into one entry [C1]; OPERATION_FAILED never echoes the exception.
_ERROR_MAP: dict[AuthError, tuple[int, str, str | None]] = {
    AuthError.ACCOUNT_UNAVAILABLE: (401, "bad_credentials", "Invalid email/username or password."),
    AuthError.INVALID_CREDENTIALS: (401, "bad_credentials", "Invalid email/username or password."),
    AuthError.DUPLICATE_IDENTITY: (409, "conflict", None),
    AuthError.REGISTRATION_REJECTED: (400, "registration_rejected", None),
    AuthError.INVALID_OR_EXPIRED_REFRESH_TOKEN: (401, "invalid_refresh_token", None),
    AuthError.OPERATION_FAILED: (500, "internal_error", "An unexpected error occurred."),
}


def _service(request: Request) -> AuthenticationService:
    return request.app.state.auth_service


def _error_response(result: AuthenticationResult) -> JSONResponse:
    status, code, message = _ERROR_MAP[result.error or AuthError.OPERATION_FAILED]
    resp = JSONResponse(
        status_code=status,
        content={"error": {"code": code, "message": message or result.error_message, "detail": None}},
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _token_response(result: AuthenticationResult) -> JSONResponse:
    body = TokenResponse(
        access_token=result.token,
        refresh_token=result.refresh_token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_at=result.expires_at,
        user=UserResponse.from_user(result.user),
    )
    resp = JSONResponse(status_code=200, content=body.model_dump(mode="json"))
    set_auth_cookie(resp, result.token, result.expires_at, secure=get_settings().secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email-or-username and password; open a session.

    remember_me stretches the session from one hour to thirty days. The
    cookie's max-age follows the session expiry.
    """
    result = _service(request).login(
        body.identifier,
        body.password,
        body.remember_me,
        ip_address=request.client.host if request.client else None,
        device_info=request.headers.get("User-Agent"),
    )
    if not result.is_success:
        return _error_response(result)
    return _token_response(result)


@limiter.limit(register_limit)  # [H2]
@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account. The caller must log in separately afterwards.

    Public registration cannot create admin accounts.
    """
    if not get_settings().self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    if body.user_type == UserTypeEnum.admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin accounts cannot be self-registered."},
        )

    result = _service(request).register(
        Registration(
            email=body.email,
            username=body.username,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
            user_type=UserType(body.user_type.value),
        )
    )
    if not result.is_success:
        return _error_response(result)
    return JSONResponse(status_code=201, content=UserResponse.from_user(result.user).model_dump(mode="json"))


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Rotate the token pair. The presented refresh token stops working."""
    result = _service(request).refresh_token(body.refresh_token)
    if not result.is_success:
        return _error_response(result)
    return _token_response(result)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Close every session of the authenticated caller and clear the cookie.

    An unauthenticated call still succeeds and still clears the cookie.
    """
    user = try_get_current_user(request)
    if user is not None and not _service(request).logout(user.id):
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "Logout could not be completed."},
        )
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie(AUTH_COOKIE)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    token = get_request_token(request)
    return MeResponse(
        user=UserResponse.from_user(current_user),
        token_expires_at=request.app.state.token_issuer.get_expiration(token),
    )


@router.get("/auth/sessions", response_model=list[SessionResponse])
def list_sessions(request: Request, current_user: User = Depends(get_current_user)) -> list[SessionResponse]:
    """List the caller's active, unexpired sessions (newest first). Token values are never returned."""
    token = get_request_token(request)
    sessions = _service(request).get_active_sessions(current_user.id)
    return [SessionResponse.from_session(s, current_token=token) for s in sessions]


# ---------------------------------------------------------------------------
# Account management (admin only)
# ---------------------------------------------------------------------------


@router.patch("/auth/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: str,
    body: UserPatch,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Enable or disable an account. Disabling closes all of its sessions.

    [M4] An admin cannot disable their own account.
    """
    service = _service(request)
    if service.get_user_by_id(user_id) is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    if not body.is_active and user_id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deactivation", "message": "You cannot deactivate your own account."},
        )
    if not service.set_user_active(user_id, body.is_active):
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User could not be updated."},
        )
    updated = service.get_user_by_id(user_id)
    if updated is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User could not be loaded."},
        )
    return UserResponse.from_user(updated)

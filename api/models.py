"""
API request and response models for AuthModule REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.models import User, UserSession

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class UserTypeEnum(str, Enum):
    end_user = "end_user"
    admin = "admin"
    partner = "partner"
    moderator = "moderator"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Only the identifier is stripped. Whitespace is a legal password character,
    so str_strip_whitespace is not set on the model.
    """

    identifier: str = Field(min_length=1, max_length=256, description="Email address or username.")
    password: str = Field(min_length=1, max_length=255)
    remember_me: bool = False

    @field_validator("identifier", mode="before")
    @classmethod
    def strip_identifier(cls, value):
        return value.strip() if isinstance(value, str) else value


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Identity and name fields are stripped; the two password fields are taken
    verbatim. Password policy is enforced by the store, not here, so every
    violation comes back in one REGISTRATION_REJECTED message.
    """

    email: str = Field(min_length=3, max_length=256, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    username: str = Field(min_length=1, max_length=256)
    password: str = Field(min_length=1, max_length=255)
    confirm_password: str = Field(min_length=1, max_length=255)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    user_type: UserTypeEnum = UserTypeEnum.end_user

    @field_validator("email", "username", "first_name", "last_name", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("Password and confirmation password do not match.")
        return self


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh."""

    refresh_token: str = Field(min_length=1, max_length=500)


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/auth/users/{user_id}."""

    is_active: bool


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    email: str
    first_name: str
    last_name: str
    user_type: UserTypeEnum
    is_active: bool
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            user_type=UserTypeEnum(user.user_type.value),
            is_active=user.is_active,
            created_at=user.created_at,
            last_login_at=user.last_login_at,
        )


class TokenResponse(BaseModel):
    """Response for POST /auth/login and POST /auth/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserResponse


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    token_expires_at: Optional[datetime] = None


class SessionResponse(BaseModel):
    """One row of GET /api/v1/auth/sessions. Token values are never returned."""

    model_config = ConfigDict(frozen=True)

    id: int
    created_at: Optional[datetime]
    expires_at: datetime
    device_info: Optional[str]
    ip_address: Optional[str]
    current: bool = False

    @classmethod
    def from_session(cls, session: UserSession, current_token: Optional[str] = None) -> "SessionResponse":
        return cls(
            id=session.id,
            created_at=session.created_at,
            expires_at=session.expires_at,
            device_info=session.device_info,
            ip_address=session.ip_address,
            current=current_token is not None and session.session_token == current_token,
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)

"""
API request and response models for Authgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

The wire format is camelCase (firstName, isVerified, loggedIn, ...). Fields
are declared in snake_case with an alias; populate_by_name lets route code
build models with Python names, and FastAPI serializes by alias.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import SafeUser

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register.

    Blank-field and password-policy checks live in AuthService.register() so
    they produce the specific error codes the client relies on; the model only
    enforces types and upper bounds.
    """

    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(max_length=255)
    password: str = Field(max_length=255)
    first_name: str = Field(alias="firstName", max_length=255)
    last_name: str = Field(alias="lastName", max_length=255)


class ResendConfirmationRequest(BaseModel):
    """Request body for POST /auth/confirm-account/resend."""

    email: str = Field(max_length=255)


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    email: str = Field(max_length=255)
    password: str = Field(max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Safe user view. password is always null."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    email: str
    password: None = None
    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    role: RoleEnum
    is_verified: bool = Field(alias="isVerified")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    @classmethod
    def from_safe_user(cls, user: SafeUser) -> "UserResponse":
        """Build a UserResponse from the domain safe view (Factory Method)."""
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=RoleEnum(user.role.value),
            is_verified=user.is_verified,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class ConfirmAccountResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    email: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class SessionStateResponse(BaseModel):
    """Response for login and logout."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message: str
    logged_in: bool = Field(alias="loggedIn")


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
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]

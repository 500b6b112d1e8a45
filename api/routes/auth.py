"""
api/routes/auth.py -- Registration, confirmation and session REST endpoints.

Routes:
  POST  /auth/register                -- create an unverified account; 201 safe user
  PATCH /auth/confirm-account/{token} -- consume a confirmation token; 200 {message, email}
  POST  /auth/confirm-account/resend  -- mail a new link to an unverified account; 200 {message}
  POST  /auth/login                   -- password login; sets session-token cookie; 201
  GET   /auth/user                    -- current user (requires session)
  POST  /auth/logout                  -- ends the session, clears the cookie; 200

Access policy is enforced by the router-level access_guard dependency:
  register, confirm-account, resend, login -- public-only (a session cookie is rejected)
  user, logout                             -- protected (a valid session is required)

Security:
  [H2] POST /login, /register and /confirm-account/resend are rate-limited per IP.
  [C1] AuthService.authenticate() provides timing equalization -- never inline.
  [M5] Cache-Control: no-store on login responses.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ConfirmAccountResponse,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResendConfirmationRequest,
    SessionStateResponse,
    UserResponse,
)
from auth.guard import SESSION_COOKIE, access_guard, clear_session_cookie, set_session_cookie
from auth.service import AuthService
from core.config import get_settings

_settings = get_settings()

router = APIRouter(prefix="/auth", dependencies=[Depends(access_guard)])


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


# ---------------------------------------------------------------------------
# Public-only endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.register_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create an unverified account and send its confirmation link."""
    user = _service(request).register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return UserResponse.from_safe_user(user)


@router.patch("/confirm-account/{token}", response_model=ConfirmAccountResponse)
def confirm_account(request: Request, token: uuid.UUID) -> ConfirmAccountResponse:
    """Verify the account owning this confirmation token. Single use."""
    user = _service(request).confirm_account(str(token))
    return ConfirmAccountResponse(message="Successfully confirmed your email", email=user.email)


_RESEND_MESSAGE = "If this account exists and is not confirmed yet, a new confirmation link has been sent"


@limiter.limit(_settings.register_rate_limit)  # [H2]
@router.post("/confirm-account/resend", response_model=MessageResponse)
def resend_confirmation(request: Request, body: ResendConfirmationRequest) -> MessageResponse:
    """Mail a confirmation link again. Same answer whether or not the account exists."""
    _service(request).resend_confirmation(body.email)
    return MessageResponse(message=_RESEND_MESSAGE)


@limiter.limit(_settings.login_rate_limit)  # [H2]
@router.post("/login", response_model=SessionStateResponse, status_code=201)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session-token cookie.

    Unknown email, unverified account and wrong password all return the same
    400 invalid_credentials error.
    """
    ip = request.client.host if request.client else "unknown"
    token, _user = _service(request).login(body.email, body.password, ip)
    resp = JSONResponse(
        status_code=201,
        content=SessionStateResponse(message="Logged in", logged_in=True).model_dump(by_alias=True),
    )
    set_session_cookie(resp, token.id, max_age=_settings.session_ttl_seconds, secure=_settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Protected endpoints
# ---------------------------------------------------------------------------


@router.get("/user", response_model=UserResponse)
def get_authenticated_user(request: Request) -> UserResponse:
    """Return the safe view of the user behind the session cookie."""
    user = _service(request).get_authenticated_user(request.cookies.get(SESSION_COOKIE))
    return UserResponse.from_safe_user(user)


@router.post("/logout", response_model=SessionStateResponse)
def logout(request: Request) -> JSONResponse:
    """Delete the server-side session and clear the cookie."""
    _service(request).logout(request.cookies.get(SESSION_COOKIE))
    resp = JSONResponse(content=SessionStateResponse(message="Logged out", logged_in=False).model_dump(by_alias=True))
    clear_session_cookie(resp, secure=_settings.secure_cookies)
    return resp

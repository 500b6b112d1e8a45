"""
auth/guard.py -- Per-request session gate.

Every guarded route falls in one of two classes:

  PUBLIC_ONLY -- /auth/login, /auth/register, /auth/confirm-account/<id>.
                 These are for visitors without a session. Presenting a
                 session cookie here is an error (AlreadyAuthenticated), not
                 a pass-through.
  PROTECTED   -- everything else. A cookie must be present, must resolve to
                 a session, and the session must be within its lifetime.

An expired session is cleaned up before the rejection is raised: the cache
entry is invalidated and the durable token deleted, so the same cookie can
never authenticate again and fails as Forbidden on retry.

access_guard() is the FastAPI dependency. It is attached at router level
(APIRouter(dependencies=[Depends(access_guard)])) so rejections happen before
any handler body runs. The resolved session is stored on request.state.session
for handlers that need the current user.

Layer rule: auth/guard.py may import from fastapi (for Request) because it is
part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

import logging
from enum import Enum

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import AlreadyAuthenticated, Forbidden, NoSessionCookie, SessionExpired
from auth.models import CachedSession
from auth.session_cache import SessionCache
from auth.tokens import TokenManager

logger = logging.getLogger("authgate.auth")

SESSION_COOKIE = "session-token"

_PUBLIC_ONLY_PATHS = frozenset({"/auth/login", "/auth/register"})
_PUBLIC_ONLY_PREFIXES = ("/auth/confirm-account/",)


class RouteAccess(str, Enum):
    PUBLIC_ONLY = "public_only"
    PROTECTED = "protected"


def classify(path: str) -> RouteAccess:
    """Return the access class of a request path."""
    normalized = path.rstrip("/") or "/"
    if normalized in _PUBLIC_ONLY_PATHS:
        return RouteAccess.PUBLIC_ONLY
    if normalized.startswith(_PUBLIC_ONLY_PREFIXES) or (normalized + "/").startswith(_PUBLIC_ONLY_PREFIXES):
        return RouteAccess.PUBLIC_ONLY
    return RouteAccess.PROTECTED


class AccessGuard:
    """Decide whether a request may reach its handler."""

    def __init__(self, sessions: SessionCache, tokens: TokenManager) -> None:
        self.sessions = sessions
        self.tokens = tokens

    def check(self, path: str, session_cookie: str | None) -> CachedSession | None:
        """Return the resolved session for protected paths, None for public-only ones.

        Raises an AuthenticationError subclass when the request must be rejected.
        """
        if classify(path) is RouteAccess.PUBLIC_ONLY:
            if session_cookie:
                raise AlreadyAuthenticated()
            return None

        if not session_cookie:
            raise NoSessionCookie()

        session = self.sessions.get_session_by_id(session_cookie)
        if session is None:
            raise Forbidden()
        if not self.tokens.is_valid(session.token):
            self._cleanup(session_cookie)
            raise SessionExpired()
        return session

    def _cleanup(self, token_id: str) -> None:
        self.sessions.remove_session(token_id)
        try:
            self.tokens.delete_session_token(token_id)
        except SQLAlchemyError:
            # The token stays expired either way; the next request retries the delete.
            logger.exception("Failed to delete expired session token %s...", token_id[:8])
        else:
            logger.info("Reaped expired session token %s...", token_id[:8])


def set_session_cookie(response, token_id: str, max_age: int, secure: bool = False) -> None:
    """Write the session id as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation for most cases.
    max_age: the session TTL in seconds, so cookie and token expire together.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=token_id,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
    )


def clear_session_cookie(response, secure: bool = False) -> None:
    response.delete_cookie(SESSION_COOKIE, httponly=True, samesite="lax", secure=secure)


def access_guard(request: Request) -> CachedSession | None:
    """FastAPI dependency enforcing the session policy for the current request.

    Use at router level:
        router = APIRouter(dependencies=[Depends(access_guard)])
    """
    guard: AccessGuard = request.app.state.guard
    session = guard.check(request.url.path, request.cookies.get(SESSION_COOKIE))
    request.state.session = session
    return session

"""
auth/session_cache.py -- Cache-aside bridge between session tokens and the fast cache.

Read path:  cache hit  -> trust the entry (its own TTL evicts it on expiry).
            cache miss -> load token + user from the credential store and,
                          only when the token is still valid, write it back
                          with the remaining lifetime as TTL.
Write path: put_session() after the durable token row exists.
Invalidate: remove_session() on logout and when the guard sees an expired
            session. A revoked token can only authenticate through a cache
            entry that was not invalidated, so callers must invalidate
            synchronously.

The cache is an accelerator, never the source of truth. Any CacheError is
logged and treated as a miss (reads) or skipped (writes/deletes); the only
cost of a cache outage is an extra store round-trip per request.
"""

from __future__ import annotations

import json
import logging
from typing import Optional, Protocol

from auth.models import CachedSession, SafeUser, SessionToken, User
from auth.store import CredentialStore
from auth.tokens import TokenManager
from cache.store import CacheError

logger = logging.getLogger("authgate.auth")

_KEY_PREFIX = "session:"


class FastCache(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...


def _key(token_id: str) -> str:
    return f"{_KEY_PREFIX}{token_id}"


class SessionCache:
    def __init__(self, cache: FastCache, tokens: TokenManager, store: CredentialStore, session_ttl: int) -> None:
        self.cache = cache
        self.tokens = tokens
        self.store = store
        self.session_ttl = session_ttl

    def get_session_by_id(self, token_id: str) -> CachedSession | None:
        """Resolve a session id to its token and safe user view.

        Returns None when neither the cache nor the store knows the token, or
        when the owning user no longer exists. A token loaded from the store is
        returned even when expired; the caller decides what to do with it.
        """
        cached = self._read(token_id)
        if cached is not None:
            return cached

        token = self.tokens.get_session_token(token_id)
        if token is None:
            return None
        user = self.store.get_user_by_id(token.user_id)
        if user is None:
            return None
        session = CachedSession(token=token, user=user.safe())
        if self.tokens.is_valid(token):
            self._write(session, self.tokens.remaining_seconds(token))
        return session

    def put_session(self, token: SessionToken, user: User | SafeUser) -> None:
        safe = user.safe() if isinstance(user, User) else user
        self._write(CachedSession(token=token, user=safe), self.session_ttl)

    def remove_session(self, token_id: str) -> None:
        """Drop the cached entry for token_id. Missing entries are not an error."""
        try:
            self.cache.delete(_key(token_id))
        except CacheError as exc:
            logger.warning("Session cache delete failed for %s...: %s", token_id[:8], exc)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _read(self, token_id: str) -> CachedSession | None:
        try:
            raw = self.cache.get(_key(token_id))
        except CacheError as exc:
            logger.warning("Session cache read failed, falling back to store: %s", exc)
            return None
        if raw is None:
            return None
        try:
            return CachedSession.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding corrupt session cache entry %s...", token_id[:8])
            self.remove_session(token_id)
            return None

    def _write(self, session: CachedSession, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        try:
            self.cache.set(_key(session.token.id), json.dumps(session.to_dict()), ttl_seconds)
        except CacheError as exc:
            logger.warning("Session cache write failed for user_id=%s: %s", session.user.id, exc)

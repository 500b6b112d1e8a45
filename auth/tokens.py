"""
auth/tokens.py -- Session and account-confirmation token lifecycle.

TokenManager is the only component that decides what "expired" means.

Lifetime rules:
  A token is valid while now < created_at + ttl, where ttl depends on the
  token kind (session vs confirmation). The window is measured from creation
  only; using a token never extends it. A token read exactly at
  created_at + ttl is already invalid.

  Expired tokens are not swept in the background. Reads return them as-is and
  the caller (the access guard, the confirm-account flow) decides to reject and
  delete them.

Token ids are uuid4 strings. They are the bearer credential for sessions, so
they come from uuid4's OS-random source, never from a counter.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from auth.errors import ConfirmationTokenConflict
from auth.models import AccountConfirmationToken, SessionToken, User, utcnow
from auth.store import CredentialStore

logger = logging.getLogger("authgate.auth")

Token = SessionToken | AccountConfirmationToken


class TokenManager:
    """Issue, validate and delete session and confirmation tokens.

    Usage:
        tokens = TokenManager(store, session_ttl=3600, confirmation_ttl=86400)
        session = tokens.issue_session_token(user_id=1, ip="127.0.0.1")
        tokens.is_valid(session)   # True for the next hour
    """

    def __init__(
        self,
        store: CredentialStore,
        session_ttl: int,
        confirmation_ttl: int,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.session_ttl = session_ttl
        self.confirmation_ttl = confirmation_ttl
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Validity
    # ------------------------------------------------------------------

    def ttl_for(self, token: Token) -> int:
        if isinstance(token, SessionToken):
            return self.session_ttl
        return self.confirmation_ttl

    def expires_at(self, token: Token) -> datetime:
        return token.created_at + timedelta(seconds=self.ttl_for(token))

    def is_valid(self, token: Token) -> bool:
        return self.now() < self.expires_at(token)

    def remaining_seconds(self, token: Token) -> int:
        """Whole seconds left in the token's window, rounded up; 0 once expired."""
        remaining = (self.expires_at(token) - self.now()).total_seconds()
        return max(0, math.ceil(remaining))

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    def issue_session_token(self, user_id: int, ip: str) -> SessionToken:
        """Persist a new session token. Caching it is the caller's job."""
        now = self.now()
        token = SessionToken(id=str(uuid.uuid4()), user_id=user_id, ip_addr=ip, created_at=now, updated_at=now)
        self.store.create_session_token(token)
        logger.info("Issued session token for user_id=%d from %s", user_id, ip)
        return token

    def get_session_token(self, token_id: str) -> SessionToken | None:
        return self.store.get_session_token(token_id)

    def delete_session_token(self, token_id: str) -> None:
        """Delete a session token. Deleting an unknown id is a no-op."""
        if self.store.delete_session_token(token_id):
            logger.info("Deleted session token %s...", token_id[:8])

    # ------------------------------------------------------------------
    # Account confirmation tokens
    # ------------------------------------------------------------------

    def issue_confirmation_token(self, user_id: int) -> AccountConfirmationToken:
        """Create the user's confirmation token.

        Raises ConfirmationTokenConflict if an unexpired token is already
        pending. An expired one is replaced in the same transaction.
        """
        now = self.now()
        token = AccountConfirmationToken(id=str(uuid.uuid4()), user_id=user_id, created_at=now, updated_at=now)
        existing = self.store.get_confirmation_token_for_user(user_id)
        try:
            if existing is None:
                self.store.create_confirmation_token(token)
            elif self.is_valid(existing):
                raise ConfirmationTokenConflict()
            else:
                self.store.replace_confirmation_token(existing.id, token)
        except IntegrityError as exc:
            # A concurrent request inserted a token for this user first.
            raise ConfirmationTokenConflict() from exc
        logger.info("Issued account confirmation token for user_id=%d", user_id)
        return token

    def get_confirmation_token(self, token_id: str) -> AccountConfirmationToken | None:
        return self.store.get_confirmation_token(token_id)

    def get_confirmation_token_for_user(self, user_id: int) -> AccountConfirmationToken | None:
        return self.store.get_confirmation_token_for_user(user_id)

    def delete_confirmation_token(self, user_id: int) -> None:
        """Delete the user's confirmation token. No-op if there is none."""
        self.store.delete_confirmation_token(user_id)

    def consume_confirmation_token(self, token: AccountConfirmationToken) -> User | None:
        """Delete the token and verify its user in one store transaction."""
        return self.store.confirm_account(token.id, token.user_id)

"""
auth/service.py -- Registration, confirmation, login, logout and current-user flows.

AuthService composes the credential store, token manager, session cache,
password policy and mailer. It holds no state of its own; every collaborator
is injected at construction (see api/main.py lifespan).

Ordering rules:
  register -- every validation and policy check runs before the first write.
  login    -- durable token row first, cache entry second. A crash between
              the two only costs a cache miss on the next request.
  logout   -- cache entry invalidated around the durable delete, so a revoked
              token cannot keep authenticating through a stale entry.
  confirm  -- token delete and is_verified update run in one store
              transaction (CredentialStore.confirm_account).

Enumeration resistance [C1]:
  login() raises the same InvalidCredentials for unknown emails, unverified
  accounts and wrong passwords, and always runs one bcrypt verification.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AccountAlreadyConfirmed,
    ConfirmationTokenConflict,
    EmailRequired,
    EmailUnavailable,
    FirstNameRequired,
    InvalidCredentials,
    InvalidToken,
    LastNameRequired,
    PasswordRequired,
    TokenExpired,
    UserNotFound,
)
from auth.mail import Mailer, redact_email
from auth.models import SafeUser, SessionToken, User
from auth.passwords import PasswordPolicy, hash_password, verify_dummy, verify_password
from auth.session_cache import SessionCache
from auth.store import CredentialStore
from auth.tokens import TokenManager

logger = logging.getLogger("authgate.auth")


class AuthService:
    def __init__(
        self,
        store: CredentialStore,
        tokens: TokenManager,
        sessions: SessionCache,
        policy: PasswordPolicy,
        mailer: Mailer,
        hash_rounds: int = 12,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.sessions = sessions
        self.policy = policy
        self.mailer = mailer
        self.hash_rounds = hash_rounds

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def is_email_available(self, email: str) -> bool:
        return self.store.get_user_by_email(email) is None

    def register(self, email: str, password: str, first_name: str, last_name: str) -> SafeUser:
        """Create an unverified user, issue its confirmation token and mail the link.

        Raises a ValidationError subclass for blank fields, EmailUnavailable
        when the email is taken, and PasswordTooShort / PasswordNotStrong when
        the password fails the policy. Nothing is written before these pass.
        """
        if not email or not email.strip():
            raise EmailRequired()
        if not password:
            raise PasswordRequired()
        if not first_name or not first_name.strip():
            raise FirstNameRequired()
        if not last_name or not last_name.strip():
            raise LastNameRequired()
        if not self.is_email_available(email):
            raise EmailUnavailable()
        self.policy.check(password)

        user = User(
            email=email,
            hashed_password=hash_password(password, rounds=self.hash_rounds),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
        )
        try:
            user.id = self.store.create_user(user)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same email.
            raise EmailUnavailable() from exc
        logger.info("Registered user_id=%d (%s)", user.id, redact_email(email))

        token = self.tokens.issue_confirmation_token(user.id)
        if not self.mailer.send_account_confirmation(user, token.id):
            logger.warning("Confirmation email for user_id=%d was not delivered", user.id)
        return user.safe()

    # ------------------------------------------------------------------
    # Account confirmation
    # ------------------------------------------------------------------

    def confirm_account(self, token_id: str) -> User:
        """Consume a confirmation token and mark its user verified.

        Raises InvalidToken for unknown (or already consumed) tokens,
        TokenExpired for tokens past their lifetime, and
        AccountAlreadyConfirmed if the owner is already verified.
        """
        token = self.tokens.get_confirmation_token(token_id)
        if token is None:
            raise InvalidToken()
        if not self.tokens.is_valid(token):
            raise TokenExpired()

        owner = self.store.get_user_by_id(token.user_id)
        if owner is None:
            raise InvalidToken()
        if owner.is_verified:
            raise AccountAlreadyConfirmed()

        user = self.tokens.consume_confirmation_token(token)
        if user is None:
            raise InvalidToken()
        logger.info("Confirmed account user_id=%d", user.id)
        return user

    def resend_confirmation(self, email: str) -> None:
        """Mail a confirmation link again for an unverified account.

        A pending token is re-sent as is; an expired or missing one is
        replaced by a fresh token. Unknown and already verified emails return
        the same way, so the caller learns nothing about the account.
        """
        if not email or not email.strip():
            raise EmailRequired()
        user = self.store.get_user_by_email(email)
        if user is None or user.is_verified:
            logger.info("Confirmation resend ignored for %s", redact_email(email))
            return

        token = self.tokens.get_confirmation_token_for_user(user.id)
        if token is None or not self.tokens.is_valid(token):
            try:
                token = self.tokens.issue_confirmation_token(user.id)
            except ConfirmationTokenConflict:
                # A concurrent resend issued one first; mail that one.
                token = self.tokens.get_confirmation_token_for_user(user.id)
                if token is None:
                    return
        if not self.mailer.send_account_confirmation(user, token.id):
            logger.warning("Confirmation email for user_id=%d was not delivered", user.id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def authenticate(self, email: str, password: str) -> User:
        """Return the user for valid credentials or raise InvalidCredentials.

        Always runs bcrypt, whether or not the email exists [C1].
        """
        user = self.store.get_user_by_email(email)
        if user is None:
            verify_dummy(password, rounds=self.hash_rounds)
            raise InvalidCredentials()
        if not verify_password(password, user.hashed_password):
            raise InvalidCredentials()
        if not user.is_verified:
            raise InvalidCredentials()
        return user

    def login(self, email: str, password: str, ip: str) -> tuple[SessionToken, SafeUser]:
        """Authenticate and open a session.

        Blank input is rejected as a ValidationError before any lookup; every
        other failure is the same InvalidCredentials.
        """
        if not email or not email.strip():
            raise EmailRequired()
        if not password:
            raise PasswordRequired()
        user = self.authenticate(email, password)
        token = self.tokens.issue_session_token(user.id, ip)
        self.sessions.put_session(token, user)
        return token, user.safe()

    def logout(self, token_id: str | None) -> None:
        """End the session behind token_id. Unknown or missing ids are a no-op."""
        if not token_id:
            return
        self.sessions.remove_session(token_id)
        self.tokens.delete_session_token(token_id)
        # A concurrent cache miss may have repopulated the entry before the delete.
        self.sessions.remove_session(token_id)

    def get_authenticated_user(self, token_id: str | None) -> SafeUser:
        session = self.sessions.get_session_by_id(token_id) if token_id else None
        if session is None:
            raise UserNotFound("Couldn't find authenticated user !")
        return session.user

    def get_user(self, user_id: int) -> SafeUser:
        user = self.store.get_user_by_id(user_id)
        if user is None:
            raise UserNotFound("User not found !")
        return user.safe()

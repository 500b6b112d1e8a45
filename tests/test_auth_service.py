"""
tests/test_auth_service.py -- Unit tests for AuthService flows.

Covers:
  - register: field validation, email availability, password policy, no
    writes on failure, confirmation token issued and mailed
  - confirm_account: unknown, expired, already-confirmed and single-use tokens
  - resend_confirmation: expired tokens replaced, silent for unknown or verified emails
  - authenticate/login: enumeration-resistant InvalidCredentials, session cached
  - logout: durable delete plus cache invalidation, idempotent
  - current user and user lookup
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from auth.errors import (
    AccountAlreadyConfirmed,
    EmailRequired,
    EmailUnavailable,
    FirstNameRequired,
    InvalidCredentials,
    InvalidToken,
    LastNameRequired,
    PasswordNotStrong,
    PasswordRequired,
    PasswordTooShort,
    TokenExpired,
    UserNotFound,
)
from auth.models import Role
from tests.conftest import CONFIRMATION_TTL, STRONG_PASSWORD, make_user


def _register(service, email: str = "grace@example.com", password: str = STRONG_PASSWORD, **overrides):
    fields = {"first_name": "Grace", "last_name": "Hopper"}
    fields.update(overrides)
    return service.register(email=email, password=password, **fields)


class TestRegister:
    def test_creates_unverified_user(self, service, store) -> None:
        safe = _register(service)
        assert safe.id is not None
        assert safe.password is None
        assert safe.is_verified is False
        assert safe.role is Role.USER
        stored = store.get_user_by_email("grace@example.com")
        assert stored.hashed_password != STRONG_PASSWORD
        assert stored.hashed_password.startswith("$2")

    def test_issues_and_mails_confirmation_token(self, service, store, mailer) -> None:
        safe = _register(service)
        token = store.get_confirmation_token_for_user(safe.id)
        assert token is not None
        mailer.send_account_confirmation.assert_called_once()
        user_arg, token_arg = mailer.send_account_confirmation.call_args.args
        assert user_arg.id == safe.id
        assert token_arg == token.id

    def test_mail_failure_does_not_fail_registration(self, service, store, mailer) -> None:
        mailer.send_account_confirmation.return_value = False
        safe = _register(service)
        assert store.get_user_by_id(safe.id) is not None

    @pytest.mark.parametrize(
        "overrides, error",
        [
            ({"email": ""}, EmailRequired),
            ({"email": "   "}, EmailRequired),
            ({"password": ""}, PasswordRequired),
            ({"first_name": ""}, FirstNameRequired),
            ({"last_name": "  "}, LastNameRequired),
        ],
    )
    def test_blank_fields_rejected(self, service, store, overrides, error) -> None:
        with pytest.raises(error) as exc_info:
            _register(service, **overrides)
        assert exc_info.value.status_code == 400
        assert store.get_user_by_email("grace@example.com") is None

    def test_duplicate_email_unavailable(self, service, store, mailer) -> None:
        _register(service)
        mailer.reset_mock()
        with pytest.raises(EmailUnavailable):
            _register(service, first_name="Other")
        mailer.send_account_confirmation.assert_not_called()

    def test_email_is_case_sensitive(self, service) -> None:
        _register(service, email="grace@example.com")
        other = _register(service, email="Grace@example.com")
        assert other.email == "Grace@example.com"

    def test_short_password(self, service, store) -> None:
        with pytest.raises(PasswordTooShort):
            _register(service, password="Ab1")
        assert store.get_user_by_email("grace@example.com") is None

    def test_weak_password(self, service, store) -> None:
        with pytest.raises(PasswordNotStrong):
            _register(service, password="alllowercase1")
        assert store.get_user_by_email("grace@example.com") is None

    def test_email_checked_before_password(self, service) -> None:
        _register(service)
        with pytest.raises(EmailUnavailable):
            _register(service, password="weak")

    def test_is_email_available(self, service) -> None:
        assert service.is_email_available("grace@example.com")
        _register(service)
        assert not service.is_email_available("grace@example.com")


class TestConfirmAccount:
    def test_confirms_and_consumes_token(self, service, store) -> None:
        safe = _register(service)
        token = store.get_confirmation_token_for_user(safe.id)
        user = service.confirm_account(token.id)
        assert user.is_verified is True
        assert store.get_confirmation_token(token.id) is None

    def test_second_use_is_invalid(self, service, store) -> None:
        safe = _register(service)
        token = store.get_confirmation_token_for_user(safe.id)
        service.confirm_account(token.id)
        with pytest.raises(InvalidToken) as exc_info:
            service.confirm_account(token.id)
        assert exc_info.value.status_code == 404

    def test_unknown_token(self, service) -> None:
        with pytest.raises(InvalidToken):
            service.confirm_account("8c6d1f0e-1111-4222-8333-944455556666")

    def test_expired_token(self, service, store, clock) -> None:
        safe = _register(service)
        token = store.get_confirmation_token_for_user(safe.id)
        clock.advance(CONFIRMATION_TTL)
        with pytest.raises(TokenExpired):
            service.confirm_account(token.id)
        assert store.get_user_by_id(safe.id).is_verified is False

    def test_already_confirmed_account(self, service, store, tokens) -> None:
        user = make_user(store, verified=True)
        token = tokens.issue_confirmation_token(user.id)
        with pytest.raises(AccountAlreadyConfirmed):
            service.confirm_account(token.id)


class TestResendConfirmation:
    def test_expired_token_is_replaced_and_account_recovers(self, service, store, mailer, clock) -> None:
        safe = _register(service)
        old = store.get_confirmation_token_for_user(safe.id)
        clock.advance(CONFIRMATION_TTL)
        with pytest.raises(TokenExpired):
            service.confirm_account(old.id)

        mailer.reset_mock()
        service.resend_confirmation("grace@example.com")
        new = store.get_confirmation_token_for_user(safe.id)
        assert new.id != old.id
        assert store.get_confirmation_token(old.id) is None
        assert mailer.send_account_confirmation.call_args.args[1] == new.id

        service.confirm_account(new.id)
        _token, user = service.login("grace@example.com", STRONG_PASSWORD, "127.0.0.1")
        assert user.is_verified is True

    def test_pending_token_is_sent_again(self, service, store, mailer) -> None:
        safe = _register(service)
        pending = store.get_confirmation_token_for_user(safe.id)
        mailer.reset_mock()
        service.resend_confirmation("grace@example.com")
        assert store.get_confirmation_token_for_user(safe.id).id == pending.id
        assert mailer.send_account_confirmation.call_args.args[1] == pending.id

    def test_missing_token_is_issued(self, service, store, mailer) -> None:
        user = make_user(store, verified=False)
        service.resend_confirmation(user.email)
        token = store.get_confirmation_token_for_user(user.id)
        assert token is not None
        mailer.send_account_confirmation.assert_called_once()

    def test_unknown_and_verified_emails_are_silent(self, service, store, mailer) -> None:
        verified = make_user(store, email="done@example.com", verified=True)
        assert service.resend_confirmation("nobody@example.com") is None
        assert service.resend_confirmation(verified.email) is None
        mailer.send_account_confirmation.assert_not_called()
        assert store.get_confirmation_token_for_user(verified.id) is None

    def test_blank_email(self, service) -> None:
        with pytest.raises(EmailRequired):
            service.resend_confirmation("  ")


class TestLogin:
    @pytest.mark.parametrize(
        "email, password, error",
        [
            ("", STRONG_PASSWORD, EmailRequired),
            ("   ", STRONG_PASSWORD, EmailRequired),
            ("a@example.com", "", PasswordRequired),
        ],
    )
    def test_blank_input_is_a_validation_error(self, service, email, password, error) -> None:
        with pytest.raises(error) as exc_info:
            service.login(email, password, "127.0.0.1")
        assert exc_info.value.error_code == "validation_error"

    def test_login_issues_cached_session(self, service, store, cache) -> None:
        user = make_user(store, verified=True)
        token, safe = service.login(user.email, STRONG_PASSWORD, "10.1.1.1")
        assert safe.id == user.id
        assert safe.password is None
        assert store.get_session_token(token.id).ip_addr == "10.1.1.1"
        assert cache.get(f"session:{token.id}") is not None

    def test_unknown_email_runs_dummy_verification(self, service) -> None:
        with patch("auth.service.verify_dummy") as dummy:
            with pytest.raises(InvalidCredentials):
                service.login("nobody@example.com", STRONG_PASSWORD, "127.0.0.1")
        dummy.assert_called_once()

    def test_wrong_password(self, service, store) -> None:
        user = make_user(store, verified=True)
        with pytest.raises(InvalidCredentials):
            service.login(user.email, "Wr0ngPassword", "127.0.0.1")

    def test_unverified_account(self, service, store) -> None:
        user = make_user(store, verified=False)
        with pytest.raises(InvalidCredentials):
            service.login(user.email, STRONG_PASSWORD, "127.0.0.1")

    def test_failures_are_indistinguishable(self, service, store) -> None:
        unverified = make_user(store, email="u@example.com", verified=False)
        verified = make_user(store, email="v@example.com", verified=True)
        errors = []
        for email, password in [
            ("missing@example.com", STRONG_PASSWORD),
            (unverified.email, STRONG_PASSWORD),
            (verified.email, "Wr0ngPassword"),
        ]:
            with pytest.raises(InvalidCredentials) as exc_info:
                service.login(email, password, "127.0.0.1")
            errors.append((exc_info.value.status_code, exc_info.value.error_code, exc_info.value.message))
        assert len(set(errors)) == 1
        assert errors[0] == (400, "invalid_credentials", "Invalid credentials !")

    def test_login_does_not_apply_password_policy(self, service, store) -> None:
        user = make_user(store, email="legacy@example.com", verified=True, password="short")
        token, _ = service.login(user.email, "short", "127.0.0.1")
        assert token.id


class TestLogout:
    def test_logout_deletes_token_and_cache_entry(self, service, store, cache) -> None:
        user = make_user(store, verified=True)
        token, _ = service.login(user.email, STRONG_PASSWORD, "127.0.0.1")
        service.logout(token.id)
        assert store.get_session_token(token.id) is None
        assert cache.get(f"session:{token.id}") is None

    def test_logout_is_idempotent(self, service, store) -> None:
        user = make_user(store, verified=True)
        token, _ = service.login(user.email, STRONG_PASSWORD, "127.0.0.1")
        service.logout(token.id)
        service.logout(token.id)
        service.logout(None)
        service.logout("never-issued")

    def test_other_sessions_survive(self, service, store) -> None:
        user = make_user(store, verified=True)
        first, _ = service.login(user.email, STRONG_PASSWORD, "127.0.0.1")
        second, _ = service.login(user.email, STRONG_PASSWORD, "127.0.0.2")
        service.logout(first.id)
        assert service.get_authenticated_user(second.id).id == user.id


class TestUserLookup:
    def test_authenticated_user(self, service, store) -> None:
        user = make_user(store, verified=True)
        token, _ = service.login(user.email, STRONG_PASSWORD, "127.0.0.1")
        assert service.get_authenticated_user(token.id).email == user.email

    def test_authenticated_user_without_session(self, service) -> None:
        with pytest.raises(UserNotFound):
            service.get_authenticated_user(None)
        with pytest.raises(UserNotFound):
            service.get_authenticated_user("not-a-session")

    def test_get_user(self, service, store) -> None:
        user = make_user(store)
        found = service.get_user(user.id)
        assert found.email == user.email
        assert found.password is None

    def test_get_unknown_user(self, service) -> None:
        with pytest.raises(UserNotFound) as exc_info:
            service.get_user(9999)
        assert exc_info.value.message == "User not found !"

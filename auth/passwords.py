"""
auth/passwords.py -- Password policy and bcrypt hashing.

Security design decisions:
  Hashing: bcrypt used directly (no passlib wrapper). gensalt() draws a fresh
       random salt on every call, so two hashes of the same password never
       match. The cost factor comes from Settings.password_hash_rounds.

  Verification: bcrypt.checkpw is constant-time. Malformed digests make
       bcrypt raise ValueError; verify_password() turns every failure into
       False so a corrupt row can never crash a login.

  Timing equalization: verify_dummy() lets login run bcrypt even when the email
       is unknown, so response time does not reveal which emails exist [C1].

  Strength rule: lowercase + uppercase + digit + minimum length. A special
       character is required only when the policy is built with
       require_special=True, and the error message is generated from the
       rules that are actually checked.
"""

from __future__ import annotations

import re

import bcrypt

from auth.errors import PasswordNotStrong, PasswordTooShort

# bcrypt only reads the first 72 bytes of its input.
_BCRYPT_MAX_BYTES = 72

_LOWER = re.compile(r"[a-z]")
_UPPER = re.compile(r"[A-Z]")
_DIGIT = re.compile(r"[0-9]")
_SPECIAL = re.compile(r"[^A-Za-z0-9]")


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# One dummy digest per cost factor; checkpw takes the cost from the digest, so
# the dummy must be hashed with the same rounds as real user rows.
_dummy_hashes: dict[int, str] = {}


def verify_dummy(plain: str, rounds: int = 12) -> None:
    """Burn one bcrypt verification at the given cost. Always fails."""
    if rounds not in _dummy_hashes:
        _dummy_hashes[rounds] = hash_password("authgate_timing_dummy", rounds=rounds)
    verify_password(plain, _dummy_hashes[rounds])


class PasswordPolicy:
    """Length and character-class rules for new passwords.

    Usage:
        policy = PasswordPolicy(min_length=8)
        policy.check("Abcdefg1")     # returns None
        policy.check("abc")          # raises PasswordTooShort
    """

    def __init__(self, min_length: int = 8, require_special: bool = False) -> None:
        self.min_length = min_length
        self.require_special = require_special

    def is_long_enough(self, password: str) -> bool:
        return len(password) >= self.min_length

    def is_strong_enough(self, password: str) -> bool:
        if not self.is_long_enough(password):
            return False
        checks = [_LOWER, _UPPER, _DIGIT]
        if self.require_special:
            checks.append(_SPECIAL)
        return all(pattern.search(password) for pattern in checks)

    def describe(self) -> str:
        """Human-readable strength rule matching exactly what is_strong_enough() checks."""
        parts = "a lowercase letter, an uppercase letter, a digit"
        if self.require_special:
            parts += " and a special character"
        else:
            parts = parts.replace(", a digit", " and a digit")
        return f"Password must be at least {self.min_length} characters long and contain {parts} !"

    def check(self, password: str) -> None:
        """Raise the first policy error the password triggers."""
        if not self.is_long_enough(password):
            raise PasswordTooShort(f"Password must be at least {self.min_length} characters long !")
        if not self.is_strong_enough(password):
            raise PasswordNotStrong(self.describe())

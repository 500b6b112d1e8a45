"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; the only behaviour here is the safe-view projection and
the JSON shape used when a session is written to the fast cache.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


@dataclass
class User:
    """An identity record as persisted by the credential store.

    hashed_password always holds a bcrypt digest. Use safe() before the record
    leaves the service layer.
    """

    email: str
    hashed_password: str
    first_name: str
    last_name: str
    role: Role = Role.USER
    is_verified: bool = False
    id: int | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def safe(self) -> SafeUser:
        return SafeUser(
            id=self.id,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            role=self.role,
            is_verified=self.is_verified,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


@dataclass
class SafeUser:
    """A User with the password redacted.

    This is the only user representation that is cached, returned over HTTP,
    or attached to a request. password is kept as an always-None field so the
    wire shape still says "password": null.
    """

    id: int | None
    email: str
    first_name: str
    last_name: str
    role: Role
    is_verified: bool
    created_at: datetime
    updated_at: datetime
    password: None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "password": None,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role.value,
            "is_verified": self.is_verified,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> SafeUser:
        return cls(
            id=data["id"],
            email=data["email"],
            first_name=data["first_name"],
            last_name=data["last_name"],
            role=Role(data["role"]),
            is_verified=bool(data["is_verified"]),
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
        )


@dataclass
class SessionToken:
    """An active login. id is the opaque bearer credential and the cache key.

    A user may hold any number of concurrent session tokens.
    """

    id: str
    user_id: int
    ip_addr: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "ip_addr": self.ip_addr,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> SessionToken:
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            ip_addr=data["ip_addr"],
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
        )


@dataclass
class AccountConfirmationToken:
    """Single-use proof of control over the registration email.

    At most one row exists per user_id (UNIQUE in the store).
    """

    id: str
    user_id: int
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class CachedSession:
    """Denormalized {token, user} pair stored in the fast cache under token.id."""

    token: SessionToken
    user: SafeUser

    def to_dict(self) -> dict:
        return {"token": self.token.to_dict(), "user": self.user.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> CachedSession:
        return cls(token=SessionToken.from_dict(data["token"]), user=SafeUser.from_dict(data["user"]))

"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
CredentialStore is the repository; _row_to_user / _row_to_session_token /
_row_to_confirmation_token are the mappers. Services never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  users.email is UNIQUE at the DB level; a concurrent duplicate registration
  surfaces as sqlalchemy.exc.IntegrityError from create_user().

Atomicity:
  confirm_account() deletes the confirmation token and flips is_verified
  inside one engine.begin() transaction. If either statement affects no row
  the whole transaction is rolled back, so a token is never consumed without
  the user being verified and vice versa.

  account_confirmation_tokens.user_id is UNIQUE: at most one pending token
  per user. replace_confirmation_token() swaps an old row for a new one in a
  single transaction.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import AccountConfirmationToken, Role, SessionToken, User, parse_timestamp, utcnow

_DEFAULT_DB_URL = "sqlite:///authgate.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", Text, nullable=False),  # bcrypt digest, never plaintext
    Column("first_name", String(255), nullable=False),
    Column("last_name", String(255), nullable=False),
    Column("role", String(10), nullable=False, server_default=Role.USER.value),
    Column("is_verified", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_session_tokens = Table(
    "session_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("ip_addr", String(45), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_confirmation_tokens = Table(
    "account_confirmation_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new SQLite connection.

    SQLite PRAGMAs are per-connection and are not inherited from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(value: datetime) -> str:
    return value.isoformat()


class _ConfirmAborted(Exception):
    """Raised inside the confirm transaction to force a rollback."""


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Durable repository for users, session tokens and confirmation tokens.

    Usage:
        store = CredentialStore("sqlite:///authgate.db")
        user_id = store.create_user(User(email="a@b.com", hashed_password=digest, first_name="A", last_name="B"))
        user = store.get_user_by_email("a@b.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if a trivial query succeeds. Used by the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    role=user.role.value,
                    is_verified=user.is_verified,
                    created_at=_iso(user.created_at),
                    updated_at=_iso(user.updated_at),
                )
            )
            return result.inserted_primary_key[0]

    def get_user_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive, case-preserved)."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    def create_session_token(self, token: SessionToken) -> SessionToken:
        with self.engine.begin() as conn:
            conn.execute(
                _session_tokens.insert().values(
                    id=token.id,
                    user_id=token.user_id,
                    ip_addr=token.ip_addr,
                    created_at=_iso(token.created_at),
                    updated_at=_iso(token.updated_at),
                )
            )
        return token

    def get_session_token(self, token_id: str) -> SessionToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_session_tokens.select().where(_session_tokens.c.id == token_id)).fetchone()
        return _row_to_session_token(row) if row is not None else None

    def delete_session_token(self, token_id: str) -> bool:
        """Delete a session token. Returns False (not an error) if it did not exist."""
        with self.engine.begin() as conn:
            result = conn.execute(_session_tokens.delete().where(_session_tokens.c.id == token_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Account confirmation tokens
    # ------------------------------------------------------------------

    def create_confirmation_token(self, token: AccountConfirmationToken) -> AccountConfirmationToken:
        """Insert a confirmation token.

        Raises sqlalchemy.exc.IntegrityError if the user already has one.
        """
        with self.engine.begin() as conn:
            conn.execute(
                _confirmation_tokens.insert().values(
                    id=token.id,
                    user_id=token.user_id,
                    created_at=_iso(token.created_at),
                    updated_at=_iso(token.updated_at),
                )
            )
        return token

    def replace_confirmation_token(self, old_id: str, token: AccountConfirmationToken) -> AccountConfirmationToken:
        """Delete old_id and insert token for the same user in one transaction."""
        with self.engine.begin() as conn:
            conn.execute(_confirmation_tokens.delete().where(_confirmation_tokens.c.id == old_id))
            conn.execute(
                _confirmation_tokens.insert().values(
                    id=token.id,
                    user_id=token.user_id,
                    created_at=_iso(token.created_at),
                    updated_at=_iso(token.updated_at),
                )
            )
        return token

    def get_confirmation_token(self, token_id: str) -> AccountConfirmationToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _confirmation_tokens.select().where(_confirmation_tokens.c.id == token_id)
            ).fetchone()
        return _row_to_confirmation_token(row) if row is not None else None

    def get_confirmation_token_for_user(self, user_id: int) -> AccountConfirmationToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _confirmation_tokens.select().where(_confirmation_tokens.c.user_id == user_id)
            ).fetchone()
        return _row_to_confirmation_token(row) if row is not None else None

    def delete_confirmation_token(self, user_id: int) -> bool:
        """Delete the user's confirmation token. Returns False if there was none."""
        with self.engine.begin() as conn:
            result = conn.execute(_confirmation_tokens.delete().where(_confirmation_tokens.c.user_id == user_id))
        return result.rowcount > 0

    def confirm_account(self, token_id: str, user_id: int) -> User | None:
        """Consume the confirmation token and mark its user verified, atomically.

        Returns the updated User, or None when the token was already consumed
        or the user no longer exists. In both None cases nothing is written.
        """
        try:
            with self.engine.begin() as conn:
                deleted = conn.execute(
                    _confirmation_tokens.delete().where(
                        (_confirmation_tokens.c.id == token_id) & (_confirmation_tokens.c.user_id == user_id)
                    )
                )
                if deleted.rowcount == 0:
                    raise _ConfirmAborted
                updated = conn.execute(
                    _users.update()
                    .where(_users.c.id == user_id)
                    .values(is_verified=True, updated_at=_iso(utcnow()))
                )
                if updated.rowcount == 0:
                    raise _ConfirmAborted
                row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        except _ConfirmAborted:
            return None
        return _row_to_user(row)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.password,
        first_name=row.first_name,
        last_name=row.last_name,
        role=Role(row.role),
        is_verified=bool(row.is_verified),
        created_at=parse_timestamp(row.created_at),
        updated_at=parse_timestamp(row.updated_at),
    )


def _row_to_session_token(row) -> SessionToken:
    return SessionToken(
        id=row.id,
        user_id=row.user_id,
        ip_addr=row.ip_addr,
        created_at=parse_timestamp(row.created_at),
        updated_at=parse_timestamp(row.updated_at),
    )


def _row_to_confirmation_token(row) -> AccountConfirmationToken:
    return AccountConfirmationToken(
        id=row.id,
        user_id=row.user_id,
        created_at=parse_timestamp(row.created_at),
        updated_at=parse_timestamp(row.updated_at),
    )

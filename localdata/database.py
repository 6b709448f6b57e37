"""SQLite-backed credential store for user accounts."""
from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from .errors import (
    AuthError,
    DuplicateEmailError,
    InvalidOrExpiredTokenError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from .models import ResetRecord, User, normalize_email
from .passwords import PasswordHasher

_CONNECT_TIMEOUT = 10.0


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "localdata.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _require_text(value: Optional[str], label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")
    return value.strip()


def _require_email(value: Optional[str]) -> str:
    email = normalize_email(_require_text(value, "Email"))
    if "@" not in email:
        raise ValidationError("Email address is invalid")
    return email


def _require_password(value: Optional[str]) -> str:
    # Passwords are not stripped; whitespace is significant.
    if not isinstance(value, str) or not value:
        raise ValidationError("Password is required")
    return value


class Database:
    """Persist users, password hashes and pending reset tokens."""

    def __init__(self, path: Path, *, hasher: Optional[PasswordHasher] = None) -> None:
        _ensure_directory(path)
        self._path = path
        self._hasher = hasher or PasswordHasher()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def hasher(self) -> PasswordHasher:
        return self._hasher

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=_CONNECT_TIMEOUT, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success and translate SQLite errors."""

        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StoreError(f"Unable to open database at {self._path}") from exc

        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError as exc:
            if "users.email" in str(exc):
                raise DuplicateEmailError() from exc
            raise StoreError("Database integrity failure") from exc
        except sqlite3.Error as exc:
            raise StoreError("Database operation failed") from exc
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._transaction() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    reset_hashed_token TEXT,
                    reset_expires REAL,
                    created_at TEXT NOT NULL
                );
                """
            )

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(
        self,
        name: Optional[str],
        email: Optional[str],
        password: Optional[str],
    ) -> User:
        """Create a new user.

        Validation happens before anything is written. Email uniqueness is
        enforced by the ``UNIQUE`` constraint so concurrent signups for the
        same address cannot both succeed.
        """

        clean_name = _require_text(name, "Name")
        normalized_email = _require_email(email)
        clean_password = _require_password(password)

        user_id = uuid.uuid4().hex
        created_at = _current_timestamp()
        password_hash = self._hasher.hash(clean_password)

        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO users (id, name, email, password_hash, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, clean_name, normalized_email, password_hash, _serialize_datetime(created_at)),
            )

        return User(id=user_id, name=clean_name, email=normalized_email, created_at=created_at)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self) -> List[User]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at").fetchall()
        return [self._row_to_user(row) for row in rows]

    def update_user(
        self,
        user_id: str,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> User:
        """Update profile fields; the password is re-hashed only when supplied."""

        updates: List[str] = []
        values: List[object] = []
        if name is not None:
            updates.append("name = ?")
            values.append(_require_text(name, "Name"))
        if email is not None:
            updates.append("email = ?")
            values.append(_require_email(email))
        if password is not None:
            updates.append("password_hash = ?")
            values.append(self._hasher.hash(_require_password(password)))

        if updates:
            values.append(user_id)
            with self._transaction() as conn:
                cursor = conn.execute(
                    f"UPDATE users SET {', '.join(updates)} WHERE id = ?",
                    values,
                )
                if cursor.rowcount == 0:
                    raise NotFoundError()

        refreshed = self.get_user(user_id)
        if refreshed is None:
            raise NotFoundError()
        return refreshed

    def verify_credentials(self, email: Optional[str], password: Optional[str]) -> User:
        """Return the user matching the credentials or raise :class:`AuthError`."""

        normalized_email = normalize_email(email)
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (normalized_email,),
            ).fetchone()

        if row is None:
            self._hasher.dummy_verify()
            raise AuthError("unknown-email")

        stored_hash = row["password_hash"]
        if not password:
            self._hasher.dummy_verify()
            raise AuthError("bad-password")
        if not self._hasher.verify(password, stored_hash):
            raise AuthError("bad-password")

        if self._hasher.needs_update(stored_hash):
            with self._transaction() as conn:
                conn.execute(
                    "UPDATE users SET password_hash = ? WHERE id = ?",
                    (self._hasher.hash(password), row["id"]),
                )
        return self._row_to_user(row)

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------
    def set_reset_token(self, email: str, hashed_token: str, expires_at: datetime) -> None:
        """Attach a pending reset to the user, replacing any earlier one."""

        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE users
                   SET reset_hashed_token = ?, reset_expires = ?
                 WHERE email = ?
                """,
                (hashed_token, expires_at.timestamp(), normalize_email(email)),
            )
            if cursor.rowcount == 0:
                raise NotFoundError()

    def consume_reset_token(
        self,
        email: str,
        hashed_token: str,
        *,
        password: Optional[str],
        now: Optional[datetime] = None,
    ) -> User:
        """Redeem a pending reset and set the new password.

        Matching, expiry, clearing and the password write happen in one
        conditional UPDATE, so a token can be redeemed at most once even under
        concurrent attempts and is only spent when the new password is stored.
        """

        password_hash = self._hasher.hash(_require_password(password))
        moment = now or _current_timestamp()
        normalized_email = normalize_email(email)
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE users
                   SET password_hash = ?, reset_hashed_token = NULL, reset_expires = NULL
                 WHERE email = ?
                   AND reset_hashed_token = ?
                   AND reset_expires > ?
                """,
                (password_hash, normalized_email, hashed_token, moment.timestamp()),
            )
            if cursor.rowcount != 1:
                raise InvalidOrExpiredTokenError()
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (normalized_email,),
            ).fetchone()

        return self._row_to_user(row)

    def get_reset_record(self, email: str) -> Optional[ResetRecord]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT reset_hashed_token, reset_expires FROM users WHERE email = ?",
                (normalize_email(email),),
            ).fetchone()
        if row is None or row["reset_hashed_token"] is None:
            return None
        return ResetRecord(
            hashed_token=str(row["reset_hashed_token"]),
            expires_at=datetime.fromtimestamp(float(row["reset_expires"]), tz=timezone.utc),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=str(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            created_at=_parse_datetime(str(row["created_at"])),
        )


__all__ = ["Database", "resolve_database_path"]

"""Opaque session tokens for signed-in users.

Sessions live in process memory and are keyed by a random token that is
handed to the browser as a cookie. Each lookup slides the expiry forward.
A per-user index lets a password reset revoke every session at once.
"""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Set


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    user_id: str
    created_at: datetime
    expires_at: datetime


class SessionManager:
    """Thread-safe store mapping session tokens to user ids."""

    def __init__(
        self,
        *,
        ttl: timedelta = timedelta(hours=8),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._ttl = ttl
        self._clock = clock or _utcnow
        self._sessions: Dict[str, Session] = {}
        self._by_user: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def cookie_max_age(self) -> int:
        return int(self._ttl.total_seconds())

    def create(self, user_id: str) -> str:
        now = self._clock()
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._sessions[token] = Session(user_id=user_id, created_at=now, expires_at=now + self._ttl)
            self._by_user.setdefault(user_id, set()).add(token)
        return token

    def resolve(self, token: Optional[str]) -> Optional[str]:
        """Return the user id behind ``token``, or ``None`` if it is unknown or expired."""

        if not token:
            return None
        now = self._clock()
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if session.expires_at <= now:
                self._discard(token)
                return None
            session.expires_at = now + self._ttl
            return session.user_id

    def destroy(self, token: Optional[str]) -> Optional[str]:
        """Forget ``token`` and return the user id it belonged to, if any."""

        if not token:
            return None
        with self._lock:
            session = self._discard(token)
        return session.user_id if session else None

    def destroy_user(self, user_id: str) -> int:
        with self._lock:
            tokens = list(self._by_user.get(user_id, ()))
            for token in tokens:
                self._discard(token)
        return len(tokens)

    def active_sessions(self, user_id: str) -> int:
        now = self._clock()
        with self._lock:
            return sum(
                1
                for token in self._by_user.get(user_id, ())
                if self._sessions[token].expires_at > now
            )

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [token for token, session in self._sessions.items() if session.expires_at <= now]
            for token in expired:
                self._discard(token)
        return len(expired)

    def _discard(self, token: str) -> Optional[Session]:
        # Caller holds the lock.
        session = self._sessions.pop(token, None)
        if session is None:
            return None
        tokens = self._by_user.get(session.user_id)
        if tokens is not None:
            tokens.discard(token)
            if not tokens:
                del self._by_user[session.user_id]
        return session


__all__ = ["Session", "SessionManager"]

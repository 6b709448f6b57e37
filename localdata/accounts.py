"""Account workflows: signup, login, logout, profile and password reset.

Each public coroutine handles one request from start to finish. Blocking work
(SQLite access and password hashing) runs in worker threads so concurrent
requests are not held up. Operations that mutate identity check the transport
gate before touching the credential store.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, Callable, Optional, Tuple

import anyio

from .database import Database
from .errors import (
    AccountError,
    AuthError,
    InvalidOrExpiredTokenError,
    NotAuthenticatedError,
    NotFoundError,
    ValidationError,
)
from .mailer import ResetMailer, build_reset_message
from .models import User, normalize_email
from .sessions import SessionManager
from .tokens import ResetTokenCodec
from .transport import TransportGate

logger = logging.getLogger("localdata.accounts")

DEFAULT_RESET_TTL = timedelta(hours=1)
DEFAULT_RESET_LINK_TEMPLATE = "https://localhost/reset?code={code}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountManager:
    """Drive the anonymous/authenticated state machine for each caller."""

    def __init__(
        self,
        database: Database,
        sessions: SessionManager,
        codec: ResetTokenCodec,
        mailer: ResetMailer,
        gate: TransportGate,
        *,
        reset_ttl: timedelta = DEFAULT_RESET_TTL,
        reset_link_template: str = DEFAULT_RESET_LINK_TEMPLATE,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._database = database
        self._sessions = sessions
        self._codec = codec
        self._mailer = mailer
        self._gate = gate
        self._reset_ttl = reset_ttl
        self._reset_link_template = reset_link_template
        self._clock = clock or _utcnow

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    async def _run(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return await anyio.to_thread.run_sync(partial(func, *args, **kwargs))

    # ------------------------------------------------------------------
    # Signup / login / logout
    # ------------------------------------------------------------------
    async def signup(
        self,
        request: Any,
        *,
        name: Optional[str],
        email: Optional[str],
        password: Optional[str],
    ) -> Tuple[User, str]:
        self._gate.require_secure(request)

        user = await self._run(self._database.create_user, name, email, password)
        token = self._sessions.create(user.id)
        logger.info("Created user %s", user.id)
        return user, token

    async def login(
        self,
        request: Any,
        *,
        email: Optional[str],
        password: Optional[str],
    ) -> Tuple[User, str]:
        self._gate.require_secure(request)

        try:
            user = await self._run(self._database.verify_credentials, email, password)
        except AuthError as exc:
            logger.warning("Failed login attempt for %s (%s)", normalize_email(email), exc.reason)
            raise

        self._sessions.purge_expired()
        token = self._sessions.create(user.id)
        logger.info("User %s signed in", user.id)
        return user, token

    def logout(self, session_token: Optional[str]) -> None:
        user_id = self._sessions.destroy(session_token)
        if user_id is not None:
            logger.info("User %s signed out", user_id)

    async def whoami(self, session_token: Optional[str]) -> User:
        return await self._require_user(session_token)

    async def update_profile(
        self,
        request: Any,
        session_token: Optional[str],
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> User:
        self._gate.require_secure(request)

        current = await self._require_user(session_token)
        updated = await self._run(
            self._database.update_user,
            current.id,
            name=name,
            email=email,
            password=password,
        )
        logger.info("User %s updated their profile", current.id)
        return updated

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------
    async def request_reset(self, email: Optional[str]) -> None:
        """Issue a reset code for ``email``.

        The caller cannot tell a known address from an unknown one, and a
        failure to store or deliver the code is only logged.
        """

        normalized = normalize_email(email)
        if not normalized:
            logger.info("Password reset requested without an email")
            return

        token = self._codec.generate_token()
        expires_at = self._clock() + self._reset_ttl
        try:
            await self._run(
                self._database.set_reset_token,
                normalized,
                self._codec.hash_token(token),
                expires_at,
            )
        except NotFoundError:
            logger.info("Password reset requested for unknown email %s", normalized)
            return
        except AccountError:
            logger.exception("Failed to store password reset for %s", normalized)
            return

        message = build_reset_message(
            normalized,
            self._codec.serialize_reset_info(normalized, token),
            expires_at,
            link_template=self._reset_link_template,
        )
        try:
            await self._mailer.send(message)
        except Exception:
            logger.exception("Failed to deliver password reset email to %s", normalized)
            return
        logger.info("Password reset issued for %s", normalized)

    async def confirm_reset(
        self,
        request: Any,
        *,
        email: Optional[str],
        token: Optional[str],
        password: Optional[str],
    ) -> Tuple[User, str]:
        self._gate.require_secure(request)
        return await self._redeem(email, token, password)

    async def confirm_reset_code(
        self,
        request: Any,
        *,
        code: Optional[str],
        password: Optional[str],
    ) -> Tuple[User, str]:
        """Redeem a serialized reset code as delivered by email."""

        self._gate.require_secure(request)
        info = self._codec.deserialize_reset_info(code or "")
        return await self._redeem(info.email, info.token, password)

    async def _redeem(
        self,
        email: Optional[str],
        token: Optional[str],
        password: Optional[str],
    ) -> Tuple[User, str]:
        normalized = normalize_email(email)
        if not normalized:
            raise ValidationError("Email is required")
        if not token:
            raise ValidationError("Reset token is required")
        if not password:
            raise ValidationError("Password is required")

        try:
            user = await self._run(
                self._database.consume_reset_token,
                normalized,
                self._codec.hash_token(token),
                password=password,
                now=self._clock(),
            )
        except InvalidOrExpiredTokenError:
            logger.warning("Rejected password reset for %s", normalized)
            raise

        revoked = self._sessions.destroy_user(user.id)
        session_token = self._sessions.create(user.id)
        logger.info("User %s reset their password (%d old session(s) revoked)", user.id, revoked)
        return user, session_token

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _require_user(self, session_token: Optional[str]) -> User:
        user_id = self._sessions.resolve(session_token)
        if user_id is None:
            raise NotAuthenticatedError()
        user = await self._run(self._database.get_user, user_id)
        if user is None:
            self._sessions.destroy(session_token)
            raise NotAuthenticatedError()
        return user


__all__ = ["AccountManager", "DEFAULT_RESET_LINK_TEMPLATE", "DEFAULT_RESET_TTL"]

"""Salted one-way password hashing."""
from __future__ import annotations

from typing import Optional

from passlib.context import CryptContext
from passlib.hash import pbkdf2_sha256

PASSWORD_SCHEME = "pbkdf2_sha256"


def build_crypt_context(rounds: Optional[int] = None) -> CryptContext:
    """Return the passlib context used for stored password hashes.

    Hashes made with fewer rounds than the context uses are flagged by
    ``needs_update`` so they can be upgraded on the next successful login.
    """

    target = rounds if rounds is not None else pbkdf2_sha256.default_rounds
    options = {
        f"{PASSWORD_SCHEME}__rounds": target,
        f"{PASSWORD_SCHEME}__min_rounds": target,
    }
    return CryptContext(schemes=[PASSWORD_SCHEME], deprecated="auto", **options)


class PasswordHasher:
    """Hash and verify passwords with a random salt per hash."""

    def __init__(self, context: Optional[CryptContext] = None) -> None:
        self._context = context or build_crypt_context()

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, hashed: Optional[str]) -> bool:
        if not hashed:
            return False
        try:
            return self._context.verify(password, hashed)
        except (ValueError, TypeError):
            # Unrecognised or corrupt hash formats never authenticate.
            return False

    def needs_update(self, hashed: str) -> bool:
        return self._context.needs_update(hashed)

    def dummy_verify(self) -> None:
        """Spend roughly the time of a real verification."""

        self._context.dummy_verify()


__all__ = ["PASSWORD_SCHEME", "PasswordHasher", "build_crypt_context"]

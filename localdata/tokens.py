"""Reset token generation, hashing and transport encoding."""
from __future__ import annotations

import base64
import binascii
import hashlib
import json
import secrets
from dataclasses import dataclass

from cryptography.fernet import Fernet, InvalidToken

from .errors import MalformedResetStringError
from .models import normalize_email

RESET_TOKEN_BYTES = 32


@dataclass(frozen=True)
class ResetInfo:
    email: str
    token: str


def _build_cipher(secret: str) -> Fernet:
    if not secret:
        raise ValueError("A secret key is required to encode reset codes")
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


class ResetTokenCodec:
    """Bridge between the plaintext token mailed to a user and its stored hash.

    Only the SHA-256 digest of a token is persisted, so reading the database is
    not enough to forge a reset link. The digest is unsalted on purpose: the
    store looks tokens up by equality.
    """

    def __init__(self, secret: str, *, token_bytes: int = RESET_TOKEN_BYTES) -> None:
        self._cipher = _build_cipher(secret)
        self._token_bytes = token_bytes

    def generate_token(self) -> str:
        return secrets.token_urlsafe(self._token_bytes)

    @staticmethod
    def hash_token(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    def serialize_reset_info(self, email: str, token: str) -> str:
        payload = json.dumps({"email": normalize_email(email), "token": token}, separators=(",", ":"))
        return self._cipher.encrypt(payload.encode("utf-8")).decode("ascii")

    def deserialize_reset_info(self, value: str) -> ResetInfo:
        if not isinstance(value, str) or not value.strip():
            raise MalformedResetStringError("Reset code is empty")
        try:
            plaintext = self._cipher.decrypt(value.strip().encode("ascii"))
            payload = json.loads(plaintext.decode("utf-8"))
        except (InvalidToken, UnicodeError, ValueError, binascii.Error) as exc:
            raise MalformedResetStringError("Reset code could not be decoded") from exc

        if not isinstance(payload, dict):
            raise MalformedResetStringError("Reset code has an unexpected shape")
        email = payload.get("email")
        token = payload.get("token")
        if not isinstance(email, str) or not email or not isinstance(token, str) or not token:
            raise MalformedResetStringError("Reset code is missing fields")
        return ResetInfo(email=email, token=token)


__all__ = ["RESET_TOKEN_BYTES", "ResetInfo", "ResetTokenCodec"]

"""Domain models for user accounts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional


def normalize_email(value: Optional[str]) -> str:
    """Return the canonical (lowercase, trimmed) form of an email address."""

    return (value or "").strip().lower()


@dataclass(frozen=True)
class User:
    """Sanitized view of a stored account; never carries credentials."""

    id: str
    name: str
    email: str
    created_at: datetime

    def public_fields(self) -> Dict[str, str]:
        return {"id": self.id, "name": self.name, "email": self.email}


@dataclass(frozen=True)
class ResetRecord:
    """Pending password reset attached to a user."""

    hashed_token: str
    expires_at: datetime


__all__ = ["ResetRecord", "User", "normalize_email"]

"""Configuration loading for the LocalData service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .database import resolve_database_path

ENV_PREFIX = "LOCALDATA_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_flag(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean for {key}: {value!r}")


def _parse_int(key: str, value: Any) -> int:
    try:
        parsed = int(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid integer for {key}: {value!r}") from exc
    if parsed <= 0:
        raise ValueError(f"{key} must be positive")
    return parsed


def _parse_list(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        items = str(value).split(",")
    return [item.strip() for item in items if item.strip()]


def _parse_optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class Settings:
    """Runtime settings, assembled from a YAML file and the environment."""

    database_path: Path = field(default_factory=lambda: resolve_database_path(None))
    secret_key: Optional[str] = None
    session_ttl_hours: int = 8
    session_secure: bool = True
    reset_ttl_minutes: int = 60
    reset_link_template: str = "https://localhost/reset?code={code}"
    allow_insecure_transport: bool = False
    trusted_proxies: List[str] = field(default_factory=lambda: ["127.0.0.1"])
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_starttls: bool = True
    mail_sender: str = "no-reply@localhost"

    @staticmethod
    def from_dict(data: Mapping[str, Any], base: Optional["Settings"] = None) -> "Settings":
        """Overlay raw key/value data on ``base`` (or the defaults)."""

        known = {item.name for item in fields(Settings)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        updates: Dict[str, Any] = {}
        for key, value in data.items():
            if value is None:
                continue
            if key == "database_path":
                updates[key] = resolve_database_path(str(value))
            elif key in {"session_ttl_hours", "reset_ttl_minutes", "smtp_port"}:
                updates[key] = _parse_int(key, value)
            elif key in {"session_secure", "allow_insecure_transport", "smtp_starttls"}:
                updates[key] = _parse_flag(key, value)
            elif key == "trusted_proxies":
                updates[key] = _parse_list(value)
            elif key in {"secret_key", "smtp_host", "smtp_username", "smtp_password"}:
                updates[key] = _parse_optional_text(value)
            else:
                updates[key] = str(value)

        template = updates.get("reset_link_template")
        if template is not None and "{code}" not in template:
            raise ValueError("reset_link_template must contain '{code}'")

        return replace(base or Settings(), **updates)


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    for item in fields(Settings):
        env_key = ENV_PREFIX + item.name.upper()
        if env_key in environ:
            overrides[item.name] = environ[env_key]
    # LOCALDATA_DB_PATH is accepted as a short alias.
    if "database_path" not in overrides and environ.get(ENV_PREFIX + "DB_PATH"):
        overrides["database_path"] = environ[ENV_PREFIX + "DB_PATH"]
    return overrides


def load_settings(
    path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from an optional YAML file, then apply ``LOCALDATA_*`` variables."""

    env = os.environ if environ is None else environ
    if path is None and env.get(ENV_PREFIX + "CONFIG"):
        path = Path(env[ENV_PREFIX + "CONFIG"]).expanduser()

    settings = Settings()
    if path is not None:
        with path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        settings = Settings.from_dict(raw, settings)

    return Settings.from_dict(_env_overrides(env), settings)


__all__ = ["ENV_PREFIX", "Settings", "load_settings"]

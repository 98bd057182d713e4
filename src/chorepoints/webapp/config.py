"""Configuration for the ChorePoints web API, read from the environment and ``.env``."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DATABASE_URL = "sqlite:///chorepoints.db"
DEFAULT_MEDIA_ROOT = "media"
DEFAULT_MEDIA_URL = "/media"
DEFAULT_TRANSACTION_ATTEMPTS = 5
DEFAULT_MAX_TRANSACTION_WRITES = 500

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _flag(raw: Optional[str], default: bool) -> bool:
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ValueError(f"Expected a boolean setting, got {raw!r}")


def _positive_int(raw: Optional[str], default: int, name: str) -> int:
    if raw is None or raw.strip() == "":
        return default
    value = int(raw)
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


@dataclass(slots=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    media_root: str = DEFAULT_MEDIA_ROOT
    media_url: str = DEFAULT_MEDIA_URL
    transaction_attempts: int = DEFAULT_TRANSACTION_ATTEMPTS
    max_transaction_writes: int = DEFAULT_MAX_TRANSACTION_WRITES
    allow_multi_family_parents: bool = True
    log_path: Optional[str] = None


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    return Settings(
        database_url=env.get("CHOREPOINTS_DATABASE_URL") or DEFAULT_DATABASE_URL,
        media_root=env.get("CHOREPOINTS_MEDIA_ROOT") or DEFAULT_MEDIA_ROOT,
        media_url=env.get("CHOREPOINTS_MEDIA_URL") or DEFAULT_MEDIA_URL,
        transaction_attempts=_positive_int(
            env.get("CHOREPOINTS_TRANSACTION_ATTEMPTS"),
            DEFAULT_TRANSACTION_ATTEMPTS,
            "CHOREPOINTS_TRANSACTION_ATTEMPTS",
        ),
        max_transaction_writes=_positive_int(
            env.get("CHOREPOINTS_MAX_TRANSACTION_WRITES"),
            DEFAULT_MAX_TRANSACTION_WRITES,
            "CHOREPOINTS_MAX_TRANSACTION_WRITES",
        ),
        allow_multi_family_parents=_flag(env.get("CHOREPOINTS_ALLOW_MULTI_FAMILY_PARENTS"), True),
        log_path=env.get("CHOREPOINTS_LOG_PATH") or None,
    )


__all__ = [
    "DEFAULT_DATABASE_URL",
    "DEFAULT_MAX_TRANSACTION_WRITES",
    "DEFAULT_MEDIA_ROOT",
    "DEFAULT_MEDIA_URL",
    "DEFAULT_TRANSACTION_ATTEMPTS",
    "Settings",
    "load_settings",
]

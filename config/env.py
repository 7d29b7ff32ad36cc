"""Environment loader using python-dotenv for controller settings."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_ENV_INITIALISED = False


def ensure_env_loaded(dotenv_path: Optional[Path] = None) -> None:
    """Load the .env file once."""

    global _ENV_INITIALISED
    if _ENV_INITIALISED:
        return

    if dotenv_path is None:
        dotenv_path = Path(__file__).resolve().parent.parent / ".env"

    if dotenv_path.exists():
        load_dotenv(dotenv_path=dotenv_path, override=False)
    else:
        load_dotenv(override=False)
    _ENV_INITIALISED = True


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return a stripped environment variable, ``default`` when unset or blank."""

    ensure_env_loaded()
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip()
    return value or default


def env_bool(name: str, default: bool) -> bool:
    """Return an environment variable interpreted as boolean."""

    raw = env_str(name)
    if raw is None:
        return default
    value = raw.lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return default


def env_int(name: str, default: int) -> int:
    """Return an environment variable parsed as int, ``default`` when invalid."""

    raw = env_str(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    """Return an environment variable parsed as float, ``default`` when invalid."""

    raw = env_str(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


__all__ = ["ensure_env_loaded", "env_bool", "env_float", "env_int", "env_str"]

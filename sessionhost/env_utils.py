"""Environment helpers: one-time .env loading and typed lookups for host settings."""

from __future__ import annotations

import os
from pathlib import Path

from .errors import SessionConfigurationError

_DOTENV_LOADED = False

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def read_dotenv(path: str | Path) -> dict[str, str]:
    """Parse ``KEY=value`` lines (optionally ``export``-prefixed or quoted)."""
    dotenv_path = Path(path)
    if not dotenv_path.exists():
        return {}

    values: dict[str, str] = {}
    for raw_line in dotenv_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        line = line.removeprefix("export ").strip()
        key, sep, value = line.partition("=")
        if not sep:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        values[key.strip()] = value
    return values


def load_dotenv(path: str | Path = ".env", *, force: bool = False) -> None:
    """Apply a .env file once without overriding variables already set."""
    global _DOTENV_LOADED
    if _DOTENV_LOADED and not force:
        return
    for key, value in read_dotenv(path).items():
        os.environ.setdefault(key, value)
    _DOTENV_LOADED = True


def getenv_any(*names: str, default: str | None = None) -> str | None:
    """Return first non-empty env var from a list of candidate names."""
    load_dotenv()
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


def getenv_bool(name: str, default: bool) -> bool:
    value = getenv_any(name)
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise SessionConfigurationError(f"{name} must be a boolean flag; received {value!r}.")


def getenv_int(name: str, default: int | None) -> int | None:
    value = getenv_any(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise SessionConfigurationError(f"{name} must be an integer; received {value!r}.") from exc


def getenv_float(name: str, default: float | None) -> float | None:
    """Float lookup where ``none``/``off`` disables the setting."""
    value = getenv_any(name)
    if value is None:
        return default
    if value.strip().lower() in {"none", "off"}:
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise SessionConfigurationError(f"{name} must be a number; received {value!r}.") from exc

"""
Process settings read from environment variables.

Every getter reads the environment on each call so tests can use
`monkeypatch.setenv` without reloading modules. Database settings live next to
the pool in `core/db.py`.
"""

from __future__ import annotations

import os
from pathlib import Path

DEFAULT_CORS_ORIGIN = "https://gtl-afya.netlify.app"
DEFAULT_UPLOAD_DIR = "uploads"
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MiB
DEFAULT_PORT = 5000


def env_str(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip() or default


def env_int(name: str, default: int, *, minimum: int = 1) -> int:
    """
    Read an integer env var, falling back to `default` when unset.

    A set-but-invalid value is a deployment mistake, so it fails loudly.
    """
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default

    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"Invalid {name}. It must be an integer.")

    if value < minimum:
        raise RuntimeError(f"Invalid {name}. It must be >= {minimum}.")

    return value


def cors_origin() -> str:
    return env_str("CORS_ORIGIN", DEFAULT_CORS_ORIGIN)


def upload_dir() -> Path:
    return Path(env_str("UPLOAD_DIR", DEFAULT_UPLOAD_DIR))


def max_upload_bytes() -> int:
    return env_int("MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES)


def log_level() -> str:
    return env_str("LOG_LEVEL", "INFO").upper()


def port() -> int:
    return env_int("PORT", DEFAULT_PORT)

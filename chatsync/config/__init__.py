"""Centralised configuration helper.

This module eliminates scattered ``os.getenv`` calls by exposing a single
:class:`Settings` container (retrieved via :func:`get_settings`).  Values are
read from the process environment after ``python-dotenv`` has merged the
project ``.env`` file, so tests that tweak environment variables at runtime
see their changes on the next :func:`get_settings` call.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from chatsync.constants import DEFAULT_PAGE_SIZE
from chatsync.constants import DEFAULT_SYNC_INTERVAL_SECONDS


def _truthy(value: str | None, default: bool = False) -> bool:  # noqa: D401 – small helper
    """Return *True* when *value* looks like an affirmative string."""

    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _positive_number(name: str, raw: str | None, default: float, cast=float):
    if raw is None or raw.strip() == "":
        return cast(default)
    try:
        value = cast(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass
class Settings:  # noqa: D401 – simple data container
    """Lightweight settings container populated from environment variables."""

    # Runtime flags -----------------------------------------------------
    testing: bool

    # Storage -----------------------------------------------------------
    database_url: str

    # Remote backend ----------------------------------------------------
    backend_url: str
    http_timeout_seconds: float

    # Sync defaults -----------------------------------------------------
    sync_interval_seconds: float
    page_size: int
    exclude_deleted: bool

    # Misc
    log_level: str

    # Helper for tests to override values at runtime -------------------
    def override(self, **kwargs: Any) -> None:  # pragma: no cover – test util
        for key, value in kwargs.items():
            if not hasattr(self, key):
                raise AttributeError(f"Settings has no attribute '{key}'")
            setattr(self, key, value)


def _load_settings() -> Settings:  # noqa: D401 – helper
    """Populate :class:`Settings` from environment variables."""

    env_path = Path(os.getenv("CHATSYNC_ENV_FILE", ".env"))
    if env_path.exists():
        # Values already exported in the process environment win over .env
        load_dotenv(env_path, override=False)

    return Settings(
        testing=_truthy(os.getenv("TESTING")),
        database_url=os.getenv("CHATSYNC_DATABASE_URL", "sqlite:///./chatsync.db"),
        backend_url=os.getenv("CHATSYNC_BACKEND_URL", "http://localhost:3000"),
        http_timeout_seconds=_positive_number("CHATSYNC_HTTP_TIMEOUT", os.getenv("CHATSYNC_HTTP_TIMEOUT"), 30.0),
        sync_interval_seconds=_positive_number(
            "CHATSYNC_SYNC_INTERVAL_SECONDS",
            os.getenv("CHATSYNC_SYNC_INTERVAL_SECONDS"),
            DEFAULT_SYNC_INTERVAL_SECONDS,
        ),
        page_size=_positive_number("CHATSYNC_PAGE_SIZE", os.getenv("CHATSYNC_PAGE_SIZE"), DEFAULT_PAGE_SIZE, int),
        exclude_deleted=_truthy(os.getenv("CHATSYNC_EXCLUDE_DELETED"), default=True),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


def get_settings() -> Settings:  # noqa: D401 – public accessor
    """Return :class:`Settings` instance loaded from environment."""

    return _load_settings()


__all__ = [
    "Settings",
    "get_settings",
]

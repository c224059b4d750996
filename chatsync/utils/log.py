"""Structured logging setup built on *structlog*.

The sync engine and the retry helper emit structured events
(``log.info("sync-cycle-complete", user_id=..., cursor=...)``); the storage
and transport layers use plain ``logging.getLogger(__name__)``.
:func:`configure_logging` wires both to the same level so one knob controls
the whole package.
"""

from __future__ import annotations

import logging

import structlog

from chatsync.config import get_settings

# Keep the logger global so every import shares the same base instance.
log = structlog.get_logger("chatsync")


def configure_logging(level: str | int | None = None, *, json: bool = True) -> None:
    """Configure structlog and the stdlib root logger.

    Without *level* the ``LOG_LEVEL`` setting is used.  Safe to call more than
    once; the last call wins.
    """

    if level is None:
        level = get_settings().log_level
    if isinstance(level, str):
        level_no = logging.getLevelName(level.upper())
        if not isinstance(level_no, int):
            raise ValueError(f"Unknown log level: {level}")
    else:
        level_no = level

    logging.basicConfig(level=level_no, format="%(levelname)s %(name)s - %(message)s")
    logging.getLogger("chatsync").setLevel(level_no)

    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_no),
    )


__all__ = ["configure_logging", "log"]

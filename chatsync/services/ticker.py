"""Periodic ticker for the background sync cycle.

A thin wrapper around APScheduler's :class:`AsyncIOScheduler` holding a single
interval job.  ``max_instances=1`` together with ``coalesce=True`` means a tick
that fires while the previous run is still executing is dropped rather than
queued, so runs never overlap.
"""

import logging
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run an async callable every *interval_seconds* on the current event loop."""

    def __init__(
        self,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        *,
        name: str = "chat-sync",
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self.func = func
        self.interval_seconds = interval_seconds
        self.name = name
        self.scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return (
            self.scheduler is not None and self.scheduler.running and self.scheduler.get_job(self.name) is not None
        )

    def start(self) -> None:
        """Schedule the job; must be called from within a running event loop."""
        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler()

        if self.scheduler.get_job(self.name) is None:
            self.scheduler.add_job(
                self.func,
                IntervalTrigger(seconds=self.interval_seconds),
                id=self.name,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            logger.info(f"Scheduled {self.name} every {self.interval_seconds}s")

        if not self.scheduler.running:
            self.scheduler.start()

    def pause(self) -> None:
        """Stop firing new ticks.  A run already in progress is not interrupted."""
        if self.scheduler is not None and self.scheduler.get_job(self.name) is not None:
            self.scheduler.remove_job(self.name)
            logger.info(f"Paused {self.name}")

    def stop(self) -> None:
        """Pause and shut the scheduler down."""
        self.pause()
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info(f"Stopped {self.name}")
        self.scheduler = None


__all__ = ["PeriodicTask"]

"""Scheduler for periodic tasks using pure asyncio.

Jobs:
- Rescan: enqueue a full directory rescan to recover from missed file events
- Heartbeat: log index sizes and pending grace periods
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from rosterwatch.watcher import RESCAN, SnapshotEvent

if TYPE_CHECKING:
    from rosterwatch.config import RosterConfig
    from rosterwatch.core import Orchestrator

logger = logging.getLogger(__name__)


class Scheduler:
    """Simple asyncio-based scheduler for periodic tasks."""

    def __init__(self, orchestrator: Orchestrator, config: RosterConfig) -> None:
        self._orchestrator = orchestrator
        self._rescan_interval = config.watch.rescan_interval

    async def start(self, shutdown_event: asyncio.Event) -> None:
        """Run scheduled jobs until shutdown_event is set."""
        if self._rescan_interval <= 0:
            logger.debug("Periodic rescan disabled")
            return

        logger.info("Scheduler started (rescan=%ds)", self._rescan_interval)
        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self._rescan_interval)
                break  # shutdown requested
            except asyncio.TimeoutError:
                pass  # interval elapsed, run jobs

            self._heartbeat()
            self._request_rescan()

        logger.info("Scheduler stopped.")

    def _request_rescan(self) -> None:
        # Goes through the event queue so it never overlaps snapshot processing
        self._orchestrator.watcher.queue.put_nowait(SnapshotEvent(RESCAN))

    def _heartbeat(self) -> None:
        engine = self._orchestrator.engine
        logger.info(
            "Tracking %d groups, %d members, %d pending departures",
            len(engine.store.groups),
            len(engine.store.members),
            len(engine.pending),
        )

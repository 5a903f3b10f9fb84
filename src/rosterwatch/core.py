"""Orchestrator: routes snapshot events into the membership engine.

Responsibilities:
1. Startup reconciliation: feed every existing snapshot file through the engine
2. Event queue: one consumer, so no two snapshots are ever processed at once
3. Snapshot loading: read + parse off the loop, skip malformed files
4. Deletion: a removed snapshot file removes its group
5. Rescan: re-process all files and drop groups whose file disappeared
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from rosterwatch.engine import MembershipEngine
from rosterwatch.errors import MalformedSnapshot
from rosterwatch.models import Snapshot, parse_snapshot
from rosterwatch.watcher import ADDED, CHANGED, REMOVED, RESCAN, SnapshotEvent, SnapshotWatcher

logger = logging.getLogger(__name__)


class Orchestrator:
    """Wires a SnapshotWatcher to a MembershipEngine."""

    def __init__(self, engine: MembershipEngine, watcher: SnapshotWatcher) -> None:
        self.engine = engine
        self.watcher = watcher

    # ── Snapshot loading ──────────────────────────────────────

    async def load_snapshot(self, path: Path) -> Snapshot:
        """Read and parse one snapshot file. Raises MalformedSnapshot."""
        try:
            raw = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise MalformedSnapshot(f"failed to read {path}: {e}") from e
        return parse_snapshot(raw)

    async def process_file(self, path: Path) -> bool:
        """Load ``path`` and apply it. Returns False if the file was skipped."""
        if not self.watcher.is_snapshot(path):
            logger.info("File %s is not a snapshot file, ignoring", path)
            return False

        group_tag = self.watcher.group_tag(path)
        logger.debug("Processing snapshot for group %s", group_tag)
        try:
            snapshot = await self.load_snapshot(path)
            self.engine.process_snapshot(group_tag, snapshot.members, snapshot.display_name)
        except MalformedSnapshot as e:
            logger.warning("Skipping snapshot %s: %s", path, e)
            return False
        return True

    # ── Event routing ─────────────────────────────────────────

    async def handle_event(self, event: SnapshotEvent) -> None:
        if event.kind in (ADDED, CHANGED):
            logger.debug("%s event: %s", event.kind, event.path)
            await self.process_file(event.path)
        elif event.kind == REMOVED:
            logger.info("Snapshot file deleted: %s", event.path)
            self.engine.remove_group(self.watcher.group_tag(event.path))
        elif event.kind == RESCAN:
            await self.rescan()
        else:
            logger.debug("Ignoring unknown event kind %r", event.kind)

    # ── Reconciliation ────────────────────────────────────────

    def prune_missing(self, paths: list[Path]) -> None:
        """Remove indexed groups that have no file among ``paths``."""
        present = {self.watcher.group_tag(p) for p in paths}
        for group_tag in list(self.engine.store.groups):
            if group_tag not in present:
                logger.info("Group %s has no snapshot file anymore", group_tag)
                self.engine.remove_group(group_tag)

    async def reconcile(self) -> int:
        """Process every snapshot file currently on disk. Returns files applied.

        Groups restored from saved state whose file was deleted meanwhile
        are removed first.
        """
        paths = self.watcher.listing()
        self.prune_missing(paths)
        applied = 0
        for path in paths:
            if await self.process_file(path):
                applied += 1
        logger.info("Startup scan: applied %d of %d snapshot files", applied, len(paths))
        return applied

    async def rescan(self) -> None:
        """Re-apply all files and remove indexed groups whose file is gone."""
        paths = self.watcher.listing()
        self.prune_missing(paths)
        for path in paths:
            await self.process_file(path)

    # ── Main loop ─────────────────────────────────────────────

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Consume watcher events one at a time until shutdown_event is set."""
        queue = self.watcher.queue
        while not shutdown_event.is_set():
            getter = asyncio.ensure_future(queue.get())
            stopper = asyncio.ensure_future(shutdown_event.wait())
            done, _ = await asyncio.wait({getter, stopper}, return_when=asyncio.FIRST_COMPLETED)
            if getter not in done:
                getter.cancel()
                break
            stopper.cancel()

            event = getter.result()
            try:
                await self.handle_event(event)
            except Exception as e:
                # Keep watching; a single bad event must not stop the daemon
                logger.exception("Error handling %s: %s", event, e)
            finally:
                queue.task_done()
        logger.info("Event loop stopped.")

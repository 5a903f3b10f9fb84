"""Snapshot source: lists and watches the roster snapshot directory.

Watchdog observer threads never touch roster state: each filesystem event is
translated into a SnapshotEvent and handed to the event loop's queue, where a
single consumer processes events in order.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

ADDED = "added"
CHANGED = "changed"
REMOVED = "removed"
RESCAN = "rescan"

# watchdog event_type → snapshot event kind; others (opened, closed...) are dropped
_KIND_MAP = {
    "created": ADDED,
    "modified": CHANGED,
    "deleted": REMOVED,
}


@dataclass(frozen=True)
class SnapshotEvent:
    kind: str
    path: Path | None = None


class SnapshotEventHandler(FileSystemEventHandler):
    """Runs on the watchdog thread; only enqueues."""

    def __init__(self, watcher: SnapshotWatcher, loop: asyncio.AbstractEventLoop) -> None:
        self._watcher = watcher
        self._loop = loop

    def on_any_event(self, event: Any) -> None:
        if event.is_directory:
            return

        if event.event_type == "moved":
            self._handle_move(Path(os.fsdecode(event.src_path)), Path(os.fsdecode(event.dest_path)))
            return

        kind = _KIND_MAP.get(event.event_type)
        if kind is None:
            return
        path = Path(os.fsdecode(event.src_path))
        if not self._watcher.is_snapshot(path):
            logger.debug("%s is not a snapshot file, ignoring", path)
            return
        self._queue_event(kind, path)

    def _handle_move(self, src: Path, dest: Path) -> None:
        """Renames: atomic rewrites (temp → snapshot) count as an add."""
        src_ok = self._watcher.is_snapshot(src)
        dest_ok = self._watcher.is_snapshot(dest)
        if src_ok:
            self._queue_event(REMOVED, src)
        if dest_ok:
            self._queue_event(ADDED, dest)

    def _queue_event(self, kind: str, path: Path) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._watcher.queue.put_nowait, SnapshotEvent(kind, path))


class SnapshotWatcher:
    """Directory of ``<group_tag><extension>`` snapshot files."""

    def __init__(self, directory: Path, extension: str = ".json") -> None:
        self.directory = directory
        self.extension = extension
        self.queue: asyncio.Queue[SnapshotEvent] = asyncio.Queue()
        self._observer: Observer | None = None

    def is_snapshot(self, path: Path) -> bool:
        # Hidden files include editor swap files and our own temp files
        return path.name.endswith(self.extension) and not path.name.startswith(".")

    def group_tag(self, path: Path) -> str:
        return path.name[: -len(self.extension)] if self.extension else path.name

    def listing(self) -> list[Path]:
        """Snapshot files currently present, sorted by name."""
        if not self.directory.is_dir():
            logger.warning("Snapshot directory %s does not exist", self.directory)
            return []
        paths = []
        for entry in sorted(self.directory.iterdir()):
            if not entry.is_file():
                continue
            if self.is_snapshot(entry):
                paths.append(entry)
            else:
                logger.info("File %s is not a snapshot file, ignoring", entry.name)
        return paths

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Start the watchdog observer thread."""
        loop = loop or asyncio.get_running_loop()
        self.directory.mkdir(parents=True, exist_ok=True)
        self._observer = Observer()
        self._observer.schedule(SnapshotEventHandler(self, loop), str(self.directory), recursive=False)
        self._observer.start()
        logger.info("Watching %s for *%s snapshots", self.directory, self.extension)

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5.0)
        if self._observer.is_alive():
            logger.warning("Observer thread did not exit within timeout")
        self._observer = None

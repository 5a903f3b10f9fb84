"""Daemon process: always-on mode for production.

Usage: python -m rosterwatch serve

Manages:
- Index store lifecycle (load at startup, saved by the engine on every change)
- Startup reconciliation, then the watchdog-driven event loop
- Scheduler (periodic rescan, heartbeat)
- PID file (prevent duplicate instances)
- Graceful shutdown (SIGTERM/SIGINT)
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

from rosterwatch.config import RosterConfig, load_config
from rosterwatch.core import Orchestrator
from rosterwatch.engine import MembershipEngine
from rosterwatch.notifiers.base import Notifier
from rosterwatch.notifiers.console import ConsoleNotifier
from rosterwatch.notifiers.dispatch import NotificationDispatcher
from rosterwatch.notifiers.webhook import WebhookNotifier
from rosterwatch.scheduler.jobs import Scheduler
from rosterwatch.store import IndexStore
from rosterwatch.watcher import SnapshotWatcher

logger = logging.getLogger(__name__)


class RosterDaemon:
    """Always-on daemon process."""

    def __init__(self, config: RosterConfig | None = None) -> None:
        self.config = config or load_config()
        self._shutdown_event = asyncio.Event()

    # ── PID file management ──────────────────────────────────

    def _write_pid(self) -> None:
        self.config.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_file.write_text(str(os.getpid()))
        logger.info("PID file written: %s (pid=%d)", self.config.pid_file, os.getpid())

    def _remove_pid(self) -> None:
        if self.config.pid_file.exists():
            self.config.pid_file.unlink()

    def _check_existing(self) -> None:
        if not self.config.pid_file.exists():
            return
        try:
            pid = int(self.config.pid_file.read_text().strip())
            os.kill(pid, 0)  # Check if process exists
            print(f"rosterwatch already running (pid={pid}). Exiting.", file=sys.stderr)
            sys.exit(1)
        except (ProcessLookupError, ValueError):
            # Stale PID file
            self._remove_pid()

    # ── Signal handling ──────────────────────────────────────

    def _setup_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down...", sig.name)
        self._shutdown_event.set()

    # ── Build components ─────────────────────────────────────

    def build_notifier(self) -> Notifier:
        if self.config.notifier.webhook_url:
            return WebhookNotifier(self.config.notifier.webhook_url, self.config.notifier.timeout)
        logger.warning("No webhook URL configured, printing notifications to stdout")
        return ConsoleNotifier()

    def build(self) -> tuple[Orchestrator, NotificationDispatcher]:
        store = IndexStore(self.config.state_dir)
        store.load()

        dispatcher = NotificationDispatcher(self.build_notifier(), self.config.notifier.role_to_ping)
        engine = MembershipEngine(store, dispatcher.publish, self.config.grace_period)
        watcher = SnapshotWatcher(self.config.watch.directory, self.config.watch.extension)
        return Orchestrator(engine, watcher), dispatcher

    # ── One-shot scan ────────────────────────────────────────

    async def scan_once(self) -> int:
        """Reconcile the snapshot directory once, deliver notifications, exit."""
        orchestrator, dispatcher = self.build()
        try:
            return await orchestrator.reconcile()
        finally:
            orchestrator.engine.close()
            await dispatcher.close()

    # ── Main run loop ────────────────────────────────────────

    async def run(self) -> None:
        self._check_existing()
        self._write_pid()
        self._setup_signals()

        orchestrator, dispatcher = self.build()
        scheduler = Scheduler(orchestrator, self.config)

        logger.info(
            "rosterwatch starting (dir=%s, grace=%dmin, notifier=%s)",
            self.config.watch.directory,
            self.config.group_change_time,
            dispatcher.notifier.name,
        )

        try:
            # Initial state first; file events arriving meanwhile wait in the queue
            orchestrator.watcher.start()
            await orchestrator.reconcile()
            await asyncio.gather(
                orchestrator.run(self._shutdown_event),
                scheduler.start(self._shutdown_event),
            )
        except asyncio.CancelledError:
            pass
        finally:
            orchestrator.watcher.stop()
            orchestrator.engine.close()
            await dispatcher.close()
            self._remove_pid()
            logger.info("rosterwatch stopped.")

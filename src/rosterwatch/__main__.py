"""Entry point: python -m rosterwatch [serve|scan|status]

- No args / "serve": Daemon mode (startup scan, then watch for changes)
- "scan":           Apply the current snapshot directory once and exit
- "status":         Print the persisted indexes
"""

from __future__ import annotations

import asyncio
import logging
import sys

from rosterwatch.config import load_config
from rosterwatch.errors import ConfigError


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _run_serve(config) -> None:
    from rosterwatch.daemon import RosterDaemon

    daemon = RosterDaemon(config)
    asyncio.run(daemon.run())


def _run_scan(config) -> None:
    from rosterwatch.daemon import RosterDaemon

    daemon = RosterDaemon(config)
    applied = asyncio.run(daemon.scan_once())
    print(f"Applied {applied} snapshot files")


def _run_status(config) -> None:
    from rosterwatch.store import IndexStore

    store = IndexStore(config.state_dir)
    store.load()
    if not store.groups:
        print("No groups tracked.")
        return
    for group_tag, members in sorted(store.groups.items()):
        online = sum(1 for m in members.values() if m.online)
        print(f"{group_tag}: {len(members)} members ({online} online)")
        for member_id in store.members_of(group_tag):
            member = members.get(member_id)
            print(f"  {member.name if member else '?'} ({member_id})")


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "serve"
    commands = {"serve": _run_serve, "scan": _run_scan, "status": _run_status}

    if cmd not in commands:
        print("Usage: python -m rosterwatch [serve|scan|status]")
        print("  serve  - Daemon mode: startup scan, then watch for changes (default)")
        print("  scan   - Apply the snapshot directory once and exit")
        print("  status - Print tracked groups and members")
        sys.exit(1)

    try:
        config = load_config()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)
    _setup_logging(config.log_level)

    try:
        commands[cmd](config)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()

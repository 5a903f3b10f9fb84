"""Index store: the two durable membership indexes and their on-disk dumps.

Layout:
    <state_dir>/
    ├── groups.json     # [[group_tag, [[member_id, {"name", "online"}], ...]], ...]
    └── members.json    # [[member_id, group_tag], ...]

Both files are flat key-value dumps; all business logic lives in the engine.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from rosterwatch.errors import PersistenceFailure
from rosterwatch.models import Member

logger = logging.getLogger(__name__)

GROUPS_FILE = "groups.json"
MEMBERS_FILE = "members.json"


class IndexStore:
    """In-memory GroupIndex / MemberIndex mirrored to ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.groups: dict[str, dict[str, Member]] = {}  # group_tag → member_id → Member
        self.members: dict[str, str] = {}  # member_id → group_tag

    @property
    def groups_path(self) -> Path:
        return self.root / GROUPS_FILE

    @property
    def members_path(self) -> Path:
        return self.root / MEMBERS_FILE

    # ── Load ──────────────────────────────────────────────────

    def load(self) -> bool:
        """Load both indexes from disk.

        Best effort: on any failure the error is logged and the store starts
        empty. Returns True if saved state was restored.
        """
        if not self.groups_path.exists() and not self.members_path.exists():
            logger.info("No saved state in %s, starting empty", self.root)
            return False
        try:
            groups, members = self._read()
        except PersistenceFailure as e:
            logger.error("Failed to load previous data: %s", e)
            self.groups, self.members = {}, {}
            return False

        self.groups, self.members = groups, members
        logger.info(
            "Loaded %d groups, %d attributed members from %s",
            len(groups),
            len(members),
            self.root,
        )
        return True

    def _read(self) -> tuple[dict[str, dict[str, Member]], dict[str, str]]:
        try:
            groups_data = json.loads(self.groups_path.read_text(encoding="utf-8"))
            members_data = json.loads(self.members_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceFailure(str(e)) from e
        if not isinstance(groups_data, list) or not isinstance(members_data, list):
            raise PersistenceFailure("index files must contain JSON arrays")

        groups: dict[str, dict[str, Member]] = {}
        try:
            for group_tag, member_entries in groups_data:
                if not isinstance(member_entries, list):
                    raise PersistenceFailure(
                        f"{GROUPS_FILE} has incorrect format: {group_tag} members is not an array"
                    )
                groups[group_tag] = {
                    member_id: Member.from_dict(member_id, data)
                    for member_id, data in member_entries
                }
            members = {member_id: group_tag for member_id, group_tag in members_data}
        except (TypeError, ValueError, KeyError) as e:
            raise PersistenceFailure(f"unexpected index layout: {e}") from e
        return groups, members

    # ── Save ──────────────────────────────────────────────────

    def save(self) -> None:
        """Write both indexes. Raises PersistenceFailure."""
        groups_data = [
            [group_tag, [[mid, m.to_dict()] for mid, m in members.items()]]
            for group_tag, members in self.groups.items()
        ]
        members_data = [[mid, group_tag] for mid, group_tag in self.members.items()]
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            self._write_atomic(self.groups_path, groups_data)
            self._write_atomic(self.members_path, members_data)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceFailure(f"failed to write indexes to {self.root}: {e}") from e

    @staticmethod
    def _write_atomic(path: Path, data: list) -> None:
        tmp = path.with_name(f".{path.name}.tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, path)

    # ── Queries ───────────────────────────────────────────────

    def members_of(self, group_tag: str) -> list[str]:
        """Member ids currently attributed to ``group_tag`` in the member index."""
        return [mid for mid, tag in self.members.items() if tag == group_tag]

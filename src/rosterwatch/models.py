"""Roster data types and snapshot parsing."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from rosterwatch.errors import MalformedSnapshot

# Member id keys accepted in snapshot files, in lookup order
_ID_KEYS = ("steamid", "id")


@dataclass
class Member:
    """One group member. Identity is ``id``; name and status may change."""

    id: str
    name: str
    online: bool = False

    def to_dict(self) -> dict:
        return {"name": self.name, "online": self.online}

    @classmethod
    def from_dict(cls, member_id: str, data: dict) -> Member:
        return cls(id=member_id, name=data["name"], online=bool(data.get("online", False)))


@dataclass
class Snapshot:
    """Parsed content of one snapshot file."""

    display_name: str
    members: list[Member] = field(default_factory=list)


@dataclass(eq=False)
class PendingDeparture:
    """A member who left a group and may still reappear within the grace period.

    Compared by identity: a grace timer only expires the exact entry it was
    armed for.
    """

    name: str
    group_tag: str
    members: dict[str, Member]
    departed_at: float


def format_roster(members: dict[str, Member]) -> str:
    """Render a member list with online markers, e.g. ``Alice🟢, Bob🔴``."""
    return ", ".join(f"{m.name}{'🟢' if m.online else '🔴'}" for m in members.values())


def parse_snapshot(raw: str | bytes) -> Snapshot:
    """Parse snapshot file content.

    Expected shape::

        {"name": "Group name",
         "members": [{"steamid": "7656...", "name": "Alice", "online": 1}, ...]}

    Raises MalformedSnapshot on invalid JSON or structure.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedSnapshot(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedSnapshot("snapshot must be a JSON object")

    display_name = data.get("name", "")
    if not isinstance(display_name, str):
        raise MalformedSnapshot("'name' must be a string")

    raw_members = data.get("members")
    if not isinstance(raw_members, list):
        raise MalformedSnapshot("'members' must be a list")

    members = []
    for index, entry in enumerate(raw_members):
        members.append(_parse_member(index, entry))
    return Snapshot(display_name=display_name, members=members)


def _parse_member(index: int, entry: object) -> Member:
    if not isinstance(entry, dict):
        raise MalformedSnapshot(f"member #{index} is not an object")

    member_id = None
    for key in _ID_KEYS:
        if key in entry:
            member_id = entry[key]
            break
    # bool is an int subclass; reject it explicitly
    if isinstance(member_id, bool) or not isinstance(member_id, (str, int)) or member_id == "":
        raise MalformedSnapshot(f"member #{index} has no usable id")

    name = entry.get("name")
    if not isinstance(name, str):
        raise MalformedSnapshot(f"member #{index} has no name")

    online = entry.get("online", 0)
    if online not in (0, 1):
        raise MalformedSnapshot(f"member #{index} has invalid online flag {online!r}")

    return Member(id=str(member_id), name=name, online=online == 1)

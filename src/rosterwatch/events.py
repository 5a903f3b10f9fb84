"""Membership events emitted by the engine."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Union

from rosterwatch.models import Member


@dataclass
class GroupCreated:
    group_tag: str
    display_name: str
    member_names: list[str] = field(default_factory=list)


@dataclass
class GroupDeleted:
    group_tag: str


@dataclass
class MemberJoined:
    member_id: str
    name: str
    group_tag: str


@dataclass
class MemberLeft:
    member_id: str
    name: str
    group_tag: str


@dataclass
class GroupTransfer:
    """A member left one group and showed up in another within the grace period."""

    member_id: str
    name: str
    from_group: str
    from_members: dict[str, Member]
    to_group: str
    to_members: dict[str, Member]


MembershipEvent = Union[GroupCreated, GroupDeleted, MemberJoined, MemberLeft, GroupTransfer]

# Callback the engine publishes events through; must not block
EventSink = Callable[[MembershipEvent], None]

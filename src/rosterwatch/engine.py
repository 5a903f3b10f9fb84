"""Membership diff engine.

Classifies every membership delta of a group snapshot against the stored
indexes:

1. Unknown group → GroupCreated, every member attributed to it
2. Member missing from the new snapshot → MemberLeft + pending departure
3. Member new to the snapshot:
   - pending departure from another group → GroupTransfer
   - pending departure from this group → silent rejoin
   - otherwise → MemberJoined
4. Pending departures expire silently after the grace period

All calls are expected to run on one event loop, one at a time. Grace timers
are plain ``loop.call_later`` callbacks and are never cancelled on
resolution; at fire time they only act if their pending entry is still the
current one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable

from rosterwatch.errors import MalformedSnapshot, PersistenceFailure
from rosterwatch.events import (
    EventSink,
    GroupCreated,
    GroupDeleted,
    GroupTransfer,
    MemberJoined,
    MemberLeft,
)
from rosterwatch.models import Member, PendingDeparture
from rosterwatch.store import IndexStore

logger = logging.getLogger(__name__)


class MembershipEngine:
    """Owns all mutation of the group/member indexes."""

    def __init__(
        self,
        store: IndexStore,
        publish: EventSink,
        grace_period: float,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """
        Args:
            store: loaded index store, mutated exclusively by this engine.
            publish: non-blocking callback receiving every membership event.
            grace_period: seconds a departed member may reappear and still be
                classified as a rejoin or transfer.
            loop: loop for grace timers; defaults to the running loop.
        """
        self.store = store
        self._publish = publish
        self.grace_period = grace_period
        self._loop = loop
        self._pending: dict[str, PendingDeparture] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    @property
    def pending(self) -> dict[str, PendingDeparture]:
        """Departures still inside their grace period, keyed by member id."""
        return self._pending

    # ── Snapshot processing ───────────────────────────────────

    def process_snapshot(
        self, group_tag: str, members: Iterable[Member], display_name: str = ""
    ) -> None:
        """Apply a complete member listing for ``group_tag``.

        Raises MalformedSnapshot (state untouched) on an empty tag, members
        without id/name, or duplicate member ids.
        """
        new_members = self._index_members(group_tag, members)
        groups = self.store.groups

        if group_tag not in groups:
            self._create_group(group_tag, new_members, display_name)
            return

        old_members = groups[group_tag]

        # Departures first so transfer alerts see the pre-update roster
        for member_id, member in old_members.items():
            if member_id not in new_members:
                self._depart(member_id, member, group_tag, old_members)

        for member_id, member in new_members.items():
            if member_id not in old_members:
                self._arrive(member_id, member, group_tag, new_members)

        groups[group_tag] = new_members
        self._persist()

    def _index_members(self, group_tag: str, members: Iterable[Member]) -> dict[str, Member]:
        if not isinstance(group_tag, str) or not group_tag:
            raise MalformedSnapshot("group tag must be a non-empty string")

        indexed: dict[str, Member] = {}
        for member in members:
            if not member.id or not isinstance(member.name, str):
                raise MalformedSnapshot(f"member without id or name in group {group_tag}")
            if member.id in indexed:
                raise MalformedSnapshot(f"duplicate member id {member.id} in group {group_tag}")
            indexed[member.id] = member
        return indexed

    def _create_group(
        self, group_tag: str, new_members: dict[str, Member], display_name: str
    ) -> None:
        self.store.groups[group_tag] = new_members
        for member_id in new_members:
            self.store.members[member_id] = group_tag

        names = [m.name for m in new_members.values()]
        logger.info(
            "New group %s (%s) created with members: %s", group_tag, display_name, ", ".join(names)
        )
        self._publish(GroupCreated(group_tag, display_name, names))
        self._persist()

    def _depart(
        self,
        member_id: str,
        member: Member,
        group_tag: str,
        old_members: dict[str, Member],
    ) -> None:
        # The member may already be attributed to a group processed earlier
        if self.store.members.get(member_id) == group_tag:
            del self.store.members[member_id]
        logger.info("Member %s (%s) left group %s", member.name, member_id, group_tag)
        self._publish(MemberLeft(member_id, member.name, group_tag))

        departure = PendingDeparture(
            name=member.name,
            group_tag=group_tag,
            members=old_members,
            departed_at=time.time(),
        )
        self._pending[member_id] = departure
        loop = self._loop or asyncio.get_running_loop()
        self._timers[member_id] = loop.call_later(
            self.grace_period, self.expire_departure, member_id, departure
        )

    def _arrive(
        self,
        member_id: str,
        member: Member,
        group_tag: str,
        new_members: dict[str, Member],
    ) -> None:
        departure = self._pending.pop(member_id, None)
        self._timers.pop(member_id, None)
        if departure is None:
            logger.info("Member %s (%s) joined group %s", member.name, member_id, group_tag)
            self._publish(MemberJoined(member_id, member.name, group_tag))
        elif departure.group_tag != group_tag:
            logger.warning(
                "Member %s (%s) moved from group %s to %s",
                member.name,
                member_id,
                departure.group_tag,
                group_tag,
            )
            self._publish(
                GroupTransfer(
                    member_id=member_id,
                    name=member.name,
                    from_group=departure.group_tag,
                    from_members=departure.members,
                    to_group=group_tag,
                    to_members=new_members,
                )
            )
        else:
            logger.info("Member %s (%s) rejoined group %s", member.name, member_id, group_tag)

        self.store.members[member_id] = group_tag

    # ── Group removal ─────────────────────────────────────────

    def remove_group(self, group_tag: str) -> bool:
        """Hard-remove a group whose snapshot source is gone.

        Members attributed to the group are dropped from the member index
        without a grace period. Returns False (and emits nothing) if the
        group was unknown.
        """
        if group_tag not in self.store.groups:
            return False

        del self.store.groups[group_tag]
        for member_id in self.store.members_of(group_tag):
            del self.store.members[member_id]
        self._persist()

        logger.info("Group %s has been deleted", group_tag)
        self._publish(GroupDeleted(group_tag))
        return True

    # ── Grace period ──────────────────────────────────────────

    def expire_departure(self, member_id: str, departure: PendingDeparture | None = None) -> bool:
        """Grace timer callback: forget a departure that was never resolved.

        With ``departure`` given, only that exact entry is expired, so a timer
        armed for an earlier departure is a no-op. Returns True if an entry
        was removed.
        """
        current = self._pending.get(member_id)
        if current is None or (departure is not None and current is not departure):
            return False

        del self._pending[member_id]
        self._timers.pop(member_id, None)
        logger.debug("Grace period for %s (%s) expired", current.name, member_id)
        self._persist()
        return True

    def close(self) -> None:
        """Cancel outstanding grace timers (process shutdown)."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    # ── Persistence ───────────────────────────────────────────

    def _persist(self) -> None:
        try:
            self.store.save()
        except PersistenceFailure as e:
            # In-memory state stays authoritative; the next mutation retries
            logger.error("%s", e)

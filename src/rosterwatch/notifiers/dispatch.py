"""Notification dispatcher: renders membership events and delivers them.

Deliveries run as independent tasks: ``publish`` returns immediately, so a
slow or failing sink never holds up snapshot processing. Failures are logged
and dropped (no retries).
"""

from __future__ import annotations

import asyncio
import logging

from rosterwatch.errors import NotificationDeliveryFailure
from rosterwatch.events import (
    GroupCreated,
    GroupDeleted,
    GroupTransfer,
    MemberJoined,
    MemberLeft,
    MembershipEvent,
)
from rosterwatch.models import format_roster
from rosterwatch.notifiers.base import AlertField, Message, Notifier, PlainText, StructuredAlert

logger = logging.getLogger(__name__)


def render(event: MembershipEvent, role_to_ping: str = "") -> Message:
    """Turn an engine event into a human-readable message."""
    if isinstance(event, GroupCreated):
        names = ", ".join(event.member_names)
        return PlainText(
            f"New group **{event.group_tag}** ({event.display_name}) "
            f"has been created with members: **{names}**"
        )
    if isinstance(event, MemberJoined):
        return PlainText(
            f"Member **{event.name}** ({event.member_id}) joined group **{event.group_tag}**"
        )
    if isinstance(event, MemberLeft):
        return PlainText(
            f"Member **{event.name}** ({event.member_id}) left group **{event.group_tag}**"
        )
    if isinstance(event, GroupDeleted):
        return PlainText(f"Group **{event.group_tag}** has been deleted.")
    if isinstance(event, GroupTransfer):
        return StructuredAlert(
            title=f"Group Change Detected for {event.name} ({event.member_id})",
            fields=[
                AlertField(f"Old Group: {event.from_group}", format_roster(event.from_members)),
                AlertField(f"New Group: {event.to_group}", format_roster(event.to_members)),
            ],
            mention=f"<@&{role_to_ping}>" if role_to_ping else "",
        )
    raise TypeError(f"Unknown membership event: {event!r}")


class NotificationDispatcher:
    """Fire-and-forget bridge from the engine to a notifier."""

    def __init__(self, notifier: Notifier, role_to_ping: str = "") -> None:
        self.notifier = notifier
        self.role_to_ping = role_to_ping
        self._tasks: set[asyncio.Task] = set()

    def publish(self, event: MembershipEvent) -> None:
        """Schedule delivery of ``event``; never blocks, never raises."""
        try:
            message = render(event, self.role_to_ping)
        except TypeError as e:
            logger.error("Dropping notification: %s", e)
            return

        task = asyncio.get_running_loop().create_task(self._deliver(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, message: Message) -> None:
        try:
            await self.notifier.send(message)
        except NotificationDeliveryFailure as e:
            logger.error("Notification via %s failed: %s", self.notifier.name, e)
        except Exception as e:
            logger.error("Unexpected error in notifier %s: %s", self.notifier.name, e)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight deliveries (used on shutdown and in one-shot mode)."""
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("Abandoning %d undelivered notifications", len(pending))
            for task in pending:
                task.cancel()

    async def close(self, timeout: float | None = 10.0) -> None:
        await self.drain(timeout)
        await self.notifier.close()

"""Notifier protocol and message types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Union, runtime_checkable


@dataclass
class PlainText:
    """A one-line notification (create, join, leave, delete)."""

    text: str


@dataclass
class AlertField:
    name: str
    value: str
    inline: bool = False


@dataclass
class StructuredAlert:
    """A flagged alert with titled fields, used for group transfers."""

    title: str
    fields: list[AlertField] = field(default_factory=list)
    mention: str = ""


Message = Union[PlainText, StructuredAlert]


@runtime_checkable
class Notifier(Protocol):
    """Protocol that all notification sinks must implement."""

    @property
    def name(self) -> str: ...

    async def send(self, message: Message) -> None:
        """Deliver one message. Raises NotificationDeliveryFailure."""
        ...

    async def close(self) -> None:
        """Release any resources held by the sink."""
        ...

"""Console notifier for development, prints messages to stdout."""

from __future__ import annotations

import sys
from typing import TextIO

from rosterwatch.notifiers.base import Message, PlainText


class ConsoleNotifier:
    """Writes each message to a text stream instead of a remote sink."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout

    @property
    def name(self) -> str:
        return "console"

    async def send(self, message: Message) -> None:
        if isinstance(message, PlainText):
            print(message.text, file=self._stream)
            return

        header = f"{message.mention} " if message.mention else ""
        print(f"{header}[ALERT] {message.title}", file=self._stream)
        for f in message.fields:
            print(f"  {f.name}: {f.value}", file=self._stream)

    async def close(self) -> None:
        self._stream.flush()

"""Structured message channels between the page and the delivery agent.

The two execution contexts share no memory. Each direction of the link
is a channel carrying plain JSON-compatible dicts.
"""

import asyncio
import copy
from typing import Any, AsyncIterator, Optional

_CLOSED = object()


class MessageChannel:
    """One-way, unbounded message queue.

    Messages are deep-copied on post, mirroring structured cloning: the
    receiver can never observe later mutations made by the sender.
    """

    def __init__(self, name: str = "channel"):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def post_message(self, message: dict[str, Any]) -> None:
        if self._closed:
            return
        self._queue.put_nowait(copy.deepcopy(message))

    async def receive(self) -> Optional[dict[str, Any]]:
        """Wait for the next message. Returns None once the channel is closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the sentinel for any other waiting receiver
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def pending(self) -> list[dict[str, Any]]:
        """Drain and return messages already queued, without waiting."""
        messages = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            messages.append(item)
        return messages

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        while True:
            message = await self.receive()
            if message is None:
                return
            yield message

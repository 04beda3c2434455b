"""Publish/subscribe channel between agent runs and the SSE endpoint.

Runs publish events as they happen; the ``/api/stream`` handler holds the
single active subscription and writes whatever arrives to the browser. A new
subscription replaces (and closes) the previous one.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

logger = logging.getLogger(__name__)

_END = object()


def format_sse(event: str, data: str) -> str:
    """Encode one server-sent event frame."""
    lines = [f"event: {event}"]
    lines.extend(f"data: {line}" for line in data.split("\n"))
    return "\n".join(lines) + "\n\n"


class Subscription:
    """Receiving end of the bus; iterate to get ``(event, data)`` pairs."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def put(self, event: str, data: str) -> None:
        if not self.closed:
            self._queue.put_nowait((event, data))

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_END)

    async def __aiter__(self) -> AsyncIterator[tuple[str, str]]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            yield item


class StreamBus:
    """Fans run events out to the active subscriber."""

    def __init__(self) -> None:
        self._subscriber: Optional[Subscription] = None

    @property
    def has_subscriber(self) -> bool:
        return self._subscriber is not None

    def subscribe(self) -> Subscription:
        if self._subscriber is not None:
            logger.debug("Replacing existing stream subscriber")
            self._subscriber.close()
        self._subscriber = Subscription()
        return self._subscriber

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()
        if self._subscriber is subscription:
            self._subscriber = None

    def publish(self, event: str, data: str) -> None:
        if self._subscriber is not None:
            self._subscriber.put(event, data)

    def end(self) -> None:
        """Close the current subscriber; its SSE response finishes."""
        if self._subscriber is not None:
            self._subscriber.close()
            self._subscriber = None

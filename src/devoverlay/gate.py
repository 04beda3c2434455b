"""Hot-reload gate for the proxied dev server.

While an agent run is streaming, the upstream connections that carry
hot-reload notifications are paused so notifications queue up in the
transport instead of reaching the browser. Resuming flushes them in one
burst, so the page reloads once per agent turn rather than once per edit.
"""

import asyncio
import logging
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """A downstream connection the gate can hold back."""

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def on_close(self, callback: Callable[[], None]) -> None: ...


class TransportConnection:
    """Adapts an ``asyncio.Transport`` to the ``Connection`` protocol.

    This is the hook for a reverse proxy in front of the dev server: it wraps
    each upstream hot-reload transport and hands it to
    ``DevServerGate.track_connection``. The owning protocol must call
    ``closed()`` from its ``connection_lost``.
    """

    def __init__(self, transport: asyncio.Transport) -> None:
        self.transport = transport
        self._close_callbacks: list[Callable[[], None]] = []

    def pause(self) -> None:
        if not self.transport.is_closing():
            self.transport.pause_reading()

    def resume(self) -> None:
        if not self.transport.is_closing():
            self.transport.resume_reading()

    def on_close(self, callback: Callable[[], None]) -> None:
        self._close_callbacks.append(callback)

    def closed(self) -> None:
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            callback()


class DevServerGate:
    """Tracks hot-reload connections and pauses them during agent runs."""

    def __init__(self) -> None:
        self._connections: set[Connection] = set()
        self._paused = False

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def connections(self) -> set[Connection]:
        return set(self._connections)

    def track_connection(self, conn: Connection) -> None:
        """Register ``conn``; pause it at once if a run is in progress."""
        self._connections.add(conn)
        conn.on_close(lambda: self._connections.discard(conn))
        if self._paused:
            conn.pause()

    def pause(self) -> None:
        if self._paused:
            return
        self._paused = True
        logger.debug("Pausing %d dev-server connection(s)", len(self._connections))
        for conn in list(self._connections):
            conn.pause()

    def resume(self) -> None:
        if not self._paused:
            return
        self._paused = False
        logger.debug("Resuming %d dev-server connection(s)", len(self._connections))
        for conn in list(self._connections):
            conn.resume()

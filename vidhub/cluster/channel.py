"""Pipe Channel — fire-and-forget envelopes over a multiprocessing Connection.

Invariants:
    - send() never raises: a broken pipe marks the channel closed and returns False
    - on_closed fires exactly once, on EOF or the first failed send
    - Messages are delivered to on_message in arrival order, on the event loop thread

Design Decisions:
    - loop.add_reader on the connection fd: no reader thread, callbacks run in-loop
    - Unix only (fd-based readiness), same as SO_REUSEPORT listeners
"""

import asyncio
import logging
from collections.abc import Callable
from multiprocessing.connection import Connection
from typing import Any

logger = logging.getLogger(__name__)


class PipeChannel:
    """One end of a Primary ⇄ Worker pipe."""

    def __init__(self, conn: Connection):
        self._conn = conn
        self._loop: asyncio.AbstractEventLoop | None = None
        self._on_message: Callable[[Any], None] | None = None
        self._on_closed: Callable[[], None] | None = None
        self._connected = True

    @property
    def connected(self) -> bool:
        return self._connected

    def start(
        self,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[Any], None],
        on_closed: Callable[[], None],
    ) -> None:
        self._loop = loop
        self._on_message = on_message
        self._on_closed = on_closed
        loop.add_reader(self._conn.fileno(), self._readable)

    def _readable(self) -> None:
        try:
            payload = self._conn.recv()
        except (EOFError, OSError):
            self.close()
            return
        if self._on_message is not None:
            self._on_message(payload)

    def flush(self) -> None:
        """Deliver whatever is already buffered, then notice EOF if the peer is gone."""
        while self._connected:
            try:
                ready = self._conn.poll()
            except (EOFError, OSError):
                self.close()
                return
            if not ready:
                return
            self._readable()

    def send(self, payload: Any) -> bool:
        if not self._connected:
            return False
        try:
            self._conn.send(payload)
        except (BrokenPipeError, EOFError, OSError) as e:
            logger.warning(f"Channel send failed: {e}", extra={"service": "channel"})
            self.close()
            return False
        return True

    def close(self) -> None:
        if not self._connected:
            return
        self._connected = False
        if self._loop is not None:
            self._loop.remove_reader(self._conn.fileno())
        self._conn.close()
        if self._on_closed is not None:
            self._on_closed()

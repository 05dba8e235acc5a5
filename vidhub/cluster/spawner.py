"""Worker Spawner — starts worker processes and turns their pipe and exit into events.

Invariants:
    - spawn() returns a handle whose pid is known before any event for it is delivered
    - Buffered pipe messages are delivered before on_disconnect, on_disconnect before on_exit
    - on_exit fires exactly once per spawned process; a negative exitcode becomes a signal name
    - The child is reaped (blocking join) before exitcode is read: the sentinel fires
      when its fds close, which can precede the exit status being available

Design Decisions:
    - WorkerSpawner/WorkerHandle/WorkerEvents Protocols: the coordinator is tested with fakes,
      no real processes (ADR: pure core, thin shell)
    - process.sentinel watched with loop.add_reader: exit noticed without polling or threads
"""

import asyncio
import logging
import multiprocessing
import signal
from collections.abc import Callable
from multiprocessing.connection import Connection
from multiprocessing.process import BaseProcess
from typing import Any, Protocol

from vidhub.core.domain_types import WorkerIndex, WorkerNotice, WorkerPid
from vidhub.core.shutdown_protocol import decode_notice
from vidhub.cluster.channel import PipeChannel
from vidhub.cluster.worker import WorkerConfig, run_worker

logger = logging.getLogger(__name__)


class WorkerHandle(Protocol):
    pid: WorkerPid
    index: WorkerIndex

    def send(self, message: dict[str, Any]) -> bool: ...
    def is_connected(self) -> bool: ...
    def terminate(self) -> None: ...


class WorkerEvents(Protocol):
    """Lifecycle callbacks the Primary implements."""
    def on_online(self, worker: WorkerHandle) -> None: ...
    def on_listening(self, worker: WorkerHandle, address: tuple[str, int] | None) -> None: ...
    def on_worker_message(self, worker: WorkerHandle, message: dict[str, Any]) -> None: ...
    def on_disconnect(self, worker: WorkerHandle) -> None: ...
    def on_exit(self, worker: WorkerHandle, exit_code: int | None, signal_name: str | None) -> None: ...


class WorkerSpawner(Protocol):
    def spawn(self, config: WorkerConfig, events: WorkerEvents) -> WorkerHandle: ...


# ─── multiprocessing implementation ──────────────────────────────

def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"SIG{signum}"


class ProcessWorkerHandle:
    """A live worker process plus the Primary's end of its pipe."""

    def __init__(self, process: BaseProcess, conn: Connection, index: WorkerIndex):
        self.process = process
        self.pid = WorkerPid(process.pid)
        self.index = index
        self.channel = PipeChannel(conn)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._events: WorkerEvents | None = None
        self._exited = False

    def watch(self, loop: asyncio.AbstractEventLoop, events: WorkerEvents) -> None:
        self._loop = loop
        self._events = events
        self.channel.start(loop, self._on_payload, self._on_closed)
        loop.add_reader(self.process.sentinel, self._on_sentinel)

    def _on_payload(self, payload: Any) -> None:
        notice, data = decode_notice(payload)
        if notice is WorkerNotice.ONLINE:
            self._events.on_online(self)
        elif notice is WorkerNotice.LISTENING:
            address = data.get("address")
            self._events.on_listening(self, tuple(address) if address else None)
        else:
            self._events.on_worker_message(self, data)

    def _on_closed(self) -> None:
        self._events.on_disconnect(self)

    def _on_sentinel(self) -> None:
        if self._exited:
            return
        self._exited = True
        self._loop.remove_reader(self.process.sentinel)
        self.channel.flush()
        self.channel.close()
        self.process.join()
        code = self.process.exitcode
        signal_name = None
        if code is not None and code < 0:
            signal_name, code = _signal_name(-code), None
        self._events.on_exit(self, code, signal_name)

    def send(self, message: dict[str, Any]) -> bool:
        return self.channel.send(message)

    def is_connected(self) -> bool:
        return self.channel.connected

    def terminate(self) -> None:
        """Hard stop for a worker that outlived the shutdown deadline."""
        if self.process.is_alive():
            logger.warning(
                f"Killing worker {self.pid}",
                extra={"service": "primary", "worker_pid": self.pid},
            )
            self.process.kill()


class MultiprocessingSpawner:
    """Spawns real worker processes with a fresh interpreter each."""

    def __init__(self, target: Callable[[WorkerConfig, Connection], None] | None = None):
        self._ctx = multiprocessing.get_context("spawn")
        self._target = target or run_worker

    def spawn(self, config: WorkerConfig, events: WorkerEvents) -> ProcessWorkerHandle:
        parent_conn, child_conn = self._ctx.Pipe(duplex=True)
        process = self._ctx.Process(
            target=self._target,
            args=(config, child_conn),
            name=f"vidhub-worker-{config.index}",
            daemon=True,
        )
        process.start()
        child_conn.close()
        handle = ProcessWorkerHandle(process, parent_conn, config.index)
        handle.watch(asyncio.get_running_loop(), events)
        return handle

"""Worker Process — runs the worker state machine and performs its effects.

Invariants:
    - The listener socket is bound only after DATABASE_CONNECTED (START_LISTENER effect)
    - Events are applied strictly one at a time from a single-consumer queue
    - A drain lasts at most drain_timeout_seconds; in-flight requests are cut at the deadline
    - SIGINT is ignored (the Primary owns Ctrl-C); SIGTERM is treated as SHUTDOWN with exit 0
    - Losing the Primary's pipe is treated as SHUTDOWN with exit 0

Design Decisions:
    - Every listener binds its own SO_REUSEPORT socket: the kernel spreads connections,
      no socket handed over from the Primary
    - uvicorn signal capture disabled: stop requests only come through the state machine
    - Listener factory injectable so the effect loop is tested without sockets
"""

import asyncio
import contextlib
import logging
import signal
import socket
import sys
from collections.abc import Callable
from dataclasses import dataclass
from multiprocessing.connection import Connection
from typing import Any, Protocol

import uvicorn

from vidhub.config import Settings
from vidhub.core.domain_types import (
    ControlMessage, ProcessRole, ShutdownTrigger, WorkerIndex, WorkerNotice, WorkerPhase,
)
from vidhub.core.shutdown_protocol import (
    EXIT_OK, decode_control, encode_notice,
)
from vidhub.core.worker_state import (
    Effect, EffectKind, WorkerEvent, WorkerState, handle,
)
from vidhub.cluster.channel import PipeChannel
from vidhub.infrastructure.observability import setup_logging
from vidhub.main import create_app

logger = logging.getLogger(__name__)

_BACKLOG = 2048


@dataclass(frozen=True)
class WorkerConfig:
    """Everything a spawned worker needs: role is explicit, never read from the environment."""
    role: ProcessRole
    index: WorkerIndex
    settings: Settings


# ─── Listener ────────────────────────────────────────────────────

class Listener(Protocol):
    async def serve(self, on_started: Callable[[tuple[str, int]], None]) -> None: ...
    def request_stop(self) -> None: ...
    def force_stop(self) -> None: ...


def bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
    try:
        sock.bind((host, port))
        sock.listen(_BACKLOG)
    except OSError:
        sock.close()
        raise
    sock.setblocking(False)
    return sock


class ListenerServer(uvicorn.Server):
    """uvicorn server that reports startup and leaves signals to the worker."""

    def __init__(self, config: uvicorn.Config, on_started: Callable[[], None]):
        super().__init__(config)
        self._on_started = on_started

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    async def startup(self, sockets: list[socket.socket] | None = None) -> None:
        await super().startup(sockets=sockets)
        if self.started:
            self._on_started()


class UvicornListener:
    """HTTP + WebSocket on one socket, served by the FastAPI app."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.server: ListenerServer | None = None

    async def serve(self, on_started: Callable[[tuple[str, int]], None]) -> None:
        sock = bind_socket(self.settings.host, self.settings.port)
        address = tuple(sock.getsockname()[:2])
        config = uvicorn.Config(
            create_app(self.settings),
            lifespan="on",
            log_config=None,
            access_log=True,
        )
        self.server = ListenerServer(config, on_started=lambda: on_started(address))
        try:
            await self.server.serve(sockets=[sock])
        finally:
            sock.close()

    def request_stop(self) -> None:
        if self.server is not None:
            self.server.should_exit = True

    def force_stop(self) -> None:
        if self.server is not None:
            self.server.should_exit = True
            self.server.force_exit = True


# ─── Worker ──────────────────────────────────────────────────────

class WorkerProcess:
    """Owns one WorkerState and executes the effects each transition returns."""

    def __init__(
        self,
        config: WorkerConfig,
        channel: PipeChannel,
        listener_factory: Callable[[Settings], Listener] = UvicornListener,
    ):
        self.config = config
        self.channel = channel
        self.listener_factory = listener_factory
        self.state = WorkerState()
        self.listener: Listener | None = None
        self._queue: asyncio.Queue[WorkerEvent] | None = None
        self._serve_task: asyncio.Task | None = None
        self._drain_timer: asyncio.TimerHandle | None = None

    @property
    def _log_extra(self) -> dict[str, Any]:
        return {
            "service": "worker", "role": self.config.role.value,
            "worker_index": self.config.index,
        }

    def post(self, event: WorkerEvent) -> None:
        self._queue.put_nowait(event)

    # ─── Inputs ──────────────────────────────────────────────────

    def _on_control(self, payload: Any) -> None:
        try:
            message, exit_code = decode_control(payload)
        except ValueError:
            logger.warning(f"Ignoring control payload {payload!r}", extra=self._log_extra)
            return
        if message is ControlMessage.DATABASE_CONNECTED:
            self.post(WorkerEvent.database_connected())
        else:
            self.post(WorkerEvent.shutdown(exit_code))

    def _on_channel_closed(self) -> None:
        if self.state.is_stopped:
            return
        logger.warning("Lost channel to primary, shutting down", extra=self._log_extra)
        self.post(WorkerEvent.shutdown(EXIT_OK))

    def _on_loop_exception(
        self, loop: asyncio.AbstractEventLoop, context: dict[str, Any],
    ) -> None:
        exc = context.get("exception")
        if exc is None:
            loop.default_exception_handler(context)
            return
        kind = (
            ShutdownTrigger.UNHANDLED_REJECTION if "future" in context
            else ShutdownTrigger.UNCAUGHT_EXCEPTION
        ).value
        logger.error(
            f"{kind} in worker: {context.get('message')}",
            exc_info=exc, extra={**self._log_extra, "trigger": kind},
        )
        self.channel.send(encode_notice(WorkerNotice.MESSAGE, text=f"{kind}: {exc}"))
        self.post(WorkerEvent.local_fault())

    def install_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        loop.set_exception_handler(self._on_loop_exception)
        loop.add_signal_handler(signal.SIGTERM, self.post, WorkerEvent.shutdown(EXIT_OK))
        signal.signal(signal.SIGINT, signal.SIG_IGN)

    # ─── Effects ─────────────────────────────────────────────────

    def _start_listener(self) -> None:
        try:
            self.listener = self.listener_factory(self.config.settings)
        except Exception as e:
            logger.error(f"Listener setup failed: {e}", exc_info=True, extra=self._log_extra)
            self.post(WorkerEvent.listener_failed())
            return
        self._serve_task = asyncio.create_task(self.listener.serve(self._on_listening))
        self._serve_task.add_done_callback(self._on_serve_done)

    def _on_listening(self, address: tuple[str, int]) -> None:
        self.channel.send(encode_notice(WorkerNotice.LISTENING, address=list(address)))

    def _on_serve_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Listener stopped with error: {task.exception()}",
                extra=self._log_extra,
            )
        if self.state.phase is WorkerPhase.DRAINING:
            self.post(WorkerEvent.drain_complete())
        else:
            self.post(WorkerEvent.listener_failed())

    def _begin_drain(self, effect: Effect) -> None:
        logger.info(
            f"Draining (exit code {effect.exit_code})",
            extra={**self._log_extra, "exit_code": effect.exit_code},
        )
        if self.listener is None or self._serve_task is None or self._serve_task.done():
            self.post(WorkerEvent.drain_complete())
            return
        self.listener.request_stop()
        self._drain_timer = asyncio.get_running_loop().call_later(
            self.config.settings.drain_timeout_seconds, self._drain_deadline,
        )

    def _drain_deadline(self) -> None:
        logger.warning("Drain deadline reached, cutting connections", extra=self._log_extra)
        if self.listener is not None:
            self.listener.force_stop()

    def _perform(self, effect: Effect) -> None:
        if effect.kind is EffectKind.START_LISTENER:
            self._start_listener()
        elif effect.kind is EffectKind.BEGIN_DRAIN:
            self._begin_drain(effect)
        elif effect.kind is EffectKind.EXIT and self._drain_timer is not None:
            self._drain_timer.cancel()

    # ─── Main loop ───────────────────────────────────────────────

    async def run(self, install_handlers: bool = True) -> int:
        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        if install_handlers:
            self.install_handlers(loop)
        self.channel.start(loop, self._on_control, self._on_channel_closed)
        self.channel.send(encode_notice(WorkerNotice.ONLINE, index=self.config.index))

        while not self.state.is_stopped:
            event = await self._queue.get()
            transition = handle(self.state, event)
            self.state = transition.state
            for effect in transition.effects:
                self._perform(effect)

        logger.info(
            f"Worker exiting with code {self.state.exit_code}",
            extra={**self._log_extra, "exit_code": self.state.exit_code},
        )
        self.channel.close()
        return self.state.exit_code


def run_worker(config: WorkerConfig, conn: Connection) -> None:
    """Process entry point: set up logging, run the worker loop, exit with its code."""
    settings = config.settings
    setup_logging(settings.log_level, settings.log_format, settings.log_dir)
    worker = WorkerProcess(config, PipeChannel(conn))
    sys.exit(asyncio.run(worker.run()))

"""Primary Coordinator — bootstrap once, spawn the fleet, relay readiness, drive shutdown.

Invariants:
    - No worker is spawned before bootstrap succeeds; bootstrap failure → exit 1, zero workers
    - DATABASE_CONNECTED is sent once per fork event, when that worker comes online,
      unless a shutdown is already in flight
    - Every exit is replaced unless a ShutdownRequest is in flight (should_replace)
    - shutdown() runs at most once: one broadcast, one timer, one exit code
    - The exit code resolves early once every worker has exited, else at the timer

Design Decisions:
    - Coordinator is an instance owning bootstrap, fleet state and handles: no module globals
    - Signals and loop faults funnel into shutdown() with the trigger's exit code
    - Spawner injected (WorkerSpawner Protocol) so every lifecycle path runs without processes
"""

import asyncio
import logging
import signal
from typing import Any

from vidhub.config import Settings
from vidhub.core.domain_types import (
    ControlMessage, ProcessRole, ShutdownTrigger, WorkerIndex,
)
from vidhub.core.errors import BootstrapError
from vidhub.core.fleet_state import FleetState
from vidhub.core.shutdown_protocol import (
    EXIT_FAILURE, ExitEvent, ShutdownRequest, encode_control, should_replace,
)
from vidhub.cluster.spawner import (
    MultiprocessingSpawner, WorkerHandle, WorkerSpawner,
)
from vidhub.cluster.worker import WorkerConfig
from vidhub.infrastructure.database import DatabaseBootstrap

logger = logging.getLogger(__name__)

_SIGNAL_TRIGGERS = {
    signal.SIGTERM: ShutdownTrigger.SIGTERM,
    signal.SIGINT: ShutdownTrigger.SIGINT,
}


class PrimaryCoordinator:
    """Supervises the worker fleet for one run of the server."""

    def __init__(
        self,
        settings: Settings,
        bootstrap: DatabaseBootstrap | None = None,
        spawner: WorkerSpawner | None = None,
        worker_count: int | None = None,
    ):
        self.settings = settings
        self.bootstrap = bootstrap or DatabaseBootstrap(settings.database_dsn)
        self.spawner = spawner or MultiprocessingSpawner()
        self.worker_count = worker_count or settings.effective_worker_count
        self.fleet = FleetState()
        self.handles: dict[int, WorkerHandle] = {}
        self.shutdown_request: ShutdownRequest | None = None
        self._exit_code: asyncio.Future[int] | None = None
        self._shutdown_timer: asyncio.TimerHandle | None = None

    @property
    def in_flight_shutdown(self) -> bool:
        return self.shutdown_request is not None

    def _extra(self, worker: WorkerHandle | None = None, **fields: Any) -> dict[str, Any]:
        extra: dict[str, Any] = {
            "service": "primary", "role": ProcessRole.PRIMARY.value, **fields,
        }
        if worker is not None:
            extra["worker_pid"] = worker.pid
        return extra

    def _exit_future(self) -> asyncio.Future[int]:
        if self._exit_code is None:
            self._exit_code = asyncio.get_running_loop().create_future()
        return self._exit_code

    def _resolve(self, exit_code: int) -> None:
        future = self._exit_future()
        if not future.done():
            future.set_result(exit_code)

    # ─── Startup ─────────────────────────────────────────────────

    async def start(self) -> bool:
        """Bootstrap, then spawn the fleet. Returns False when bootstrap failed."""
        try:
            await self.bootstrap.connect()
        except BootstrapError as e:
            logger.error(
                f"Bootstrap failed, no workers spawned: {e.message}",
                extra=self._extra(error_code=e.code, exit_code=EXIT_FAILURE),
            )
            self._resolve(EXIT_FAILURE)
            return False
        if self.in_flight_shutdown:
            logger.info("Shutdown requested during bootstrap, not spawning", extra=self._extra())
            return True
        logger.info(f"Spawning {self.worker_count} workers", extra=self._extra())
        for index in range(self.worker_count):
            self._spawn(WorkerIndex(index))
        return True

    def _spawn(self, index: WorkerIndex) -> WorkerHandle:
        config = WorkerConfig(role=ProcessRole.WORKER, index=index, settings=self.settings)
        worker = self.spawner.spawn(config, self)
        self.handles[worker.pid] = worker
        self.on_forked(worker)
        return worker

    # ─── Worker lifecycle ────────────────────────────────────────

    def on_forked(self, worker: WorkerHandle) -> None:
        self.fleet.record_fork(worker.pid, worker.index)
        logger.info(
            f"Worker {worker.pid} forked (index {worker.index})",
            extra=self._extra(worker, worker_index=worker.index),
        )

    def on_online(self, worker: WorkerHandle) -> None:
        relay = (
            self.fleet.mark_online(worker.pid)
            and self.bootstrap.is_ready
            and not self.in_flight_shutdown
        )
        logger.info(f"Worker {worker.pid} is online", extra=self._extra(worker))
        if relay:
            worker.send(encode_control(ControlMessage.DATABASE_CONNECTED))

    def on_listening(self, worker: WorkerHandle, address: tuple[str, int] | None) -> None:
        self.fleet.mark_listening(worker.pid, address)
        where = f"{address[0]}:{address[1]}" if address else "unknown address"
        logger.info(
            f"Worker {worker.pid} is listening on {where}",
            extra=self._extra(worker, address=where),
        )

    def on_worker_message(self, worker: WorkerHandle, message: dict[str, Any]) -> None:
        logger.info(f"Message from worker {worker.pid}: {message}", extra=self._extra(worker))

    def on_disconnect(self, worker: WorkerHandle) -> None:
        self.fleet.mark_disconnected(worker.pid)
        logger.warning(f"Worker {worker.pid} disconnected", extra=self._extra(worker))

    def on_exit(
        self, worker: WorkerHandle, exit_code: int | None, signal_name: str | None,
    ) -> None:
        event = ExitEvent(pid=worker.pid, exit_code=exit_code, signal=signal_name)
        record = self.fleet.mark_exited(worker.pid)
        self.handles.pop(worker.pid, None)
        log = logger.info if event.clean else logger.warning
        log(
            f"Worker {worker.pid} exited (code={exit_code}, signal={signal_name})",
            extra=self._extra(worker, exit_code=exit_code, signal=signal_name),
        )
        if should_replace(event, self.in_flight_shutdown):
            index = record.index if record is not None else worker.index
            logger.info(f"Replacing worker {worker.pid}", extra=self._extra(worker))
            self._spawn(index)
        elif self.fleet.active_count == 0:
            logger.info("All workers exited", extra=self._extra())
            self._resolve(self.shutdown_request.exit_code)

    # ─── Shutdown ────────────────────────────────────────────────

    def shutdown(self, trigger: ShutdownTrigger, exit_code: int | None = None) -> bool:
        """Guarded graceful shutdown. Returns False if one is already in flight."""
        if self.shutdown_request is not None:
            logger.info(
                f"Shutdown already in progress, ignoring {trigger.value}",
                extra=self._extra(trigger=trigger.value),
            )
            return False
        request = ShutdownRequest.from_trigger(trigger)
        if exit_code is not None:
            request = ShutdownRequest(trigger=trigger, exit_code=exit_code)
        self.shutdown_request = request
        logger.info(
            f"Shutting down on {trigger.value}",
            extra=self._extra(trigger=trigger.value, exit_code=request.exit_code),
        )
        for worker in list(self.handles.values()):
            if worker.is_connected():
                worker.send(encode_control(ControlMessage.SHUTDOWN, request.exit_code))
        self._shutdown_timer = asyncio.get_running_loop().call_later(
            self.settings.shutdown_timeout_seconds, self._force_exit,
        )
        if self.fleet.active_count == 0:
            self._resolve(request.exit_code)
        return True

    def _force_exit(self) -> None:
        logger.warning(
            f"Shutdown timeout, {self.fleet.active_count} workers still running: "
            f"{self.fleet.snapshot()}",
            extra=self._extra(exit_code=self.shutdown_request.exit_code),
        )
        for worker in list(self.handles.values()):
            worker.terminate()
        self._resolve(self.shutdown_request.exit_code)

    def handle_signal(self, signum: int) -> None:
        self.shutdown(_SIGNAL_TRIGGERS[signum])

    def _on_loop_exception(
        self, loop: asyncio.AbstractEventLoop, context: dict[str, Any],
    ) -> None:
        exc = context.get("exception")
        if exc is None:
            loop.default_exception_handler(context)
            return
        trigger = (
            ShutdownTrigger.UNHANDLED_REJECTION if "future" in context
            else ShutdownTrigger.UNCAUGHT_EXCEPTION
        )
        logger.error(
            f"{trigger.value}: {context.get('message')}",
            exc_info=exc, extra=self._extra(trigger=trigger.value),
        )
        self.shutdown(trigger)

    def install_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        loop.set_exception_handler(self._on_loop_exception)
        for signum in _SIGNAL_TRIGGERS:
            loop.add_signal_handler(signum, self.handle_signal, signum)

    def remove_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for signum in _SIGNAL_TRIGGERS:
            loop.remove_signal_handler(signum)
        loop.set_exception_handler(None)

    # ─── Run ─────────────────────────────────────────────────────

    async def run(self, install_handlers: bool = True) -> int:
        """Start the fleet and wait for the exit code."""
        loop = asyncio.get_running_loop()
        exit_future = self._exit_future()
        if install_handlers:
            self.install_handlers(loop)
        try:
            try:
                await self.start()
            except Exception as e:
                logger.error(
                    f"Startup failed: {e}", exc_info=True,
                    extra=self._extra(trigger=ShutdownTrigger.UNCAUGHT_EXCEPTION.value),
                )
                self.shutdown(ShutdownTrigger.UNCAUGHT_EXCEPTION)
            exit_code = await exit_future
        finally:
            if self._shutdown_timer is not None:
                self._shutdown_timer.cancel()
            if install_handlers:
                self.remove_handlers(loop)
            for worker in list(self.handles.values()):
                worker.terminate()
            await self.bootstrap.dispose()
        logger.info(
            f"Primary exiting with code {exit_code}", extra=self._extra(exit_code=exit_code),
        )
        return exit_code

"""Cluster test doubles — fake spawner, fake worker handles, fake database dial, fake pipe.

Invariants:
    - No real processes, pipes or sockets: every lifecycle event is driven by the test
    - FakeWorker exits on SHUTDOWN by default (one loop turn later), like a quick drain
"""

import asyncio
import itertools

from sqlalchemy.engine import make_url


class FakeEngine:
    url = make_url("postgresql+asyncpg://vidhub@db:5432/vidhub")

    def __init__(self):
        self.disposed = False

    async def dispose(self):
        self.disposed = True


class FakeDial:
    """Counts dials; optionally waits on a gate or fails."""

    def __init__(self, delay: float = 0.0, error: Exception | None = None):
        self.delay = delay
        self.error = error
        self.calls = 0
        self.gate: asyncio.Event | None = None

    async def __call__(self, url: str) -> FakeEngine:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return FakeEngine()


class FakeWorker:
    def __init__(self, pid, index, events, exit_on_shutdown=True):
        self.pid = pid
        self.index = index
        self.events = events
        self.exit_on_shutdown = exit_on_shutdown
        self.sent: list[dict] = []
        self.connected = True
        self.terminated = False

    def send(self, message):
        if not self.connected:
            return False
        self.sent.append(message)
        if self.exit_on_shutdown and message["type"] == "SHUTDOWN":
            asyncio.get_running_loop().call_soon(self.exit, message["exit_code"])
        return True

    def is_connected(self):
        return self.connected

    def terminate(self):
        self.terminated = True

    # Test drivers
    def come_online(self):
        self.events.on_online(self)

    def exit(self, code, signal_name=None):
        if self.connected:
            self.connected = False
            self.events.on_disconnect(self)
        self.events.on_exit(self, code, signal_name)

    def received(self, kind: str) -> list[dict]:
        return [m for m in self.sent if m["type"] == kind]


class FakeSpawner:
    def __init__(self, exit_on_shutdown=True):
        self.exit_on_shutdown = exit_on_shutdown
        self.workers: list[FakeWorker] = []
        self.configs = []
        self._pids = itertools.count(1000)

    def spawn(self, config, events):
        self.configs.append(config)
        worker = FakeWorker(next(self._pids), config.index, events, self.exit_on_shutdown)
        self.workers.append(worker)
        return worker


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Poll the loop until predicate() holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)



class FakeChannel:
    """Worker end of the pipe: the test delivers control payloads by hand."""

    def __init__(self):
        self.sent: list = []
        self.connected = True
        self._on_message = None
        self._on_closed = None

    def start(self, loop, on_message, on_closed):
        self._on_message = on_message
        self._on_closed = on_closed

    def send(self, payload):
        if not self.connected:
            return False
        self.sent.append(payload)
        return True

    def close(self):
        if not self.connected:
            return
        self.connected = False
        self._on_closed()

    def deliver(self, payload):
        self._on_message(payload)

    def notices(self, kind: str) -> list[dict]:
        return [p for p in self.sent if p["type"] == kind]


class FakeListener:
    """Serves until asked to stop; `stubborn` ignores graceful stop requests."""

    def __init__(self, settings, stubborn: bool = False, fail: bool = False):
        self.settings = settings
        self.stubborn = stubborn
        self.fail = fail
        self.stop_requested = False
        self.forced = False
        self._stopped = asyncio.Event()

    async def serve(self, on_started):
        if self.fail:
            raise OSError("address in use")
        on_started(("127.0.0.1", self.settings.port))
        await self._stopped.wait()

    def request_stop(self):
        self.stop_requested = True
        if not self.stubborn:
            self._stopped.set()

    def force_stop(self):
        self.forced = True
        self._stopped.set()


class ListenerFactory:
    def __init__(self, **options):
        self.options = options
        self.created: list[FakeListener] = []

    def __call__(self, settings) -> FakeListener:
        listener = FakeListener(settings, **self.options)
        self.created.append(listener)
        return listener

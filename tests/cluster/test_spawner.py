"""MultiprocessingSpawner with real spawned processes.

Tests cover:
    - exit codes reach on_exit as integers, signal deaths as signal names
    - online → disconnect → exit ordering per process
    - a control message sent through the handle reaches the child
"""

import pytest

from vidhub.cluster.spawner import MultiprocessingSpawner
from vidhub.cluster.worker import WorkerConfig
from vidhub.core.domain_types import ControlMessage, ProcessRole, WorkerIndex
from vidhub.core.shutdown_protocol import encode_control

from tests.cluster import targets
from tests.cluster.fakes import wait_for

_SPAWN_TIMEOUT = 30.0


class Recorder:
    def __init__(self):
        self.events: list[tuple] = []

    def on_online(self, worker):
        self.events.append(("online", worker.pid))

    def on_listening(self, worker, address):
        self.events.append(("listening", worker.pid, address))

    def on_worker_message(self, worker, message):
        self.events.append(("message", worker.pid, message))

    def on_disconnect(self, worker):
        self.events.append(("disconnect", worker.pid))

    def on_exit(self, worker, exit_code, signal_name):
        self.events.append(("exit", worker.pid, exit_code, signal_name))

    def kinds(self) -> list[str]:
        return [e[0] for e in self.events]

    def exit_of(self, pid):
        return next((e[2:] for e in self.events if e[0] == "exit" and e[1] == pid), None)


def _config(settings, index: int) -> WorkerConfig:
    return WorkerConfig(role=ProcessRole.WORKER, index=WorkerIndex(index), settings=settings)


@pytest.mark.parametrize("code", [0, 1])
async def test_exit_code_reported_after_reaping(settings, code):
    recorder = Recorder()
    spawner = MultiprocessingSpawner(target=targets.exit_with_index)

    handle = spawner.spawn(_config(settings, code), recorder)
    await wait_for(lambda: recorder.exit_of(handle.pid) is not None, timeout=_SPAWN_TIMEOUT)

    assert recorder.exit_of(handle.pid) == (code, None)
    assert recorder.kinds() == ["online", "disconnect", "exit"]
    assert not handle.process.is_alive()
    assert not handle.is_connected()


async def test_kill_reported_as_signal_name(settings):
    recorder = Recorder()
    spawner = MultiprocessingSpawner(target=targets.hang)

    handle = spawner.spawn(_config(settings, 0), recorder)
    await wait_for(lambda: "online" in recorder.kinds(), timeout=_SPAWN_TIMEOUT)
    handle.terminate()
    await wait_for(lambda: recorder.exit_of(handle.pid) is not None, timeout=_SPAWN_TIMEOUT)

    assert recorder.exit_of(handle.pid) == (None, "SIGKILL")
    assert recorder.kinds()[-2:] == ["disconnect", "exit"]


async def test_shutdown_envelope_reaches_child(settings):
    recorder = Recorder()
    spawner = MultiprocessingSpawner(target=targets.obey_shutdown)

    handle = spawner.spawn(_config(settings, 0), recorder)
    await wait_for(lambda: "online" in recorder.kinds(), timeout=_SPAWN_TIMEOUT)
    assert handle.send(encode_control(ControlMessage.SHUTDOWN, 3)) is True
    await wait_for(lambda: recorder.exit_of(handle.pid) is not None, timeout=_SPAWN_TIMEOUT)

    assert ("message", handle.pid, {"text": "got SHUTDOWN"}) in recorder.events
    assert recorder.exit_of(handle.pid) == (3, None)
    assert recorder.kinds().index("message") < recorder.kinds().index("exit")

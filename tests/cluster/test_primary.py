"""Primary Coordinator — fleet supervision with a fake spawner.

Tests cover:
    - no worker spawned before bootstrap; bootstrap failure exits 1 with zero workers
    - one DATABASE_CONNECTED per fork event, replacements included, none once shutdown began
    - every unrequested exit replaced; exits during shutdown are not
    - shutdown guarded: one broadcast, one exit code
    - shutdown timeout terminates stragglers and still resolves the code
    - loop faults funnel into shutdown with exit 1
"""

import asyncio
import logging
import signal

from vidhub.core.domain_types import ProcessRole, ShutdownTrigger, WorkerLifecycle
from vidhub.cluster.primary import PrimaryCoordinator
from vidhub.infrastructure.database import DatabaseBootstrap

from tests.cluster.fakes import FakeDial, FakeSpawner, wait_for


def _coordinator(settings, bootstrap, spawner, worker_count=None):
    return PrimaryCoordinator(
        settings, bootstrap=bootstrap, spawner=spawner, worker_count=worker_count,
    )


async def test_spawns_worker_count_after_slow_bootstrap(settings, spawner):
    dial = FakeDial(delay=0.05)
    bootstrap = DatabaseBootstrap("postgresql+asyncpg://db/vidhub", dial=dial)
    coordinator = _coordinator(settings, bootstrap, spawner, worker_count=2)
    task = asyncio.create_task(coordinator.run(install_handlers=False))

    await wait_for(lambda: len(spawner.workers) == 2)
    for worker in spawner.workers:
        worker.come_online()

    assert dial.calls == 1
    assert all(c.role is ProcessRole.WORKER for c in spawner.configs)
    assert [c.index for c in spawner.configs] == [0, 1]
    for worker in spawner.workers:
        assert worker.received("DATABASE_CONNECTED") == [{"type": "DATABASE_CONNECTED"}]

    coordinator.shutdown(ShutdownTrigger.SIGTERM)
    assert await task == 0


async def test_no_worker_before_bootstrap_completes(settings, spawner, dial, bootstrap):
    dial.gate = asyncio.Event()
    coordinator = _coordinator(settings, bootstrap, spawner)
    start = asyncio.create_task(coordinator.start())
    await asyncio.sleep(0.02)
    assert spawner.workers == []
    assert not bootstrap.is_ready

    dial.gate.set()
    assert await start is True
    assert len(spawner.workers) == settings.worker_count


async def test_bootstrap_failure_exits_one_without_workers(settings, spawner):
    bootstrap = DatabaseBootstrap(
        "postgresql+asyncpg://db/vidhub", dial=FakeDial(error=OSError("refused")),
    )
    coordinator = _coordinator(settings, bootstrap, spawner)
    assert await coordinator.run(install_handlers=False) == 1
    assert spawner.workers == []
    assert coordinator.fleet.total_forks == 0


async def test_sigterm_drains_all_workers_and_exits_zero(settings, spawner, bootstrap):
    coordinator = _coordinator(settings, bootstrap, spawner, worker_count=3)
    task = asyncio.create_task(coordinator.run(install_handlers=False))
    await wait_for(lambda: len(spawner.workers) == 3)

    coordinator.handle_signal(signal.SIGTERM)

    assert await task == 0
    for worker in spawner.workers:
        assert worker.received("SHUTDOWN") == [{"type": "SHUTDOWN", "exit_code": 0}]
    assert coordinator.fleet.total_forks == 3
    assert coordinator.fleet.active_count == 0


async def test_local_fault_exit_is_replaced(settings, spawner, bootstrap):
    coordinator = _coordinator(settings, bootstrap, spawner, worker_count=3)
    task = asyncio.create_task(coordinator.run(install_handlers=False))
    await wait_for(lambda: len(spawner.workers) == 3)
    for worker in spawner.workers:
        worker.come_online()

    crashed = spawner.workers[1]
    crashed.exit(1)

    assert len(spawner.workers) == 4
    replacement = spawner.workers[3]
    assert replacement.index == crashed.index
    assert coordinator.fleet.active_count == 3
    replacement.come_online()
    assert replacement.received("DATABASE_CONNECTED") == [{"type": "DATABASE_CONNECTED"}]

    coordinator.shutdown(ShutdownTrigger.SIGTERM)
    assert await task == 0


async def test_clean_and_signalled_exits_are_replaced_too(settings, spawner, bootstrap):
    coordinator = _coordinator(settings, bootstrap, spawner, worker_count=1)
    await coordinator.start()
    spawner.workers[0].exit(0)
    spawner.workers[1].exit(None, "SIGKILL")
    assert len(spawner.workers) == 3
    assert coordinator.fleet.active_count == 1


async def test_shutdown_is_guarded(settings, spawner, bootstrap):
    coordinator = _coordinator(settings, bootstrap, spawner, worker_count=2)
    task = asyncio.create_task(coordinator.run(install_handlers=False))
    await wait_for(lambda: len(spawner.workers) == 2)

    assert coordinator.shutdown(ShutdownTrigger.SIGTERM) is True
    assert coordinator.shutdown(ShutdownTrigger.UNCAUGHT_EXCEPTION) is False

    assert await task == 0
    for worker in spawner.workers:
        assert len(worker.received("SHUTDOWN")) == 1
    assert coordinator.shutdown_request.trigger is ShutdownTrigger.SIGTERM


async def test_exits_during_shutdown_are_not_replaced(settings, bootstrap):
    spawner = FakeSpawner(exit_on_shutdown=False)
    coordinator = _coordinator(settings, bootstrap, spawner, worker_count=2)
    task = asyncio.create_task(coordinator.run(install_handlers=False))
    await wait_for(lambda: len(spawner.workers) == 2)

    coordinator.shutdown(ShutdownTrigger.SIGINT)
    spawner.workers[0].exit(1)
    assert len(spawner.workers) == 2
    assert not task.done()
    spawner.workers[1].exit(0)

    assert await task == 0


async def test_shutdown_timeout_terminates_stragglers(settings, bootstrap, caplog):
    caplog.set_level(logging.WARNING, logger="vidhub.cluster.primary")
    spawner = FakeSpawner(exit_on_shutdown=False)
    coordinator = _coordinator(settings, bootstrap, spawner, worker_count=2)
    task = asyncio.create_task(coordinator.run(install_handlers=False))
    await wait_for(lambda: len(spawner.workers) == 2)

    coordinator.shutdown(ShutdownTrigger.SIGTERM)
    code = await asyncio.wait_for(task, timeout=settings.shutdown_timeout_seconds + 1)

    assert code == 0
    assert all(w.terminated for w in spawner.workers)
    timeout = next(
        r for r in caplog.records if r.getMessage().startswith("Shutdown timeout")
    )
    assert timeout.role == "primary"
    assert f"'pid': {spawner.workers[0].pid}" in timeout.getMessage()


async def test_shutdown_skips_disconnected_workers(settings, spawner, bootstrap):
    coordinator = _coordinator(settings, bootstrap, spawner, worker_count=2)
    await coordinator.start()
    lost = spawner.workers[0]
    lost.connected = False
    coordinator.on_disconnect(lost)
    assert coordinator.fleet.records[lost.pid].state is WorkerLifecycle.DISCONNECTED

    coordinator.shutdown(ShutdownTrigger.SIGTERM)
    assert lost.sent == []
    assert len(spawner.workers[1].received("SHUTDOWN")) == 1
    lost.exit(0)


async def test_uncaught_fault_shuts_down_with_one(settings, spawner, bootstrap):
    coordinator = _coordinator(settings, bootstrap, spawner, worker_count=2)
    task = asyncio.create_task(coordinator.run(install_handlers=False))
    await wait_for(lambda: len(spawner.workers) == 2)

    loop = asyncio.get_running_loop()
    coordinator._on_loop_exception(
        loop, {"message": "Exception in callback", "exception": RuntimeError("boom")},
    )

    assert await task == 1
    assert coordinator.shutdown_request.trigger is ShutdownTrigger.UNCAUGHT_EXCEPTION
    for worker in spawner.workers:
        assert worker.received("SHUTDOWN") == [{"type": "SHUTDOWN", "exit_code": 1}]


async def test_unretrieved_task_exception_is_unhandled_rejection(settings, spawner, bootstrap):
    coordinator = _coordinator(settings, bootstrap, spawner, worker_count=1)
    task = asyncio.create_task(coordinator.run(install_handlers=False))
    await wait_for(lambda: len(spawner.workers) == 1)

    loop = asyncio.get_running_loop()
    coordinator._on_loop_exception(loop, {
        "message": "Task exception was never retrieved",
        "exception": ValueError("lost"),
        "future": loop.create_future(),
    })

    assert await task == 1
    assert coordinator.shutdown_request.trigger is ShutdownTrigger.UNHANDLED_REJECTION


async def test_shutdown_during_bootstrap_spawns_nothing(settings, spawner, dial, bootstrap):
    dial.gate = asyncio.Event()
    coordinator = _coordinator(settings, bootstrap, spawner)
    task = asyncio.create_task(coordinator.run(install_handlers=False))
    await asyncio.sleep(0.01)

    coordinator.shutdown(ShutdownTrigger.SIGINT)
    dial.gate.set()

    assert await task == 0
    assert spawner.workers == []


async def test_listening_and_messages_only_update_bookkeeping(settings, spawner, bootstrap):
    coordinator = _coordinator(settings, bootstrap, spawner, worker_count=1)
    await coordinator.start()
    worker = spawner.workers[0]

    coordinator.on_listening(worker, ("0.0.0.0", 7000))
    coordinator.on_worker_message(worker, {"text": "hello"})

    assert coordinator.fleet.listening_count == 1
    assert worker.sent == []
    worker.come_online()
    assert worker.received("DATABASE_CONNECTED")



async def test_no_readiness_relay_once_shutdown_in_flight(settings, bootstrap):
    spawner = FakeSpawner(exit_on_shutdown=False)
    coordinator = _coordinator(settings, bootstrap, spawner, worker_count=1)
    await coordinator.start()
    worker = spawner.workers[0]

    coordinator.shutdown(ShutdownTrigger.SIGTERM)
    worker.come_online()

    assert worker.received("DATABASE_CONNECTED") == []
    assert worker.received("SHUTDOWN") == [{"type": "SHUTDOWN", "exit_code": 0}]
    worker.exit(0)
    assert coordinator.fleet.active_count == 0
